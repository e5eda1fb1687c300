"""SentinelHub — security scanning pipeline.

Runs a scan request through five ordered stages (scan, enrich, converse,
persist, report) and returns one unified response envelope.
"""

__version__ = "0.3.0"
