"""HTTP collaborators for the pipeline.

Async clients for services behind the API gateway:
- Scanner endpoints: code snippets, GitHub repositories, S3 buckets
- Notification endpoint: long-running scan email notices
"""

from sentinelhub.clients.base import GatewayClient, GatewayError, RateLimiter
from sentinelhub.clients.notifier import TimeoutNotifier
from sentinelhub.clients.scanner import ScannerClient

__all__ = [
    "GatewayClient",
    "GatewayError",
    "RateLimiter",
    "ScannerClient",
    "TimeoutNotifier",
]
