"""Durable storage for pipeline results.

Write-once Parquet snapshots, one directory per pipeline run.
"""

from sentinelhub.storage.snapshot_store import SnapshotStore

__all__ = ["SnapshotStore"]
