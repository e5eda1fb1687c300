"""Parquet snapshot store for pipeline results.

Write-once storage of each run's accumulated stage results. Every run gets its
own directory:

    {base}/{storage_id}/snapshot.parquet   one row: id, kind, stored_at, payload JSON
    {base}/{storage_id}/findings.parquet   one row per finding (omitted when none)

The payload column holds the full result tree as JSON; the findings table is
flattened so it can be queried without decoding payloads.

All I/O runs in asyncio.to_thread so the event loop is never blocked.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from sentinelhub.findings import findings_frame

logger = logging.getLogger(__name__)

_SNAPSHOT_FILE = "snapshot.parquet"
_FINDINGS_FILE = "findings.parquet"


class SnapshotStore:
    """Async Parquet store for run snapshots.

    Args:
        base_path: Root directory. Defaults to 'data/snapshots'.
    """

    def __init__(self, base_path: str | Path = "data/snapshots") -> None:
        self.base_path = Path(base_path)

    def _dir(self, storage_id: str) -> Path:
        return self.base_path / storage_id

    @staticmethod
    def _write_table(frame: pd.DataFrame, path: Path) -> None:
        table = pa.Table.from_pandas(frame, preserve_index=False)
        pq.write_table(table, path, compression="snappy", write_statistics=True)

    async def store(
        self,
        pipeline_id: str,
        kind: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        """Persist one run's results.

        Args:
            pipeline_id: Run identifier, reused as the storage id
            kind: Request kind, stored alongside for filtering
            data: Accumulated stage results (JSON-serializable; others via str())

        Returns:
            ``{storage_id, path, findings_count, stored_at}``

        Raises:
            FileExistsError: If a snapshot for this id already exists
        """
        storage_id = pipeline_id
        run_dir = self._dir(storage_id)
        snapshot_path = run_dir / _SNAPSHOT_FILE
        if snapshot_path.exists():
            raise FileExistsError(f"Snapshot already exists: {snapshot_path}")

        stored_at = datetime.now(timezone.utc)
        snapshot = pd.DataFrame([{
            "pipeline_id": pipeline_id,
            "kind": kind,
            "stored_at": stored_at.isoformat(),
            "payload": json.dumps(data, default=str),
        }])
        findings = findings_frame(data.get("scan"))

        def _write() -> None:
            run_dir.mkdir(parents=True, exist_ok=True)
            self._write_table(snapshot, snapshot_path)
            if not findings.empty:
                self._write_table(findings, run_dir / _FINDINGS_FILE)

        await asyncio.to_thread(_write)
        logger.info("Stored snapshot %s (%d findings)", storage_id, len(findings))
        return {
            "storage_id": storage_id,
            "path": str(snapshot_path),
            "findings_count": len(findings),
            "stored_at": stored_at.isoformat(),
        }

    async def load(self, storage_id: str) -> dict[str, Any] | None:
        """Read a snapshot back; None if missing or unreadable."""
        snapshot_path = self._dir(storage_id) / _SNAPSHOT_FILE
        if not snapshot_path.exists():
            return None

        def _read() -> dict[str, Any] | None:
            try:
                row = pq.read_table(snapshot_path).to_pandas().iloc[0]
            except Exception as e:
                logger.warning("Failed to read snapshot %s: %s", snapshot_path, e)
                return None
            return {
                "pipeline_id": row["pipeline_id"],
                "kind": row["kind"],
                "stored_at": row["stored_at"],
                "data": json.loads(row["payload"]),
            }

        return await asyncio.to_thread(_read)

    async def load_findings(self, storage_id: str) -> pd.DataFrame:
        """Flattened findings for a snapshot. Empty if none were stored."""
        path = self._dir(storage_id) / _FINDINGS_FILE
        if not path.exists():
            return pd.DataFrame(columns=["category", "severity", "message", "rule"])
        return await asyncio.to_thread(lambda: pq.read_table(path).to_pandas())

    async def list_ids(self) -> list[str]:
        """Storage ids with a snapshot on disk, sorted."""
        def _scan() -> list[str]:
            if not self.base_path.exists():
                return []
            return sorted(
                p.name for p in self.base_path.iterdir()
                if (p / _SNAPSHOT_FILE).exists()
            )

        return await asyncio.to_thread(_scan)
