"""Scan back-ends — one per request kind.

Each back-end validates its input, calls the scanner gateway and normalizes
the answer into the shared scan-result shape:

    {"type": kind, "target": str, "findings": {category: [finding]}, "summary": {...}}

Back-ends open a short-lived ScannerClient per scan via ``client_factory`` so
concurrent runs never share a connection pool.
"""

import logging
from collections.abc import Callable
from typing import Any

from sentinelhub.clients.scanner import ScannerClient
from sentinelhub.config import Settings
from sentinelhub.findings import SEVERITY_ORDER, group_by_category, normalize_severity, total_findings
from sentinelhub.pipeline.models import RequestKind

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], ScannerClient]


def _summarize(findings: dict[str, list[dict[str, Any]]], extra: dict[str, Any] | None = None) -> dict[str, Any]:
    counts = {severity: 0 for severity in SEVERITY_ORDER}
    for items in findings.values():
        for item in items:
            counts[normalize_severity(item.get("severity"))] += 1
    return {**(extra or {}), "total": sum(counts.values()), **counts}


class ScanBackend:
    """Base class for kind-specific scanners.

    Subclasses implement ``scan(payload, options) -> scan result``.
    """

    kind: RequestKind

    def __init__(self, client_factory: ClientFactory) -> None:
        self.client_factory = client_factory

    async def scan(self, payload: Any, options: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError


class CodeAnalysisBackend(ScanBackend):
    """Static analysis of a code snippet.

    Input: the code as a string, or ``{"code": ..., "filename": ...}``.
    """

    kind = RequestKind.CODE_ANALYSIS

    async def scan(self, payload: Any, options: dict[str, Any]) -> dict[str, Any]:
        if isinstance(payload, str):
            code, filename = payload, options.get("filename", "snippet.js")
        elif isinstance(payload, dict) and payload.get("code"):
            code, filename = payload["code"], payload.get("filename") or options.get("filename", "snippet.js")
        else:
            raise ValueError("code-analysis input requires non-empty 'code'")

        async with self.client_factory() as client:
            data = await client.scan_code(code, filename=filename)

        findings = group_by_category(data.get("issues") or [], default_category="quality")
        return {
            "type": self.kind.value,
            "target": data.get("filename", filename),
            "findings": findings,
            "summary": _summarize(findings, {"scanner": data.get("summary") or {}}),
        }


class RepositoryScanBackend(ScanBackend):
    """Full GitHub repository scan.

    Input: ``"owner/repo"`` or ``{"owner": ..., "repo": ..., "github_token": ...}``.
    """

    kind = RequestKind.REPOSITORY_SCAN

    @staticmethod
    def _parse(payload: Any) -> tuple[str, str, str | None]:
        if isinstance(payload, str) and payload.count("/") == 1:
            owner, repo = payload.split("/")
            token = None
        elif isinstance(payload, dict):
            owner, repo = payload.get("owner"), payload.get("repo")
            token = payload.get("github_token")
        else:
            owner = repo = token = None
        if not owner or not repo:
            raise ValueError("repository-scan input requires 'owner' and 'repo'")
        return owner, repo, token

    async def scan(self, payload: Any, options: dict[str, Any]) -> dict[str, Any]:
        owner, repo, token = self._parse(payload)

        async with self.client_factory() as client:
            data = await client.scan_repository(
                owner,
                repo,
                github_token=token,
                enable_code_rabbit=bool(options.get("enable_code_rabbit", False)),
            )

        security = data.get("security") or {}
        findings = {
            str(category).lower(): [
                {**item, "severity": normalize_severity(item.get("severity"))}
                for item in items if isinstance(item, dict)
            ]
            for category, items in security.items()
            if isinstance(items, list)
        }
        repository = data.get("repository") or {}
        return {
            "type": self.kind.value,
            "target": repository.get("fullName") or f"{owner}/{repo}",
            "findings": findings,
            "summary": _summarize(findings, {"scanner": data.get("summary") or {}}),
        }


class BucketScanBackend(ScanBackend):
    """S3 bucket posture scan.

    Input: the bucket name, or ``{"bucket_name": ..., "region": ...}``.
    """

    kind = RequestKind.BUCKET_SCAN

    async def scan(self, payload: Any, options: dict[str, Any]) -> dict[str, Any]:
        if isinstance(payload, str):
            bucket, region = payload, options.get("region")
        elif isinstance(payload, dict):
            bucket = payload.get("bucket_name") or payload.get("bucketName")
            region = payload.get("region") or options.get("region")
        else:
            bucket = region = None
        if not bucket:
            raise ValueError("bucket-scan input requires 'bucket_name'")

        async with self.client_factory() as client:
            data = await client.scan_bucket(bucket, region=region)

        findings = group_by_category(data.get("issues") or [])
        return {
            "type": self.kind.value,
            "target": data.get("bucket", bucket),
            "findings": findings,
            "summary": _summarize(findings, {"scanner": data.get("summary") or {}}),
        }


def default_backends(settings: Settings) -> dict[RequestKind, ScanBackend]:
    """One back-end per kind, all pointed at the configured gateway."""

    def factory() -> ScannerClient:
        return ScannerClient(
            base_url=settings.gateway_base_url,
            github_token=settings.github_token,
            rate_limit=settings.gateway_rate_limit,
            timeout=settings.scan_timeout_seconds,
        )

    backends = [
        CodeAnalysisBackend(factory),
        RepositoryScanBackend(factory),
        BucketScanBackend(factory),
    ]
    return {backend.kind: backend for backend in backends}


def log_scan_summary(pipeline_id: str, scan_results: dict[str, Any]) -> None:
    summary = scan_results.get("summary") or {}
    logger.info(
        "Pipeline %s scan found %d findings (critical=%d high=%d medium=%d)",
        pipeline_id,
        total_findings(scan_results),
        summary.get("critical", 0),
        summary.get("high", 0),
        summary.get("medium", 0),
    )
