"""Scanner gateway client.

Thin async wrapper around the gateway's scanning endpoints:
- POST /api/scan/code               ESLint + security rules over a code snippet
- POST /api/github/scan/{owner}/{repo}  full repository scan
- POST /api/aws/scan-bucket         S3 bucket posture check

The gateway answers ``{"success": bool, "data": {...}}`` for snippet and
bucket scans and a flat ``{"success": bool, ...}`` document for repository
scans. This client unwraps the envelope and raises GatewayError when
``success`` is false; it does not interpret findings.

Usage:
    async with ScannerClient(base_url="http://localhost:5000") as scanner:
        result = await scanner.scan_code("eval(input)", filename="app.js")
"""

from typing import Any

from sentinelhub.clients.base import GatewayClient, GatewayError


class ScannerClient(GatewayClient):
    """Async client for the scanner gateway.

    Args:
        base_url: Gateway base URL
        github_token: Default token for repository scans
        rate_limit: Max requests per second (default: 5)
        timeout: Per-request timeout in seconds; scans are slow (default: 120)
    """

    def __init__(
        self,
        base_url: str,
        github_token: str | None = None,
        rate_limit: int = 5,
        timeout: float = 120.0,
        max_retries: int = 1,
    ) -> None:
        super().__init__(
            base_url=base_url,
            headers={"Accept": "application/json"},
            rate_limit=rate_limit,
            timeout=timeout,
            max_retries=max_retries,
        )
        self.github_token = github_token

    @staticmethod
    def _unwrap(payload: dict[str, Any], operation: str) -> dict[str, Any]:
        """Strip the ``{success, data}`` envelope."""
        if not payload.get("success", False):
            message = payload.get("message") or payload.get("error") or "scanner reported failure"
            raise GatewayError(f"{operation} failed: {message}")
        data = payload.get("data")
        return data if isinstance(data, dict) else payload

    async def scan_code(self, code: str, filename: str = "snippet.js") -> dict[str, Any]:
        """Scan a code snippet.

        Returns:
            ``{filename, issues: [{line, column, severity, message, rule, type}], summary}``
        """
        payload = await self.post("/api/scan/code", json_data={"code": code, "filename": filename})
        return self._unwrap(payload, "Code scan")

    async def scan_repository(
        self,
        owner: str,
        repo: str,
        github_token: str | None = None,
        enable_code_rabbit: bool = False,
    ) -> dict[str, Any]:
        """Scan a GitHub repository.

        Raises:
            GatewayError: If no token is available or the scan fails
        """
        token = github_token or self.github_token
        if not token:
            raise GatewayError("GitHub access token required for repository scans", status_code=401)

        payload = await self.post(
            f"/api/github/scan/{owner}/{repo}",
            json_data={"enableCodeRabbit": enable_code_rabbit},
            headers={"github-token": token},
        )
        return self._unwrap(payload, "Repository scan")

    async def scan_bucket(self, bucket_name: str, region: str | None = None) -> dict[str, Any]:
        """Scan an S3 bucket's access and encryption posture."""
        body: dict[str, Any] = {"bucketName": bucket_name}
        if region:
            body["region"] = region
        payload = await self.post("/api/aws/scan-bucket", json_data=body)
        return self._unwrap(payload, "Bucket scan")
