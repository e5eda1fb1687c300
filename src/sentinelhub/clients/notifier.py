"""Timeout notice delivery via the gateway's email endpoint.

The notifier opens a short-lived client per notice: notices are rare (only
runs exceeding the watchdog delay) and must never hold a connection pool open
for the lifetime of the orchestrator.
"""

import logging
from datetime import datetime
from typing import Any

from sentinelhub.clients.base import GatewayClient, GatewayError
from sentinelhub.errors import NotificationError

logger = logging.getLogger(__name__)

TIMEOUT_NOTICE_ENDPOINT = "/api/notifications/email/scan-timeout"


class TimeoutNotifier:
    """Sends long-running scan notices.

    Args:
        base_url: Gateway base URL
        timeout: HTTP timeout in seconds (default: 10)
    """

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self.base_url = base_url
        self.timeout = timeout

    async def notify_timeout(
        self,
        recipient: str,
        pipeline_id: str,
        scan_type: str,
        started_at: datetime,
    ) -> dict[str, Any]:
        """Send one long-running scan notice. No retries.

        Raises:
            NotificationError: If the gateway rejects or cannot be reached
        """
        body = {
            "recipient": recipient,
            "scanId": pipeline_id,
            "scanType": scan_type,
            "startTime": started_at.isoformat(),
        }
        try:
            async with GatewayClient(
                base_url=self.base_url,
                rate_limit=1,
                timeout=self.timeout,
                max_retries=0,
            ) as client:
                result = await client.post(TIMEOUT_NOTICE_ENDPOINT, json_data=body)
        except GatewayError as e:
            raise NotificationError(f"Timeout notice for {pipeline_id} failed: {e}") from e

        logger.info("Timeout notice sent for %s to %s", pipeline_id, recipient)
        return result
