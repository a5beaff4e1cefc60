"""Minimal Telnyx REST v2 client.

Only the call the blocking service needs: repointing a number's voice
webhooks. Auth is a bearer API key from settings.
"""

import logging

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


class TelnyxError(Exception):
    """Base error for Telnyx calls."""


class TelnyxConfigurationError(TelnyxError):
    """Raised when TELNYX_API_KEY is missing."""


class TelnyxAPIError(TelnyxError):
    def __init__(self, status_code: int, detail: str):
        super().__init__(f"Telnyx API error ({status_code}): {detail}")
        self.status_code = status_code
        self.detail = detail


class TelnyxClient:
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = settings.TELNYX_API_KEY if api_key is None else api_key
        self.base_url = (base_url or settings.TELNYX_API_BASE).rstrip("/")
        self.timeout = timeout or settings.TELNYX_TIMEOUT_SECONDS
        self._transport = transport

    async def update_number_webhooks(
        self,
        telnyx_number_id: str,
        webhook_url: str,
        webhook_failover_url: str,
    ) -> dict:
        """PATCH a number's webhook configuration. Returns the `data` object."""
        if not self.api_key:
            raise TelnyxConfigurationError("TELNYX_API_KEY not configured")
        if not telnyx_number_id:
            raise TelnyxError("Phone number has no Telnyx id")

        url = f"{self.base_url}/phone_numbers/{telnyx_number_id}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "webhook_url": webhook_url,
            "webhook_failover_url": webhook_failover_url,
            "webhook_request_method": "POST",
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.patch(url, json=payload, headers=headers)

        if resp.is_success:
            logger.debug("Telnyx number %s now points to %s", telnyx_number_id, webhook_url)
            try:
                return resp.json().get("data", {})
            except ValueError:
                return {}

        raise TelnyxAPIError(resp.status_code, _error_detail(resp))


def _error_detail(resp: httpx.Response) -> str:
    try:
        errors = resp.json().get("errors") or []
    except ValueError:
        errors = []
    if errors and errors[0].get("detail"):
        return errors[0]["detail"]
    return resp.reason_phrase or "unknown error"
