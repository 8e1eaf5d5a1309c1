"""
Webhook Base Client
===================

Shared async HTTP client for the external automation webhooks.
Used by the verifier, notifier and categorizer clients.
"""

import httpx
import logging
from typing import Optional, Dict, Any
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class WebhookCallResult:
    """Result from a webhook call"""
    status_code: int = 0
    data: Any = None
    text: str = ""
    success: bool = True
    error: Optional[str] = None


class WebhookClient:
    """
    Base async client for a single webhook URL.

    Never raises for transport or HTTP errors: callers inspect
    WebhookCallResult.success and decide how to surface the failure.
    """

    def __init__(
        self,
        url: Optional[str],
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.headers = headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> WebhookCallResult:
        """
        Call the webhook.

        Returns:
            WebhookCallResult with the decoded body (JSON when possible) or error
        """
        if not self.url:
            return WebhookCallResult(success=False, error="Webhook URL not configured")

        try:
            client = await self._get_client()
            response = await client.request(
                method,
                self.url,
                json=json,
                params=params,
                headers=self.headers,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.error(f"Webhook timed out after {self.timeout}s: {self.url}")
            return WebhookCallResult(success=False, error=f"Timeout: {e}")
        except httpx.HTTPStatusError as e:
            logger.error(f"Webhook error: {e.response.status_code} from {self.url}")
            return WebhookCallResult(
                status_code=e.response.status_code,
                text=e.response.text[:200],
                success=False,
                error=f"HTTP {e.response.status_code}: {e.response.text[:200]}",
            )
        except httpx.HTTPError as e:
            logger.error(f"Webhook request failed: {e}")
            return WebhookCallResult(success=False, error=str(e) or e.__class__.__name__)

        try:
            data = response.json()
        except ValueError:
            data = None

        return WebhookCallResult(
            status_code=response.status_code,
            data=data,
            text=response.text,
            success=True,
        )

    async def post_json(self, payload: Dict[str, Any]) -> WebhookCallResult:
        return await self.request("POST", json=payload)
