"""
Resolution Verifier
===================

Before/after image comparison through an external automation webhook.

Contract:
    request  {"before": <uri>, "after": <uri>}
    response {"resolved": <bool>, "reason": <str, optional>}

Anything else (non-2xx, timeout, non-JSON body, missing or non-boolean
`resolved`) is a VerificationServiceError. Calls are never retried: the
upstream workflow may have side effects of its own.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from ..config import get_settings
from ..errors import VerificationServiceError
from .base import WebhookClient

logger = logging.getLogger(__name__)


@dataclass
class VerificationVerdict:
    """Verifier answer, kept exactly as received"""
    resolved: bool
    reason: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.raw)
        out["resolved"] = self.resolved
        if self.reason is not None:
            out["reason"] = self.reason
        return out

    @classmethod
    def from_payload(cls, payload: Any) -> "VerificationVerdict":
        """Parse the webhook body, raising VerificationServiceError if malformed"""
        if not isinstance(payload, dict):
            raise VerificationServiceError("Verifier returned a non-object payload")
        resolved = payload.get("resolved")
        if not isinstance(resolved, bool):
            raise VerificationServiceError("Verifier payload missing boolean 'resolved'")
        reason = payload.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise VerificationServiceError("Verifier payload 'reason' is not a string")
        return cls(resolved=resolved, reason=reason, raw=dict(payload))


class ResolutionVerifier(ABC):
    """Interface for the image-comparison collaborator"""

    @abstractmethod
    async def verify(self, before: str, after: str) -> VerificationVerdict:
        """Compare before/after images and return a verdict"""

    async def close(self):
        pass


class WebhookResolutionVerifier(ResolutionVerifier):
    """Verifier backed by the VERIFIER_WEBHOOK_URL endpoint"""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.client = WebhookClient(
            url=url if url is not None else settings.verifier_webhook_url,
            timeout=timeout if timeout is not None else settings.webhook_timeout_seconds,
            transport=transport,
        )
        if not self.client.url:
            logger.warning("Verifier disabled: VERIFIER_WEBHOOK_URL not set")

    async def close(self):
        await self.client.close()

    async def verify(self, before: str, after: str) -> VerificationVerdict:
        result = await self.client.post_json({"before": before, "after": after})
        if not result.success:
            raise VerificationServiceError(
                f"Verification service unavailable: {result.error}",
                {"status_code": result.status_code} if result.status_code else None,
            )

        verdict = VerificationVerdict.from_payload(result.data)
        logger.info(f"Verifier verdict: resolved={verdict.resolved} reason={verdict.reason!r}")
        return verdict


# Singleton
_verifier: Optional[ResolutionVerifier] = None


def get_verifier() -> ResolutionVerifier:
    """Get singleton verifier instance"""
    global _verifier
    if _verifier is None:
        _verifier = WebhookResolutionVerifier()
    return _verifier
