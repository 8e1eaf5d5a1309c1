"""
Resolution Notifier
===================

Tells the reporter their issue was resolved, through an external
automation webhook (which sends the actual email).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..config import get_settings
from ..errors import NotificationFailed
from .base import WebhookClient

logger = logging.getLogger(__name__)


@dataclass
class ResolutionNotice:
    """Payload sent to the notifier"""
    issue_id: str
    title: str
    description: str
    reporter_email: Optional[str]
    reporter_username: Optional[str]
    status: str
    before_image: str
    after_image: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "issueId": self.issue_id,
            "title": self.title,
            "description": self.description,
            "reporterEmail": self.reporter_email,
            "reporterUsername": self.reporter_username,
            "status": self.status,
            "beforeImage": self.before_image,
            "afterImage": self.after_image,
        }


@dataclass
class NotificationReceipt:
    """Opaque notifier answer; only success matters"""
    status_code: int
    body: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"sent": True, "status_code": self.status_code, "response": self.body}


class ResolutionNotifier(ABC):
    """Interface for the notification collaborator"""

    @abstractmethod
    async def notify(self, notice: ResolutionNotice) -> NotificationReceipt:
        """Deliver the notice; raise NotificationFailed on failure"""

    async def close(self):
        pass


class WebhookResolutionNotifier(ResolutionNotifier):
    """Notifier backed by the NOTIFIER_WEBHOOK_URL endpoint"""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.client = WebhookClient(
            url=url if url is not None else settings.notifier_webhook_url,
            timeout=timeout if timeout is not None else settings.webhook_timeout_seconds,
            transport=transport,
        )
        if not self.client.url:
            logger.warning("Notifier disabled: NOTIFIER_WEBHOOK_URL not set")

    async def close(self):
        await self.client.close()

    async def notify(self, notice: ResolutionNotice) -> NotificationReceipt:
        result = await self.client.post_json(notice.to_payload())
        if not result.success:
            raise NotificationFailed(
                f"Notification service unavailable: {result.error}",
                {"issue_id": notice.issue_id},
            )
        logger.info(f"Resolution notice sent for issue {notice.issue_id} to {notice.reporter_email}")
        return NotificationReceipt(
            status_code=result.status_code,
            body=result.data if result.data is not None else result.text,
        )


# Singleton
_notifier: Optional[ResolutionNotifier] = None


def get_notifier() -> ResolutionNotifier:
    """Get singleton notifier instance"""
    global _notifier
    if _notifier is None:
        _notifier = WebhookResolutionNotifier()
    return _notifier
