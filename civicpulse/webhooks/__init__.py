"""
Webhooks Module
===============

Clients for the external collaborators the service depends on.

Architecture:
- Verifier: compares before/after images, answers {resolved, reason}
- Notifier: emails the reporter once an issue is resolved
- Image categorizer: suggests a category for a photo (advisory)
- Reverse geocoder: turns coordinates into an area label (advisory)

All are plain JSON-over-HTTP calls with a bounded timeout.

Environment Variables:
- VERIFIER_WEBHOOK_URL
- NOTIFIER_WEBHOOK_URL
- CATEGORIZER_WEBHOOK_URL
- GEOCODER_URL / GEOCODER_ENABLED
- WEBHOOK_TIMEOUT_SECONDS

Usage:
    from civicpulse.webhooks import get_verifier, get_notifier

    verdict = await get_verifier().verify(before, after)
    if verdict.resolved:
        await get_notifier().notify(notice)
"""

from .base import WebhookClient, WebhookCallResult
from .verifier import (
    ResolutionVerifier, WebhookResolutionVerifier, VerificationVerdict, get_verifier,
)
from .notifier import (
    ResolutionNotifier, WebhookResolutionNotifier, ResolutionNotice, NotificationReceipt,
    get_notifier,
)
from .categorizer import ImageCategorizer, get_image_categorizer
from .geocoder import ReverseGeocoder, UNKNOWN_AREA, get_geocoder

__all__ = [
    # Base
    "WebhookClient",
    "WebhookCallResult",
    # Verifier
    "ResolutionVerifier",
    "WebhookResolutionVerifier",
    "VerificationVerdict",
    "get_verifier",
    # Notifier
    "ResolutionNotifier",
    "WebhookResolutionNotifier",
    "ResolutionNotice",
    "NotificationReceipt",
    "get_notifier",
    # Advisory collaborators
    "ImageCategorizer",
    "get_image_categorizer",
    "ReverseGeocoder",
    "UNKNOWN_AREA",
    "get_geocoder",
]
