"""
Image Categorizer
=================

Asks the image categorization webhook which issue category a photo shows.

Contract:
    request  {"image": <uri>}
    response {"category": <IssueCategory value>, "confidence": <0..1>}

Categorization is advisory: every failure returns None and the caller
falls back to keyword matching.
"""

import logging
from typing import Iterable, Optional, Tuple

import httpx

from ..config import get_settings
from ..db.models import IssueCategory
from ..errors import ValidationError
from ..records import parse_enum
from .base import WebhookClient

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.5


class ImageCategorizer:

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.client = WebhookClient(
            url=url if url is not None else settings.categorizer_webhook_url,
            timeout=timeout if timeout is not None else settings.webhook_timeout_seconds,
            transport=transport,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.client.url)

    async def close(self):
        await self.client.close()

    async def categorize(self, image: str) -> Optional[Tuple[IssueCategory, float]]:
        if not self.enabled:
            return None

        result = await self.client.post_json({"image": image})
        if not result.success or not isinstance(result.data, dict):
            logger.warning(f"Image categorization failed: {result.error or 'malformed payload'}")
            return None

        try:
            category = parse_enum(IssueCategory, result.data.get("category"), "category")
            confidence = float(result.data.get("confidence", 0.0))
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning(f"Image categorization payload rejected: {e}")
            return None

        if category is None:
            return None
        return category, confidence

    async def categorize_many(self, images: Iterable[str]) -> Optional[IssueCategory]:
        """
        Category with the highest average confidence across all images,
        or None if no image was confidently categorized.
        """
        scores = {}
        for image in images:
            answer = await self.categorize(image)
            if answer is None:
                continue
            category, confidence = answer
            total, count = scores.get(category, (0.0, 0))
            scores[category] = (total + confidence, count + 1)

        if not scores:
            return None

        best, (total, count) = max(scores.items(), key=lambda item: item[1][0] / item[1][1])
        if total / count < MIN_CONFIDENCE:
            return None
        return best


_categorizer: Optional[ImageCategorizer] = None


def get_image_categorizer() -> ImageCategorizer:
    global _categorizer
    if _categorizer is None:
        _categorizer = ImageCategorizer()
    return _categorizer
