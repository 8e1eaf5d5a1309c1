"""
Issue Intake
============

Fills in what a reporter left out before an issue is stored:
- area from the reverse geocoder
- category from the image categorizer, else keyword matching on the text

Both lookups are advisory and never fail the report.
"""

import logging
from typing import List, Optional, Tuple

from .categorizer import categorize_text
from .db.models import IssueCategory
from .records import parse_enum, parse_location
from .webhooks.categorizer import ImageCategorizer
from .webhooks.geocoder import ReverseGeocoder

logger = logging.getLogger(__name__)


async def enrich_report(
    title: str,
    description: str,
    lat,
    lng,
    images: List[str],
    area: Optional[str],
    category,
    geocoder: ReverseGeocoder,
    categorizer: ImageCategorizer,
) -> Tuple[str, IssueCategory]:
    """Return (area, category) with blanks filled in"""
    lat_f, lng_f = parse_location(lat, lng)

    area = (area or "").strip()
    if not area:
        area = await geocoder.area_for(lat_f, lng_f)
        logger.info(f"Area for ({lat_f}, {lng_f}) resolved to {area!r}")

    chosen = parse_enum(IssueCategory, category, "category")
    if chosen is None and images and categorizer.enabled:
        chosen = await categorizer.categorize_many(images)
        if chosen is not None:
            logger.info(f"Image categorizer suggested {chosen.value}")
    if chosen is None:
        chosen = categorize_text(f"{title or ''} {description or ''}")

    return area, chosen
