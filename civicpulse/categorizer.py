"""
Issue Categorizer
=================

Suggests an issue category from free text (description, image file names).

Keyword lists per category; each category scores the fraction of its
keywords found in the text. Best score wins, Other when nothing matches.
Used directly, and as the fallback when the image categorization webhook
is not configured or fails.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from .db.models import IssueCategory

logger = logging.getLogger(__name__)

# Inflections accepted after a keyword: "potholes", "leaking", "flooded"
KEYWORD_SUFFIXES = ("", "s", "es", "ed", "ing")


CATEGORY_KEYWORDS: Dict[IssueCategory, List[str]] = {
    IssueCategory.ROADS: [
        "road", "pothole", "street", "asphalt", "pavement", "traffic", "vehicle",
        "car", "bus", "bike", "walkway", "sidewalk", "crossing", "zebra", "lane",
        "highway", "bridge", "tunnel",
    ],
    IssueCategory.WATER: [
        "water", "pipe", "leak", "flood", "drain", "sewer", "tap", "faucet", "tank",
        "well", "pond", "lake", "river", "stream", "overflow", "blockage",
        "drainage", "plumbing",
    ],
    IssueCategory.ELECTRICITY: [
        "electric", "power", "wire", "cable", "pole", "transformer", "outage",
        "blackout", "light", "lamp", "bulb", "switch", "socket", "generator",
        "voltage", "current", "electrical", "electricity",
    ],
    IssueCategory.SANITATION: [
        "garbage", "trash", "waste", "bin", "dumpster", "litter", "clean", "dirty",
        "smell", "odor", "rubbish", "refuse", "disposal", "collection", "sweep",
        "cleanup",
    ],
    IssueCategory.PUBLIC_PROPERTY: [
        "building", "wall", "fence", "gate", "door", "window", "roof", "ceiling",
        "floor", "stair", "elevator", "escalator", "bench", "chair", "table",
        "sign", "board", "poster", "graffiti", "vandalism",
    ],
}


@dataclass
class CategorySuggestion:
    """One candidate category with the keywords that matched"""
    category: IssueCategory
    confidence: float
    matched_keywords: List[str] = field(default_factory=list)


def _tokens(text: str) -> List[str]:
    return re.findall(r"[a-z]+", (text or "").lower())


def category_suggestions(text: str) -> List[CategorySuggestion]:
    """All categories with at least one keyword hit, best first"""
    tokens = set(_tokens(text))
    suggestions = []
    for category, keywords in CATEGORY_KEYWORDS.items():
        matches = [kw for kw in keywords if any(kw + suffix in tokens for suffix in KEYWORD_SUFFIXES)]
        if matches:
            suggestions.append(CategorySuggestion(
                category=category,
                confidence=len(matches) / len(keywords),
                matched_keywords=matches,
            ))
    return sorted(suggestions, key=lambda s: (-s.confidence, -len(s.matched_keywords)))


def categorize_text(text: str) -> IssueCategory:
    """Best category for the text, Other if nothing matches"""
    suggestions = category_suggestions(text)
    if not suggestions:
        return IssueCategory.OTHER
    best = suggestions[0]
    logger.debug(f"Keyword category {best.category.value} ({best.matched_keywords})")
    return best.category
