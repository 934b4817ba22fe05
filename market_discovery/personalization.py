"""
Preference-based product scoring.

A PersonalizationProfile is an explicit value built by the caller from
whatever preference store it uses (onboarding answers, search history).
Ranking functions take it as an argument; nothing here reads or writes
storage.
"""

import logging
import random
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .models import Product

logger = logging.getLogger(__name__)

GENDER_CATEGORY_PREFERENCES: Dict[str, Dict[str, float]] = {
    "male": {
        "electronics": 1.3, "automotive": 1.4, "sports": 1.3, "gaming": 1.5,
        "tools": 1.4, "gadgets": 1.3, "fitness": 1.2, "tech": 1.4,
    },
    "female": {
        "fashion": 1.4, "beauty": 1.5, "home": 1.3, "jewelry": 1.4,
        "skincare": 1.4, "makeup": 1.3, "bags": 1.3, "shoes": 1.3,
    },
}

INTEREST_KEYWORDS: Dict[str, List[str]] = {
    "electronics": ["phone", "laptop", "tablet", "headphones", "speaker", "camera", "tv",
                    "gadget", "tech", "electronic"],
    "fashion": ["shirt", "dress", "jeans", "jacket", "clothing", "fashion", "wear",
                "outfit", "style"],
    "home": ["kitchen", "furniture", "decor", "home", "house", "room", "living", "dining",
             "bedroom"],
    "sports": ["fitness", "gym", "sport", "exercise", "workout", "athletic", "running",
               "yoga", "training"],
    "books": ["book", "novel", "education", "learning", "study", "reading", "literature"],
    "beauty": ["beauty", "skincare", "makeup", "cosmetic", "face", "skin", "hair", "nail"],
    "automotive": ["car", "auto", "vehicle", "motor", "driving", "automotive", "bike",
                   "motorcycle"],
    "toys": ["toy", "game", "gaming", "play", "kids", "children", "fun", "entertainment"],
}

GENERAL_CATEGORY = "general"
INTEREST_BOOST = 1.4
HISTORY_WINDOW = 20
HISTORY_CAP = 2.0
RECENCY_CAP = 1.8
MAX_HISTORY = 50
DAY_SECONDS = 24 * 60 * 60


def categorize_query(query: str) -> str:
    """First interest category with a keyword contained in the query."""
    lowered = (query or "").lower()
    for category, keywords in INTEREST_KEYWORDS.items():
        if any(k in lowered for k in keywords):
            return category
    return GENERAL_CATEGORY


def product_matches_category(product: Product, category: str) -> bool:
    keywords = INTEREST_KEYWORDS.get(category, [])
    if not keywords:
        return False
    text = f"{product.title} {product.description or ''} {product.brand or ''}".lower()
    return any(k in text for k in keywords)


@dataclass
class SearchRecord:
    query: str
    category: str
    timestamp: float
    product_ids: List[str] = field(default_factory=list)


@dataclass
class PersonalizationProfile:
    """User preferences plus recent search history."""

    gender: Optional[str] = None
    interests: List[str] = field(default_factory=list)
    history: List[SearchRecord] = field(default_factory=list)
    onboarding_completed: bool = False

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "PersonalizationProfile":
        """Build a profile from stored preference JSON (camelCase accepted)."""
        history = []
        for entry in raw.get("history") or raw.get("searchHistory") or []:
            try:
                history.append(SearchRecord(
                    query=str(entry["query"]),
                    category=entry.get("category") or categorize_query(entry["query"]),
                    timestamp=float(entry.get("timestamp", 0)),
                    product_ids=list(entry.get("product_ids") or entry.get("productIds") or []),
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed search history entry: {e}")
        return cls(
            gender=raw.get("gender"),
            interests=list(raw.get("interests") or []),
            history=history[-MAX_HISTORY:],
            onboarding_completed=bool(
                raw.get("onboarding_completed", raw.get("onboardingCompleted", False))
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def score(self, product: Product, now: Optional[float] = None) -> float:
        """
        Multiplicative preference score, 1.0 being neutral.

        Gender category multipliers, a 1.4 boost per matching interest,
        a history boost from the last 20 searches (decaying with age,
        capped at 2.0) and a boost for categories searched in the last
        24 hours (20% per search, capped at 1.8).
        """
        now = time.time() if now is None else now
        score = 1.0

        for category, multiplier in GENDER_CATEGORY_PREFERENCES.get(self.gender or "", {}).items():
            if product_matches_category(product, category):
                score *= multiplier

        for interest in self.interests:
            if product_matches_category(product, interest):
                score *= INTEREST_BOOST

        score *= self._history_score(product, now)
        score *= self._recency_boost(product, now)
        return score

    def _history_score(self, product: Product, now: float) -> float:
        boost = 1.0
        for record in self.history[-HISTORY_WINDOW:]:
            if product_matches_category(product, record.category):
                days_ago = (now - record.timestamp) / DAY_SECONDS
                boost *= max(1.1, 1.5 - days_ago * 0.1)
        return min(boost, HISTORY_CAP)

    def _recency_boost(self, product: Product, now: float) -> float:
        counts: Dict[str, int] = {}
        for record in self.history:
            if record.timestamp > now - DAY_SECONDS:
                counts[record.category] = counts.get(record.category, 0) + 1

        boost = 1.0
        for category, count in counts.items():
            if product_matches_category(product, category):
                boost *= 1 + count * 0.2
        return min(boost, RECENCY_CAP)

    def personalize(self, products: Sequence[Product], now: Optional[float] = None) -> List[Product]:
        """Stable sort by preference score, highest first."""
        scores = {p.id: self.score(p, now) for p in products}
        return sorted(products, key=lambda p: -scores[p.id])

    def record_search(self, query: str, products: Sequence[Product],
                      now: Optional[float] = None) -> SearchRecord:
        """Append a search to the history, keeping the latest 50."""
        record = SearchRecord(
            query=query.lower(),
            category=categorize_query(query),
            timestamp=time.time() if now is None else now,
            product_ids=[p.id for p in products[:10]],
        )
        self.history.append(record)
        self.history = self.history[-MAX_HISTORY:]
        return record

    def recommended_categories(self) -> List[str]:
        """Interests, gender categories and the 3 most searched categories (max 8)."""
        categories = list(self.interests)
        categories.extend(GENDER_CATEGORY_PREFERENCES.get(self.gender or "", {}))

        frequency: Dict[str, int] = {}
        for record in self.history:
            frequency[record.category] = frequency.get(record.category, 0) + 1
        categories.extend(sorted(frequency, key=lambda c: -frequency[c])[:3])

        return list(dict.fromkeys(categories))[:8]

    def search_suggestions(self, rng: Optional[random.Random] = None) -> List[str]:
        """Up to 6 suggestions: a keyword per interest/gender category, then recent queries."""
        rng = rng or random.Random()
        suggestions = []
        categories = list(self.interests) + list(GENDER_CATEGORY_PREFERENCES.get(self.gender or "", {}))
        for category in categories:
            keywords = INTEREST_KEYWORDS.get(category)
            if keywords:
                suggestions.append(rng.choice(keywords))

        suggestions.extend(r.query for r in self.history[-10:] if len(r.query) > 2)
        return list(dict.fromkeys(suggestions))[:6]
