"""
Value types exchanged between the discovery components.

Products are immutable. Per-query relevance is never written onto a
Product; ranking calls keep it in their own side tables.
"""

import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Product:
    """One catalog entry as supplied by the catalog provider."""

    id: str
    title: str
    price: str = ""
    currency: str = ""
    platform: str = ""
    keywords: Optional[str] = None
    rating: Optional[float] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    link: Optional[str] = None
    reviews: Optional[str] = None
    original_price: Optional[str] = None
    discount: Optional[float] = None
    seller: Optional[str] = None

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "Product":
        """
        Build a Product from a catalog row.

        Accepts both snake_case and the camelCase keys used by the
        scraped catalog (originalPrice). Unknown keys are ignored and
        non-numeric ratings/discounts become None.
        """
        aliases = {"originalPrice": "original_price"}
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in row.items():
            key = aliases.get(key, key)
            if key in known:
                values[key] = value

        values["id"] = str(values.get("id", ""))
        values["title"] = str(values.get("title") or "")
        for text_key in ("price", "currency", "platform"):
            values[text_key] = "" if values.get(text_key) is None else str(values[text_key])
        for num_key in ("rating", "discount"):
            values[num_key] = _coerce_float(values.get(num_key))
        if values.get("reviews") is not None:
            values["reviews"] = str(values["reviews"])
        return cls(**values)


def _coerce_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-numeric value {value!r}")
        return None


@dataclass
class ImageFeatures:
    """Cheap color/brightness statistics over a downsampled image."""

    dominant_colors: List[Tuple[int, int, int]]
    dominant_hues: List[int]
    brightness: float
    contrast: float
    saturation: float
    edge_density: float
    aspect_ratio: float


@dataclass
class SimilarityScore:
    """One ranked result of a similar-products query."""

    product: Product
    score: float
    matching_keywords: int
    color_similarity: float = 0.0
    text_similarity: float = 0.0
    brand_similarity: float = 0.0
    packaging_similarity: float = 0.0


class SortKey(str, Enum):
    PRICE_LOW = "price-low"
    PRICE_HIGH = "price-high"
    RATING = "rating"
    RELEVANCE = "relevance"


@dataclass
class SearchFilters:
    """
    Structural filters for a search call.

    All supplied filters must pass (AND). Empty platform/brand lists and
    None bounds mean "no filter". sort_by None or RELEVANCE selects the
    platform-fair default ordering.
    """

    min_price: Optional[float] = None
    max_price: Optional[float] = None
    platforms: List[str] = field(default_factory=list)
    brands: List[str] = field(default_factory=list)
    min_rating: Optional[float] = None
    sort_by: Optional[SortKey] = None

    def __post_init__(self):
        if self.sort_by is not None and not isinstance(self.sort_by, SortKey):
            self.sort_by = SortKey(self.sort_by)
        self.platforms = list(self.platforms or [])
        self.brands = list(self.brands or [])

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "SearchFilters":
        """Build filters from the camelCase filter object used by callers."""
        raw = raw or {}
        return cls(
            min_price=raw.get("minPrice", raw.get("min_price")),
            max_price=raw.get("maxPrice", raw.get("max_price")),
            platforms=raw.get("platforms") or [],
            brands=raw.get("brands") or [],
            min_rating=raw.get("minRating", raw.get("min_rating")),
            sort_by=raw.get("sortBy", raw.get("sort_by")),
        )

    @property
    def has_price_bounds(self) -> bool:
        return self.min_price is not None or self.max_price is not None

    def is_sort_only(self) -> bool:
        """True when sort_by is the only thing these filters set."""
        return (
            self.sort_by is not None
            and not self.has_price_bounds
            and not self.platforms
            and not self.brands
            and self.min_rating is None
        )
