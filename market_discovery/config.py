"""
Tunables for search, similarity and feed composition.

Scalar knobs are read from environment variables so they can be tuned
without code changes. Structured tuning (which platform names map to
which bucket, which keyword families count as a preferred category, the
feed's round pattern) lives in small config objects that callers build
once and pass into the ranking functions.

None of these numbers are derived; they are product-tuning defaults.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .normalizer import normalize

# Image feature extraction
IMAGE_MAX_EDGE = int(os.environ.get("IMAGE_MAX_EDGE", "100"))
IMAGE_MIN_EDGE = int(os.environ.get("IMAGE_MIN_EDGE", "50"))
IMAGE_LOAD_TIMEOUT = float(os.environ.get("IMAGE_LOAD_TIMEOUT", "1.5"))
IMAGE_EDGE_THRESHOLD = float(os.environ.get("IMAGE_EDGE_THRESHOLD", "50"))
IMAGE_TOP_COLORS = int(os.environ.get("IMAGE_TOP_COLORS", "8"))
IMAGE_TOP_HUES = int(os.environ.get("IMAGE_TOP_HUES", "5"))
IMAGE_FEATURE_CACHE_SIZE = int(os.environ.get("IMAGE_FEATURE_CACHE_SIZE", "256"))

# Similar-products search
SIMILAR_MIN_KEYWORD_MATCHES = int(os.environ.get("SIMILAR_MIN_KEYWORD_MATCHES", "10"))
SIMILAR_QUICK_THRESHOLD = float(os.environ.get("SIMILAR_QUICK_THRESHOLD", "0.3"))
SIMILAR_CANDIDATE_POOL = int(os.environ.get("SIMILAR_CANDIDATE_POOL", "20"))
SIMILAR_IMAGE_CANDIDATES = int(os.environ.get("SIMILAR_IMAGE_CANDIDATES", "10"))
SIMILAR_MAX_CONCURRENT = int(os.environ.get("SIMILAR_MAX_CONCURRENT", "10"))
SIMILAR_IMAGE_TIMEOUT = float(os.environ.get("SIMILAR_IMAGE_TIMEOUT", "0.8"))
SIMILAR_MIN_SCORE = float(os.environ.get("SIMILAR_MIN_SCORE", "0.4"))
SIMILAR_TOP_K = int(os.environ.get("SIMILAR_TOP_K", "15"))

# Free-text search
SEARCH_BATCH_SIZE = int(os.environ.get("SEARCH_BATCH_SIZE", "1000"))

# Feed composition
FEED_MAX_DOMINANT_RATIO = float(os.environ.get("FEED_MAX_DOMINANT_RATIO", "0.22"))
FEED_HEAD_WINDOW = int(os.environ.get("FEED_HEAD_WINDOW", "12"))
FEED_MAX_DOMINANT_IN_HEAD = int(os.environ.get("FEED_MAX_DOMINANT_IN_HEAD", "3"))

OTHER_BUCKET = "other"


@dataclass
class PlatformTable:
    """
    Maps free-form platform strings to canonical bucket names.

    A platform string belongs to the first bucket whose marker appears
    in its normalized form; anything unmatched goes to OTHER_BUCKET.
    New platforms are added here as data.
    """

    markers: List[Tuple[str, str]] = field(default_factory=lambda: [
        ("meesho", "meesho"),
        ("ajio", "ajio"),
        ("amazon", "amazon"),
    ])

    def classify(self, platform: Optional[str]) -> str:
        text = normalize(platform)
        for marker, bucket in self.markers:
            if marker in text:
                return bucket
        return OTHER_BUCKET

    @property
    def buckets(self) -> List[str]:
        seen = []
        for _, bucket in self.markers:
            if bucket not in seen:
                seen.append(bucket)
        return seen


# Keyword families that mark a product as a "preferred category" item.
DEFAULT_CATEGORY_FAMILIES: Dict[str, List[str]] = {
    "womens_fashion": [
        "women", "kurti", "saree", "dress", "top", "tshirt", "shirt",
        "jeans", "leggings", "salwar", "ethnic",
    ],
    "mens_fashion": ["men", "tracks", "jogger", "hoodie", "jacket", "cargo", "pant"],
    "footwear": ["shoe", "sandal", "sneaker", "flip flop", "footwear"],
    "skincare": ["face wash", "cleanser", "facewash", "skin", "beauty", "cosmetic"],
}


@dataclass
class CategoryFamilies:
    families: Dict[str, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_CATEGORY_FAMILIES.items()}
    )

    def is_preferred(self, product) -> bool:
        """Substring match of any family keyword against title + keywords."""
        text = f"{product.title or ''} {product.keywords or ''}".lower()
        return any(k in text for terms in self.families.values() for k in terms)


@dataclass
class FeedConfig:
    """
    Interleaving pattern for feeds and default-ordered search results.

    Each round takes bias_quotas[i] items from bias_platforms[i] (in
    priority order; missing quotas default to 1), then at most one item
    from the dominant platform, then one item from every remaining
    bucket. The dominant platform never appears twice in a row and never
    exceeds max_dominant_ratio of everything emitted so far. The first
    head_window items get a stricter cap of max_dominant_in_head.
    """

    bias_platforms: List[str] = field(default_factory=lambda: ["meesho", "ajio"])
    bias_quotas: List[int] = field(default_factory=lambda: [2, 1])
    dominant_platform: Optional[str] = "amazon"
    max_dominant_ratio: float = FEED_MAX_DOMINANT_RATIO
    head_window: int = FEED_HEAD_WINDOW
    max_dominant_in_head: int = FEED_MAX_DOMINANT_IN_HEAD
    platform_table: PlatformTable = field(default_factory=PlatformTable)
    categories: CategoryFamilies = field(default_factory=CategoryFamilies)

    def __post_init__(self):
        if not 0.0 <= self.max_dominant_ratio <= 1.0:
            raise ValueError(
                f"max_dominant_ratio must be within [0, 1], got {self.max_dominant_ratio}"
            )
        if self.head_window < 0 or self.max_dominant_in_head < 0:
            raise ValueError("head_window and max_dominant_in_head must be non-negative")

    def quota_for(self, index: int) -> int:
        if index < len(self.bias_quotas):
            return max(1, int(self.bias_quotas[index]))
        return 1
