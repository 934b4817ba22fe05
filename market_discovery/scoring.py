"""
Text-side similarity signals and score blending for similar products.

Three cheap signals are computed for every candidate: shared keyword
tags, word-level Jaccard overlap of title + description, and brand
similarity. They blend into a quick score used to prune the catalog
before any image is fetched. When both images could be analysed, the
final score mixes in packaging similarity; otherwise the quick score
stands on its own so an unreachable image never costs a product rank.

Signal weights are loaded from configuration to allow tuning without
code changes. See DEFAULT_WEIGHTS for the expected structure.
"""

import os
import logging
from typing import List, Optional

from rapidfuzz.distance import Levenshtein

from .models import Product, SimilarityScore
from .normalizer import keyword_set, word_set

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    "quick": {
        "text":     float(os.environ.get("SCORE_QUICK_TEXT_W", "0.6")),
        "brand":    float(os.environ.get("SCORE_QUICK_BRAND_W", "0.25")),
        "keywords": float(os.environ.get("SCORE_QUICK_KEYWORD_W", "0.15")),
    },
    "with_image": {
        "packaging": float(os.environ.get("SCORE_PACKAGING_W", "0.5")),
        "text":      float(os.environ.get("SCORE_TEXT_W", "0.25")),
        "brand":     float(os.environ.get("SCORE_BRAND_W", "0.15")),
        "keywords":  float(os.environ.get("SCORE_KEYWORD_W", "0.1")),
    },
}

# Shared keyword count at which the keyword signal saturates
KEYWORD_SATURATION = float(os.environ.get("KEYWORD_SATURATION", "20"))
# Normalized Levenshtein similarity below this counts as a different brand
BRAND_FUZZY_THRESHOLD = float(os.environ.get("BRAND_FUZZY_THRESHOLD", "0.7"))
BRAND_FUZZY_SCALE = 0.6
BRAND_PARTIAL_SCORE = 0.8

KNOWN_BRANDS = [
    "muuchstac", "khadi", "bombay shaving company", "nivea", "garnier",
    "loreal", "olay", "pond", "himalaya", "patanjali", "biotique",
    "mamaearth", "wow", "plum", "forest essentials", "kama ayurveda",
]


def count_matching_keywords(product1: Product, product2: Product) -> int:
    """Number of keyword tags the two products share (set semantics)."""
    tags1 = keyword_set(product1.keywords)
    if not tags1:
        return 0
    matches = len(tags1 & keyword_set(product2.keywords))
    if matches >= 15:
        logger.debug(f"High keyword match: {matches} keywords between {product1.id} and {product2.id}")
    return matches


def _product_text(product: Product) -> str:
    return f"{product.title} {product.description or ''}"


def text_similarity(product1: Product, product2: Product) -> float:
    """Jaccard index of words longer than two characters."""
    words1 = word_set(_product_text(product1))
    words2 = word_set(_product_text(product2))
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def resolve_brand(product: Product, known_brands: Optional[List[str]] = None) -> str:
    """
    Best guess at a product's brand.

    Explicit brand field first, then any known brand contained in the
    title, then the title's first word.
    """
    if product.brand:
        return product.brand.lower().strip()

    title = (product.title or "").lower()
    for brand in known_brands or KNOWN_BRANDS:
        if brand in title:
            return brand

    parts = title.split(" ")
    return parts[0] if parts else ""


def brand_similarity(product1: Product, product2: Product) -> float:
    """
    Brand agreement between two products (0-1).

    Exact match scores 1.0, containment 0.8. Otherwise a normalized
    Levenshtein similarity counts only above BRAND_FUZZY_THRESHOLD, and
    then at BRAND_FUZZY_SCALE of its value.
    """
    brand1 = resolve_brand(product1)
    brand2 = resolve_brand(product2)
    if not brand1 or not brand2:
        return 0.0
    if brand1 == brand2:
        return 1.0
    if brand1 in brand2 or brand2 in brand1:
        return BRAND_PARTIAL_SCORE

    similarity = Levenshtein.normalized_similarity(brand1, brand2)
    return similarity * BRAND_FUZZY_SCALE if similarity > BRAND_FUZZY_THRESHOLD else 0.0


def keyword_signal(matching_keywords: int) -> float:
    return min(matching_keywords / KEYWORD_SATURATION, 1.0)


def compute_quick_score(text_sim: float,
                        brand_sim: float,
                        matching_keywords: int,
                        weights: dict = None) -> float:
    """Image-free relevance estimate used to prune candidates."""
    w = (weights or DEFAULT_WEIGHTS)["quick"]
    return (
        w["text"] * text_sim
        + w["brand"] * brand_sim
        + w["keywords"] * keyword_signal(matching_keywords)
    )


def compute_final_score(quick_score: float,
                        text_sim: float,
                        brand_sim: float,
                        matching_keywords: int,
                        packaging_sim: float = 0.0,
                        image_available: bool = False,
                        weights: dict = None) -> float:
    """
    Final similarity for one candidate.

    Args:
        quick_score: Phase-one score, returned as-is without images.
        text_sim: Word Jaccard similarity.
        brand_sim: Brand similarity.
        matching_keywords: Shared keyword tag count.
        packaging_sim: Image packaging similarity (0-1).
        image_available: Whether both reference and candidate images
            were analysed.
        weights: Optional override for the weights dict.

    Returns:
        Score in [0, 1].
    """
    if not image_available:
        return quick_score

    w = (weights or DEFAULT_WEIGHTS)["with_image"]
    return (
        w["packaging"] * packaging_sim
        + w["text"] * text_sim
        + w["brand"] * brand_sim
        + w["keywords"] * keyword_signal(matching_keywords)
    )


def rank_results(results: List[SimilarityScore]) -> List[SimilarityScore]:
    """
    Sort by score (primary), shared keywords (secondary) and text
    similarity (tertiary tiebreaker).
    """
    return sorted(
        results,
        key=lambda r: (-r.score, -r.matching_keywords, -r.text_similarity)
    )
