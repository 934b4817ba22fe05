"""
market_discovery: in-memory product discovery for multi-platform catalogs.

Ranks free-text search results, finds visually and textually similar
products, and composes platform-balanced browsing feeds over a catalog
already loaded by the caller.

Modules:
    normalizer         Text normalization, tokenizers, price parsing
    models             Product, ImageFeatures, SimilarityScore, SearchFilters
    config             Tunables and platform/category/feed configuration
    image_features     Image fetch + decode + color/brightness/edge statistics
    color_similarity   Dominant-color, hue and packaging similarity
    scoring            Keyword, text and brand signals; score blending
    similarity         Two-phase similar-products search
    search             Free-text search, filters, sorts, sort-only re-query
    interleave         Platform-fair mixing and feed composition
    personalization    Preference profile scoring
"""

from .errors import (
    DiscoveryError, ImageDecodeError, ImageLoadError, ImageTimeoutError,
    MalformedPriceError,
)
from .models import ImageFeatures, Product, SearchFilters, SimilarityScore, SortKey
from .normalizer import normalize
from .config import CategoryFamilies, FeedConfig, PlatformTable
from .image_features import FeatureCache, extract_features
from .similarity import find_similar
from .search import SearchSession, search, search_async
from .interleave import compose_feed
from .personalization import PersonalizationProfile

__version__ = "1.0.0"

__all__ = [
    "CategoryFamilies", "DiscoveryError", "FeatureCache", "FeedConfig",
    "ImageDecodeError", "ImageFeatures", "ImageLoadError", "ImageTimeoutError",
    "MalformedPriceError", "PersonalizationProfile", "PlatformTable", "Product",
    "SearchFilters", "SearchSession", "SimilarityScore", "SortKey",
    "compose_feed", "extract_features", "find_similar", "normalize",
    "search", "search_async",
]
