"""
Free-text search over the in-memory catalog.

A product matches when the normalized query is a substring of its
normalized title or keyword field; matching both counts double. Matches
then pass the structural filters (price range, platform, brand, rating).

Without an explicit sort the result list is platform-fair: relevance
and preferred categories still win inside each platform, but the
dominant platform cannot take over the top of the list. With an explicit
sort the list is ordered strictly by that key.

Relevance weights are kept in a per-call side table keyed by product id;
catalog products are never modified.
"""

import asyncio
import logging
import random
import time
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .config import SEARCH_BATCH_SIZE, FeedConfig
from .errors import MalformedPriceError
from .interleave import fair_order
from .models import Product, SearchFilters, SortKey
from .normalizer import normalize, parse_price, price_or_default
from .personalization import PersonalizationProfile

logger = logging.getLogger(__name__)

FiltersArg = Union[SearchFilters, Dict, None]


def _coerce_filters(filters: FiltersArg) -> SearchFilters:
    if isinstance(filters, SearchFilters):
        return filters
    return SearchFilters.from_dict(filters)


def match_relevance(product: Product, normalized_query: str) -> int:
    """2 if title and keywords both contain the query, 1 if one does, else 0."""
    in_title = normalized_query in normalize(product.title)
    in_keywords = bool(product.keywords) and normalized_query in normalize(product.keywords)
    return int(in_title) + int(in_keywords)


def passes_filters(product: Product, filters: SearchFilters) -> bool:
    """
    True when the product satisfies every filter that is set.

    Price bounds are inclusive; a product whose price cannot be parsed
    fails any price bound. Products without a rating are not excluded by
    min_rating.
    """
    if filters.has_price_bounds:
        try:
            price = parse_price(product.price)
        except MalformedPriceError:
            return False
        low = filters.min_price if filters.min_price is not None else float("-inf")
        high = filters.max_price if filters.max_price is not None else float("inf")
        if not low <= price <= high:
            return False

    if filters.platforms:
        platform = normalize(product.platform)
        if not any(platform == normalize(p) for p in filters.platforms):
            return False

    if filters.brands:
        brand = normalize(product.brand or product.title)
        if not any(normalize(b) in brand for b in filters.brands):
            return False

    if filters.min_rating is not None and product.rating is not None:
        if product.rating < filters.min_rating:
            return False

    return True


def sort_products(products: Sequence[Product],
                  sort_by: Optional[SortKey],
                  relevance: Dict[str, int]) -> List[Product]:
    """
    Order products by an explicit sort key.

    Unparsable prices sort as 0, missing ratings as 0. Ties keep
    relevance order. RELEVANCE (or None) sorts by relevance alone.
    """
    ordered = sorted(products, key=lambda p: -relevance.get(p.id, 0))
    if sort_by is SortKey.PRICE_LOW:
        ordered.sort(key=lambda p: price_or_default(p.price))
    elif sort_by is SortKey.PRICE_HIGH:
        ordered.sort(key=lambda p: -price_or_default(p.price))
    elif sort_by is SortKey.RATING:
        ordered.sort(key=lambda p: -(p.rating or 0.0))
    return ordered


def _match_batch(batch: Sequence[Product],
                 normalized_query: str,
                 filters: SearchFilters,
                 relevance: Dict[str, int],
                 matched: List[Product]) -> None:
    for product in batch:
        if product.id in relevance:
            continue
        weight = match_relevance(product, normalized_query)
        if weight == 0 or not passes_filters(product, filters):
            continue
        relevance[product.id] = weight
        matched.append(product)


def _order_results(matched: List[Product],
                   relevance: Dict[str, int],
                   filters: SearchFilters,
                   profile: Optional[PersonalizationProfile],
                   config: Optional[FeedConfig],
                   rng: Optional[random.Random]) -> List[Product]:
    if filters.sort_by not in (None, SortKey.RELEVANCE):
        return sort_products(matched, filters.sort_by, relevance)

    preference = {p.id: profile.score(p) for p in matched} if profile is not None else {}
    return fair_order(
        matched,
        config or FeedConfig(),
        rng,
        rank_key=lambda p: (-relevance[p.id], -preference.get(p.id, 1.0)),
    )


def rank(query: str,
         catalog: Sequence[Product],
         filters: FiltersArg = None,
         profile: Optional[PersonalizationProfile] = None,
         config: Optional[FeedConfig] = None,
         rng: Optional[random.Random] = None) -> Tuple[List[Product], Dict[str, int]]:
    """
    search() that also returns the relevance side table.

    Returns:
        Tuple of (ordered products, {product id: relevance weight}).
    """
    filters = _coerce_filters(filters)
    normalized_query = normalize((query or "").strip())
    if not normalized_query.strip():
        return [], {}

    start = time.monotonic()
    relevance: Dict[str, int] = {}
    matched: List[Product] = []
    _match_batch(catalog, normalized_query, filters, relevance, matched)
    results = _order_results(matched, relevance, filters, profile, config, rng)

    logger.info(
        f"Search '{query}': {len(results)} of {len(catalog)} products matched "
        f"in {(time.monotonic() - start) * 1000:.0f}ms"
    )
    return results, relevance


def search(query: str,
           catalog: Sequence[Product],
           filters: FiltersArg = None,
           profile: Optional[PersonalizationProfile] = None,
           config: Optional[FeedConfig] = None,
           rng: Optional[random.Random] = None) -> List[Product]:
    """
    Rank catalog products against a free-text query.

    Args:
        query: User query; blank queries return [].
        catalog: Full product list (read-only).
        filters: SearchFilters or the equivalent camelCase dict.
        profile: Optional preferences used as a secondary ranking key
            in the default ordering.
        config: Interleaving configuration for the default ordering.
        rng: Random source for the default ordering's tie shuffles.

    Returns:
        Matching products, platform-fair or sorted by filters.sort_by.
    """
    results, _ = rank(query, catalog, filters, profile, config, rng)
    return results


async def search_async(query: str,
                       catalog: Sequence[Product],
                       filters: FiltersArg = None,
                       profile: Optional[PersonalizationProfile] = None,
                       config: Optional[FeedConfig] = None,
                       rng: Optional[random.Random] = None,
                       batch_size: int = SEARCH_BATCH_SIZE) -> List[Product]:
    """
    search() for event-loop hosts: matches the catalog in fixed-size
    batches and yields to the loop between batches. Same results as
    search() given the same rng.
    """
    filters = _coerce_filters(filters)
    normalized_query = normalize((query or "").strip())
    if not normalized_query.strip():
        return []

    relevance: Dict[str, int] = {}
    matched: List[Product] = []
    for offset in range(0, len(catalog), batch_size):
        _match_batch(catalog[offset:offset + batch_size], normalized_query, filters, relevance, matched)
        if offset + batch_size < len(catalog):
            await asyncio.sleep(0)

    results = _order_results(matched, relevance, filters, profile, config, rng)
    logger.info(f"Search '{query}': {len(results)} of {len(catalog)} products matched")
    return results


class SearchSession:
    """
    Stateful search for one caller (one UI view).

    Re-issuing the previous query with filters that set nothing but
    sort_by re-sorts the previous result set instead of searching again;
    membership stays the same, only the order changes.
    """

    def __init__(self,
                 profile: Optional[PersonalizationProfile] = None,
                 config: Optional[FeedConfig] = None,
                 rng: Optional[random.Random] = None):
        self.profile = profile
        self.config = config
        self.rng = rng
        self.last_query: Optional[str] = None
        self._results: List[Product] = []
        self._relevance: Dict[str, int] = {}

    @property
    def results(self) -> List[Product]:
        return list(self._results)

    def search(self, query: str, catalog: Sequence[Product], filters: FiltersArg = None) -> List[Product]:
        filters = _coerce_filters(filters)

        if self.last_query is not None and query == self.last_query and filters.is_sort_only():
            logger.debug(f"Sort-only re-query for '{query}' by {filters.sort_by.value}")
            self._results = sort_products(self._results, filters.sort_by, self._relevance)
            return self.results

        if not normalize((query or "").strip()).strip():
            return []

        results, relevance = rank(query, catalog, filters, self.profile, self.config, self.rng)
        self.last_query = query
        self._results = results
        self._relevance = relevance
        return self.results
