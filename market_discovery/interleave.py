"""
Platform-balanced interleaving for feeds and default-ordered results.

The catalog is dominated by one marketplace by volume. Left alone, a
shuffled feed or a relevance-sorted result list is mostly that platform.
This module:
    1. Buckets products by canonical platform (PlatformTable)
    2. Puts preferred-category items first inside every bucket, each
       partition freshly shuffled (Fisher-Yates)
    3. Mixes buckets round by round with a fixed pattern, letting the
       dominant platform in at most once per round, never twice in a
       row and never above its ratio of everything emitted so far
    4. Re-checks the head window with a stricter cap, bumping excess
       dominant items to the tail and pulling other items forward

Outputs are always duplicate-free permutations of the input.
"""

import dataclasses
import logging
import random
from collections import deque
from typing import Callable, Dict, List, Optional, Sequence

from .config import OTHER_BUCKET, FeedConfig
from .models import Product
from .normalizer import normalize

logger = logging.getLogger(__name__)

# FeedConfig.dominant_platform value that picks the largest non-bias bucket
AUTO_DOMINANT = "auto"

RankKey = Callable[[Product], object]


def fisher_yates(items: Sequence, rng: random.Random) -> list:
    """Return a shuffled copy of items."""
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def bucket_by_platform(products: Sequence[Product], config: FeedConfig) -> Dict[str, List[Product]]:
    """
    Group products into canonical platform buckets, keeping input order.

    Later duplicates of an already-seen product id are dropped.
    """
    buckets: Dict[str, List[Product]] = {}
    seen = set()
    for product in products:
        if product.id in seen:
            continue
        seen.add(product.id)
        bucket = config.platform_table.classify(product.platform)
        buckets.setdefault(bucket, []).append(product)
    return buckets


def prioritize(products: Sequence[Product],
               config: FeedConfig,
               rng: random.Random,
               rank_key: Optional[RankKey] = None) -> List[Product]:
    """
    Preferred-category items first, then the rest.

    Each partition is shuffled independently. With rank_key, the shuffled
    partition is then stably sorted, so the shuffle only breaks ties.
    """
    preferred, rest = [], []
    for product in products:
        (preferred if config.categories.is_preferred(product) else rest).append(product)

    ordered = []
    for part in (preferred, rest):
        part = fisher_yates(part, rng)
        if rank_key is not None:
            part.sort(key=rank_key)
        ordered.extend(part)
    return ordered


def _canonical(name: str, config: FeedConfig) -> str:
    bucket = config.platform_table.classify(name)
    return bucket if bucket != OTHER_BUCKET else normalize(name)


def resolve_dominant(buckets: Dict[str, List[Product]], config: FeedConfig) -> Optional[str]:
    """Canonical name of the capped platform, or None when uncapped."""
    dominant = config.dominant_platform
    if not dominant:
        return None
    bias = {_canonical(b, config) for b in config.bias_platforms}
    if dominant == AUTO_DOMINANT:
        sizes = {
            name: len(items) for name, items in buckets.items()
            if name not in bias and name != OTHER_BUCKET
        }
        return max(sizes, key=sizes.get) if sizes else None
    dominant = _canonical(dominant, config)
    return None if dominant in bias else dominant


def _remaining_order(buckets: Dict[str, List[Product]],
                     bias: List[str],
                     dominant: Optional[str],
                     config: FeedConfig) -> List[str]:
    known = [b for b in config.platform_table.buckets if b in buckets]
    extra = sorted(b for b in buckets if b not in known and b != OTHER_BUCKET)
    order = [b for b in known + extra if b not in bias and b != dominant]
    if OTHER_BUCKET in buckets and OTHER_BUCKET not in bias and OTHER_BUCKET != dominant:
        order.append(OTHER_BUCKET)
    return order


def mix_with_bias(buckets: Dict[str, List[Product]], config: FeedConfig) -> List[Product]:
    """
    Interleave pre-ordered buckets with the configured round pattern.

    Each round: bias_quotas[i] items from bias_platforms[i], then one
    dominant item if the previous item was not dominant and the dominant
    share would stay within max_dominant_ratio, then one item from every
    remaining bucket. Once only dominant items are left they are
    appended, since no alternative remains to space them.

    Args:
        buckets: Canonical bucket name → ordered products.
        config: Feed configuration.

    Returns:
        Interleaved products (same multiset as the buckets).
    """
    bias = []
    for name in config.bias_platforms:
        canonical = _canonical(name, config)
        if canonical not in bias:
            bias.append(canonical)
    dominant = resolve_dominant(buckets, config)
    remaining = _remaining_order(buckets, bias, dominant, config)

    queues = {name: deque(items) for name, items in buckets.items()}
    empty: deque = deque()
    dominant_queue = queues.get(dominant, empty) if dominant else empty
    others = [queues[name] for name in bias + remaining if name in queues]

    result: List[Product] = []
    dominant_used = 0
    last_dominant = False

    while any(others):
        for index, name in enumerate(bias):
            queue = queues.get(name)
            for _ in range(config.quota_for(index)):
                if not queue:
                    break
                result.append(queue.popleft())
                last_dominant = False

        if (dominant_queue and not last_dominant
                and (dominant_used + 1) / (len(result) + 1) <= config.max_dominant_ratio):
            result.append(dominant_queue.popleft())
            dominant_used += 1
            last_dominant = True

        for name in remaining:
            queue = queues[name]
            if queue:
                result.append(queue.popleft())
                last_dominant = False

    if dominant_queue:
        logger.debug(f"Appending {len(dominant_queue)} leftover '{dominant}' items after mixing")
        result.extend(dominant_queue)

    return result


def _spread(non_dominant: List[Product],
            dominant: List[Product],
            emitted: int,
            used: int,
            last_dominant: bool,
            ratio: float) -> List[Product]:
    """Merge two ordered lists, placing dominant items as early as the cap allows."""
    out = []
    i = j = 0
    while i < len(non_dominant) or j < len(dominant):
        allowed = (
            j < len(dominant) and not last_dominant
            and (used + 1) / (emitted + 1) <= ratio
        )
        if allowed or i >= len(non_dominant):
            out.append(dominant[j])
            j += 1
            used += 1
            last_dominant = True
        else:
            out.append(non_dominant[i])
            i += 1
            last_dominant = False
        emitted += 1
    return out


def enforce_head_constraints(items: Sequence[Product], config: FeedConfig,
                             dominant: Optional[str] = None) -> List[Product]:
    """
    Apply the stricter dominant-platform cap to the head window.

    At most max_dominant_in_head dominant items may stay in the first
    head_window positions, never two in a row. Excess items are moved to
    the tail and the gaps are filled with non-dominant items pulled
    forward from the tail. The tail is then re-spread so the dominant
    ratio and the no-repeat rule keep holding past the head.
    """
    items = list(items)
    if dominant is None:
        dominant = resolve_dominant(bucket_by_platform(items, config), config)
    if dominant is None or config.head_window == 0:
        return items

    def is_dominant(product: Product) -> bool:
        return config.platform_table.classify(product.platform) == dominant

    head, tail = items[:config.head_window], items[config.head_window:]
    new_head: List[Product] = []
    bumped: List[Product] = []
    kept = 0
    for product in head:
        if not is_dominant(product):
            new_head.append(product)
        elif kept < config.max_dominant_in_head and not (new_head and is_dominant(new_head[-1])):
            new_head.append(product)
            kept += 1
        else:
            bumped.append(product)

    tail_other = [p for p in tail if not is_dominant(p)]
    tail_dominant = [p for p in tail if is_dominant(p)]
    pulled = tail_other[:config.head_window - len(new_head)]
    new_head.extend(pulled)

    if not bumped and not pulled:
        return items

    logger.debug(f"Head correction: bumped {len(bumped)} '{dominant}' items, pulled {len(pulled)} forward")
    new_tail = _spread(
        tail_other[len(pulled):],
        tail_dominant + bumped,
        emitted=len(new_head),
        used=kept,
        last_dominant=bool(new_head) and is_dominant(new_head[-1]),
        ratio=config.max_dominant_ratio,
    )
    return new_head + new_tail


def fair_order(products: Sequence[Product],
               config: FeedConfig,
               rng: Optional[random.Random] = None,
               rank_key: Optional[RankKey] = None) -> List[Product]:
    """Bucket, prioritize, mix and head-correct a product list."""
    rng = rng or random.Random()
    buckets = bucket_by_platform(products, config)
    ordered = {name: prioritize(items, config, rng, rank_key) for name, items in buckets.items()}
    dominant = resolve_dominant(buckets, config)
    mixed = mix_with_bias(ordered, config)
    return enforce_head_constraints(mixed, config, dominant=dominant)


def compose_feed(catalog: Sequence[Product],
                 bias_platforms: Optional[List[str]] = None,
                 max_dominant_ratio: Optional[float] = None,
                 config: Optional[FeedConfig] = None,
                 rng: Optional[random.Random] = None) -> List[Product]:
    """
    Build a shuffled, platform-balanced browsing feed.

    Every call reshuffles unless a seeded rng is passed in.

    Args:
        catalog: Products to arrange (read-only).
        bias_platforms: Favoured platforms in priority order; overrides
            config.bias_platforms.
        max_dominant_ratio: Dominant platform share cap; overrides
            config.max_dominant_ratio.
        config: Feed configuration, defaults to FeedConfig().
        rng: Random source, for reproducible feeds.

    Returns:
        A permutation of the (id-deduplicated) catalog.
    """
    config = config or FeedConfig()
    overrides = {}
    if bias_platforms is not None:
        overrides["bias_platforms"] = list(bias_platforms)
    if max_dominant_ratio is not None:
        overrides["max_dominant_ratio"] = max_dominant_ratio
    if overrides:
        config = dataclasses.replace(config, **overrides)

    feed = fair_order(catalog, config, rng)
    logger.info(f"Composed feed of {len(feed)} products from {len(catalog)} catalog entries")
    return feed
