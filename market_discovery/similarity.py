"""
Similar-products search.

Two phases keep the cost bounded on catalogs of 10,000+ items:
    1. Text-only pass over the whole catalog (keywords, word overlap,
       brand) → quick score → top candidates
    2. Image analysis of the reference and the best candidates with a
       bounded number of concurrent fetches, each racing its own timeout

Each image is independent. If one fetch fails or is slow, that product
just keeps its text-only score and the rest of the search goes on.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import httpx

from .color_similarity import packaging_similarity
from .config import (
    SIMILAR_CANDIDATE_POOL, SIMILAR_IMAGE_CANDIDATES, SIMILAR_IMAGE_TIMEOUT,
    SIMILAR_MAX_CONCURRENT, SIMILAR_MIN_KEYWORD_MATCHES, SIMILAR_MIN_SCORE,
    SIMILAR_QUICK_THRESHOLD, SIMILAR_TOP_K,
)
from .errors import ImageLoadError
from .image_features import FeatureCache, extract_features
from .models import ImageFeatures, Product, SimilarityScore
from .scoring import (
    brand_similarity, compute_final_score, compute_quick_score,
    count_matching_keywords, rank_results, text_similarity,
)

logger = logging.getLogger(__name__)


@dataclass
class _Candidate:
    product: Product
    matching_keywords: int
    text_similarity: float
    brand_similarity: float
    quick_score: float


def prefilter_candidates(reference: Product,
                         catalog: Sequence[Product],
                         min_keyword_matches: int = SIMILAR_MIN_KEYWORD_MATCHES,
                         pool_size: int = SIMILAR_CANDIDATE_POOL,
                         quick_threshold: float = SIMILAR_QUICK_THRESHOLD) -> List[_Candidate]:
    """
    Phase one: score every catalog product without touching images.

    Args:
        reference: Product to find neighbours for; never returned.
        catalog: Full product list; repeated ids count once.
        min_keyword_matches: Minimum shared keyword tags.
        pool_size: How many of the best candidates to keep.
        quick_threshold: Quick score a candidate must exceed.

    Returns:
        Up to pool_size candidates, best quick score first.
    """
    candidates = []
    seen = {reference.id}
    for product in catalog:
        if product.id in seen:
            continue
        seen.add(product.id)

        matching = count_matching_keywords(reference, product)
        if matching < min_keyword_matches:
            continue

        text_sim = text_similarity(reference, product)
        brand_sim = brand_similarity(reference, product)
        quick = compute_quick_score(text_sim, brand_sim, matching)
        if quick <= quick_threshold:
            continue

        candidates.append(_Candidate(product, matching, text_sim, brand_sim, quick))

    candidates.sort(key=lambda c: -c.quick_score)
    return candidates[:pool_size]


async def _gather_image_features(urls: Dict[str, Optional[str]],
                                 client: httpx.AsyncClient,
                                 max_concurrent: int,
                                 timeout: float,
                                 cache: Optional[FeatureCache]) -> Dict[str, ImageFeatures]:
    """Fetch features for {key: url}; keys whose image failed are absent."""
    semaphore = asyncio.Semaphore(max_concurrent)
    features: Dict[str, ImageFeatures] = {}

    async def analyse(key: str, url: Optional[str]) -> None:
        async with semaphore:
            try:
                features[key] = await asyncio.wait_for(
                    extract_features(url, client=client, cache=cache), timeout
                )
            except asyncio.TimeoutError:
                logger.debug(f"Image analysis timed out for {key}")
            except ImageLoadError as e:
                logger.debug(f"No image features for {key}: {e}")

    await asyncio.gather(*(analyse(key, url) for key, url in urls.items()))
    return features


async def find_similar(reference: Product,
                       catalog: Sequence[Product],
                       min_keyword_matches: int = SIMILAR_MIN_KEYWORD_MATCHES,
                       client: Optional[httpx.AsyncClient] = None,
                       cache: Optional[FeatureCache] = None,
                       image_timeout: float = SIMILAR_IMAGE_TIMEOUT,
                       max_concurrent: int = SIMILAR_MAX_CONCURRENT,
                       image_candidates: int = SIMILAR_IMAGE_CANDIDATES,
                       top_k: int = SIMILAR_TOP_K) -> List[SimilarityScore]:
    """
    Find products that look and read like the reference product.

    Pipeline:
        1. Text-only prefilter → top 20 by quick score
        2. Image features for the reference and the best image_candidates
           (10 by default) candidates, at most max_concurrent in flight,
           each capped at image_timeout
        3. Final score → keep score > 0.4 → rank → top_k

    Args:
        reference: Product the user is looking at.
        catalog: Full product list (read-only).
        min_keyword_matches: Minimum shared keyword tags per result.
        client: Optional shared httpx.AsyncClient for image fetches.
        cache: Optional FeatureCache for image features.
        image_timeout: Per-image budget in seconds.
        max_concurrent: Maximum image extractions in flight.
        image_candidates: How many of the best candidates get image
            analysis; the rest keep their quick score.
        top_k: Maximum number of results.

    Returns:
        SimilarityScore list, best first. Empty when nothing is similar
        enough or when the search itself failed.
    """
    start = time.monotonic()
    try:
        candidates = prefilter_candidates(reference, catalog, min_keyword_matches)
        logger.info(
            f"Similarity prefilter for {reference.id}: {len(catalog)} products → "
            f"{len(candidates)} candidates in {(time.monotonic() - start) * 1000:.0f}ms"
        )
        if not candidates:
            return []

        reference_key = f"reference:{reference.id}"
        urls = {reference_key: reference.image}
        for candidate in candidates[:image_candidates]:
            urls[candidate.product.id] = candidate.product.image

        if client is None:
            async with httpx.AsyncClient(follow_redirects=True) as own_client:
                features = await _gather_image_features(
                    urls, own_client, max_concurrent, image_timeout, cache
                )
        else:
            features = await _gather_image_features(
                urls, client, max_concurrent, image_timeout, cache
            )

        reference_features = features.get(reference_key)
        if reference_features is None:
            logger.warning(f"Reference image unavailable for {reference.id}, using text-only scores")

        results = []
        for candidate in candidates:
            candidate_features = features.get(candidate.product.id)
            image_available = reference_features is not None and candidate_features is not None

            packaging = color = 0.0
            if image_available:
                packaging, color = packaging_similarity(reference_features, candidate_features)

            score = compute_final_score(
                quick_score=candidate.quick_score,
                text_sim=candidate.text_similarity,
                brand_sim=candidate.brand_similarity,
                matching_keywords=candidate.matching_keywords,
                packaging_sim=packaging,
                image_available=image_available,
            )
            if score <= SIMILAR_MIN_SCORE:
                continue

            results.append(SimilarityScore(
                product=candidate.product,
                score=score,
                matching_keywords=candidate.matching_keywords,
                color_similarity=color,
                text_similarity=candidate.text_similarity,
                brand_similarity=candidate.brand_similarity,
                packaging_similarity=packaging,
            ))

        results = rank_results(results)[:top_k]
        logger.info(
            f"Similarity search for {reference.id} complete: {len(features)} images analysed, "
            f"{len(results)} results in {(time.monotonic() - start) * 1000:.0f}ms"
        )
        return results

    except Exception:
        logger.exception(f"Similarity search failed for {reference.id}")
        return []
