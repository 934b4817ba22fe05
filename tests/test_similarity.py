"""Tests for the two-phase similar-products search."""

import asyncio
from dataclasses import replace

import httpx
import pytest

import market_discovery.similarity as similarity
from market_discovery.errors import ImageLoadError
from market_discovery.models import ImageFeatures
from market_discovery.scoring import compute_quick_score
from market_discovery.similarity import find_similar, prefilter_candidates

TAGS = ",".join(f"tag{i}" for i in range(12))


@pytest.fixture
def reference(make_product):
    return make_product(
        id="ref", title="Nivea Soft Moisturising Cream", brand="nivea",
        keywords=TAGS, image="http://img.test/red.png",
    )


@pytest.fixture
def near_twin(make_product):
    return make_product(
        id="twin", title="Nivea Soft Moisturising Cream", brand="nivea",
        keywords=TAGS, image="http://img.test/red.png",
    )


@pytest.fixture
def blue_variant(make_product):
    return make_product(
        id="blue", title="Nivea Soft Cream Tube", brand="nivea",
        keywords=TAGS, image="http://img.test/blue.png",
    )


class TestPrefilter:
    """Tests for the text-only candidate pass."""

    def test_skips_reference_and_weak_keyword_overlap(self, reference, near_twin, make_product):
        few_tags = make_product(
            id="few", title=reference.title, brand="nivea",
            keywords=",".join(f"tag{i}" for i in range(9)),
        )
        candidates = prefilter_candidates(reference, [reference, near_twin, few_tags])
        assert [c.product.id for c in candidates] == ["twin"]

    def test_quick_threshold(self, reference, make_product):
        unrelated = make_product(id="u", title="Steel Lunch Box", brand="milton", keywords=TAGS)
        # Only the keyword signal: 0.15 * 12/20 < 0.3
        assert prefilter_candidates(reference, [unrelated]) == []

    def test_pool_size(self, reference, make_product):
        catalog = [
            make_product(id=f"c{i}", title=reference.title, brand="nivea", keywords=TAGS)
            for i in range(30)
        ]
        assert len(prefilter_candidates(reference, catalog)) == 20

    def test_repeated_ids_count_once(self, reference, near_twin):
        candidates = prefilter_candidates(reference, [near_twin, near_twin, reference])
        assert [c.product.id for c in candidates] == ["twin"]


class TestFindSimilar:
    """Tests for find_similar()."""

    @pytest.mark.asyncio
    async def test_same_image_ranks_first(self, reference, near_twin, blue_variant, image_transport):
        async with httpx.AsyncClient(transport=image_transport) as client:
            results = await find_similar(reference, [reference, blue_variant, near_twin], client=client)

        assert [r.product.id for r in results] == ["twin", "blue"]
        assert results[0].color_similarity == pytest.approx(1.0)
        assert results[0].packaging_similarity == pytest.approx(1.0)
        assert results[1].color_similarity < 1.0
        assert all(r.product.id != reference.id for r in results)

    @pytest.mark.asyncio
    async def test_every_result_clears_thresholds(self, reference, near_twin, blue_variant, image_transport):
        async with httpx.AsyncClient(transport=image_transport) as client:
            results = await find_similar(reference, [near_twin, blue_variant], client=client)
        for r in results:
            assert r.matching_keywords >= 10
            assert 0.4 < r.score <= 1.0

    @pytest.mark.asyncio
    async def test_missing_reference_image_uses_quick_score(self, reference, blue_variant, image_transport):
        broken_ref = replace(reference, image="http://img.test/missing.png")
        async with httpx.AsyncClient(transport=image_transport) as client:
            results = await find_similar(broken_ref, [blue_variant], client=client)

        assert len(results) == 1
        only = results[0]
        expected = compute_quick_score(only.text_similarity, only.brand_similarity, 12)
        assert only.score == pytest.approx(expected)
        assert only.packaging_similarity == 0.0

    @pytest.mark.asyncio
    async def test_slow_candidate_keeps_text_score(self, reference, near_twin, make_product, image_transport):
        slow = make_product(
            id="slow", title=reference.title, brand="nivea",
            keywords=TAGS, image="http://img.test/slow.png",
        )
        async with httpx.AsyncClient(transport=image_transport) as client:
            results = await find_similar(
                reference, [near_twin, slow], client=client, image_timeout=0.1,
            )

        by_id = {r.product.id: r for r in results}
        assert set(by_id) == {"twin", "slow"}
        assert by_id["slow"].packaging_similarity == 0.0
        assert by_id["slow"].score == pytest.approx(compute_quick_score(1.0, 1.0, 12))

    @pytest.mark.asyncio
    async def test_no_candidates(self, reference, make_product):
        other = make_product(id="x", keywords="unrelated")
        assert await find_similar(reference, [other]) == []

    @pytest.mark.asyncio
    async def test_failure_returns_empty(self, reference):
        assert await find_similar(reference, None) == []

    @pytest.mark.asyncio
    async def test_top_k(self, reference, make_product, monkeypatch):
        async def no_image(url, client=None, cache=None):
            raise ImageLoadError(url, "offline")

        monkeypatch.setattr(similarity, "extract_features", no_image)
        catalog = [
            make_product(id=f"c{i}", title=reference.title, brand="nivea", keywords=TAGS)
            for i in range(30)
        ]
        results = await find_similar(reference, catalog, top_k=5)
        assert len(results) == 5

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self, reference, make_product, monkeypatch):
        in_flight = 0
        peak = 0
        calls = []

        async def fake_extract(url, client=None, cache=None):
            nonlocal in_flight, peak
            calls.append(url)
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return ImageFeatures([(192, 16, 16)], [0], 80.0, 0.0, 0.85, 0.0, 1.0)

        monkeypatch.setattr(similarity, "extract_features", fake_extract)
        catalog = [
            make_product(id=f"c{i}", title=reference.title, brand="nivea",
                         keywords=TAGS, image=f"http://img.test/c{i}.png")
            for i in range(25)
        ]
        results = await find_similar(reference, catalog, max_concurrent=10)

        # Reference plus the ten best candidates
        assert len(calls) == 11
        assert peak <= 10
        assert len(results) == 15

    @pytest.mark.asyncio
    async def test_image_candidates_independent_of_concurrency(self, reference, make_product, monkeypatch):
        in_flight = 0
        peak = 0
        calls = []

        async def fake_extract(url, client=None, cache=None):
            nonlocal in_flight, peak
            calls.append(url)
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return ImageFeatures([(192, 16, 16)], [0], 80.0, 0.0, 0.85, 0.0, 1.0)

        monkeypatch.setattr(similarity, "extract_features", fake_extract)
        catalog = [
            make_product(id=f"c{i}", title=reference.title, brand="nivea",
                         keywords=TAGS, image=f"http://img.test/c{i}.png")
            for i in range(25)
        ]
        results = await find_similar(reference, catalog, max_concurrent=2)

        assert len(calls) == 11
        assert peak <= 2
        assert sum(r.packaging_similarity > 0 for r in results) == 10

    @pytest.mark.asyncio
    async def test_duplicate_rows_returned_once(self, reference, near_twin, monkeypatch):
        async def no_image(url, client=None, cache=None):
            raise ImageLoadError(url, "offline")

        monkeypatch.setattr(similarity, "extract_features", no_image)
        results = await find_similar(reference, [near_twin, near_twin, near_twin])
        assert [r.product.id for r in results] == ["twin"]
