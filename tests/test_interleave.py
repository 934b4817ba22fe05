"""Tests for platform-balanced interleaving and feed composition."""

import random
from collections import Counter

import pytest

from market_discovery.config import CategoryFamilies, FeedConfig, PlatformTable
from market_discovery.interleave import (
    AUTO_DOMINANT, bucket_by_platform, compose_feed, enforce_head_constraints,
    fair_order, fisher_yates, mix_with_bias, prioritize, resolve_dominant,
)


@pytest.fixture
def skewed_catalog(make_product):
    """Amazon-heavy catalog: 30 Amazon, 8 Meesho, 4 Ajio, 3 Flipkart."""
    catalog = []
    for platform, count in (("Amazon.in", 30), ("Meesho", 8), ("Ajio", 4), ("Flipkart", 3)):
        for i in range(count):
            catalog.append(make_product(id=f"{platform}-{i}", title=f"Lamp {i}", platform=platform))
    random.Random(0).shuffle(catalog)
    return catalog


def is_amazon(product):
    return product.platform.startswith("Amazon")


def last_other_index(feed):
    return max(i for i, p in enumerate(feed) if not is_amazon(p))


class TestPlatformTable:
    def test_classify(self):
        table = PlatformTable()
        assert table.classify("Amazon.in") == "amazon"
        assert table.classify("AJIO Luxe") == "ajio"
        assert table.classify("meesho") == "meesho"
        assert table.classify("Flipkart") == "other"
        assert table.classify(None) == "other"

    def test_bucket_by_platform_drops_duplicate_ids(self, make_product):
        a = make_product(id="x", platform="Meesho")
        b = make_product(id="y", platform="Amazon")
        buckets = bucket_by_platform([a, b, a], FeedConfig())
        assert buckets == {"meesho": [a], "amazon": [b]}


class TestPrioritize:
    def test_fisher_yates_is_a_seeded_permutation(self):
        items = list(range(20))
        shuffled = fisher_yates(items, random.Random(4))
        assert sorted(shuffled) == items
        assert shuffled == fisher_yates(items, random.Random(4))
        assert items == list(range(20))

    def test_preferred_items_first(self, make_product):
        lamps = [make_product(title="Desk Lamp") for _ in range(4)]
        kurtis = [make_product(title="Cotton Kurti") for _ in range(3)]
        ordered = prioritize(lamps + kurtis, FeedConfig(), random.Random(2))
        assert {p.id for p in ordered[:3]} == {p.id for p in kurtis}

    def test_custom_category_families(self, make_product):
        lamp = make_product(title="Desk Lamp")
        kurti = make_product(title="Cotton Kurti")
        config = FeedConfig(categories=CategoryFamilies({"lighting": ["lamp"]}))
        assert prioritize([kurti, lamp], config, random.Random(0))[0] is lamp

    def test_rank_key_orders_within_partition(self, make_product):
        items = [make_product(title="Desk Lamp", rating=r) for r in (3.0, 5.0, 4.0)]
        ordered = prioritize(items, FeedConfig(), random.Random(9), rank_key=lambda p: -p.rating)
        assert [p.rating for p in ordered] == [5.0, 4.0, 3.0]


class TestMixing:
    """Tests for the round-based mix and the head correction."""

    def test_round_pattern(self, make_product):
        buckets = {
            "meesho": [make_product(id=f"m{i}", platform="Meesho") for i in range(4)],
            "ajio": [make_product(id=f"j{i}", platform="Ajio") for i in range(2)],
            "other": [make_product(id=f"o{i}", platform="Myntra") for i in range(2)],
        }
        mixed = mix_with_bias(buckets, FeedConfig())
        assert [p.id for p in mixed] == ["m0", "m1", "j0", "o0", "m2", "m3", "j1", "o1"]

    def test_dominant_gated_by_ratio(self, make_product):
        buckets = {
            "meesho": [make_product(id=f"m{i}", platform="Meesho") for i in range(10)],
            "amazon": [make_product(id=f"a{i}", platform="Amazon") for i in range(4)],
        }
        mixed = mix_with_bias(buckets, FeedConfig())
        assert [p.id for p in mixed] == [
            "m0", "m1", "m2", "m3", "a0", "m4", "m5", "m6", "m7", "a1",
            "m8", "m9", "a2", "a3",
        ]

    def test_head_correction_bumps_and_pulls(self, make_product):
        def amazon(i):
            return make_product(id=f"A{i}", platform="Amazon")

        def meesho(i):
            return make_product(id=f"m{i}", platform="Meesho")

        items = [amazon(1), meesho(1), amazon(2), meesho(2), amazon(3), meesho(3), amazon(4)]
        items += [meesho(i) for i in range(4, 9)]
        config = FeedConfig(head_window=6, max_dominant_in_head=2, max_dominant_ratio=0.5)
        corrected = enforce_head_constraints(items, config)
        assert [p.id for p in corrected] == [
            "A1", "m1", "A2", "m2", "m3", "m4", "A4", "m5", "A3", "m6", "m7", "m8",
        ]

    def test_head_correction_breaks_runs(self, make_product):
        items = [
            make_product(id="A1", platform="Amazon"),
            make_product(id="A2", platform="Amazon"),
            make_product(id="m1", platform="Meesho"),
            make_product(id="m2", platform="Meesho"),
            make_product(id="m3", platform="Meesho"),
        ]
        config = FeedConfig(head_window=4, max_dominant_ratio=0.5)
        corrected = enforce_head_constraints(items, config)
        assert [p.id for p in corrected] == ["A1", "m1", "m2", "m3", "A2"]

    def test_head_correction_noop(self, make_product):
        items = [make_product(platform="Meesho") for _ in range(5)]
        assert enforce_head_constraints(items, FeedConfig()) == items

    def test_dominant_in_bias_is_uncapped(self):
        config = FeedConfig(bias_platforms=["amazon"])
        assert resolve_dominant({"amazon": []}, config) is None

    def test_auto_dominant(self, make_product):
        table = PlatformTable(markers=[
            ("meesho", "meesho"), ("ajio", "ajio"),
            ("amazon", "amazon"), ("flipkart", "flipkart"),
        ])
        config = FeedConfig(dominant_platform=AUTO_DOMINANT, platform_table=table)
        catalog = [make_product(title="Lamp", platform="Flipkart") for _ in range(20)]
        catalog += [make_product(title="Lamp", platform="Amazon") for _ in range(5)]
        catalog += [make_product(title="Lamp", platform="Meesho") for _ in range(6)]
        assert resolve_dominant(bucket_by_platform(catalog, config), config) == "flipkart"

        feed = fair_order(catalog, config, random.Random(1))
        head = [p.platform for p in feed[:12]]
        assert head.count("Flipkart") <= 3


class TestComposeFeed:
    """Tests for compose_feed()."""

    def test_is_a_permutation(self, skewed_catalog):
        feed = compose_feed(skewed_catalog, rng=random.Random(1))
        assert Counter(p.id for p in feed) == Counter(p.id for p in skewed_catalog)

    def test_dominant_ratio_holds_for_every_prefix(self, skewed_catalog):
        feed = compose_feed(skewed_catalog, rng=random.Random(1))
        dominant = 0
        for length, product in enumerate(feed[:last_other_index(feed) + 1], start=1):
            dominant += is_amazon(product)
            assert dominant / length <= 0.22

    def test_no_consecutive_dominant_items(self, skewed_catalog):
        feed = compose_feed(skewed_catalog, rng=random.Random(2))
        head = feed[:last_other_index(feed) + 1]
        assert not any(is_amazon(a) and is_amazon(b) for a, b in zip(head, head[1:]))

    def test_head_window_cap(self, skewed_catalog):
        for seed in range(5):
            feed = compose_feed(skewed_catalog, rng=random.Random(seed))
            assert sum(is_amazon(p) for p in feed[:12]) <= 3

    def test_default_bias_leads_with_meesho(self, skewed_catalog):
        feed = compose_feed(skewed_catalog, rng=random.Random(3))
        assert [p.platform for p in feed[:3]] == ["Meesho", "Meesho", "Ajio"]

    def test_bias_override(self, skewed_catalog):
        feed = compose_feed(skewed_catalog, bias_platforms=["ajio"], rng=random.Random(3))
        assert [p.platform for p in feed[:2]] == ["Ajio", "Ajio"]

    def test_zero_ratio_pushes_dominant_to_the_end(self, skewed_catalog):
        feed = compose_feed(skewed_catalog, max_dominant_ratio=0.0, rng=random.Random(3))
        assert all(is_amazon(p) for p in feed[-30:])

    def test_seeded_feed_is_reproducible(self, skewed_catalog):
        first = compose_feed(skewed_catalog, rng=random.Random(8))
        second = compose_feed(skewed_catalog, rng=random.Random(8))
        assert [p.id for p in first] == [p.id for p in second]

    def test_duplicates_removed(self, make_product):
        product = make_product(platform="Meesho")
        assert compose_feed([product, product]) == [product]

    def test_empty_catalog(self):
        assert compose_feed([]) == []

    @pytest.mark.parametrize("kwargs", [
        {"max_dominant_ratio": 1.5},
        {"max_dominant_ratio": -0.1},
        {"head_window": -1},
        {"max_dominant_in_head": -2},
    ])
    def test_invalid_config(self, kwargs):
        with pytest.raises(ValueError):
            FeedConfig(**kwargs)
