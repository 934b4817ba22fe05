"""Shared test fixtures for discovery engine tests."""

import asyncio

import cv2
import httpx
import numpy as np
import pytest

from market_discovery.models import Product


PRODUCT_RED = (200, 30, 30)
PRODUCT_BLUE = (30, 30, 200)
WHITE = (255, 255, 255)


def _canvas(height: int, width: int, fill) -> np.ndarray:
    return np.full((height, width, 3), fill, dtype=np.uint8)


@pytest.fixture
def to_png():
    """RGB array → PNG bytes, as a catalog image server would return them."""
    def encode(image_rgb: np.ndarray) -> bytes:
        ok, buffer = cv2.imencode(".png", cv2.cvtColor(image_rgb, cv2.COLOR_RGB2BGR))
        assert ok
        return buffer.tobytes()

    return encode


@pytest.fixture
def red_label_rgb():
    """Packshot stand-in: 120px red label centred on a 200x200 white card."""
    img = _canvas(200, 200, WHITE)
    cv2.rectangle(img, (40, 40), (159, 159), PRODUCT_RED, thickness=-1)
    return img


@pytest.fixture
def blue_label_rgb():
    """Packshot stand-in: blue disc of radius 60 on a white card."""
    img = _canvas(200, 200, WHITE)
    cv2.circle(img, (100, 100), 60, PRODUCT_BLUE, thickness=-1)
    return img


@pytest.fixture
def flat_red_rgb():
    """Portrait 120x80 image of one flat color."""
    return _canvas(120, 80, PRODUCT_RED)


@pytest.fixture
def checker_rgb():
    """Dark/light 20px checkerboard, 200x200."""
    yy, xx = np.mgrid[0:200, 0:200]
    dark = ((yy // 20 + xx // 20) % 2 == 0)[:, :, None]
    return np.where(dark, 50, 200).astype(np.uint8).repeat(3, axis=2)


@pytest.fixture
def noise_rgb():
    return np.random.default_rng(7).integers(0, 256, (200, 200, 3), dtype=np.uint8)


@pytest.fixture
def image_routes(red_label_rgb, blue_label_rgb, to_png):
    """URL → PNG bytes served by the mock transport."""
    return {
        "http://img.test/red.png": to_png(red_label_rgb),
        "http://img.test/blue.png": to_png(blue_label_rgb),
        "http://img.test/broken.png": b"definitely not an image",
    }


@pytest.fixture
def request_log():
    return []


@pytest.fixture
def image_transport(image_routes, request_log):
    """
    httpx.MockTransport serving image_routes.

    /slow.png never answers in time; unknown URLs are 404.
    """
    async def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        request_log.append(url)
        if url.endswith("/slow.png"):
            await asyncio.sleep(5)
            return httpx.Response(200, content=image_routes["http://img.test/red.png"])
        if url in image_routes:
            return httpx.Response(200, content=image_routes[url])
        return httpx.Response(404)

    return httpx.MockTransport(handler)


@pytest.fixture
def make_product():
    """Factory for products with sensible defaults."""
    counter = {"n": 0}

    def factory(**fields) -> Product:
        counter["n"] += 1
        fields.setdefault("id", f"p{counter['n']}")
        fields.setdefault("title", f"Product {counter['n']}")
        fields.setdefault("price", "₹499")
        fields.setdefault("currency", "INR")
        fields.setdefault("platform", "Meesho")
        return Product(**fields)

    return factory


@pytest.fixture
def kurti_catalog():
    return [
        Product(id="1", title="Red Kurti", keywords="women,ethnic,red", price="₹499", platform="Meesho"),
        Product(id="2", title="Blue Jeans", keywords="men,casual", price="₹899", platform="Ajio"),
    ]
