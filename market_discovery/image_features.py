"""
Lightweight image feature extraction for packaging similarity.

This is deliberately not image recognition. Each image is decoded,
shrunk so its longer edge is about 100px, and summarised by a handful of
statistics: the most frequent quantised colors and hue buckets, mean
brightness, contrast, saturation and edge density. Precision is traded
for speed so that a similar-products query can analyse ten images well
inside a second.

Fetching goes through httpx; decoding and resizing through OpenCV; the
statistics are vectorised numpy over the downsampled pixels.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Optional

import cv2
import httpx
import numpy as np

from .config import (
    IMAGE_EDGE_THRESHOLD, IMAGE_FEATURE_CACHE_SIZE, IMAGE_LOAD_TIMEOUT,
    IMAGE_MAX_EDGE, IMAGE_MIN_EDGE, IMAGE_TOP_COLORS, IMAGE_TOP_HUES,
)
from .errors import ImageDecodeError, ImageTimeoutError
from .models import ImageFeatures

logger = logging.getLogger(__name__)

# Hue histogram granularity in degrees
HUE_BUCKET = 30
# Each RGB channel is floored to a multiple of this before counting colors
COLOR_QUANT = 16


def normalize_image(image_np: np.ndarray) -> np.ndarray:
    """Coerce grayscale/RGBA/float input into uint8 RGB."""
    if image_np.dtype != np.uint8:
        if image_np.max() <= 1.0:
            image_np = (image_np * 255).astype(np.uint8)
        else:
            image_np = np.clip(image_np, 0, 255).astype(np.uint8)
    if image_np.ndim == 2:
        image_np = cv2.cvtColor(image_np, cv2.COLOR_GRAY2RGB)
    elif image_np.shape[2] == 4:
        image_np = cv2.cvtColor(image_np, cv2.COLOR_RGBA2RGB)
    return image_np


def decode_image(data: bytes) -> np.ndarray:
    """
    Decode an encoded image (JPEG, PNG, WebP, ...) into RGB uint8.

    Raises:
        ValueError: If the bytes are empty or not a decodable image.
    """
    if not data:
        raise ValueError("empty image payload")
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("payload is not a decodable image")
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def downscale_image(image_np: np.ndarray,
                    max_edge: int = IMAGE_MAX_EDGE,
                    min_edge: int = IMAGE_MIN_EDGE) -> np.ndarray:
    """
    Resize so the longer edge is max_edge, keeping each side >= min_edge.

    Small images are scaled up to the same working size, so every image
    is analysed at roughly the same resolution.
    """
    h, w = image_np.shape[:2]
    scale = min(max_edge / w, max_edge / h)
    new_w = max(int(round(w * scale)), min_edge)
    new_h = max(int(round(h * scale)), min_edge)
    if (new_w, new_h) == (w, h):
        return image_np
    interpolation = cv2.INTER_AREA if new_w * new_h < w * h else cv2.INTER_LINEAR
    return cv2.resize(image_np, (new_w, new_h), interpolation=interpolation)


def _top_by_frequency(keys: np.ndarray, k: int) -> np.ndarray:
    """Most frequent values, ties broken by first appearance."""
    values, first_index, counts = np.unique(keys, return_index=True, return_counts=True)
    order = np.lexsort((first_index, -counts))
    return values[order][:k]


def compute_image_features(image_np: np.ndarray) -> ImageFeatures:
    """
    Summarise an RGB image into ImageFeatures.

    Process:
        1. Downscale to the ~100px working size
        2. Luma (0.299R + 0.587G + 0.114B), HSV saturation and hue per pixel
        3. Hue histogram in 30 degree buckets, color histogram with every
           channel floored to a multiple of 16
        4. Edge pixels: luma differs from both the left and the top
           neighbour by more than the edge threshold
        5. Contrast as mean absolute deviation of luma

    Args:
        image_np: RGB image (uint8, float in [0, 1], grayscale or RGBA).

    Returns:
        ImageFeatures with top-8 colors and top-5 hue buckets.
    """
    image_np = downscale_image(normalize_image(image_np))
    h, w = image_np.shape[:2]
    pixel_count = h * w

    rgb = image_np.astype(np.float32)
    luma = rgb[:, :, 0] * 0.299 + rgb[:, :, 1] * 0.587 + rgb[:, :, 2] * 0.114
    brightness = float(luma.mean())

    # Float HSV: H in [0, 360), S and V in [0, 1]
    hsv = cv2.cvtColor(rgb / 255.0, cv2.COLOR_RGB2HSV)
    saturation = float(hsv[:, :, 1].mean())
    hue_buckets = (np.floor(np.round(hsv[:, :, 0]) / HUE_BUCKET).astype(np.int64)
                   * HUE_BUCKET) % 360

    quant = (image_np // COLOR_QUANT).astype(np.int64) * COLOR_QUANT
    color_keys = (quant[:, :, 0] << 16) | (quant[:, :, 1] << 8) | quant[:, :, 2]

    top_colors = _top_by_frequency(color_keys.ravel(), IMAGE_TOP_COLORS)
    dominant_colors = [
        (int(c >> 16) & 0xFF, int(c >> 8) & 0xFF, int(c) & 0xFF) for c in top_colors
    ]
    dominant_hues = [int(hue) for hue in _top_by_frequency(hue_buckets.ravel(), IMAGE_TOP_HUES)]

    inner = luma[1:, 1:]
    left_diff = np.abs(inner - luma[1:, :-1])
    top_diff = np.abs(inner - luma[:-1, 1:])
    edge_pixels = int(np.count_nonzero(
        (left_diff > IMAGE_EDGE_THRESHOLD) & (top_diff > IMAGE_EDGE_THRESHOLD)
    ))

    contrast = float(np.abs(luma - brightness).mean())

    return ImageFeatures(
        dominant_colors=dominant_colors,
        dominant_hues=dominant_hues,
        brightness=brightness,
        contrast=contrast,
        saturation=saturation,
        edge_density=edge_pixels / pixel_count,
        aspect_ratio=w / h,
    )


class FeatureCache:
    """
    Bounded LRU of ImageFeatures keyed by image URL.

    Opt-in: find_similar() only uses one when it is passed in. Entries
    never expire, which is acceptable for slowly-changing catalogs.
    """

    def __init__(self, max_size: int = IMAGE_FEATURE_CACHE_SIZE):
        self.max_size = max_size
        self._entries: "OrderedDict[str, ImageFeatures]" = OrderedDict()

    def get(self, url: str) -> Optional[ImageFeatures]:
        features = self._entries.get(url)
        if features is not None:
            self._entries.move_to_end(url)
        return features

    def put(self, url: str, features: ImageFeatures) -> None:
        self._entries[url] = features
        self._entries.move_to_end(url)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: str) -> bool:
        return url in self._entries


async def _fetch_bytes(image_url: str, client: Optional[httpx.AsyncClient]) -> bytes:
    if client is not None:
        response = await client.get(image_url)
        response.raise_for_status()
        return response.content

    async with httpx.AsyncClient(follow_redirects=True) as own_client:
        response = await own_client.get(image_url)
        response.raise_for_status()
        return response.content


async def _load_features(image_url: str, client: Optional[httpx.AsyncClient]) -> ImageFeatures:
    try:
        data = await _fetch_bytes(image_url, client)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise ImageDecodeError(image_url, f"fetch failed: {e}") from e

    try:
        image_np = decode_image(data)
        return compute_image_features(image_np)
    except (ValueError, cv2.error) as e:
        raise ImageDecodeError(image_url, str(e)) from e


async def extract_features(image_url: Optional[str],
                           client: Optional[httpx.AsyncClient] = None,
                           timeout: float = IMAGE_LOAD_TIMEOUT,
                           cache: Optional[FeatureCache] = None) -> ImageFeatures:
    """
    Fetch, decode and summarise one product image.

    Args:
        image_url: HTTP(S) URL of the image.
        client: Optional shared httpx.AsyncClient; a short-lived one is
            created when omitted.
        timeout: Budget in seconds for fetch + decode.
        cache: Optional FeatureCache consulted before fetching.

    Returns:
        ImageFeatures for the image.

    Raises:
        ImageDecodeError: Missing URL, fetch failure or undecodable data.
        ImageTimeoutError: The budget ran out.
    """
    if not image_url:
        raise ImageDecodeError(str(image_url), "no image url")

    if cache is not None:
        cached = cache.get(image_url)
        if cached is not None:
            return cached

    try:
        features = await asyncio.wait_for(_load_features(image_url, client), timeout)
    except asyncio.TimeoutError:
        raise ImageTimeoutError(image_url, f"no result within {timeout:.2f}s") from None

    logger.debug(
        f"Extracted features for {image_url}: "
        f"{len(features.dominant_colors)} colors, brightness={features.brightness:.1f}"
    )
    if cache is not None:
        cache.put(image_url, features)
    return features
