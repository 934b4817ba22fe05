"""
Color, brightness and hue comparison between two ImageFeatures.

For every dominant color of the reference image the best match among
the candidate's dominant colors is found, using a blend of plain RGB
distance, a perceptually weighted RGB distance (2:4:3), circular hue
distance and saturation/value distance. The per-color best matches are
averaged. Identical color lists therefore score exactly 1.0.
"""

import os
import logging
from typing import Sequence, Tuple

import numpy as np

from .models import ImageFeatures

logger = logging.getLogger(__name__)

# Blend of per-pair color signals; should sum to 1.0
COLOR_WEIGHTS = {
    "rgb":        float(os.environ.get("COLOR_RGB_W", "0.3")),
    "perceptual": float(os.environ.get("COLOR_PERCEPTUAL_W", "0.3")),
    "hue":        float(os.environ.get("COLOR_HUE_W", "0.25")),
    "saturation": float(os.environ.get("COLOR_SAT_W", "0.1")),
    "value":      float(os.environ.get("COLOR_VAL_W", "0.05")),
}

# Blend of image signals into packaging similarity
PACKAGING_WEIGHTS = {
    "color":      float(os.environ.get("PACKAGING_COLOR_W", "0.7")),
    "brightness": float(os.environ.get("PACKAGING_BRIGHTNESS_W", "0.2")),
    "hue":        float(os.environ.get("PACKAGING_HUE_W", "0.1")),
}

PERCEPTUAL_CHANNEL_WEIGHTS = np.array([2.0, 4.0, 3.0])
HUE_TOLERANCE = 30
HUE_CHECKS = 3

_MAX_RGB_DISTANCE = 255.0 * np.sqrt(3.0)
# Larger than the 2:4:3 maximum; black vs white keeps 0.44 perceptual similarity
_PERCEPTUAL_NORMALIZER = 255.0 * np.sqrt(29.0)


def rgb_to_hsv(rgb: np.ndarray) -> np.ndarray:
    """
    Convert an (N, 3) array of 0-255 RGB values to HSV.

    Returns:
        (N, 3) float array: hue in degrees [0, 360), saturation and
        value in [0, 1].
    """
    rgb = np.asarray(rgb, dtype=np.float64).reshape(-1, 3) / 255.0
    r, g, b = rgb[:, 0], rgb[:, 1], rgb[:, 2]
    v = rgb.max(axis=1)
    delta = v - rgb.min(axis=1)
    safe_delta = np.where(delta == 0, 1.0, delta)

    h = np.where(
        v == r, ((g - b) / safe_delta) % 6,
        np.where(v == g, (b - r) / safe_delta + 2, (r - g) / safe_delta + 4),
    )
    h = np.where(delta == 0, 0.0, h * 60.0)
    h = np.where(h < 0, h + 360.0, h)
    s = np.where(v == 0, 0.0, delta / np.where(v == 0, 1.0, v))
    return np.stack([h, s, v], axis=1)


def circular_hue_distance(h1, h2):
    """Distance between hue angles in degrees, wrapping at 360."""
    diff = np.abs(np.asarray(h1, dtype=np.float64) - np.asarray(h2, dtype=np.float64))
    return np.minimum(diff, 360.0 - diff)


def calculate_color_similarity(colors1: Sequence[Tuple[int, int, int]],
                               colors2: Sequence[Tuple[int, int, int]]) -> float:
    """
    Similarity (0-1) between two dominant-color lists.

    Args:
        colors1: Reference dominant colors as (r, g, b) tuples.
        colors2: Candidate dominant colors.

    Returns:
        Mean over colors1 of the best combined similarity against
        colors2. 0.0 when either list is empty.
    """
    if len(colors1) == 0 or len(colors2) == 0:
        return 0.0

    c1 = np.asarray(colors1, dtype=np.float64).reshape(-1, 3)
    c2 = np.asarray(colors2, dtype=np.float64).reshape(-1, 3)

    # Pairwise (len1, len2, 3) channel differences
    diff = c1[:, None, :] - c2[None, :, :]
    sq = diff ** 2

    rgb_sim = np.maximum(0.0, 1.0 - np.sqrt(sq.sum(axis=2)) / _MAX_RGB_DISTANCE)
    perceptual_sim = np.maximum(
        0.0,
        1.0 - np.sqrt((sq * PERCEPTUAL_CHANNEL_WEIGHTS).sum(axis=2)) / _PERCEPTUAL_NORMALIZER,
    )

    hsv1 = rgb_to_hsv(c1)
    hsv2 = rgb_to_hsv(c2)
    hue_sim = 1.0 - circular_hue_distance(hsv1[:, None, 0], hsv2[None, :, 0]) / 180.0
    sat_sim = 1.0 - np.abs(hsv1[:, None, 1] - hsv2[None, :, 1])
    val_sim = 1.0 - np.abs(hsv1[:, None, 2] - hsv2[None, :, 2])

    w = COLOR_WEIGHTS
    combined = (
        w["rgb"] * rgb_sim
        + w["perceptual"] * perceptual_sim
        + w["hue"] * hue_sim
        + w["saturation"] * sat_sim
        + w["value"] * val_sim
    )

    return float(combined.max(axis=1).mean())


def hue_similarity_fast(hues1: Sequence[int], hues2: Sequence[int]) -> float:
    """
    Share of the first three reference hues that have a candidate hue
    within 30 degrees. Neutral 0.5 when either list is empty.
    """
    if not hues1 or not hues2:
        return 0.5

    checks = list(hues1)[:HUE_CHECKS]
    matches = sum(
        1 for h in checks
        if np.any(circular_hue_distance(h, list(hues2)) <= HUE_TOLERANCE)
    )
    return matches / len(checks)


def brightness_similarity(brightness1: float, brightness2: float) -> float:
    return 1.0 - abs(brightness1 - brightness2) / 255.0


def packaging_similarity(reference: ImageFeatures,
                         candidate: ImageFeatures) -> Tuple[float, float]:
    """
    Blend color, brightness and hue similarity of two images.

    Returns:
        Tuple of (packaging_similarity, color_similarity).
    """
    color = calculate_color_similarity(reference.dominant_colors, candidate.dominant_colors)
    brightness = brightness_similarity(reference.brightness, candidate.brightness)
    hue = hue_similarity_fast(reference.dominant_hues, candidate.dominant_hues)

    w = PACKAGING_WEIGHTS
    packaging = w["color"] * color + w["brightness"] * brightness + w["hue"] * hue
    return float(packaging), color
