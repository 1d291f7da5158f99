"""
Locate the results table inside an arbitrary photo.

Result tables are ruled: every row is separated by a horizontal gridline
and the table is closed by vertical borders. The detector builds two
projection profiles of edge strength (per-row horizontal edges and
per-column vertical edges) on a downscaled copy and reads the table
bounds off them.

Detection is fail-safe. When there is no usable signal the caller gets
the full image (or a generous band) back, because a loose crop hurts OCR
far less than one that clips rows off the table.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

import numpy as np
from PIL import Image

from gradescan.config import AutoCropConfig
from gradescan.models import Rect

logger = logging.getLogger(__name__)

# Vertical extent used when fewer than two gridlines are found
FALLBACK_BAND = (0.25, 0.75)


def edge_profiles(luminance: np.ndarray, noise_floor: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Gradient magnitudes to the right and bottom neighbours.

    Returns:
        (vertical, horizontal) edge-strength arrays with the same shape as
        ``luminance``; magnitudes at or below ``noise_floor`` are zeroed.
        The last column/row compares against itself and is always zero.
    """
    lum = luminance.astype(np.float64)
    right = np.concatenate([lum[:, 1:], lum[:, -1:]], axis=1)
    below = np.concatenate([lum[1:, :], lum[-1:, :]], axis=0)

    vertical = np.abs(lum - right)
    horizontal = np.abs(lum - below)
    vertical[vertical <= noise_floor] = 0
    horizontal[horizontal <= noise_floor] = 0
    return vertical, horizontal


def distinct_lines(candidates: list[int], gap: int) -> list[int]:
    """Collapse runs of candidate rows closer than ``gap`` into single lines."""
    lines: list[int] = []
    for i, y in enumerate(candidates):
        if i == 0 or y - candidates[i - 1] > gap:
            lines.append(y)
    return lines


@dataclass
class AutoCropDetector:
    """
    Find the bounding box of a ruled results table.

    Example:
        >>> detector = AutoCropDetector()
        >>> rect = detector.detect(Image.open("results.jpg"))
        >>> table = image.crop(rect.to_box())
    """

    config: AutoCropConfig = field(default_factory=AutoCropConfig)

    def _analysis_image(self, image: Image.Image) -> tuple[np.ndarray, float]:
        w, h = image.size
        scale = min(1.0, self.config.analysis_width / w)
        rgb = image.convert("RGB")
        if scale < 1.0:
            sw = max(1, round(w * scale))
            sh = max(1, round(h * scale))
            rgb = rgb.resize((sw, sh), Image.Resampling.BILINEAR)
        pixels = np.asarray(rgb, dtype=np.float64)
        return pixels.mean(axis=2), scale

    def detect(self, image: Image.Image) -> Rect:
        """
        Return the table rectangle in source-image coordinates.

        Args:
            image: Full-resolution image.

        Returns:
            Detected table bounds, or the full image when detection fails.
        """
        w, h = image.size
        full = Rect.full(w, h)
        if w == 0 or h == 0:
            return full

        cfg = self.config
        luminance, scale = self._analysis_image(image)
        sh, sw = luminance.shape
        vertical, horizontal = edge_profiles(luminance, cfg.noise_floor)

        # Rows: gridline candidates from the horizontal-edge profile
        row_profile = horizontal.sum(axis=1)
        candidates = np.nonzero(row_profile > sw * cfg.line_strength)[0].tolist()
        lines = distinct_lines(candidates, cfg.line_gap)

        if len(lines) >= 2:
            top, bottom = lines[0], lines[-1]
        else:
            top, bottom = sh * FALLBACK_BAND[0], sh * FALLBACK_BAND[1]
            logger.debug("Found %d gridlines; using middle band", len(lines))

        # Columns: borders from the vertical-edge profile within the table rows
        band = vertical[int(top) : int(math.ceil(bottom)) + 1]
        col_profile = band.sum(axis=0)
        col_threshold = (bottom - top) * cfg.line_strength

        left, right = 0, sw
        for x in range(0, math.ceil(sw / 2)):
            if col_profile[x] > col_threshold:
                left = x
                break
        for x in range(sw - 1, sw // 2, -1):
            if col_profile[x] > col_threshold:
                right = x
                break

        final_x = max(0, math.floor(left / scale) - cfg.padding)
        final_y = max(0, math.floor(top / scale) - cfg.padding)
        final_r = min(w, math.ceil(right / scale) + cfg.padding)
        final_b = min(h, math.ceil(bottom / scale) + cfg.padding)

        rect = Rect(final_x, final_y, final_r - final_x, final_b - final_y)
        if rect.width < cfg.min_size or rect.height < cfg.min_size:
            logger.debug("Detected crop %s too small; using full image", rect)
            return full

        logger.debug(
            "Auto-crop: %d gridlines, table at %s in %dx%d image", len(lines), rect, w, h
        )
        return rect
