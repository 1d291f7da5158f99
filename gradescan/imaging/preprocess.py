"""
Image preprocessing for line-oriented text recognition.

Pipeline: upscale -> grayscale -> contrast stretch -> Otsu binarize ->
row segmentation and re-stitching.

The last stage matters most. Recognition engines fed a whole table tend
to merge or reorder visually adjacent rows, so every detected text row is
copied onto a fresh white raster with generous padding between rows.

The individual stages are plain functions over numpy arrays so each can
be tested on synthetic data; ImagePreprocessor chains them over a PIL
image.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from gradescan.config import PreprocessConfig
from gradescan.exceptions import PreprocessingError

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

LUMINANCE_WEIGHTS = (0.299, 0.587, 0.114)
WHITE = 255
BLACK = 0
DEFAULT_OTSU_THRESHOLD = 128


# =============================================================================
# DATA STRUCTURES
# =============================================================================


@dataclass(frozen=True)
class RowSegment:
    """Half-open run of raster rows [start, end) holding a line of text."""

    start: int
    end: int

    @property
    def height(self) -> int:
        return self.end - self.start


@dataclass
class PreprocessStats:
    """Statistics for one preprocessing run."""

    source_size: tuple[int, int] = (0, 0)
    output_size: tuple[int, int] = (0, 0)
    scale: float = 1.0
    stretch_low: int = 0
    stretch_high: int = 255
    threshold: int = DEFAULT_OTSU_THRESHOLD
    segments: int = 0
    total_time_ms: float = 0.0


# =============================================================================
# RASTER STAGES
# =============================================================================


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def to_grayscale(rgb: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Perceptual luminance of an RGB raster.

    Returns:
        (gray, histogram): uint8 intensity raster and its 256-bin histogram.
    """
    r, g, b = (rgb[..., i].astype(np.float64) for i in range(3))
    lum = LUMINANCE_WEIGHTS[0] * r + LUMINANCE_WEIGHTS[1] * g + LUMINANCE_WEIGHTS[2] * b
    gray = np.clip(_round_half_up(lum), 0, 255).astype(np.uint8)
    return gray, histogram(gray)


def histogram(gray: np.ndarray) -> np.ndarray:
    """256-bin intensity histogram."""
    return np.bincount(gray.ravel(), minlength=256).astype(np.int64)


def stretch_bounds(hist: np.ndarray, clip_percent: float = 0.01) -> tuple[int, int]:
    """
    Intensities below/above which ``clip_percent`` of the pixels fall.

    Returns (0, 255) when the clipped range is empty.
    """
    total = int(hist.sum())
    cumulative = np.cumsum(hist)
    low_cut = round(total * clip_percent)
    high_cut = round(total * (1.0 - clip_percent))

    lo = int(np.argmax(cumulative >= low_cut))
    hi = int(np.argmax(cumulative >= high_cut))

    if hi <= lo:
        return 0, 255
    return lo, hi


def contrast_stretch(
    gray: np.ndarray, clip_percent: float = 0.01
) -> tuple[np.ndarray, int, int]:
    """
    Linearly remap the [lo, hi] percentile range onto [0, 255].

    Returns:
        (stretched, lo, hi)
    """
    lo, hi = stretch_bounds(histogram(gray), clip_percent)
    scaled = (gray.astype(np.float64) - lo) / (hi - lo) * 255.0
    stretched = np.clip(_round_half_up(scaled), 0, 255).astype(np.uint8)
    return stretched, lo, hi


def between_class_variance(hist: np.ndarray, t: int) -> float:
    """wB(t) * wF(t) * (meanB(t) - meanF(t))^2 for a split after bin ``t``."""
    levels = np.arange(256, dtype=np.float64)
    h = hist.astype(np.float64)
    w_b = h[: t + 1].sum()
    w_f = h[t + 1 :].sum()
    if w_b == 0 or w_f == 0:
        return 0.0
    mean_b = (levels[: t + 1] * h[: t + 1]).sum() / w_b
    mean_f = (levels[t + 1 :] * h[t + 1 :]).sum() / w_f
    return float(w_b * w_f * (mean_b - mean_f) ** 2)


def otsu_threshold(hist: np.ndarray) -> int:
    """
    Threshold maximising between-class variance over a 256-bin histogram.

    The first maximum wins; a histogram with a single populated bin has no
    split and yields DEFAULT_OTSU_THRESHOLD.
    """
    h = hist.astype(np.float64)
    levels = np.arange(256, dtype=np.float64)
    total = h.sum()
    sum_all = (levels * h).sum()

    w_b = np.cumsum(h)
    w_f = total - w_b
    sum_b = np.cumsum(levels * h)

    valid = (w_b > 0) & (w_f > 0)
    if not valid.any():
        return DEFAULT_OTSU_THRESHOLD

    with np.errstate(divide="ignore", invalid="ignore"):
        mean_b = np.where(valid, sum_b / w_b, 0.0)
        mean_f = np.where(valid, (sum_all - sum_b) / w_f, 0.0)
    variance = np.where(valid, w_b * w_f * (mean_b - mean_f) ** 2, -1.0)

    if variance.max() <= 0:
        return DEFAULT_OTSU_THRESHOLD
    return int(np.argmax(variance))


def binarize(gray: np.ndarray, threshold: int) -> np.ndarray:
    """Pixels above the threshold become white, the rest black."""
    return np.where(gray > threshold, WHITE, BLACK).astype(np.uint8)


def find_row_segments(
    binary: np.ndarray,
    min_black_pixels: int = 5,
    black_fraction: float = 0.005,
    min_height: int = 10,
) -> list[RowSegment]:
    """
    Text rows from the horizontal projection of a binary raster.

    A row is content when its black-pixel count exceeds
    ``max(min_black_pixels, width * black_fraction)``; contiguous content
    runs longer than ``min_height`` rows become segments.
    """
    height, width = binary.shape
    projection = (binary == BLACK).sum(axis=1)
    row_threshold = max(min_black_pixels, width * black_fraction)
    is_content = projection > row_threshold

    segments: list[RowSegment] = []
    start: int | None = None
    for y in range(height):
        if is_content[y] and start is None:
            start = y
        elif not is_content[y] and start is not None:
            if y - start > min_height:
                segments.append(RowSegment(start, y))
            start = None
    if start is not None and height - start > min_height:
        segments.append(RowSegment(start, height))
    return segments


def restitch_rows(binary: np.ndarray, segments: list[RowSegment], padding: int) -> np.ndarray:
    """Copy segments top-to-bottom onto a white raster, padded above, between and below."""
    width = binary.shape[1]
    out_height = padding + sum(seg.height + padding for seg in segments)
    out = np.full((out_height, width), WHITE, dtype=np.uint8)

    y = padding
    for seg in segments:
        out[y : y + seg.height] = binary[seg.start : seg.end]
        y += seg.height + padding
    return out


# =============================================================================
# PREPROCESSOR
# =============================================================================


@dataclass
class ImagePreprocessor:
    """
    Turn an image region into a clean binary raster for recognition.

    Example:
        >>> pre = ImagePreprocessor()
        >>> raster = pre.process(Image.open("table.png"))
        >>> raster.mode
        'L'
    """

    config: PreprocessConfig = field(default_factory=PreprocessConfig)

    def upscale(self, image: Image.Image) -> tuple[Image.Image, float]:
        """Bicubic upscale so the width reaches ``min_width``."""
        w, h = image.size
        if w >= self.config.min_width:
            return image, 1.0
        scale = self.config.min_width / w
        size = (round(w * scale), max(1, round(h * scale)))
        return image.resize(size, Image.Resampling.BICUBIC), scale

    def process(self, image: Image.Image) -> Image.Image:
        """Preprocess an image, returning only the re-stitched raster."""
        raster, _ = self.process_with_stats(image)
        return raster

    def process_with_stats(self, image: Image.Image) -> tuple[Image.Image, PreprocessStats]:
        """
        Run every stage and collect statistics.

        Raises:
            PreprocessingError: If the image is empty or a raster operation fails.
        """
        start_time = time.time()
        stats = PreprocessStats(source_size=image.size)
        if image.width == 0 or image.height == 0:
            raise PreprocessingError(f"Cannot preprocess an empty {image.size} image")

        cfg = self.config
        try:
            upscaled, stats.scale = self.upscale(image.convert("RGB"))
            rgb = np.asarray(upscaled)

            gray, _ = to_grayscale(rgb)
            stretched, stats.stretch_low, stats.stretch_high = contrast_stretch(
                gray, cfg.clip_percent
            )
            stats.threshold = otsu_threshold(histogram(stretched))
            binary = binarize(stretched, stats.threshold)

            segments = find_row_segments(
                binary,
                min_black_pixels=cfg.min_row_black_pixels,
                black_fraction=cfg.row_black_fraction,
                min_height=cfg.min_row_height,
            )
            stats.segments = len(segments)
            if segments:
                binary = restitch_rows(binary, segments, cfg.row_padding)
            else:
                logger.warning("No text rows found; passing the binarized image through")

            raster = Image.fromarray(binary)
        except (OSError, ValueError, MemoryError) as e:
            raise PreprocessingError(f"Image preprocessing failed: {e}") from e

        stats.output_size = raster.size
        stats.total_time_ms = (time.time() - start_time) * 1000
        logger.debug(
            "Preprocessed %s -> %s: stretch [%d, %d], threshold %d, %d rows",
            stats.source_size,
            stats.output_size,
            stats.stretch_low,
            stats.stretch_high,
            stats.threshold,
            stats.segments,
        )
        return raster, stats


def load_image(source: str | Path | Image.Image) -> Image.Image:
    """
    Open an image file (or pass a PIL image through) fully decoded.

    Raises:
        PreprocessingError: If the file cannot be read as an image.
    """
    if isinstance(source, Image.Image):
        return source
    try:
        with Image.open(source) as img:
            img.load()
            return img.copy()
    except (OSError, UnidentifiedImageError) as e:
        raise PreprocessingError(f"Could not read image from {source}: {e}") from e
