"""
Configuration for the GradeScan pipeline.

Every heuristic constant of the imaging and matching stages is exposed
here with the default the pipeline was tuned with. Create a config only
if you need to change behavior.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from gradescan.exceptions import ConfigurationError

DEFAULT_CHARACTER_WHITELIST = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+. "
)


class PageSegmentationMode(Enum):
    """Layout assumption handed to the recognition engine."""

    SINGLE_BLOCK = "single-block"
    SPARSE_TEXT = "sparse-text"

    @property
    def tesseract_psm(self) -> int:
        return {"single-block": 6, "sparse-text": 11}[self.value]


@dataclass
class AutoCropConfig:
    """
    Tunables for locating the results table inside a photo.

    Example:
        >>> AutoCropConfig(analysis_width=600, min_size=80)
    """

    enabled: bool = True
    analysis_width: int = 800  # Analysis runs on a downscaled copy
    noise_floor: int = 15  # Gradient magnitudes at or below this are ignored
    line_strength: int = 20  # Mean edge strength a gridline must exceed
    line_gap: int = 5  # Candidate rows closer than this are one line
    padding: int = 10  # Added around the detected table, source pixels
    min_size: int = 100  # Smaller crops are rejected as broken detections

    def __post_init__(self) -> None:
        """Validate configuration."""
        for name in ("analysis_width", "line_strength", "min_size"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1, got {getattr(self, name)}")
        for name in ("noise_floor", "line_gap", "padding"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {getattr(self, name)}")


@dataclass
class PreprocessConfig:
    """Tunables for turning a region into an OCR-ready binary raster."""

    min_width: int = 2500  # Narrower images are upscaled to this width
    clip_percent: float = 0.01  # Fraction clipped at each end by the contrast stretch
    min_row_black_pixels: int = 5
    row_black_fraction: float = 0.005  # Fraction of width that must be black for a text row
    min_row_height: int = 10  # Shorter runs are noise
    row_padding: int = 60  # White rows inserted around every segment

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.min_width < 1:
            raise ConfigurationError(f"min_width must be >= 1, got {self.min_width}")
        if not 0.0 <= self.clip_percent < 0.5:
            raise ConfigurationError(
                f"clip_percent must be between 0.0 and 0.5, got {self.clip_percent}"
            )
        if not 0.0 <= self.row_black_fraction <= 1.0:
            raise ConfigurationError(
                f"row_black_fraction must be between 0.0 and 1.0, got {self.row_black_fraction}"
            )
        if self.min_row_height < 0 or self.row_padding < 0:
            raise ConfigurationError("min_row_height and row_padding must be >= 0")


@dataclass
class RecognitionConfig:
    """
    Options passed to the text-recognition engine for one pass.

    Example:
        >>> RecognitionConfig(page_segmentation_mode=PageSegmentationMode.SPARSE_TEXT)
    """

    page_segmentation_mode: PageSegmentationMode = PageSegmentationMode.SINGLE_BLOCK
    character_whitelist: str = DEFAULT_CHARACTER_WHITELIST
    language: str = "eng"
    timeout: float = 0  # Seconds; 0 disables, passed through to the engine

    def __post_init__(self) -> None:
        """Validate configuration."""
        if isinstance(self.page_segmentation_mode, str):
            try:
                self.page_segmentation_mode = PageSegmentationMode(self.page_segmentation_mode)
            except ValueError:
                valid = tuple(m.value for m in PageSegmentationMode)
                raise ConfigurationError(
                    f"page_segmentation_mode must be one of {valid}, "
                    f"got {self.page_segmentation_mode!r}"
                ) from None
        if self.timeout < 0:
            raise ConfigurationError(f"timeout must be >= 0, got {self.timeout}")

    def with_mode(self, mode: PageSegmentationMode) -> RecognitionConfig:
        """Copy of this config with a different page-segmentation mode."""
        return RecognitionConfig(
            page_segmentation_mode=mode,
            character_whitelist=self.character_whitelist,
            language=self.language,
            timeout=self.timeout,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pageSegmentationMode": self.page_segmentation_mode.value,
            "characterWhitelist": self.character_whitelist,
        }


@dataclass
class ExtractionConfig:
    """Heuristic constants of the course/grade matcher."""

    nearby_offsets: tuple[int, ...] = (1, -1, 2, -2)
    text_window: int = 100  # Characters scanned after a match in the full-text fallback
    max_gap: int = 4  # Noise characters tolerated between course-code characters
    max_grade_token_length: int = 4

    def __post_init__(self) -> None:
        """Validate configuration."""
        self.nearby_offsets = tuple(self.nearby_offsets)
        if 0 in self.nearby_offsets:
            raise ConfigurationError("nearby_offsets must not contain 0 (the matching line)")
        if self.text_window < 0:
            raise ConfigurationError(f"text_window must be >= 0, got {self.text_window}")
        if self.max_gap < 0:
            raise ConfigurationError(f"max_gap must be >= 0, got {self.max_gap}")
        if self.max_grade_token_length < 1:
            raise ConfigurationError(
                f"max_grade_token_length must be >= 1, got {self.max_grade_token_length}"
            )


@dataclass
class PipelineConfig:
    """
    Configuration for the whole crop -> preprocess -> recognize -> extract run.

    Example:
        >>> config = PipelineConfig(
        ...     autocrop=AutoCropConfig(enabled=False),
        ...     debug_dir=Path("debug"),
        ... )
        >>> pipeline = GradePipeline(config=config)
    """

    autocrop: AutoCropConfig = field(default_factory=AutoCropConfig)
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    recognition: RecognitionConfig = field(default_factory=RecognitionConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)

    # Second pass runs when the first matched fewer than this fraction of courses
    fallback_ratio: float = 0.5
    enable_fallback: bool = True
    fallback_mode: PageSegmentationMode = PageSegmentationMode.SPARSE_TEXT

    # Save each preprocessed raster here for inspection
    debug_dir: Path | None = None

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not 0.0 <= self.fallback_ratio <= 1.0:
            raise ConfigurationError(
                f"fallback_ratio must be between 0.0 and 1.0, got {self.fallback_ratio}"
            )
        if self.debug_dir is not None:
            self.debug_dir = Path(self.debug_dir)
