"""
Grade-extraction pipeline orchestrator.

Sequences the stages for one image:
1. AutoCropDetector (optional): find the results table
2. ImagePreprocessor: binary, row-separated raster
3. TextRecognitionEngine: "single-block" pass, plus a "sparse-text"
   pass when the first one matched fewer than half the courses
4. GradeExtractor: course code -> grade mapping

Images in a batch are processed strictly one after another so only one
raster is held in memory at a time, and one image's failure never stops
the rest of the batch.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from PIL import Image

from gradescan.config import PageSegmentationMode, PipelineConfig
from gradescan.corrections import CorrectionSnapshot, CorrectionStore
from gradescan.exceptions import GradeScanError, RecognitionError
from gradescan.imaging.autocrop import AutoCropDetector
from gradescan.imaging.preprocess import ImagePreprocessor, load_image
from gradescan.models import (
    NO_COURSES_HINT,
    ExtractionResult,
    ExtractionStatus,
    ImageOutcome,
    Rect,
)
from gradescan.ocr.engine import TesseractEngine, TextRecognitionEngine
from gradescan.ocr.extractor import GradeExtractor

logger = logging.getLogger(__name__)

ImageSource = str | Path | Image.Image


def needs_fallback(result: ExtractionResult, course_count: int, ratio: float = 0.5) -> bool:
    """True when a pass matched fewer than ``ceil(course_count * ratio)`` courses."""
    return result.matches < math.ceil(course_count * ratio)


def merge_passes(first: ExtractionResult, second: ExtractionResult) -> ExtractionResult:
    """
    Combine two recognition passes over the same raster.

    The second pass wins outright only with strictly more matches;
    otherwise the first pass is kept and the courses it missed are filled
    in from the second.
    """
    passes = first.passes + second.passes
    if second.matches > first.matches:
        merged = ExtractionResult(
            extracted=dict(second.extracted),
            raw_text=second.raw_text,
            strategies=dict(second.strategies),
        )
    else:
        merged = ExtractionResult(
            extracted=dict(first.extracted),
            raw_text=first.raw_text,
            strategies=dict(first.strategies),
        )
        for code, grade in second.extracted.items():
            if code not in merged.extracted:
                merged.extracted[code] = grade
                merged.strategies[code] = second.strategies[code]

    merged.passes = passes
    if merged.extracted:
        merged.status = ExtractionStatus.MATCHED
    else:
        merged.status = ExtractionStatus.NO_MATCHES
        merged.hint = first.hint or second.hint
    return merged


@dataclass
class GradePipeline:
    """
    End-to-end grade extraction from result-table images.

    Attributes:
        engine: Recognition engine; defaults to TesseractEngine.
        config: Pipeline configuration.
        corrections: Learned corrections; a snapshot is taken per image
            (or once per batch).

    Example:
        >>> pipeline = GradePipeline(corrections=CorrectionStore.load("data"))
        >>> result = pipeline.process_image("results.jpg", ["23CS4401", "23CS4402"])
        >>> result.extracted
        {'23CS4401': <Grade.A_PLUS: 'A+'>, '23CS4402': <Grade.B: 'B'>}
    """

    engine: TextRecognitionEngine | None = None
    config: PipelineConfig = field(default_factory=PipelineConfig)
    corrections: CorrectionStore = field(default_factory=CorrectionStore)
    detector: AutoCropDetector | None = field(default=None)
    preprocessor: ImagePreprocessor | None = field(default=None)
    extractor: GradeExtractor | None = field(default=None)

    def __post_init__(self) -> None:
        """Initialize pipeline components."""
        if self.engine is None:
            self.engine = TesseractEngine()
        if self.detector is None:
            self.detector = AutoCropDetector(self.config.autocrop)
        if self.preprocessor is None:
            self.preprocessor = ImagePreprocessor(self.config.preprocess)
        if self.extractor is None:
            self.extractor = GradeExtractor(self.config.extraction)

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def crop(self, image: Image.Image, rect: Rect | None = None) -> Image.Image:
        """Crop to ``rect``, or to the auto-detected table when enabled."""
        if rect is None:
            if not self.config.autocrop.enabled:
                return image
            rect = self.detector.detect(image)

        rect = rect.clamp(image.width, image.height)
        if not rect.is_valid:
            logger.debug("Ignoring degenerate crop %s", rect)
            return image
        if rect == Rect.full(image.width, image.height):
            return image
        return image.crop(rect.to_box())

    def recognize(self, raster: Image.Image, mode: PageSegmentationMode) -> str:
        """
        Run one recognition pass.

        Raises:
            RecognitionError: If the engine raises.
        """
        config = self.config.recognition.with_mode(mode)
        try:
            text = self.engine.recognize(raster, config)
        except RecognitionError:
            raise
        except Exception as e:
            raise RecognitionError(f"Recognition engine failed: {e}") from e
        logger.debug("Pass %s recognized %d characters", mode.value, len(text or ""))
        return text or ""

    def extract_from_raster(
        self,
        raster: Image.Image,
        course_codes: Sequence[str],
        snapshot: CorrectionSnapshot,
    ) -> ExtractionResult:
        """
        Recognize and extract with the two-pass fallback policy.

        Raises:
            RecognitionError: If the engine fails, or every pass returns no text.
        """
        first_mode = self.config.recognition.page_segmentation_mode
        text1 = self.recognize(raster, first_mode)
        result = self.extractor.extract(text1, course_codes, snapshot)
        result.passes = [first_mode.value]

        course_count = len(set(course_codes))
        texts = [text1]
        if (
            self.config.enable_fallback
            and self.config.fallback_mode is not first_mode
            and needs_fallback(result, course_count, self.config.fallback_ratio)
        ):
            logger.info(
                "Pass 1 matched %d/%d courses; retrying with %s",
                result.matches,
                course_count,
                self.config.fallback_mode.value,
            )
            try:
                text2 = self.recognize(raster, self.config.fallback_mode)
            except RecognitionError as e:
                e.raw_text = e.raw_text or text1
                raise
            texts.append(text2)
            second = self.extractor.extract(text2, course_codes, snapshot)
            second.passes = [self.config.fallback_mode.value]
            result = merge_passes(result, second)

        if not any(t.strip() for t in texts):
            raise RecognitionError("Recognition returned no text")
        return result

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def process_image(
        self,
        image: ImageSource,
        course_codes: Sequence[str],
        crop: Rect | None = None,
        snapshot: CorrectionSnapshot | None = None,
    ) -> ExtractionResult:
        """
        Extract grades from one image.

        Args:
            image: Path or PIL image.
            course_codes: Expected course codes.
            crop: Explicit table bounds; auto-detected when None.
            snapshot: Correction snapshot; taken from the store when None.

        Raises:
            PreprocessingError: If the image cannot be read or preprocessed.
            RecognitionError: If recognition fails.
        """
        codes = [c for c in course_codes if c and c.strip()]
        if not codes:
            logger.warning("No course codes supplied; skipping recognition")
            return ExtractionResult(status=ExtractionStatus.NO_COURSES, hint=NO_COURSES_HINT)

        snapshot = snapshot or self.corrections.snapshot()
        source = load_image(image)
        region = self.crop(source, crop)
        raster = self.preprocessor.process(region)
        del source, region

        if self.config.debug_dir is not None:
            self._save_debug_raster(raster, image)

        return self.extract_from_raster(raster, codes, snapshot)

    def process_batch(
        self,
        images: Iterable[ImageSource],
        course_codes: Sequence[str],
        crops: dict[Any, Rect] | None = None,
    ) -> Iterator[ImageOutcome]:
        """
        Process images one at a time, yielding an outcome per image.

        The correction snapshot is taken once, so a whole batch sees the
        same corrections. Failures are recorded on the outcome and the
        batch continues.
        """
        snapshot = self.corrections.snapshot()
        crops = crops or {}

        for image in images:
            name = image if not isinstance(image, Image.Image) else getattr(image, "filename", "")
            start_time = time.time()
            outcome = ImageOutcome(source=name or "<image>")
            try:
                outcome.result = self.process_image(
                    image, course_codes, crop=crops.get(name), snapshot=snapshot
                )
            except GradeScanError as e:
                logger.warning("Failed to process %s: %s", outcome.source, e)
                outcome.error = e
            outcome.elapsed_ms = (time.time() - start_time) * 1000
            yield outcome

    def _save_debug_raster(self, raster: Image.Image, image: ImageSource) -> None:
        debug_dir = self.config.debug_dir
        stem = Path(image).stem if isinstance(image, str | Path) else f"image-{id(image):x}"
        path = debug_dir / f"{stem}.preprocessed.png"
        try:
            debug_dir.mkdir(parents=True, exist_ok=True)
            raster.save(path)
            logger.debug("Saved preprocessed raster to %s", path)
        except OSError as e:
            logger.warning("Could not save debug image to %s: %s", path, e)

    def get_info(self) -> dict[str, Any]:
        """Get pipeline configuration information."""
        info_fn = getattr(self.engine, "get_engine_info", None)
        return {
            "engine": info_fn() if info_fn else type(self.engine).__name__,
            "recognition": self.config.recognition.to_dict(),
            "fallback_mode": (
                self.config.fallback_mode.value if self.config.enable_fallback else None
            ),
            "auto_crop": self.config.autocrop.enabled,
            "corrections": len(self.corrections),
            "corrections_version": self.corrections.version,
        }


def create_pipeline(
    corrections_dir: Path | None = None,
    engine: TextRecognitionEngine | None = None,
    config: PipelineConfig | None = None,
) -> GradePipeline:
    """
    Create a pipeline with default configuration.

    Args:
        corrections_dir: Directory holding learned correction files.
        engine: Recognition engine; Tesseract when None.
        config: Pipeline configuration.

    Returns:
        Configured GradePipeline instance.
    """
    store = CorrectionStore.load(corrections_dir) if corrections_dir else CorrectionStore()
    return GradePipeline(engine=engine, config=config or PipelineConfig(), corrections=store)
