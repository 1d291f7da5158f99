"""
GradeScan: extract course grades from photos of university result tables.

Everything runs locally: the image is cropped to the results table,
cleaned into a row-separated binary raster, read by a text-recognition
engine, and the noisy text is matched against the semester's expected
course codes. Learned corrections make the matcher better over time.

Example:
    >>> import gradescan
    >>> pipeline = gradescan.create_pipeline(corrections_dir="data")
    >>> result = pipeline.process_image("results.jpg", ["23CS4401", "23CS4402"])
    >>> for code, grade in result.extracted.items():
    ...     print(code, grade)
"""

from gradescan.config import (
    AutoCropConfig,
    ExtractionConfig,
    PageSegmentationMode,
    PipelineConfig,
    PreprocessConfig,
    RecognitionConfig,
)
from gradescan.corrections import CorrectionNamespace, CorrectionSnapshot, CorrectionStore
from gradescan.exceptions import (
    ConfigurationError,
    CorrectionError,
    GradeScanError,
    InvalidTransitionError,
    PreprocessingError,
    RecognitionError,
)
from gradescan.imaging import AutoCropDetector, ImagePreprocessor
from gradescan.models import (
    ExtractionResult,
    ExtractionStatus,
    Grade,
    ImageOutcome,
    MatchStrategy,
    Rect,
)
from gradescan.ocr import (
    GradeExtractor,
    GradePipeline,
    TesseractEngine,
    TextRecognitionEngine,
    create_pipeline,
    extract_grades,
)
from gradescan.session import ImportSession, SessionState

__version__ = "0.1.0"
__all__ = [
    # Main API
    "create_pipeline",
    "extract_grades",
    "GradePipeline",
    "ImportSession",
    "SessionState",
    # Stages
    "AutoCropDetector",
    "ImagePreprocessor",
    "TextRecognitionEngine",
    "TesseractEngine",
    "GradeExtractor",
    # Corrections
    "CorrectionStore",
    "CorrectionSnapshot",
    "CorrectionNamespace",
    # Configuration
    "PipelineConfig",
    "AutoCropConfig",
    "PreprocessConfig",
    "RecognitionConfig",
    "ExtractionConfig",
    "PageSegmentationMode",
    # Models
    "Grade",
    "Rect",
    "ExtractionResult",
    "ExtractionStatus",
    "MatchStrategy",
    "ImageOutcome",
    # Exceptions
    "GradeScanError",
    "ConfigurationError",
    "PreprocessingError",
    "RecognitionError",
    "CorrectionError",
    "InvalidTransitionError",
]
