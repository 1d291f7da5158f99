"""
Recognition and grade matching for result-table images.

- TextRecognitionEngine / TesseractEngine: raster -> raw text
- GradeExtractor: raw text -> course code -> grade mapping
- GradePipeline: crop -> preprocess -> recognize -> extract, with a
  sparse-text retry when the first pass matches too few courses

Example:
    >>> from gradescan.ocr import GradeExtractor
    >>> GradeExtractor().extract("23CS4401 DATA STRUCTURES A+ PASS", ["23CS4401"]).extracted
    {'23CS4401': <Grade.A_PLUS: 'A+'>}
"""

from gradescan.ocr.engine import TesseractEngine, TextRecognitionEngine
from gradescan.ocr.extractor import (
    CONFUSABLE_CLASSES,
    GRADE_PATTERNS,
    GradeExtractor,
    course_code_pattern,
    extract_grades,
    normalize_text,
)
from gradescan.ocr.pipeline import (
    GradePipeline,
    create_pipeline,
    merge_passes,
    needs_fallback,
)

__all__ = [
    # Pipeline
    "GradePipeline",
    "create_pipeline",
    "merge_passes",
    "needs_fallback",
    # Engine
    "TextRecognitionEngine",
    "TesseractEngine",
    # Extraction
    "GradeExtractor",
    "extract_grades",
    "normalize_text",
    "course_code_pattern",
    "CONFUSABLE_CLASSES",
    "GRADE_PATTERNS",
]
