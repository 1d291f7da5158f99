"""
Image stages of the grade-extraction pipeline.

- AutoCropDetector: locates the ruled results table in a photo
- ImagePreprocessor: upscale, grayscale, contrast stretch, Otsu binarization
  and row re-stitching for line-oriented recognition

Example:
    >>> from gradescan.imaging import AutoCropDetector, ImagePreprocessor
    >>> rect = AutoCropDetector().detect(image)
    >>> raster = ImagePreprocessor().process(image.crop(rect.to_box()))
"""

from gradescan.imaging.autocrop import AutoCropDetector
from gradescan.imaging.preprocess import (
    ImagePreprocessor,
    PreprocessStats,
    RowSegment,
    binarize,
    contrast_stretch,
    find_row_segments,
    load_image,
    otsu_threshold,
    restitch_rows,
    to_grayscale,
)

__all__ = [
    "AutoCropDetector",
    "ImagePreprocessor",
    "PreprocessStats",
    "RowSegment",
    "binarize",
    "contrast_stretch",
    "find_row_segments",
    "load_image",
    "otsu_threshold",
    "restitch_rows",
    "to_grayscale",
]
