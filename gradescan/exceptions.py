"""
Exception classes for GradeScan.

All GradeScan exceptions inherit from GradeScanError,
making it easy to catch all library errors.

Example:
    >>> try:
    ...     result = pipeline.process_image("results.png", codes)
    ... except gradescan.RecognitionError as e:
    ...     print(e.hint)
    ... except gradescan.GradeScanError as e:
    ...     print(f"GradeScan error: {e}")
"""


class GradeScanError(Exception):
    """
    Base exception for all GradeScan errors.

    Catch this to handle any GradeScan-specific error.
    """

    pass


class ConfigurationError(GradeScanError):
    """
    Raised for invalid configuration.

    Example:
        >>> PreprocessConfig(min_width=0)
        ConfigurationError: min_width must be >= 1, got 0
    """

    pass


class PreprocessingError(GradeScanError):
    """
    Raised when an image cannot be turned into an OCR-ready raster.

    Fatal for the image being processed; other images in a batch
    continue.
    """

    pass


class RecognitionError(GradeScanError):
    """
    Raised when the text-recognition engine fails or returns nothing.

    Attributes:
        raw_text: Text recognized by any pass that completed before the failure.
        hint: User-facing suggestion for recovering.
    """

    DEFAULT_HINT = "OCR failed. Try a clearer or tighter-cropped screenshot of the table."

    def __init__(self, message: str, raw_text: str = "", hint: str | None = None) -> None:
        super().__init__(message)
        self.raw_text = raw_text
        self.hint = hint or self.DEFAULT_HINT


class CorrectionError(GradeScanError):
    """
    Raised for an invalid learned correction.

    Example:
        >>> store.upsert(CorrectionNamespace.GRADE, "AT", "Z")
        CorrectionError: 'Z' is not a valid grade
    """

    pass


class InvalidTransitionError(GradeScanError):
    """Raised when an ImportSession action is not allowed in its current state."""

    pass
