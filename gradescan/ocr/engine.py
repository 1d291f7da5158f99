"""
Text-recognition engine boundary.

The pipeline treats recognition as an opaque capability:
``recognize(raster, config) -> text``. Any object with that method can be
plugged in (a remote service, a stub in tests). TesseractEngine is the
default implementation, backed by pytesseract.

Each call is independent and stateless, so the same raster can be
recognized twice with different page-segmentation modes.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from PIL import Image

from gradescan.config import RecognitionConfig
from gradescan.exceptions import RecognitionError

logger = logging.getLogger(__name__)


# =============================================================================
# ENGINE PROTOCOL
# =============================================================================


@runtime_checkable
class TextRecognitionEngine(Protocol):
    """Anything that turns a raster into text under a RecognitionConfig."""

    def recognize(self, image: Image.Image, config: RecognitionConfig) -> str: ...


# =============================================================================
# ENGINE DETECTION
# =============================================================================


def _check_tesseract_available() -> bool:
    """Check if Tesseract is installed and usable."""
    try:
        import pytesseract

        pytesseract.get_tesseract_version()
        return True
    except ImportError:
        logger.debug("pytesseract not installed")
        return False
    except pytesseract.TesseractNotFoundError:
        logger.debug("Tesseract binary not found")
        return False


def tesseract_args(config: RecognitionConfig) -> str:
    """Command-line options for a recognition pass."""
    whitelist = shlex.quote(f"tessedit_char_whitelist={config.character_whitelist}")
    return f"--psm {config.page_segmentation_mode.tesseract_psm} -c {whitelist}"


# =============================================================================
# TESSERACT ENGINE
# =============================================================================


@dataclass
class TesseractEngine:
    """
    Recognition through the Tesseract binary via pytesseract.

    Attributes:
        tesseract_cmd: Optional path to the tesseract executable.

    Example:
        >>> engine = TesseractEngine()
        >>> text = engine.recognize(raster, RecognitionConfig())
    """

    tesseract_cmd: str | None = None
    _available: bool = field(default=False, repr=False)

    def __post_init__(self) -> None:
        """Point pytesseract at the binary and probe it."""
        if self.tesseract_cmd:
            import pytesseract

            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd
        self._available = _check_tesseract_available()
        if not self._available:
            logger.warning("Tesseract is not available. Install tesseract-ocr and pytesseract.")

    @property
    def is_available(self) -> bool:
        return self._available

    def recognize(self, image: Image.Image, config: RecognitionConfig) -> str:
        """
        Recognize text in a raster.

        Raises:
            RecognitionError: If Tesseract is missing or fails.
        """
        if not self._available:
            raise RecognitionError("Tesseract OCR engine is not available")

        import pytesseract

        args = tesseract_args(config)
        logger.debug("Running tesseract %s", args)
        try:
            return pytesseract.image_to_string(
                image,
                lang=config.language,
                config=args,
                timeout=config.timeout,
            )
        except pytesseract.TesseractError as e:
            raise RecognitionError(f"Tesseract failed: {e}") from e
        except RuntimeError as e:
            # pytesseract signals timeouts with a bare RuntimeError
            raise RecognitionError(f"Tesseract timed out: {e}") from e

    def get_engine_info(self) -> dict[str, object]:
        """Get information about the engine."""
        info: dict[str, object] = {"engine": "tesseract", "available": self._available}
        if self._available:
            import pytesseract

            info["version"] = str(pytesseract.get_tesseract_version())
        return info
