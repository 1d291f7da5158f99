"""
Data models for GradeScan.

These models are shared by the imaging stages, the extractor and the
orchestrator. Course codes are plain strings supplied by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from gradescan.exceptions import GradeScanError


class Grade(str, Enum):
    """The closed set of grade symbols a result table can contain."""

    O = "O"  # noqa: E741
    A_PLUS = "A+"
    A = "A"
    B_PLUS = "B+"
    B = "B"
    C = "C"
    U = "U"

    @classmethod
    def parse(cls, value: str | Grade) -> Grade:
        """
        Return the Grade for a symbol such as "A+" (case-insensitive).

        Raises:
            ValueError: If the value is not a grade symbol.
        """
        if isinstance(value, Grade):
            return value
        symbol = str(value).strip().upper()
        for grade in cls:
            if grade.value == symbol:
                return grade
        raise ValueError(f"{value!r} is not a valid grade")

    def __str__(self) -> str:
        return self.value


class ExtractionStatus(Enum):
    """Overall outcome of an extraction."""

    MATCHED = "matched"
    NO_MATCHES = "no_matches"
    NO_COURSES = "no_courses"


class MatchStrategy(Enum):
    """Which resolution strategy produced a course's grade."""

    SAME_LINE = "same_line"
    NEARBY_LINE = "nearby_line"
    TEXT_WINDOW = "text_window"


NO_COURSES_HINT = "No courses loaded. Please select a semester first, then try OCR."
NO_MATCHES_HINT = (
    "No grades matched. Ensure you have the correct semester loaded. "
    "Try cropping tighter (only the table), or upload a clearer screenshot."
)


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in source-image pixel coordinates."""

    x: int
    y: int
    width: int
    height: int

    @classmethod
    def full(cls, width: int, height: int) -> Rect:
        """Rectangle covering a whole image."""
        return cls(0, 0, width, height)

    @property
    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def clamp(self, width: int, height: int) -> Rect:
        """Clip the rectangle to an image of the given size."""
        x = min(max(0, self.x), width)
        y = min(max(0, self.y), height)
        right = min(max(x, self.right), width)
        bottom = min(max(y, self.bottom), height)
        return Rect(x, y, right - x, bottom - y)

    def to_box(self) -> tuple[int, int, int, int]:
        """(left, top, right, bottom) tuple as expected by PIL's Image.crop."""
        return (self.x, self.y, self.right, self.bottom)

    def to_dict(self) -> dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_string(cls, value: str) -> Rect:
        """Parse "x,y,width,height"."""
        parts = [p.strip() for p in value.split(",")]
        if len(parts) != 4:
            raise ValueError(f"Expected 'x,y,width,height', got {value!r}")
        x, y, width, height = (int(p) for p in parts)
        return cls(x, y, width, height)


@dataclass
class ExtractionResult:
    """
    Course-code to grade mapping recovered from recognized text.

    The mapping is partial: a course absent from ``extracted`` was not
    found. Keys are always a subset of the course codes that were asked for.

    Attributes:
        extracted: Course code -> Grade.
        raw_text: The recognized text the mapping came from.
        status: Overall outcome (matched, no matches, no courses).
        hint: User-facing message for the soft-failure outcomes.
        strategies: Which strategy resolved each course.
        passes: Page-segmentation modes run to produce this result.
    """

    extracted: dict[str, Grade] = field(default_factory=dict)
    raw_text: str = ""
    status: ExtractionStatus = ExtractionStatus.NO_MATCHES
    hint: str | None = None
    strategies: dict[str, MatchStrategy] = field(default_factory=dict)
    passes: list[str] = field(default_factory=list)

    @property
    def matches(self) -> int:
        return len(self.extracted)

    @property
    def no_courses(self) -> bool:
        return self.status is ExtractionStatus.NO_COURSES

    def to_dict(self) -> dict[str, Any]:
        """Serializable form using the caller-facing key names."""
        return {
            "extracted": {code: grade.value for code, grade in self.extracted.items()},
            "rawText": self.raw_text,
            "matches": self.matches,
            "status": self.status.value,
            "hint": self.hint,
            "strategies": {code: s.value for code, s in self.strategies.items()},
            "passes": list(self.passes),
        }


@dataclass
class ImageOutcome:
    """Outcome of one image in a batch: a result, or the error that stopped it."""

    source: str | Path
    result: ExtractionResult | None = None
    error: GradeScanError | None = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None

    @property
    def raw_text(self) -> str:
        if self.result is not None:
            return self.result.raw_text
        return getattr(self.error, "raw_text", "")

    @property
    def status(self) -> str:
        if self.error is not None:
            return "failed"
        return self.result.status.value if self.result else "failed"
