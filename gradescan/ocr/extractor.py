"""
Map noisy recognized text onto known course codes and grades.

Course codes are short alphanumeric strings that OCR mangles in
predictable ways: "23CS4401" comes back as "23C54401", "23 CS 4401" or
"Z3CS44O1". Each expected code is therefore matched with a fuzzy regex
in which every character accepts its visually confusable siblings and
short runs of punctuation/whitespace noise are tolerated between
characters.

Once a course is located, its grade is searched for with three
strategies, stopping at the first hit:
1. Same line: the grade column is on the course's row.
2. Nearby lines: the row was split by the engine; check +1, -1, +2, -2.
3. Text window: the 100 characters following the first match anywhere
   in the text (the grade column sits to the right).

Within a line, tokens are scanned right-to-left because the grade column
is normally rightmost, and grade patterns are ordered so that "A+" is
never taken for "A".
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from functools import lru_cache

from gradescan.config import ExtractionConfig
from gradescan.corrections import CorrectionSnapshot
from gradescan.models import (
    NO_COURSES_HINT,
    NO_MATCHES_HINT,
    ExtractionResult,
    ExtractionStatus,
    Grade,
    MatchStrategy,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Characters OCR swaps for each other, keyed on the expected character
CONFUSABLE_CLASSES: dict[str, str] = {
    "0": "0OQD",
    "1": "1IL|!",
    "2": "2Z",
    "3": "3E58",
    "4": "4A1",  # 4 is often read as 1 or A
    "5": "5S",
    "6": "6Gb",
    "7": "7T",
    "8": "8B",
    "9": "9gq",
    "A": "A4",
    "B": "B8",
    "C": "C(",
    "D": "D0O",
    "E": "E3",
    "G": "G6",
    "I": "I1L|",
    "L": "L1I|",
    "O": "O0QD",
    "P": "P",
    "Q": "Q0O",
    "S": "S5$",
    "T": "T7",
    "U": "UHV",
    "X": "Xx*",
    "Z": "Z2",
}

# Status columns that share a row with the grade
STATUS_TOKENS = frozenset({"PASS", "FAIL", "ABSENT", "RA", "WH", "SA", "W"})

# Longer/more specific patterns first: A+ before A, B+ before B
GRADE_PATTERNS: list[tuple[Grade, re.Pattern[str]]] = [
    (Grade.A_PLUS, re.compile(r"A\s*[+＋]")),
    (Grade.O, re.compile(r"\bO\b")),
    (Grade.A, re.compile(r"\bA\b")),
    (Grade.B_PLUS, re.compile(r"B\s*[+＋]")),
    (Grade.B, re.compile(r"\bB\b")),
    (Grade.C, re.compile(r"\bC\b")),
    (Grade.U, re.compile(r"\bU\b")),
]

# OCR repairs applied after uppercasing
STRAY_BRACKETS = re.compile(r"[|\[\]{}]")
# Only a standalone A/B: DATA or BAT must not turn into grades
PLUS_GRADE = re.compile(r"(?<![A-Z0-9+])([AB])(?:\s*[+＋]|[*1T])(?![A-Z0-9])")
LONE_ZERO = re.compile(r"\b0\b")


# =============================================================================
# TEXT NORMALIZATION
# =============================================================================


def normalize_text(text: str, course_corrections: Mapping[str, str] | None = None) -> str:
    """
    Uppercase raw OCR text and repair common mis-reads.

    Learned course-code corrections are applied as literal substring
    replacements, then: stray brackets/pipes become spaces, "A"/"B"
    followed by a plus-like glyph become "A+"/"B+", and a lone "0"
    becomes the grade "O".

    Example:
        >>> normalize_text("23cs4401 data structures At pass")
        '23CS4401 DATA STRUCTURES A+ PASS'
    """
    out = (text or "").upper()
    for bad, good in (course_corrections or {}).items():
        if bad:
            out = out.replace(bad.upper(), good)
    out = STRAY_BRACKETS.sub(" ", out)
    out = PLUS_GRADE.sub(r"\1+", out)
    return LONE_ZERO.sub("O", out)


def char_class(ch: str) -> str:
    """Regex fragment matching ``ch`` or any of its confusable characters."""
    c = ch.upper()
    members = CONFUSABLE_CLASSES.get(c)
    if members is None:
        return re.escape(c)
    return "[" + "".join(re.escape(m) for m in members) + "]"


@lru_cache(maxsize=1024)
def course_code_pattern(course_code: str, max_gap: int = 4) -> re.Pattern[str]:
    """
    Fuzzy regex for a course code.

    Every character becomes its confusable class, and up to ``max_gap``
    non-alphanumeric characters may separate adjacent characters.

    Example:
        >>> bool(course_code_pattern("23CS4401").search("23 C5 44O1"))
        True
    """
    chars = [char_class(ch) for ch in course_code if not ch.isspace()]
    gap = f"[^A-Z0-9]{{0,{max_gap}}}"
    return re.compile(gap.join(chars), re.IGNORECASE)


def match_grade(text: str) -> Grade | None:
    """First grade pattern (in priority order) found anywhere in ``text``."""
    for grade, pattern in GRADE_PATTERNS:
        if pattern.search(text):
            return grade
    return None


# =============================================================================
# EXTRACTOR
# =============================================================================


@dataclass
class GradeExtractor:
    """
    Resolve course codes to grades in recognized text.

    The extractor is pure: learned corrections come in as a snapshot
    argument and nothing is cached between calls except compiled regexes.

    Example:
        >>> extractor = GradeExtractor()
        >>> result = extractor.extract("23CS4401 DATA STRUCTURES A+ PASS", ["23CS4401"])
        >>> result.extracted
        {'23CS4401': <Grade.A_PLUS: 'A+'>}
    """

    config: ExtractionConfig = field(default_factory=ExtractionConfig)

    def grade_from_line(
        self, line: str, corrections: CorrectionSnapshot | None = None
    ) -> Grade | None:
        """
        Grade on a single normalized line, scanning tokens right-to-left.

        A learned grade correction for a token wins outright; status
        tokens are skipped; only short tokens are tested against the
        grade patterns.
        """
        grade_corrections = corrections.grades if corrections else {}
        for token in reversed(line.split()):
            learned = grade_corrections.get(token)
            if learned is not None:
                return learned
            if token in STATUS_TOKENS:
                continue
            if len(token) > self.config.max_grade_token_length:
                continue
            grade = match_grade(token)
            if grade is not None:
                return grade
        return None

    def resolve(
        self,
        course_code: str,
        normalized: str,
        lines: list[str],
        corrections: CorrectionSnapshot | None = None,
    ) -> tuple[Grade, MatchStrategy] | None:
        """Find one course's grade in pre-normalized text."""
        pattern = course_code_pattern(course_code, self.config.max_gap)

        for i, line in enumerate(lines):
            if not pattern.search(line):
                continue

            grade = self.grade_from_line(line, corrections)
            if grade is not None:
                return grade, MatchStrategy.SAME_LINE

            for offset in self.config.nearby_offsets:
                j = i + offset
                if 0 <= j < len(lines):
                    grade = self.grade_from_line(lines[j], corrections)
                    if grade is not None:
                        return grade, MatchStrategy.NEARBY_LINE

        match = pattern.search(normalized)
        if match:
            window = normalized[match.end() : match.end() + self.config.text_window]
            grade = match_grade(window)
            if grade is not None:
                return grade, MatchStrategy.TEXT_WINDOW
        return None

    def extract(
        self,
        text: str,
        course_codes: Iterable[str],
        corrections: CorrectionSnapshot | None = None,
    ) -> ExtractionResult:
        """
        Extract grades for the expected course codes.

        Args:
            text: Raw recognized text.
            course_codes: Expected codes for the semester; duplicates are ignored.
            corrections: Learned corrections to apply.

        Returns:
            ExtractionResult. An empty code list gives status NO_COURSES and
            no matches gives NO_MATCHES; neither raises.
        """
        corrections = corrections or CorrectionSnapshot.empty()
        codes = [c for c in dict.fromkeys(course_codes) if c and c.strip()]

        if not codes:
            logger.info("No course codes supplied; nothing to extract")
            return ExtractionResult(
                raw_text=text or "",
                status=ExtractionStatus.NO_COURSES,
                hint=NO_COURSES_HINT,
            )

        normalized = normalize_text(text, corrections.course_codes)
        lines = [line for line in normalized.splitlines() if line.strip()]

        result = ExtractionResult(raw_text=text or "")
        for code in codes:
            resolved = self.resolve(code, normalized, lines, corrections)
            if resolved is None:
                logger.debug("No grade found for %s", code)
                continue
            grade, strategy = resolved
            result.extracted[code] = grade
            result.strategies[code] = strategy
            logger.debug("%s -> %s (%s)", code, grade.value, strategy.value)

        if result.extracted:
            result.status = ExtractionStatus.MATCHED
        else:
            result.hint = NO_MATCHES_HINT

        logger.info(
            "Matched %d/%d courses (corrections v%d)",
            result.matches,
            len(codes),
            corrections.version,
        )
        return result


def extract_grades(
    text: str,
    course_codes: Iterable[str],
    corrections: CorrectionSnapshot | None = None,
) -> ExtractionResult:
    """Extract grades with the default configuration."""
    return GradeExtractor().extract(text, course_codes, corrections)
