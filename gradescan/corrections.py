"""
Learned OCR corrections.

Users teach the extractor how their screenshots tend to be mis-read: a
course code such as "23CS4401" that keeps coming out as "23C54401", or a
grade cell recognized as "AT". Corrections live in two disjoint
namespaces because course-code fragments and grade symbols collide.

The extractor never reads the store directly. It is handed an immutable,
versioned CorrectionSnapshot, so a batch sees one consistent view while
training continues to write to the store.

On disk each namespace is one flat JSON object of uppercase keys to
string values:
    ocr-corrections.json     {"23C54401": "23CS4401"}
    grade-corrections.json   {"AT": "A+"}
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType

from gradescan.exceptions import CorrectionError
from gradescan.models import Grade

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

COURSE_CORRECTIONS_FILE = "ocr-corrections.json"
GRADE_CORRECTIONS_FILE = "grade-corrections.json"


class CorrectionNamespace(Enum):
    """The two independent correction tables."""

    COURSE = "course"
    GRADE = "grade"

    @property
    def filename(self) -> str:
        if self is CorrectionNamespace.COURSE:
            return COURSE_CORRECTIONS_FILE
        return GRADE_CORRECTIONS_FILE


def normalize_token(token: str) -> str:
    """Corrections are keyed on the uppercased, trimmed mis-read."""
    return str(token).strip().upper()


# =============================================================================
# SNAPSHOT
# =============================================================================


@dataclass(frozen=True)
class CorrectionSnapshot:
    """
    Read-only view of both namespaces at one store version.

    Example:
        >>> snap = CorrectionSnapshot.from_mappings(course={"23C54401": "23CS4401"})
        >>> snap.course_codes["23C54401"]
        '23CS4401'
    """

    version: int = 0
    course_codes: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    grades: Mapping[str, Grade] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def empty(cls) -> CorrectionSnapshot:
        return cls()

    @classmethod
    def from_mappings(
        cls,
        course: Mapping[str, str] | None = None,
        grade: Mapping[str, str | Grade] | None = None,
        version: int = 0,
    ) -> CorrectionSnapshot:
        """Build a snapshot from plain dicts, normalizing keys and grade values."""
        return cls(
            version=version,
            course_codes=MappingProxyType(
                {normalize_token(k): str(v) for k, v in (course or {}).items()}
            ),
            grades=MappingProxyType(
                {normalize_token(k): Grade.parse(v) for k, v in (grade or {}).items()}
            ),
        )

    def grade_for(self, token: str) -> Grade | None:
        return self.grades.get(token)


# =============================================================================
# STORE
# =============================================================================


@dataclass
class CorrectionStore:
    """
    Mutable key-value store of learned corrections.

    Reads are namespace-scoped; a write is visible to the next read and to
    the next snapshot in the same process. Persistence is optional.

    Attributes:
        persistence_path: Directory holding the two JSON files.
        version: Incremented on every write.

    Example:
        >>> store = CorrectionStore()
        >>> store.upsert(CorrectionNamespace.COURSE, "23c54401", "23CS4401")
        >>> store.get(CorrectionNamespace.COURSE, "23C54401")
        '23CS4401'
    """

    persistence_path: Path | None = None
    version: int = 0
    _tables: dict[CorrectionNamespace, dict[str, str]] = field(
        default_factory=lambda: {ns: {} for ns in CorrectionNamespace}, repr=False
    )

    def __post_init__(self) -> None:
        """Load persisted corrections."""
        if self.persistence_path is not None:
            self.persistence_path = Path(self.persistence_path)
            if self.persistence_path.exists():
                self._load()

    @classmethod
    def load(cls, directory: str | Path) -> CorrectionStore:
        """Create a store backed by the correction files in ``directory``."""
        return cls(persistence_path=Path(directory))

    def _load(self) -> None:
        for ns in CorrectionNamespace:
            path = self.persistence_path / ns.filename
            if not path.exists():
                continue
            try:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Failed to load %s corrections from %s: %s", ns.value, path, e)
                continue
            if not isinstance(data, dict):
                logger.warning("Ignoring %s: expected a JSON object", path)
                continue

            table = self._tables[ns]
            for token, correction in data.items():
                if ns is CorrectionNamespace.GRADE:
                    try:
                        correction = Grade.parse(correction).value
                    except ValueError:
                        logger.warning("Skipping grade correction %r -> %r", token, correction)
                        continue
                table[normalize_token(token)] = str(correction)
            logger.info("Loaded %d %s corrections from %s", len(table), ns.value, path)

    @staticmethod
    def _namespace(namespace: CorrectionNamespace | str) -> CorrectionNamespace:
        try:
            return CorrectionNamespace(namespace)
        except ValueError:
            raise CorrectionError(f"Unknown correction namespace {namespace!r}") from None

    def get(self, namespace: CorrectionNamespace | str, token: str) -> str | None:
        """Correction for a mis-read token, or None."""
        return self._tables[self._namespace(namespace)].get(normalize_token(token))

    def upsert(
        self, namespace: CorrectionNamespace | str, token: str, correction: str | Grade
    ) -> None:
        """
        Insert or replace a correction.

        Raises:
            CorrectionError: If the token is empty, or a grade correction is
                not one of the grade symbols.
        """
        ns = self._namespace(namespace)
        key = normalize_token(token)
        if not key:
            raise CorrectionError("Correction token must not be empty")

        if ns is CorrectionNamespace.GRADE:
            try:
                value = Grade.parse(correction).value
            except ValueError:
                raise CorrectionError(f"{correction!r} is not a valid grade") from None
        else:
            value = str(correction).strip()
            if not value:
                raise CorrectionError("Course-code correction must not be empty")

        self._tables[ns][key] = value
        self.version += 1
        logger.debug("Learned %s correction %r -> %r (v%d)", ns.value, key, value, self.version)

    def upsert_many(
        self, entries: Iterable[tuple[CorrectionNamespace | str, str, str | Grade]]
    ) -> int:
        """Apply a batch of (namespace, token, correction) entries; returns the count."""
        count = 0
        for namespace, token, correction in entries:
            self.upsert(namespace, token, correction)
            count += 1
        return count

    def entries(self, namespace: CorrectionNamespace | str) -> dict[str, str]:
        """Copy of one namespace."""
        return dict(self._tables[self._namespace(namespace)])

    def snapshot(self) -> CorrectionSnapshot:
        """Immutable view of the current contents."""
        return CorrectionSnapshot.from_mappings(
            course=self._tables[CorrectionNamespace.COURSE],
            grade=self._tables[CorrectionNamespace.GRADE],
            version=self.version,
        )

    def save(self) -> None:
        """
        Persist both namespaces to ``persistence_path``.

        If no path is set, this method does nothing.

        Raises:
            OSError: If a file cannot be written.
        """
        if not self.persistence_path:
            logger.debug("No persistence path set; skipping save")
            return

        try:
            self.persistence_path.mkdir(parents=True, exist_ok=True)
            for ns in CorrectionNamespace:
                with open(self.persistence_path / ns.filename, "w", encoding="utf-8") as f:
                    json.dump(dict(sorted(self._tables[ns].items())), f, indent=2)
            logger.info(
                "Saved %d course and %d grade corrections to %s",
                len(self._tables[CorrectionNamespace.COURSE]),
                len(self._tables[CorrectionNamespace.GRADE]),
                self.persistence_path,
            )
        except OSError as e:
            logger.error("Failed to save corrections: %s", e)
            raise

    def __len__(self) -> int:
        return sum(len(table) for table in self._tables.values())
