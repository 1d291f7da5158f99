"""
Interactive import session: upload -> crop -> extract -> review & apply.

ImportSession is an explicit finite-state machine around GradePipeline.
Every action checks that it is allowed in the current state and raises
InvalidTransitionError otherwise.

    IDLE --load_image--> CROPPING --begin_recognition--> RECOGNIZING
    RECOGNIZING --complete--> REVIEW        (success, including zero matches)
    RECOGNIZING --fail--> CROPPING          (hard failure, with a hint)
    REVIEW --recrop--> CROPPING
    REVIEW --apply--> IDLE
    any --reset--> IDLE

A reset does not interrupt a recognition call that is already running.
Instead every reset bumps a generation counter; a result delivered with
a ticket from an older generation is discarded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from PIL import Image

from gradescan.exceptions import GradeScanError, InvalidTransitionError, RecognitionError
from gradescan.imaging.preprocess import load_image
from gradescan.models import ExtractionResult, Grade, Rect
from gradescan.ocr.pipeline import GradePipeline

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Stages of an import."""

    IDLE = "idle"
    CROPPING = "cropping"
    RECOGNIZING = "recognizing"
    REVIEW = "review"


@dataclass(frozen=True)
class Ticket:
    """Proof that a recognition was started in a given generation."""

    generation: int


@dataclass
class ImportSession:
    """
    State machine for importing grades from one screenshot at a time.

    Example:
        >>> session = ImportSession(pipeline, course_codes=["23CS4401"])
        >>> session.load_image("results.png")
        >>> result = session.run()          # uses the suggested crop
        >>> grades = session.apply()
    """

    pipeline: GradePipeline
    course_codes: list[str] = field(default_factory=list)

    state: SessionState = SessionState.IDLE
    generation: int = 0
    image: Image.Image | None = field(default=None, repr=False)
    suggested_crop: Rect | None = None
    result: ExtractionResult | None = None
    error: str | None = None

    def _require(self, action: str, *allowed: SessionState) -> None:
        if self.state not in allowed:
            raise InvalidTransitionError(
                f"Cannot {action} while {self.state.value}; "
                f"allowed in: {', '.join(s.value for s in allowed)}"
            )

    def _transition(self, state: SessionState) -> None:
        logger.debug("Session %s -> %s", self.state.value, state.value)
        self.state = state

    def load_image(self, source: str | Path | Image.Image) -> Rect:
        """
        Accept a new screenshot and suggest a crop.

        Returns:
            The auto-detected table bounds (the full image when detection
            is disabled or finds nothing).
        """
        self._require(
            "load an image", SessionState.IDLE, SessionState.CROPPING, SessionState.REVIEW
        )
        self.image = load_image(source)
        if self.pipeline.config.autocrop.enabled:
            self.suggested_crop = self.pipeline.detector.detect(self.image)
        else:
            self.suggested_crop = Rect.full(self.image.width, self.image.height)
        self.result = None
        self.error = None
        self._transition(SessionState.CROPPING)
        return self.suggested_crop

    def begin_recognition(self) -> Ticket:
        """Enter RECOGNIZING and return a ticket for committing the result."""
        self._require("start recognition", SessionState.CROPPING)
        self.error = None
        self.result = None
        self._transition(SessionState.RECOGNIZING)
        return Ticket(self.generation)

    def _is_current(self, ticket: Ticket) -> bool:
        if ticket.generation != self.generation or self.state is not SessionState.RECOGNIZING:
            logger.info(
                "Discarding stale result from generation %d (now %d)",
                ticket.generation,
                self.generation,
            )
            return False
        return True

    def complete(self, ticket: Ticket, result: ExtractionResult) -> bool:
        """
        Commit a result and enter REVIEW.

        Zero matches is still a completed recognition; the result carries
        the hint to show. Returns False when the ticket is stale.
        """
        if not self._is_current(ticket):
            return False
        self.result = result
        self.error = result.hint
        self._transition(SessionState.REVIEW)
        return True

    def fail(self, ticket: Ticket, error: GradeScanError) -> bool:
        """Record a hard failure and go back to CROPPING. False when the ticket is stale."""
        if not self._is_current(ticket):
            return False
        self.error = error.hint if isinstance(error, RecognitionError) else str(error)
        self._transition(SessionState.CROPPING)
        return True

    def run(self, crop: Rect | None = None) -> ExtractionResult | None:
        """
        Recognize the loaded image synchronously.

        Args:
            crop: Table bounds; the suggested crop when None.

        Returns:
            The committed result, or None on failure or if the session was
            reset meanwhile.
        """
        ticket = self.begin_recognition()
        image = self.image
        try:
            result = self.pipeline.process_image(
                image, self.course_codes, crop=crop or self.suggested_crop
            )
        except GradeScanError as e:
            logger.warning("Recognition failed: %s", e)
            self.fail(ticket, e)
            return None
        if self.complete(ticket, result):
            return result
        return None

    def recrop(self) -> None:
        """Go back from REVIEW to CROPPING, keeping the image."""
        self._require("re-crop", SessionState.REVIEW)
        self.result = None
        self._transition(SessionState.CROPPING)

    def apply(self) -> dict[str, Grade]:
        """Hand the reviewed grades to the caller and finish the session."""
        self._require("apply grades", SessionState.REVIEW)
        grades = dict(self.result.extracted) if self.result else {}
        self.reset()
        return grades

    def reset(self) -> None:
        """Discard all state; any recognition still running becomes stale."""
        self.generation += 1
        self.image = None
        self.suggested_crop = None
        self.result = None
        self.error = None
        self._transition(SessionState.IDLE)
