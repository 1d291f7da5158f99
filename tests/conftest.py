"""
Pytest configuration and fixtures for GradeScan tests.
"""

from dataclasses import dataclass, field

import pytest
from PIL import Image, ImageDraw

from gradescan.config import PageSegmentationMode, RecognitionConfig

SEMESTER_CODES = [
    "23CS4401",
    "23CS4402",
    "23CS4403",
    "23CS4404",
    "23CS4405",
    "23CS4L01",
    "23CS4L02",
    "23SD4XXX",
    "23PL4004",
    "23IN4XXX",
]


@dataclass
class ScriptedEngine:
    """Recognition engine stub returning canned text per page-segmentation mode."""

    texts: dict[PageSegmentationMode, str] = field(default_factory=dict)
    error: Exception | None = None
    calls: list[RecognitionConfig] = field(default_factory=list)

    def recognize(self, image: Image.Image, config: RecognitionConfig) -> str:
        self.calls.append(config)
        if self.error is not None:
            raise self.error
        return self.texts.get(config.page_segmentation_mode, "")

    @property
    def modes(self) -> list[PageSegmentationMode]:
        return [c.page_segmentation_mode for c in self.calls]


def draw_table(
    size: tuple[int, int] = (1000, 800),
    box: tuple[int, int, int, int] = (200, 200, 800, 600),
    rows: int = 8,
    line_width: int = 3,
) -> Image.Image:
    """White image with a ruled table: horizontal row lines plus left/right borders."""
    image = Image.new("RGB", size, "white")
    draw = ImageDraw.Draw(image)
    left, top, right, bottom = box
    step = (bottom - top) / rows
    for i in range(rows + 1):
        y = round(top + i * step)
        draw.rectangle([left, y, right, y + line_width - 1], fill="black")
    draw.rectangle([left, top, left + line_width - 1, bottom], fill="black")
    draw.rectangle([right, top, right + line_width - 1, bottom + line_width - 1], fill="black")
    return image


def draw_text_bars(
    size: tuple[int, int] = (500, 300),
    bars: tuple[tuple[int, int], ...] = ((50, 70), (120, 140), (200, 230)),
) -> Image.Image:
    """White image with solid black bars standing in for lines of text."""
    image = Image.new("RGB", size, "white")
    draw = ImageDraw.Draw(image)
    for top, bottom in bars:
        draw.rectangle([50, top, size[0] - 50, bottom - 1], fill="black")
    return image


@pytest.fixture
def semester_codes() -> list[str]:
    """Course codes of a typical semester, including lab and elective codes."""
    return list(SEMESTER_CODES)


@pytest.fixture
def table_image() -> Image.Image:
    """A 1000x800 photo with a ruled table at (200, 200)-(800, 600)."""
    return draw_table()


@pytest.fixture
def text_image() -> Image.Image:
    """A small image with three text-like rows."""
    return draw_text_bars()


@pytest.fixture
def make_table():
    """Factory for ruled-table images (see draw_table)."""
    return draw_table


@pytest.fixture
def make_text_bars():
    """Factory for text-bar images (see draw_text_bars)."""
    return draw_text_bars


@pytest.fixture
def scripted_engine():
    """Factory for ScriptedEngine instances."""

    def make(single_block: str = "", sparse_text: str = "", error: Exception | None = None):
        return ScriptedEngine(
            texts={
                PageSegmentationMode.SINGLE_BLOCK: single_block,
                PageSegmentationMode.SPARSE_TEXT: sparse_text,
            },
            error=error,
        )

    return make
