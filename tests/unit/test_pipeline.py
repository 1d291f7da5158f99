"""
Unit tests for the grade pipeline (gradescan/ocr/pipeline.py).

The recognition engine is replaced by a scripted stub so these tests
exercise the orchestration (cropping, fallback pass, merging, batch error
isolation) without Tesseract.
"""

import pytest
from PIL import Image

from gradescan.config import (
    AutoCropConfig,
    PageSegmentationMode,
    PipelineConfig,
    PreprocessConfig,
)
from gradescan.corrections import CorrectionStore
from gradescan.exceptions import PreprocessingError, RecognitionError
from gradescan.models import ExtractionResult, ExtractionStatus, Grade, MatchStrategy, Rect
from gradescan.ocr.engine import TextRecognitionEngine
from gradescan.ocr.pipeline import GradePipeline, create_pipeline, merge_passes, needs_fallback

SINGLE = PageSegmentationMode.SINGLE_BLOCK
SPARSE = PageSegmentationMode.SPARSE_TEXT

# Pass 1: the engine dropped most rows and only two courses are readable
WEAK_PASS = """\
23CS4403 OPERATING SYSTEMS O PASS
23CS4405 SOFTWARE ENGINEERING B PASS
"""

# Pass 2: sparse-text reading keeps rows apart
STRONG_PASS = """\
23CS4401 DATA STRUCTURES A PASS
23CS4402 COMPILER DESIGN B+ PASS
23CS4403 OPERATING SYSTEMS O PASS
23CS4405 SOFTWARE ENGINEERING B PASS
23CS4L01 DATA STRUCTURES LAB O PASS
23CS4L02 OPERATING SYSTEMS LAB A+ PASS
23PL4004 PROFESSIONAL ETHICS C PASS
"""


def fast_config(**kwargs) -> PipelineConfig:
    """Pipeline config that skips the large upscale."""
    return PipelineConfig(preprocess=PreprocessConfig(min_width=200), **kwargs)


@pytest.fixture
def course_codes(semester_codes):
    """Semester codes minus 23CS4404, which also matches "23CS4401" (4 reads as 1)."""
    return [c for c in semester_codes if c != "23CS4404"]


@pytest.fixture
def make_pipeline(scripted_engine):
    """Factory for pipelines around a scripted engine."""

    def make(single_block="", sparse_text="", error=None, **config):
        engine = scripted_engine(single_block=single_block, sparse_text=sparse_text, error=error)
        return GradePipeline(engine=engine, config=fast_config(**config))

    return make


# =============================================================================
# Fallback Policy Tests
# =============================================================================


class TestNeedsFallback:
    """Tests for the fallback threshold."""

    @pytest.mark.parametrize(
        "matches,count,expected",
        [(0, 10, True), (4, 10, True), (5, 10, False), (1, 3, True), (2, 3, False), (0, 1, True)],
    )
    def test_threshold_is_ceil_half(self, matches, count, expected):
        """A pass needs at least ceil(n/2) matches."""
        result = ExtractionResult(extracted={f"C{i}": Grade.A for i in range(matches)})
        assert needs_fallback(result, count) is expected


class TestMergePasses:
    """Tests for merge_passes."""

    def _result(self, grades, passes):
        return ExtractionResult(
            extracted=dict(grades),
            strategies={c: MatchStrategy.SAME_LINE for c in grades},
            raw_text=passes[0],
            status=ExtractionStatus.MATCHED if grades else ExtractionStatus.NO_MATCHES,
            passes=list(passes),
        )

    def test_second_pass_wins_with_more_matches(self):
        """A strictly better second pass replaces the first."""
        first = self._result({"X": Grade.A}, ["single-block"])
        second = self._result({"X": Grade.B, "Y": Grade.C}, ["sparse-text"])

        merged = merge_passes(first, second)
        assert merged.extracted == {"X": Grade.B, "Y": Grade.C}
        assert merged.raw_text == "sparse-text"
        assert merged.passes == ["single-block", "sparse-text"]

    def test_first_pass_kept_on_tie_and_filled_in(self):
        """On a tie the first pass wins and gaps are filled from the second."""
        first = self._result({"X": Grade.A, "Y": Grade.O}, ["single-block"])
        second = self._result({"X": Grade.B, "Z": Grade.C}, ["sparse-text"])

        merged = merge_passes(first, second)
        assert merged.extracted == {"X": Grade.A, "Y": Grade.O, "Z": Grade.C}
        assert merged.raw_text == "single-block"
        assert merged.status is ExtractionStatus.MATCHED

    def test_both_empty(self):
        """Two empty passes merge to NO_MATCHES."""
        first = self._result({}, ["single-block"])
        first.hint = "hint"
        merged = merge_passes(first, self._result({}, ["sparse-text"]))
        assert merged.status is ExtractionStatus.NO_MATCHES
        assert merged.hint == "hint"


# =============================================================================
# GradePipeline Tests
# =============================================================================


class TestProcessImage:
    """Tests for GradePipeline.process_image."""

    def test_sparse_fallback_improves_result(self, make_pipeline, text_image, course_codes):
        """A weak first pass triggers the sparse-text pass, which wins."""
        pipeline = make_pipeline(single_block=WEAK_PASS, sparse_text=STRONG_PASS)
        result = pipeline.process_image(text_image, course_codes)

        assert pipeline.engine.modes == [SINGLE, SPARSE]
        assert result.matches == 7
        assert result.extracted["23CS4402"] is Grade.B_PLUS
        assert result.passes == ["single-block", "sparse-text"]
        assert result.raw_text == STRONG_PASS

    def test_first_pass_sufficient(self, make_pipeline, text_image, course_codes):
        """No second pass when the first matched at least half the courses."""
        pipeline = make_pipeline(single_block=STRONG_PASS, sparse_text=WEAK_PASS)
        result = pipeline.process_image(text_image, course_codes)

        assert pipeline.engine.modes == [SINGLE]
        assert result.matches == 7
        assert result.passes == ["single-block"]

    def test_first_pass_kept_when_fallback_not_better(self, make_pipeline, text_image):
        """A weaker second pass only fills in missing courses."""
        codes = ["23CS4401", "23CS4402", "23CS4403", "23CS4405", "23PL4004"]
        first = "23CS4401 DS A PASS\n23CS4403 OS O PASS"
        second = "23CS4401 DS B PASS\n23PL4004 PE C PASS"
        pipeline = make_pipeline(single_block=first, sparse_text=second)

        result = pipeline.process_image(text_image, codes)
        assert result.extracted == {
            "23CS4401": Grade.A,
            "23CS4403": Grade.O,
            "23PL4004": Grade.C,
        }
        assert result.raw_text == first

    def test_fallback_disabled(self, make_pipeline, text_image, course_codes):
        """enable_fallback=False runs one pass only."""
        pipeline = make_pipeline(single_block=WEAK_PASS, enable_fallback=False)
        result = pipeline.process_image(text_image, course_codes)

        assert pipeline.engine.modes == [SINGLE]
        assert result.matches == 2

    def test_zero_matches_is_not_an_error(self, make_pipeline, text_image, course_codes):
        """Readable text with no courses in it is a soft outcome."""
        pipeline = make_pipeline(single_block="HELLO", sparse_text="WORLD")
        result = pipeline.process_image(text_image, course_codes)

        assert result.status is ExtractionStatus.NO_MATCHES
        assert result.hint

    def test_no_text_raises(self, make_pipeline, text_image, course_codes):
        """Every pass returning nothing is a recognition failure."""
        pipeline = make_pipeline(single_block="  \n", sparse_text="")
        with pytest.raises(RecognitionError, match="no text"):
            pipeline.process_image(text_image, course_codes)

    def test_engine_error_becomes_recognition_error(
        self, make_pipeline, text_image, course_codes
    ):
        """Arbitrary engine exceptions are wrapped with a hint."""
        pipeline = make_pipeline(error=RuntimeError("engine crashed"))
        with pytest.raises(RecognitionError) as exc_info:
            pipeline.process_image(text_image, course_codes)

        assert "engine crashed" in str(exc_info.value)
        assert exc_info.value.hint == RecognitionError.DEFAULT_HINT

    def test_no_courses_skips_recognition(self, make_pipeline, text_image):
        """Without course codes the engine is never called."""
        pipeline = make_pipeline(single_block=STRONG_PASS)
        result = pipeline.process_image(text_image, [])

        assert result.status is ExtractionStatus.NO_COURSES
        assert pipeline.engine.calls == []

    def test_corrections_applied(self, scripted_engine, text_image):
        """The store's corrections reach the extractor."""
        store = CorrectionStore()
        store.upsert("grade", "4+", "A+")
        pipeline = GradePipeline(
            engine=scripted_engine(single_block="23CS4401 DATA STRUCTURES 4+"),
            config=fast_config(),
            corrections=store,
        )
        assert pipeline.process_image(text_image, ["23CS4401"]).extracted == {
            "23CS4401": Grade.A_PLUS
        }

    def test_engine_receives_whitelist_and_mode(self, make_pipeline, text_image):
        """Each pass gets the configured whitelist and its own mode."""
        pipeline = make_pipeline(single_block="NOTHING", sparse_text="NOTHING")
        pipeline.process_image(text_image, ["23CS4401"])

        first, second = pipeline.engine.calls
        assert first.page_segmentation_mode is SINGLE
        assert second.page_segmentation_mode is SPARSE
        assert first.character_whitelist == second.character_whitelist
        assert "+" in first.character_whitelist

    def test_unreadable_file(self, make_pipeline, tmp_path):
        """A missing file is a preprocessing error."""
        with pytest.raises(PreprocessingError):
            make_pipeline(single_block=STRONG_PASS).process_image(
                tmp_path / "missing.png", ["23CS4401"]
            )

    def test_debug_raster_saved(self, make_pipeline, tmp_path, text_image):
        """With debug_dir set the preprocessed raster is written out."""
        path = tmp_path / "results.png"
        text_image.save(path)
        pipeline = make_pipeline(single_block=STRONG_PASS, debug_dir=tmp_path / "debug")

        pipeline.process_image(path, ["23CS4401"])
        assert (tmp_path / "debug" / "results.preprocessed.png").exists()


class TestCrop:
    """Tests for GradePipeline.crop."""

    def test_explicit_crop(self, make_pipeline, table_image):
        """An explicit rectangle is used as given."""
        region = make_pipeline().crop(table_image, Rect(100, 50, 300, 200))
        assert region.size == (300, 200)

    def test_crop_clamped_to_image(self, make_pipeline, table_image):
        """Rectangles hanging off the image are clipped."""
        region = make_pipeline().crop(table_image, Rect(900, 700, 500, 500))
        assert region.size == (100, 100)

    def test_degenerate_crop_ignored(self, make_pipeline, table_image):
        """An empty rectangle falls back to the whole image."""
        assert make_pipeline().crop(table_image, Rect(0, 0, 0, 10)) is table_image

    def test_auto_crop(self, make_pipeline, table_image):
        """Without a rectangle the detected table is used."""
        region = make_pipeline().crop(table_image)
        assert region.width < table_image.width
        assert region.height < table_image.height

    def test_auto_crop_disabled(self, make_pipeline, table_image):
        """With auto-crop off the whole image is used."""
        pipeline = make_pipeline(autocrop=AutoCropConfig(enabled=False))
        assert pipeline.crop(table_image) is table_image


class TestProcessBatch:
    """Tests for GradePipeline.process_batch."""

    def test_failure_does_not_stop_batch(self, make_pipeline, tmp_path, text_image):
        """A bad file is reported and the next image is still processed."""
        good = tmp_path / "good.png"
        text_image.save(good)
        bad = tmp_path / "bad.png"
        bad.write_text("not an image")

        pipeline = make_pipeline(single_block=STRONG_PASS)
        outcomes = list(pipeline.process_batch([bad, good], ["23CS4401", "23CS4402"]))

        assert [o.ok for o in outcomes] == [False, True]
        assert isinstance(outcomes[0].error, PreprocessingError)
        assert outcomes[0].status == "failed"
        assert outcomes[1].result.matches == 2
        assert outcomes[1].status == "matched"

    def test_recognition_failure_keeps_raw_text(self, make_pipeline, tmp_path, text_image):
        """A failed image still reports whatever text was recognized."""
        path = tmp_path / "shot.png"
        text_image.save(path)
        pipeline = make_pipeline(error=RecognitionError("boom", raw_text="partial"))

        (outcome,) = pipeline.process_batch([path], ["23CS4401"])
        assert not outcome.ok
        assert outcome.raw_text == "partial"

    def test_per_image_crops(self, make_pipeline, tmp_path, text_image):
        """Crops are looked up by the image's path."""
        path = tmp_path / "shot.png"
        text_image.save(path)
        pipeline = make_pipeline(single_block=STRONG_PASS)

        (outcome,) = pipeline.process_batch(
            [path], ["23CS4401"], crops={path: Rect(0, 0, 500, 300)}
        )
        assert outcome.ok
        assert outcome.elapsed_ms >= 0

    def test_batch_uses_one_snapshot(self, make_pipeline, tmp_path, text_image):
        """Corrections learned mid-batch do not affect the running batch."""
        paths = []
        for name in ("one.png", "two.png"):
            path = tmp_path / name
            text_image.save(path)
            paths.append(path)

        pipeline = make_pipeline(single_block="23CS4401 DATA STRUCTURES 4+")
        outcomes = pipeline.process_batch(paths, ["23CS4401"])

        first = next(outcomes)
        pipeline.corrections.upsert("grade", "4+", "A+")
        second = next(outcomes)

        assert first.result.extracted == {}
        assert second.result.extracted == {}
        assert pipeline.process_image(paths[0], ["23CS4401"]).extracted == {
            "23CS4401": Grade.A_PLUS
        }


class TestCreatePipeline:
    """Tests for the create_pipeline factory."""

    def test_with_engine_and_corrections(self, scripted_engine, tmp_path):
        """Corrections are loaded from the given directory."""
        store = CorrectionStore.load(tmp_path)
        store.upsert("course", "23C54401", "23CS4401")
        store.save()

        pipeline = create_pipeline(corrections_dir=tmp_path, engine=scripted_engine())
        assert pipeline.corrections.get("course", "23C54401") == "23CS4401"
        assert isinstance(pipeline.engine, TextRecognitionEngine)

    def test_get_info(self, scripted_engine):
        """get_info describes the configuration."""
        info = create_pipeline(engine=scripted_engine()).get_info()

        assert info["engine"] == "ScriptedEngine"
        assert info["recognition"]["pageSegmentationMode"] == "single-block"
        assert info["fallback_mode"] == "sparse-text"
        assert info["auto_crop"] is True
        assert info["corrections"] == 0


def test_default_engine_is_tesseract():
    """Without an engine the pipeline uses Tesseract."""
    from gradescan.ocr.engine import TesseractEngine

    pipeline = GradePipeline(config=fast_config())
    assert isinstance(pipeline.engine, TesseractEngine)


def test_pil_image_input(make_pipeline):
    """In-memory images are accepted."""
    image = Image.new("RGB", (400, 200), "white")
    pipeline = make_pipeline(single_block="23CS4401 DS A")
    assert pipeline.process_image(image, ["23CS4401"]).extracted == {"23CS4401": Grade.A}
