"""
Command-line interface for GradeScan.

Usage:
    gradescan scan results.png --courses 23CS4401,23CS4402 --corrections data/
    gradescan benchmark shots/*.png --courses-file sem4.txt
    gradescan extract ocr_debug.txt --courses 23CS4401
    gradescan train --corrections data/ --type course 23C54401 23CS4401
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from gradescan.config import AutoCropConfig, PageSegmentationMode, PipelineConfig, RecognitionConfig
from gradescan.corrections import CorrectionNamespace, CorrectionStore
from gradescan.exceptions import GradeScanError
from gradescan.models import ExtractionResult, Rect
from gradescan.ocr.extractor import GradeExtractor
from gradescan.ocr.pipeline import GradePipeline

logger = logging.getLogger("gradescan")


def _course_codes(args: argparse.Namespace) -> list[str]:
    codes: list[str] = []
    if args.courses:
        codes.extend(c.strip() for c in args.courses.split(","))
    if args.courses_file:
        text = Path(args.courses_file).read_text(encoding="utf-8")
        codes.extend(line.strip() for line in text.splitlines())
    return [c for c in codes if c]


def _print_result(name: str, result: ExtractionResult, as_json: bool) -> None:
    if as_json:
        print(json.dumps({"source": name, **result.to_dict()}, indent=2))
        return
    print(f"Results for {name}: {result.matches} matched ({result.status.value})")
    for code, grade in result.extracted.items():
        print(f"  {code:<12} {grade.value:<3} [{result.strategies[code].value}]")
    if result.hint:
        print(f"  hint: {result.hint}")


def _build_pipeline(args: argparse.Namespace) -> GradePipeline:
    config = PipelineConfig(
        autocrop=AutoCropConfig(enabled=not args.no_auto_crop),
        recognition=RecognitionConfig(page_segmentation_mode=PageSegmentationMode(args.psm)),
        enable_fallback=not args.single_pass,
        debug_dir=args.debug_dir,
    )
    store = CorrectionStore.load(args.corrections) if args.corrections else CorrectionStore()
    return GradePipeline(config=config, corrections=store)


def cmd_scan(args: argparse.Namespace) -> int:
    codes = _course_codes(args)
    pipeline = _build_pipeline(args)
    crops = {image: Rect.from_string(args.crop) for image in args.images} if args.crop else None

    failures = 0
    for outcome in pipeline.process_batch(args.images, codes, crops=crops):
        if outcome.ok:
            _print_result(str(outcome.source), outcome.result, args.json)
        else:
            failures += 1
            hint = getattr(outcome.error, "hint", "")
            print(f"Results for {outcome.source}: FAILED ({outcome.error}) {hint}", file=sys.stderr)
    return 1 if failures else 0


def cmd_benchmark(args: argparse.Namespace) -> int:
    codes = _course_codes(args)
    pipeline = _build_pipeline(args)

    print(f"{'image':<40} {'status':<11} {'matches':>7} {'time ms':>9}")
    total_matches = 0
    for outcome in pipeline.process_batch(args.images, codes):
        matches = outcome.result.matches if outcome.result else 0
        total_matches += matches
        print(
            f"{Path(str(outcome.source)).name:<40} {outcome.status:<11} "
            f"{matches:>3}/{len(codes):<3} {outcome.elapsed_ms:>9.0f}"
        )
    print(f"Total matches: {total_matches}")
    return 0


def cmd_extract(args: argparse.Namespace) -> int:
    codes = _course_codes(args)
    text = Path(args.text_file).read_text(encoding="utf-8")
    store = CorrectionStore.load(args.corrections) if args.corrections else CorrectionStore()
    result = GradeExtractor().extract(text, codes, store.snapshot())
    _print_result(args.text_file, result, args.json)
    return 0


def cmd_train(args: argparse.Namespace) -> int:
    store = CorrectionStore.load(args.corrections)
    store.upsert(args.type, args.original, args.correction)
    store.save()
    print(f"Saved {args.type} correction {args.original.upper()} -> {args.correction}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gradescan", description="Extract course grades from result-table screenshots"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_courses(p: argparse.ArgumentParser) -> None:
        p.add_argument("--courses", help="Comma-separated expected course codes")
        p.add_argument("--courses-file", help="File with one course code per line")
        p.add_argument("--corrections", type=Path, help="Directory of learned corrections")
        p.add_argument("--json", action="store_true", help="Print JSON")

    def add_pipeline(p: argparse.ArgumentParser) -> None:
        p.add_argument("images", nargs="+", help="Screenshot files")
        add_courses(p)
        p.add_argument("--no-auto-crop", action="store_true", help="Use the whole image")
        p.add_argument(
            "--psm",
            choices=[m.value for m in PageSegmentationMode],
            default=PageSegmentationMode.SINGLE_BLOCK.value,
            help="First-pass page segmentation mode",
        )
        p.add_argument("--single-pass", action="store_true", help="Disable the fallback pass")
        p.add_argument("--debug-dir", type=Path, help="Save preprocessed rasters here")

    scan = sub.add_parser("scan", help="Extract grades from images")
    add_pipeline(scan)
    scan.add_argument("--crop", help="Table bounds as x,y,width,height")
    scan.set_defaults(func=cmd_scan)

    bench = sub.add_parser("benchmark", help="Time extraction over a set of images")
    add_pipeline(bench)
    bench.set_defaults(func=cmd_benchmark)

    extract = sub.add_parser("extract", help="Extract grades from saved OCR text")
    extract.add_argument("text_file")
    add_courses(extract)
    extract.set_defaults(func=cmd_extract)

    train = sub.add_parser("train", help="Teach a correction")
    train.add_argument("--corrections", type=Path, required=True)
    train.add_argument(
        "--type", choices=[ns.value for ns in CorrectionNamespace], default="course"
    )
    train.add_argument("original", help="Mis-read token as OCR produces it")
    train.add_argument("correction", help="Correct course code or grade")
    train.set_defaults(func=cmd_train)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except GradeScanError as e:
        logger.error("%s", e)
        return 2
    except OSError as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
