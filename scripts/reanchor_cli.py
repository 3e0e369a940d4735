#!/usr/bin/env python3
"""Create and resolve annotation locators from the command line.

Usage:
    python3 scripts/reanchor_cli.py locate --document doc.txt --start 120 --end 164 \\
      --document-id statute-12 > position.json

    python3 scripts/reanchor_cli.py resolve --document doc_v2.txt \\
      --position position.json --min-confidence 0.7

    python3 scripts/reanchor_cli.py resolve --document doc_v2.txt \\
      --position positions.json --workers 4

Outputs structured JSON to stdout, human messages to stderr. ``resolve``
exits 1 when any locator could not be resolved.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import orjson

from reanchor.anchor_types import AnnotationPosition, SelectionData
from reanchor.config import PositioningConfig
from reanchor.positioning import PositionService, reanchor_all

log = logging.getLogger("reanchor_cli")


def dump_json(obj: object) -> None:
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")
    sys.stdout.flush()


def load_json(path: Path) -> object:
    return orjson.loads(path.read_bytes())


def _read_document(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _load_positions(path: Path) -> list[AnnotationPosition]:
    payload = load_json(path)
    if isinstance(payload, list):
        return [AnnotationPosition.from_dict(p) for p in payload]
    if isinstance(payload, dict):
        return [AnnotationPosition.from_dict(payload)]
    raise ValueError(f"Expected a locator object or a list of them in {path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build and resolve drift-tolerant annotation locators.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional positioning config JSON",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    locate = sub.add_parser("locate", help="Build a locator for a span of a document")
    locate.add_argument("--document", type=Path, required=True, help="UTF-8 text file")
    locate.add_argument("--start", type=int, required=True, help="Start offset (inclusive)")
    locate.add_argument("--end", type=int, required=True, help="End offset (exclusive)")
    locate.add_argument("--document-id", default="", help="Document identifier")
    locate.add_argument("--element-path", default=None, help="Optional element path")

    resolve = sub.add_parser("resolve", help="Resolve stored locators against a document")
    resolve.add_argument("--document", type=Path, required=True, help="UTF-8 text file")
    resolve.add_argument(
        "--position",
        type=Path,
        required=True,
        help="Locator JSON (one object or a list)",
    )
    resolve.add_argument(
        "--min-confidence",
        type=float,
        default=None,
        help="Acceptance threshold (default: from config, 0.7)",
    )
    resolve.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker threads for multi-locator input",
    )
    return parser


def _cmd_locate(args: argparse.Namespace, service: PositionService) -> int:
    document = _read_document(args.document)
    if not 0 <= args.start < args.end <= len(document):
        log.error(
            "invalid span [%d, %d) for document of length %d",
            args.start, args.end, len(document),
        )
        return 1
    selection = SelectionData.from_document(
        document,
        args.start,
        args.end,
        context_chars=service.config.context_window_chars,
        element_path=args.element_path,
    )
    position = service.calculate_position(args.document_id, selection)
    dump_json(position.to_dict())
    log.info(
        "locator built for %r (confidence %.2f)",
        selection.selected_text[:40], position.metadata.confidence,
    )
    return 0


def _cmd_resolve(args: argparse.Namespace, service: PositionService) -> int:
    document = _read_document(args.document)
    positions = _load_positions(args.position)
    results = reanchor_all(
        document,
        positions,
        service=service,
        min_confidence=args.min_confidence,
        max_workers=args.workers,
    )
    payload = [r.to_dict() for r in results]
    dump_json(payload[0] if len(payload) == 1 else payload)
    unresolved = sum(1 for r in results if not r.success)
    log.info("resolved %d/%d locators", len(results) - unresolved, len(results))
    return 1 if unresolved else 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    config = PositioningConfig.from_json(args.config) if args.config else None
    service = PositionService(config)

    if not args.document.exists():
        log.error("document not found: %s", args.document)
        return 1
    if args.command == "locate":
        return _cmd_locate(args, service)
    if not args.position.exists():
        log.error("locator file not found: %s", args.position)
        return 1
    return _cmd_resolve(args, service)


if __name__ == "__main__":
    sys.exit(main())
