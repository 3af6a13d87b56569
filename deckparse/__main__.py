"""deckparse — Parse a Slidev-style markdown deck (with imports) into a slide model."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from .assembler import DeckAssembler
from .config import ParserOptions
from .errors import DeckError

logger = logging.getLogger(__name__)


def _parse_markers(values: list[str]) -> dict[str, str]:
    """Parse repeated NAME=REGEX arguments into a marker mapping."""
    markers: dict[str, str] = {}
    for value in values:
        name, sep, pattern = value.partition("=")
        if not sep or not name.strip() or not pattern:
            print(f"Error: invalid marker '{value}'. Use NAME=REGEX, e.g. tweet=<Tweet\\b",
                  file=sys.stderr)
            sys.exit(1)
        markers[name.strip()] = pattern
    return markers


def _configure_logging(verbose: int, log_file: str | None) -> None:
    root = logging.getLogger("deckparse")
    root.setLevel(logging.DEBUG)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose > 1 else logging.INFO if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
        root.addHandler(file_handler)


def _print_summary(deck) -> None:
    print(f"Deck: {deck.root}")
    if deck.title:
        print(f"  Title: {deck.title}")
    print(f"  {len(deck.slides)} slides from {len(deck.sources)} file(s)")
    if deck.features:
        print(f"  Features: {', '.join(sorted(deck.features))}")
    for slide in deck.slides:
        flags = []
        if slide.layout:
            flags.append(f"layout={slide.layout}")
        if slide.hidden:
            flags.append("hidden")
        if slide.error is not None:
            flags.append("BROKEN")
        location = f"{slide.source}:{slide.start_line}-{slide.end_line}"
        print(f"  [{slide.index}] {slide.title or '(untitled)'}  {' '.join(flags)}  ({location})")
    for diag in deck.diagnostics:
        print(f"{diag.path}:{diag.start_line}: {diag.severity}: {diag.message}", file=sys.stderr)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="deckparse",
        description="Parse a Slidev-style markdown deck, resolving src: imports.",
    )
    parser.add_argument("input", help="Path to the root .md file of the deck")
    parser.add_argument("--json", action="store_true",
                        help="Print the full deck model as JSON instead of a summary")
    parser.add_argument("--search-path", action="append", default=[], metavar="DIR",
                        help="Extra directory for resolving bare src: paths (repeatable)")
    parser.add_argument("--marker", action="append", default=[], metavar="NAME=REGEX",
                        help="Register an extra feature marker (repeatable)")
    parser.add_argument("--no-package-lookup", action="store_true",
                        help="Don't resolve src: paths through installed Python packages")
    parser.add_argument("--workers", type=int, default=4,
                        help="Threads used to read sibling imports (default: 4)")
    parser.add_argument("--strict", action="store_true",
                        help="Exit with status 2 if the deck has any diagnostics")
    parser.add_argument("--log-file", help="Write a DEBUG log to this file")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="More logging on stderr (-v info, -vv debug)")

    args = parser.parse_args(argv)

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: {input_path} not found.", file=sys.stderr)
        sys.exit(1)
    if args.workers < 1:
        print("Error: --workers must be >= 1.", file=sys.stderr)
        sys.exit(1)

    _configure_logging(args.verbose, args.log_file)
    logger.info("CLI arguments: %s", vars(args))

    options = ParserOptions(
        search_paths=args.search_path,
        max_workers=args.workers,
        markers=_parse_markers(args.marker),
        package_lookup=not args.no_package_lookup,
    )

    t0 = time.monotonic()
    try:
        deck = DeckAssembler(options=options).parse(str(input_path))
    except DeckError as exc:
        logger.exception("Parse failed")
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    logger.info("Parse completed in %.2fs", time.monotonic() - t0)

    if args.json:
        print(json.dumps(deck.to_dict(), indent=2, default=str))
    else:
        _print_summary(deck)

    if args.strict and deck.diagnostics:
        sys.exit(2)


if __name__ == "__main__":
    main()
