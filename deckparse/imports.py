"""``src:`` import directives: parsing, path resolution, selection and splicing."""

from __future__ import annotations

import importlib.util
import logging
import os
import re
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterator, Sequence

from .errors import ImportCycleError, ImportNotFoundError, ImportRangeError
from .frontmatter import merge_config
from .models import Diagnostic, ImportDirective, SelectionRange, Slide
from .source import FileSource

logger = logging.getLogger(__name__)

# segment(','segment)*  with  segment := N | N-M | N-
_SELECTION_RE = re.compile(r"^\s*\d+\s*(-\s*\d*\s*)?(,\s*\d+\s*(-\s*\d*\s*)?)*$")
_SEGMENT_RE = re.compile(r"^\s*(\d+)\s*(?:(-)\s*(\d*)\s*)?$")

IMPORT_KEY = "src"


def parse_selection(expr: str, path: str = "<string>", line: int = 1) -> tuple[SelectionRange, ...]:
    """Parse ``"1-3,5,8-"`` into selection ranges, in expression order."""
    ranges: list[SelectionRange] = []
    for part in expr.split(","):
        m = _SEGMENT_RE.match(part)
        if not m:
            raise ImportRangeError(f"invalid selection segment {part.strip()!r}", path=path, line=line)
        start = int(m.group(1))
        if m.group(2) is None:
            end: int | None = start
        else:
            end = int(m.group(3)) if m.group(3) else None
        if start < 1:
            raise ImportRangeError("slide positions start at 1", path=path, line=line)
        if end is not None and end < start:
            raise ImportRangeError(f"empty range {start}-{end}", path=path, line=line)
        ranges.append(SelectionRange(start, end))
    return tuple(ranges)


def parse_directive(value: Any, path: str = "<string>", line: int = 1) -> ImportDirective:
    """Parse a ``src`` value of the form ``path[:selection]``."""
    if not isinstance(value, str) or not value.strip():
        raise ImportNotFoundError(f"src must be a file path, got {value!r}", path=path, line=line)
    value = value.strip()
    ref, sep, expr = value.rpartition(":")
    if sep and ref and _SELECTION_RE.match(expr):
        return ImportDirective(ref.strip(), parse_selection(expr, path, line))
    return ImportDirective(value)


def apply_selection(
    slides: Sequence[Slide],
    selection: Sequence[SelectionRange] | None,
    path: str = "<string>",
    line: int = 1,
) -> list[Slide]:
    """Pick slides by 1-based position; output follows the selection order."""
    if selection is None:
        return list(slides)
    count = len(slides)
    picked: list[Slide] = []
    for rng in selection:
        end = rng.end if rng.end is not None else count
        if rng.start > count or end > count:
            raise ImportRangeError(
                f"selection {rng} is out of range: the file has {count} slide(s)",
                path=path,
                line=line,
            )
        picked.extend(slides[rng.start - 1:end])
    return picked


class ResolutionChain:
    """Stack of files currently being expanded, for explicit cycle checks."""

    def __init__(self):
        self._stack: list[str] = []

    def __contains__(self, path: str) -> bool:
        return path in self._stack

    def __len__(self) -> int:
        return len(self._stack)

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(self._stack)

    def check(self, path: str, line: int = 1) -> None:
        if path in self._stack:
            raise ImportCycleError((*self._stack, path), line=line)

    @contextmanager
    def enter(self, path: str, line: int = 1) -> Iterator[None]:
        self.check(path, line)
        self._stack.append(path)
        try:
            yield
        finally:
            self._stack.pop()


class ImportResolver:
    """Turns ``src`` references into file paths.

    ``./x.md`` and ``../x.md`` resolve against the importing file's directory,
    ``/x.md`` against the root deck's directory (falling back to the
    filesystem root).  A bare ``x.md`` tries the importing file's directory,
    then each search path, then an installed Python package whose name is the
    first path component.
    """

    def __init__(
        self,
        source: FileSource,
        root_dir: str,
        search_paths: Sequence[str] = (),
        package_lookup: bool = True,
    ):
        self.source = source
        self.root_dir = root_dir
        self.search_paths = [source.normalize(p) for p in search_paths]
        self.package_lookup = package_lookup

    def candidates(self, ref: str, importer: str) -> list[str]:
        """Every path *ref* may resolve to, in lookup order."""
        return list(self._iter_candidates(ref, importer))

    def _iter_candidates(self, ref: str, importer: str) -> Iterator[str]:
        # Package locations come last and are only computed once every
        # local candidate has been tried.
        seen: set[str] = set()
        for p in self._raw_candidates(ref, importer):
            p = self.source.normalize(p)
            if p not in seen:
                seen.add(p)
                yield p

    def _raw_candidates(self, ref: str, importer: str) -> Iterator[str]:
        base = os.path.dirname(importer)
        if ref.startswith(("./", "../", ".\\", "..\\")):
            yield os.path.join(base, ref)
        elif ref.startswith(("/", "\\")):
            yield os.path.join(self.root_dir, ref.lstrip("/\\"))
            yield ref
        elif os.path.isabs(ref):
            yield ref
        else:
            yield os.path.join(base, ref)
            for sp in self.search_paths:
                yield os.path.join(sp, ref)
            if self.package_lookup:
                yield from self._package_candidates(ref)

    def resolve(self, ref: str, importer: str, line: int = 1) -> str:
        tried: list[str] = []
        for candidate in self._iter_candidates(ref, importer):
            tried.append(candidate)
            if self.source.exists(candidate):
                logger.debug("Resolved %s from %s -> %s", ref, importer, candidate)
                return candidate
        raise ImportNotFoundError(
            f"cannot find imported file {ref!r}",
            path=importer,
            line=line,
            candidates=tuple(tried),
        )

    @staticmethod
    def _package_candidates(ref: str) -> list[str]:
        parts = re.split(r"[/\\]", ref, maxsplit=1)
        if len(parts) != 2 or not parts[0].isidentifier():
            return []
        package, rest = parts
        try:
            spec = importlib.util.find_spec(package)
        except (ImportError, ValueError):
            return []
        if spec is None or not spec.submodule_search_locations:
            return []
        return [os.path.join(loc, rest) for loc in spec.submodule_search_locations]


def import_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Keys of an importing slide that carry over to the imported slides."""
    return {k: v for k, v in config.items() if k != IMPORT_KEY}


def splice(selected: list[Slide], overrides: dict[str, Any]) -> list[Slide]:
    """Lay the importing slide's extra keys over the first imported slide."""
    if not selected or not overrides:
        return selected
    first = selected[0]
    return [replace(first, config=merge_config(first.config, overrides)), *selected[1:]]


def broken_import(diagnostic: Diagnostic, config: dict[str, Any], start_line: int, end_line: int) -> Slide:
    """Placeholder slide standing in for an import that failed."""
    return Slide(
        index=0,
        config=import_overrides(config),
        content=f"> **Broken import:** {diagnostic.message}",
        source=diagnostic.path,
        start_line=start_line,
        end_line=end_line,
        error=diagnostic,
    )
