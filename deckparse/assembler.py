"""Assemble a deck from a root markdown file, with incremental reparsing."""

from __future__ import annotations

import copy
import itertools
import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable

from .cache import CacheBatch, FileResult, ParseCache
from .config import ParserOptions
from .detect import FeatureDetector
from .errors import (
    ConfigParseError,
    DeckError,
    ImportCycleError,
    ImportNotFoundError,
    ImportRangeError,
    SourceReadError,
)
from .frontmatter import (
    HEAD_ONLY_KEYS,
    deck_defaults,
    extract_yaml_block,
    merge_config,
    parse_frontmatter,
)
from .imports import (
    IMPORT_KEY,
    ImportResolver,
    ResolutionChain,
    apply_selection,
    broken_import,
    import_overrides,
    parse_directive,
    splice,
)
from .models import NO_CHANGE, Deck, Diagnostic, ImportDirective, Slide, SlideBlock, _NoChange
from .source import FileSource, LocalFileSource, decode, fingerprint
from .splitter import find_heading, split_notes, split_slides

logger = logging.getLogger(__name__)


class _Superseded(Exception):
    """Raised inside a reparse when newer changes arrive before it finishes."""


@dataclass
class _ParseRun:
    """State of one parse call, threaded explicitly through the expansion."""

    batch: CacheBatch
    resolver: ImportResolver
    superseded: Callable[[], bool] = lambda: False
    pool: ThreadPoolExecutor | None = None
    chain: ResolutionChain = field(default_factory=ResolutionChain)
    preloaded: dict[str, bytes] = field(default_factory=dict)
    pending_reads: dict[str, Future] = field(default_factory=dict)
    parsed: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _Outcome:
    """What one reparse run produced: a result, or the error it raised."""

    result: Deck | _NoChange | None = None
    error: BaseException | None = None

    def unwrap(self) -> Deck | _NoChange:
        if self.error is not None:
            raise self.error
        return self.result


def _dedupe(diagnostics: Iterable[Diagnostic]) -> tuple[Diagnostic, ...]:
    return tuple(dict.fromkeys(diagnostics))


class DeckAssembler:
    """Parses a deck and keeps it current as files change.

    ``parse`` always starts from scratch.  ``reparse`` takes a set of changed
    paths and re-parses only the changed files and the files that import them,
    reusing cached results for everything else.  Reparses are serialised:
    concurrent calls queue up and their change sets are merged.
    """

    def __init__(self, source: FileSource | None = None, options: ParserOptions | None = None):
        self.source = source or LocalFileSource()
        self.options = options or ParserOptions()
        self.detector = FeatureDetector(self.options.markers)
        self.cache = ParseCache()
        self.root: str | None = None
        self.deck: Deck | None = None
        self.last_parsed: tuple[str, ...] = ()
        self._run_lock = threading.Lock()
        self._pending_lock = threading.Lock()
        self._pending: set[str] = set()
        # Callers waiting on queued changes, by ticket, and the outcome of the
        # run that absorbed their changes once it has finished.
        self._tickets = itertools.count(1)
        self._pending_tickets: list[int] = []
        self._outcomes: dict[int, _Outcome] = {}
        # Changed paths of reparses that raised.  Guarded by _run_lock.
        self._dirty: set[str] = set()

    # -- public API --------------------------------------------------------

    def parse(self, root: str) -> Deck:
        """Parse the deck rooted at *root* from scratch.

        Raises ``ImportCycleError`` for cyclic imports and ``SourceReadError``
        if the root file cannot be read.  Every other problem ends up in
        ``Deck.diagnostics``.
        """
        path = self.source.normalize(str(root))
        with self._run_lock:
            t0 = time.monotonic()
            run = self._new_run(path, self.cache.begin(reset=True))
            deck = self._build(path, run)
            run.batch.commit()
            self._dirty.clear()
            self.root = path
            self.deck = deck
            self.last_parsed = tuple(run.parsed)
            logger.info(
                "Parsed %s in %.3fs: %d slide(s) from %d file(s), %d diagnostic(s)",
                path, time.monotonic() - t0, len(deck.slides), len(deck.sources),
                len(deck.diagnostics),
            )
            return deck

    def reparse(self, changed: Iterable[str]) -> Deck | _NoChange:
        """Bring the deck up to date after *changed* files were modified.

        Returns ``NO_CHANGE`` when no file reachable from the root changed
        (including saves that left a file's bytes identical).  When the
        changes are merged into a reparse started by another caller, this
        call returns that run's deck or raises that run's error.
        """
        if self.root is None:
            raise RuntimeError("reparse() called before parse()")
        changed = {self.source.normalize(str(p)) for p in changed}
        if not changed:
            return NO_CHANGE
        with self._pending_lock:
            ticket = next(self._tickets)
            self._pending |= changed
            self._pending_tickets.append(ticket)

        with self._run_lock:
            while True:
                outcome = self._outcomes.pop(ticket, None)
                if outcome is not None:
                    # Another caller's reparse already picked up our changes.
                    return outcome.unwrap()
                if self.options.debounce > 0:
                    time.sleep(self.options.debounce)
                with self._pending_lock:
                    paths, self._pending = self._pending, set()
                    tickets, self._pending_tickets = self._pending_tickets, []
                paths |= self._dirty
                try:
                    result = self._reparse(paths)
                except _Superseded:
                    logger.info("Reparse superseded by newer changes, restarting")
                    with self._pending_lock:
                        self._pending |= paths
                        self._pending_tickets[:0] = tickets
                    continue
                except Exception as exc:
                    # The batch was dropped; these files still differ from the cache.
                    self._dirty |= paths
                    self._settle(tickets, ticket, _Outcome(error=exc))
                    raise
                self._dirty -= paths
                self._settle(tickets, ticket, _Outcome(result=result))
                return result

    # -- orchestration -----------------------------------------------------

    def _new_run(self, root: str, batch: CacheBatch, superseded: Callable[[], bool] | None = None) -> _ParseRun:
        resolver = ImportResolver(
            self.source,
            root_dir=os.path.dirname(root),
            search_paths=self.options.search_paths,
            package_lookup=self.options.package_lookup,
        )
        run = _ParseRun(batch=batch, resolver=resolver)
        if superseded is not None:
            run.superseded = superseded
        return run

    def _settle(self, tickets: list[int], own: int, outcome: _Outcome) -> None:
        """Hand *outcome* to the other callers whose changes this run absorbed."""
        for ticket in tickets:
            if ticket != own:
                self._outcomes[ticket] = outcome

    def _has_pending(self) -> bool:
        with self._pending_lock:
            return bool(self._pending)

    def _reparse(self, paths: set[str]) -> Deck | _NoChange:
        affected = paths & self.cache.nodes()
        if not affected:
            logger.debug("Reparse: none of %d changed path(s) is part of the deck", len(paths))
            return NO_CHANGE

        # Saves that restore identical bytes are not changes, unless an earlier
        # reparse of that file failed and never reached the cache.
        preloaded: dict[str, bytes] = {}
        unchanged: set[str] = set()
        for path in sorted(affected):
            entry = self.cache.get(path)
            if entry is None or path in self._dirty:
                continue
            try:
                data = self.source.read(path)
            except SourceReadError:
                continue
            if fingerprint(data) == entry.fingerprint:
                logger.debug("Reparse: %s unchanged (same fingerprint)", path)
                unchanged.add(path)
            else:
                preloaded[path] = data
        affected -= unchanged
        if not affected:
            return NO_CHANGE

        invalid = set(affected)
        for path in affected:
            invalid |= self.cache.dependents(path)
        logger.info("Reparse: %d changed, %d invalidated", len(affected), len(invalid))

        t0 = time.monotonic()
        batch = self.cache.begin()
        for path in invalid:
            batch.invalidate(path)
        run = self._new_run(self.root, batch, superseded=self._has_pending)
        run.preloaded = preloaded
        deck = self._build(self.root, run)
        batch.retain(set(deck.sources))
        batch.commit()
        self.deck = deck
        self.last_parsed = tuple(run.parsed)
        logger.info(
            "Reparsed %s in %.3fs: %d file(s) parsed, %d slide(s)",
            self.root, time.monotonic() - t0, len(run.parsed), len(deck.slides),
        )
        return deck

    def _build(self, root: str, run: _ParseRun) -> Deck:
        if self.options.max_workers > 1:
            run.pool = ThreadPoolExecutor(
                max_workers=self.options.max_workers, thread_name_prefix="deckparse-read"
            )
        try:
            result = self._expand(root, run)
        finally:
            if run.pool is not None:
                run.pool.shutdown(wait=True, cancel_futures=True)
                run.pool = None
        return self._assemble(root, result)

    def _assemble(self, root: str, result: FileResult) -> Deck:
        defaults = deck_defaults(result.headmatter)
        slides = tuple(
            replace(slide, index=i, config=merge_config(defaults, slide.config))
            for i, slide in enumerate(result.slides)
        )
        features = frozenset().union(*(s.features for s in slides))
        return Deck(
            root=root,
            headmatter=copy.deepcopy(result.headmatter),
            slides=slides,
            features=features,
            diagnostics=_dedupe(result.diagnostics),
            sources=tuple(sorted(result.sources)),
        )

    # -- per-file expansion ------------------------------------------------

    def _expand(self, path: str, run: _ParseRun, line: int = 1) -> FileResult:
        if run.superseded():
            raise _Superseded()
        run.chain.check(path, line)
        cached = run.batch.get(path)
        if cached is not None:
            for member in run.chain.paths:
                if member in cached.sources:
                    raise ImportCycleError((*run.chain.paths, path, member), line=line)
            logger.debug("Cache hit: %s", path)
            return cached
        with run.chain.enter(path, line):
            data = self._read(path, run)
            result = self._parse_file(path, data, run)
        run.batch.put(path, result.fingerprint, result)
        return result

    def _read(self, path: str, run: _ParseRun) -> bytes:
        if path in run.preloaded:
            return run.preloaded.pop(path)
        future = run.pending_reads.pop(path, None)
        if future is not None:
            return future.result()
        return self.source.read(path)

    def _prefetch(self, paths: list[str], run: _ParseRun) -> None:
        """Start reading sibling imports concurrently; results are consumed in order."""
        todo = [
            p for p in dict.fromkeys(paths)
            if p not in run.pending_reads and p not in run.preloaded
            and p not in run.chain and run.batch.get(p) is None
        ]
        if run.pool is None or len(todo) < 2:
            return
        for p in todo:
            run.pending_reads[p] = run.pool.submit(self.source.read, p)

    def _parse_file(self, path: str, data: bytes, run: _ParseRun) -> FileResult:
        text = decode(data, path)
        split = split_slides(text, path)
        run.parsed.append(path)
        diagnostics: list[Diagnostic] = list(split.warnings)

        items: list[tuple[SlideBlock, dict[str, Any], str, Diagnostic | None]] = []
        headmatter: dict[str, Any] = {}
        for n, block in enumerate(split.segments):
            if n == 0 and not block.has_frontmatter and not block.content.strip():
                continue
            config, content, error = self._block_config(block)
            if error is not None:
                diagnostics.append(error)
            if n == 0:
                headmatter = config
                config = {k: v for k, v in config.items() if k not in HEAD_ONLY_KEYS}
            items.append((block, config, content, error))

        # Resolve every import of this file first so sibling reads overlap.
        targets: dict[int, tuple[ImportDirective, str] | DeckError] = {}
        imports: set[str] = set()
        for idx, (block, config, _, _) in enumerate(items):
            if IMPORT_KEY not in config:
                continue
            try:
                directive = parse_directive(config[IMPORT_KEY], path, block.start_line)
                target = run.resolver.resolve(directive.ref, path, block.start_line)
            except ImportNotFoundError as exc:
                imports.update(exc.candidates)
                targets[idx] = exc
            except ImportRangeError as exc:
                targets[idx] = exc
            else:
                imports.add(target)
                targets[idx] = (directive, target)
        self._prefetch([t[1] for t in targets.values() if isinstance(t, tuple)], run)

        slides: list[Slide] = []
        sources = {path}
        for idx, (block, config, content, error) in enumerate(items):
            target = targets.get(idx)
            if target is None:
                slides.append(self._make_slide(block, config, content, error))
            elif isinstance(target, DeckError):
                slides.append(self._broken(block, config, target, diagnostics))
            else:
                slides.extend(self._import(block, config, content, target, run, diagnostics, sources))

        logger.debug("Parsed %s: %d slide(s), %d import(s)", path, len(slides), len(imports))
        return FileResult(
            path=path,
            fingerprint=fingerprint(data),
            headmatter=headmatter,
            slides=tuple(slides),
            imports=frozenset(imports),
            diagnostics=_dedupe(diagnostics),
            sources=frozenset(sources),
        )

    def _block_config(self, block: SlideBlock) -> tuple[dict[str, Any], str, Diagnostic | None]:
        text, line, content = block.frontmatter, block.frontmatter_line, block.content
        if not block.has_frontmatter:
            extracted = extract_yaml_block(content)
            if extracted is not None:
                text, content, offset = extracted
                line = block.content_line + offset
        try:
            return parse_frontmatter(text, block.path, line), content, None
        except ConfigParseError as exc:
            logger.warning("%s", exc)
            return {}, content, Diagnostic.from_error(exc, end_line=max(exc.line, block.end_line))

    def _make_slide(
        self,
        block: SlideBlock,
        config: dict[str, Any],
        content: str,
        error: Diagnostic | None = None,
    ) -> Slide:
        body, notes = split_notes(content)
        title = config.get("title")
        level = config.get("level")
        heading = find_heading(body)
        if heading is not None:
            if title is None:
                title = heading[0]
            if level is None:
                level = heading[1]
        return Slide(
            index=0,
            config=config,
            content=body,
            source=block.path,
            start_line=block.start_line,
            end_line=block.end_line,
            features=self.detector.detect(body),
            notes=notes,
            title=str(title) if title is not None else None,
            level=level if isinstance(level, int) else None,
            error=error,
        )

    def _broken(
        self,
        block: SlideBlock,
        config: dict[str, Any],
        error: DeckError,
        diagnostics: list[Diagnostic],
    ) -> Slide:
        logger.warning("%s", error)
        diagnostic = Diagnostic.from_error(error, end_line=block.end_line)
        diagnostics.append(diagnostic)
        return broken_import(diagnostic, config, block.start_line, block.end_line)

    def _import(
        self,
        block: SlideBlock,
        config: dict[str, Any],
        content: str,
        target: tuple[ImportDirective, str],
        run: _ParseRun,
        diagnostics: list[Diagnostic],
        sources: set[str],
    ) -> list[Slide]:
        directive, target_path = target
        if content.strip():
            diagnostics.append(Diagnostic(
                severity="warning",
                code="import-content-ignored",
                message=f"content of a slide importing {directive.ref!r} is ignored",
                path=block.path,
                start_line=block.content_line,
                end_line=block.end_line,
            ))
        try:
            child = self._expand(target_path, run, block.start_line)
        except SourceReadError as exc:
            error = ImportNotFoundError(
                f"cannot read imported file {directive.ref!r}: {exc.message}",
                path=block.path,
                line=block.start_line,
            )
            return [self._broken(block, config, error, diagnostics)]

        diagnostics.extend(child.diagnostics)
        sources.update(child.sources)
        try:
            selected = apply_selection(child.slides, directive.selection, block.path, block.start_line)
        except ImportRangeError as exc:
            return [self._broken(block, config, exc, diagnostics)]
        return splice(selected, import_overrides(config))


def parse_deck(root: str, source: FileSource | None = None, options: ParserOptions | None = None) -> Deck:
    """Parse a deck once, without keeping an assembler around."""
    return DeckAssembler(source, options).parse(root)
