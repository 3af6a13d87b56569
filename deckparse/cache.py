"""Per-file parse cache with an explicit import dependency graph."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Any

from .models import Diagnostic, Slide

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileResult:
    """A file parsed and import-expanded, before deck defaults are applied.

    ``imports`` are the files this one references directly (including ones
    that could not be found, so that creating them later invalidates this
    entry).  ``sources`` are all files read to produce ``slides``.
    """

    path: str
    fingerprint: str
    headmatter: dict[str, Any]
    slides: tuple[Slide, ...]
    imports: frozenset[str] = frozenset()
    diagnostics: tuple[Diagnostic, ...] = ()
    sources: frozenset[str] = frozenset()


class ParseCache:
    """Keyed store of ``FileResult`` plus who-imports-whom.

    Not thread-safe; owned by a single ``DeckAssembler``.
    """

    def __init__(self):
        self._entries: dict[str, FileResult] = {}
        self._imports: dict[str, frozenset[str]] = {}
        self._importers: dict[str, set[str]] = defaultdict(set)

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def paths(self) -> set[str]:
        return set(self._entries)

    def nodes(self) -> set[str]:
        """Every path in the dependency graph, cached or only referenced."""
        nodes = set(self._entries)
        for targets in self._imports.values():
            nodes.update(targets)
        return nodes

    def get(self, path: str, fingerprint: str | None = None) -> FileResult | None:
        entry = self._entries.get(path)
        if entry is None:
            return None
        if fingerprint is not None and entry.fingerprint != fingerprint:
            return None
        return entry

    def put(self, path: str, fingerprint: str, result: FileResult) -> None:
        if result.fingerprint != fingerprint:
            result = replace(result, fingerprint=fingerprint)
        self._unlink(path)
        self._entries[path] = result
        self._imports[path] = result.imports
        for target in result.imports:
            self._importers[target].add(path)

    def invalidate(self, path: str) -> None:
        if self._entries.pop(path, None) is not None:
            logger.debug("Invalidated %s", path)
        self._unlink(path)

    def imports(self, path: str) -> frozenset[str]:
        return self._imports.get(path, frozenset())

    def dependents(self, path: str) -> set[str]:
        """Files importing *path*, directly or transitively."""
        seen: set[str] = set()
        stack = [path]
        while stack:
            current = stack.pop()
            for importer in self._importers.get(current, ()):
                if importer not in seen:
                    seen.add(importer)
                    stack.append(importer)
        seen.discard(path)
        return seen

    def retain(self, keep: set[str]) -> None:
        """Evict every entry not in *keep*."""
        for path in list(self._entries):
            if path not in keep:
                self.invalidate(path)

    def clear(self) -> None:
        self._entries.clear()
        self._imports.clear()
        self._importers.clear()

    def begin(self, reset: bool = False) -> CacheBatch:
        return CacheBatch(self, reset=reset)

    def _unlink(self, path: str) -> None:
        for target in self._imports.pop(path, ()):
            importers = self._importers.get(target)
            if importers is not None:
                importers.discard(path)
                if not importers:
                    del self._importers[target]


class CacheBatch:
    """Staged cache updates, applied all at once by ``commit``.

    Reads see staged entries first.  A batch that is never committed leaves
    the cache untouched.
    """

    def __init__(self, cache: ParseCache, reset: bool = False):
        self._cache = cache
        self._reset = reset
        self._puts: dict[str, FileResult] = {}
        self._dropped: set[str] = set()
        self._retain: set[str] | None = None
        self.committed = False

    def get(self, path: str, fingerprint: str | None = None) -> FileResult | None:
        if path in self._puts:
            entry = self._puts[path]
            if fingerprint is not None and entry.fingerprint != fingerprint:
                return None
            return entry
        if self._reset or path in self._dropped:
            return None
        return self._cache.get(path, fingerprint)

    def put(self, path: str, fingerprint: str, result: FileResult) -> None:
        if result.fingerprint != fingerprint:
            result = replace(result, fingerprint=fingerprint)
        self._puts[path] = result
        self._dropped.discard(path)

    def invalidate(self, path: str) -> None:
        self._puts.pop(path, None)
        self._dropped.add(path)

    def retain(self, keep: set[str]) -> None:
        self._retain = set(keep)

    def commit(self) -> None:
        if self.committed:
            raise RuntimeError("cache batch already committed")
        if self._reset:
            self._cache.clear()
        for path in self._dropped:
            self._cache.invalidate(path)
        for path, result in self._puts.items():
            self._cache.put(path, result.fingerprint, result)
        if self._retain is not None:
            self._cache.retain(self._retain)
        self.committed = True
        logger.debug(
            "Committed cache batch: %d stored, %d dropped, %d entries total",
            len(self._puts), len(self._dropped), len(self._cache),
        )
