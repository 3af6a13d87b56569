"""Shared data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


# Keys whose truthy value marks a slide as hidden.
_HIDDEN_KEYS = ("hide", "disabled")


@dataclass(frozen=True)
class SlideBlock:
    """One segment of a markdown file, as produced by the splitter.

    Line numbers are 1-based and inclusive.  ``start_line`` is the separator
    (or the first line of the file for the head block) so that the blocks of
    one file tile it without gaps.
    """

    path: str
    content: str
    frontmatter: str = ""
    start_line: int = 1
    end_line: int = 1
    frontmatter_line: int = 1
    content_line: int = 1

    @property
    def has_frontmatter(self) -> bool:
        return bool(self.frontmatter.strip())


@dataclass(frozen=True)
class SelectionRange:
    """A 1-based inclusive range of slide positions.  ``end=None`` is open-ended."""

    start: int
    end: int | None

    def __str__(self) -> str:
        if self.end is None:
            return f"{self.start}-"
        if self.end == self.start:
            return str(self.start)
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class ImportDirective:
    ref: str
    selection: tuple[SelectionRange, ...] | None = None

    def __str__(self) -> str:
        if self.selection is None:
            return self.ref
        return f"{self.ref}:{','.join(str(r) for r in self.selection)}"


@dataclass(frozen=True)
class Diagnostic:
    """A non-fatal problem found while parsing, with its source location."""

    severity: str
    code: str
    message: str
    path: str
    start_line: int
    end_line: int

    @classmethod
    def from_error(cls, error, severity: str = "error", end_line: int | None = None) -> Diagnostic:
        return cls(
            severity=severity,
            code=error.code,
            message=error.message,
            path=error.path,
            start_line=error.line,
            end_line=end_line if end_line is not None else error.end_line,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity,
            "code": self.code,
            "message": self.message,
            "path": self.path,
            "start_line": self.start_line,
            "end_line": self.end_line,
        }


@dataclass(frozen=True)
class Slide:
    index: int
    config: dict[str, Any]
    content: str
    source: str
    start_line: int
    end_line: int
    features: frozenset[str] = frozenset()
    notes: str | None = None
    title: str | None = None
    level: int | None = None
    error: Diagnostic | None = None

    @property
    def hidden(self) -> bool:
        return any(bool(self.config.get(key)) for key in _HIDDEN_KEYS)

    @property
    def layout(self) -> str | None:
        return self.config.get("layout")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "index": self.index,
            "config": self.config,
            "content": self.content,
            "notes": self.notes,
            "title": self.title,
            "level": self.level,
            "features": sorted(self.features),
            "hidden": self.hidden,
            "source": {
                "path": self.source,
                "start_line": self.start_line,
                "end_line": self.end_line,
            },
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


@dataclass(frozen=True)
class Deck:
    root: str
    headmatter: dict[str, Any]
    slides: tuple[Slide, ...]
    features: frozenset[str] = frozenset()
    diagnostics: tuple[Diagnostic, ...] = ()
    sources: tuple[str, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.slides)

    def __iter__(self):
        return iter(self.slides)

    @property
    def title(self) -> str | None:
        title = self.headmatter.get("title")
        if title is not None:
            return str(title)
        if self.slides:
            return self.slides[0].title
        return None

    def slide_at(self, path: str, line: int) -> Slide | None:
        """Return the slide whose provenance covers ``line`` of ``path``.

        An imported file can be spliced in more than once; the first slide in
        deck order wins.
        """
        for slide in self.slides:
            if slide.source == path and slide.start_line <= line <= slide.end_line:
                return slide
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": self.root,
            "title": self.title,
            "headmatter": self.headmatter,
            "features": sorted(self.features),
            "sources": list(self.sources),
            "slides": [s.to_dict() for s in self.slides],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


class _NoChange:
    """Returned by ``DeckAssembler.reparse`` when nothing reachable changed."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_CHANGE"


NO_CHANGE = _NoChange()
