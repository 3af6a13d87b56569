"""Slide splitter: cuts a markdown document into a head block and slide blocks."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from .models import SlideBlock, Diagnostic

logger = logging.getLogger(__name__)

# A slide separator: three or more hyphens and nothing else on the line.
SEPARATOR_RE = re.compile(r"^-{3,}\s*$")

# Frontmatter is delimited by lines of exactly three hyphens.
_FRONTMATTER_FENCE_RE = re.compile(r"^---\s*$")

# Opening code fence: up to three spaces of indent, then ``` or ~~~ (or longer)
# followed by an optional info string.
FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})(.*)$")

# After a separator, a YAML key on the very next line opens a frontmatter block.
_YAML_KEY_RE = re.compile(r"""^["']?[A-Za-z_$@][\w$@.-]*["']?\s*:(\s|$)""")

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")

# One trailing HTML comment at the very end of a slide body.
_TRAILING_COMMENT_RE = re.compile(r"<!--((?:(?!<!--).)*?)-->\s*\Z", re.DOTALL)


@dataclass(frozen=True)
class SplitResult:
    head: SlideBlock
    blocks: tuple[SlideBlock, ...]
    warnings: tuple[Diagnostic, ...] = ()

    @property
    def segments(self) -> tuple[SlideBlock, ...]:
        return (self.head, *self.blocks)


def opens_fence(line: str) -> tuple[str, int] | None:
    """Return ``(char, length)`` if *line* opens a fenced code block."""
    m = FENCE_RE.match(line)
    if not m:
        return None
    marker, info = m.group(1), m.group(2)
    # Backtick fences may not carry backticks in their info string.
    if marker[0] == "`" and "`" in info:
        return None
    return marker[0], len(marker)


def closes_fence(line: str, fence: tuple[str, int]) -> bool:
    char, length = fence
    stripped = line.strip()
    if len(line) - len(line.lstrip(" ")) > 3:
        return False
    return len(stripped) >= length and stripped == char * len(stripped)


def fence_info(line: str) -> str:
    """Return the info string of a fence opener (``"ts {monaco}"`` etc.)."""
    m = FENCE_RE.match(line)
    return m.group(2).strip() if m else ""


def _find_frontmatter_close(lines: list[str], opener: int, at_start: bool) -> int | None:
    """Return the index of the line closing a frontmatter block opened at *opener*.

    At the start of a document any ``---`` pair is frontmatter.  After a slide
    separator the next line must look like a YAML key, otherwise the content
    that follows is ordinary markdown, and a code fence before the closing
    ``---`` means the block was never frontmatter.
    """
    if not _FRONTMATTER_FENCE_RE.match(lines[opener]):
        return None
    nxt = opener + 1
    if nxt >= len(lines) or not lines[nxt].strip():
        return None
    if not at_start and not _YAML_KEY_RE.match(lines[nxt]):
        return None
    for j in range(nxt, len(lines)):
        if _FRONTMATTER_FENCE_RE.match(lines[j]):
            return j
        if not at_start and opens_fence(lines[j]) is not None:
            return None
    return None


def _make_block(
    path: str,
    lines: list[str],
    start: int,
    end: int,
    frontmatter: tuple[int, int] | None,
    body_start: int,
) -> SlideBlock:
    # start/end/body_start are 0-based indices; end is exclusive.
    if frontmatter is not None:
        fm_start, fm_end = frontmatter
        fm_text = "\n".join(lines[fm_start:fm_end])
        fm_line = fm_start + 1
    else:
        fm_text = ""
        fm_line = body_start + 1
    return SlideBlock(
        path=path,
        content="\n".join(lines[body_start:end]),
        frontmatter=fm_text,
        start_line=start + 1,
        end_line=max(end, start + 1),
        frontmatter_line=fm_line,
        content_line=body_start + 1,
    )


def split_slides(text: str, path: str = "<string>") -> SplitResult:
    """Split *text* into a head block and an ordered sequence of slide blocks.

    Separators inside fenced code never split.  An unterminated fence swallows
    the rest of the document and is reported as a warning.
    """
    lines = text.splitlines()
    segments: list[SlideBlock] = []
    warnings: list[Diagnostic] = []

    start = 0
    body_start = 0
    frontmatter: tuple[int, int] | None = None
    i = 0

    if lines:
        close = _find_frontmatter_close(lines, 0, at_start=True)
        if close is not None:
            frontmatter = (1, close)
            body_start = i = close + 1

    fence: tuple[str, int] | None = None
    fence_line = 0
    while i < len(lines):
        line = lines[i]
        if fence is not None:
            if closes_fence(line, fence):
                fence = None
            i += 1
            continue
        opened = opens_fence(line)
        if opened is not None:
            fence, fence_line = opened, i
            i += 1
            continue
        if SEPARATOR_RE.match(line):
            segments.append(_make_block(path, lines, start, i, frontmatter, body_start))
            start = i
            frontmatter = None
            close = _find_frontmatter_close(lines, i, at_start=False)
            if close is not None:
                frontmatter = (i + 1, close)
                body_start = i = close + 1
            else:
                body_start = i = i + 1
            continue
        i += 1

    segments.append(_make_block(path, lines, start, len(lines), frontmatter, body_start))

    if fence is not None:
        warnings.append(Diagnostic(
            severity="warning",
            code="unterminated-fence",
            message="code fence is never closed; the rest of the file is treated as code",
            path=path,
            start_line=fence_line + 1,
            end_line=max(len(lines), fence_line + 1),
        ))
        logger.warning("%s:%d: unterminated code fence", path, fence_line + 1)

    logger.debug("Split %s: head + %d slide block(s)", path, len(segments) - 1)
    return SplitResult(head=segments[0], blocks=tuple(segments[1:]), warnings=tuple(warnings))


def split_notes(content: str) -> tuple[str, str | None]:
    """Strip trailing HTML comments from *content* and return them as notes.

    Comments earlier in the body stay in place; only the run of comments at the
    very end of a slide is speaker notes.
    """
    fragments: list[str] = []
    body = content.rstrip()
    while True:
        m = _TRAILING_COMMENT_RE.search(body)
        if not m:
            break
        fragments.insert(0, m.group(1).strip())
        body = body[: m.start()].rstrip()
    if not fragments:
        return content.strip("\n"), None
    return body.strip("\n"), "\n".join(fragments)


def find_heading(content: str) -> tuple[str, int] | None:
    """Return ``(text, level)`` of the first ATX heading outside code fences."""
    fence: tuple[str, int] | None = None
    for line in content.splitlines():
        if fence is not None:
            if closes_fence(line, fence):
                fence = None
            continue
        fence = opens_fence(line)
        if fence is not None:
            continue
        m = _HEADING_RE.match(line)
        if m:
            return m.group(2), len(m.group(1))
    return None
