"""Frontmatter parsing and effective-config merging."""

from __future__ import annotations

import copy
import logging
import re
from typing import Any, Callable

import yaml

from .errors import ConfigParseError

logger = logging.getLogger(__name__)

# A ```yaml block at the very top of a slide body acts as that slide's
# frontmatter when the slide has no --- frontmatter of its own.
_YAML_BLOCK_RE = re.compile(
    r"\A(?:[ \t]*\n)*```ya?ml[ \t]*\n(.*?)^```[ \t]*$\n?", re.DOTALL | re.MULTILINE
)

# Keys that describe a single slide.  Given in the headmatter they configure
# the first slide only and are not passed down to the rest of the deck.
SLIDE_LOCAL_KEYS = frozenset({
    "layout",
    "src",
    "hide",
    "disabled",
    "title",
    "level",
    "class",
    "clicks",
    "clicksStart",
    "routeAlias",
    "background",
    "preload",
    "zoom",
    "dragPos",
})

# Headmatter keys consumed by the deck itself rather than copied into slides.
HEAD_ONLY_KEYS = frozenset({"defaults"})


def _class_tokens(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        tokens: list[str] = []
        for item in value:
            tokens.extend(_class_tokens(item))
        return tokens
    return str(value).split()


def _merge_class(base: Any, overlay: Any) -> str:
    tokens = _class_tokens(base) + _class_tokens(overlay)
    return " ".join(dict.fromkeys(tokens))


# Keys that accumulate across config layers instead of being replaced.
# Every other key, including lists and nested maps, is replaced wholesale.
#
#   key     | merge
#   --------+--------------------------------------------------------------
#   class   | union of whitespace-separated tokens, lower layer first
ADDITIVE_KEYS: dict[str, Callable[[Any, Any], Any]] = {
    "class": _merge_class,
}


def parse_frontmatter(text: str, path: str = "<string>", line: int = 1) -> dict[str, Any]:
    """Parse a frontmatter block into a config mapping.

    *line* is the 1-based line of *text* within *path*; it is used to place
    errors.  Raises ``ConfigParseError`` for invalid YAML or a non-mapping
    document.
    """
    if not text.strip():
        return {}
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        offset = mark.line if mark is not None else 0
        problem = getattr(exc, "problem", None) or str(exc)
        raise ConfigParseError(
            f"invalid frontmatter: {problem}",
            path=path,
            line=line + offset,
        ) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigParseError(
            f"frontmatter must be a mapping, not {type(data).__name__}",
            path=path,
            line=line,
        )
    return {str(k): v for k, v in data.items()}


def extract_yaml_block(content: str) -> tuple[str, str, int] | None:
    """Split a leading ```yaml block off *content*.

    Returns ``(yaml_text, remaining_content, line_offset)`` where
    *line_offset* is the 0-based line of the YAML text within *content*, or
    ``None`` if the content does not start with such a block.
    """
    m = _YAML_BLOCK_RE.match(content)
    if not m:
        return None
    offset = content.count("\n", 0, m.start(1))
    return m.group(1), content[m.end():], offset


def merge_config(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Overlay *overlay* on *base* key by key and return a new mapping."""
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        combine = ADDITIVE_KEYS.get(key)
        if combine is not None and key in merged:
            merged[key] = combine(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def deck_defaults(headmatter: dict[str, Any]) -> dict[str, Any]:
    """Return the config layer every slide starts from.

    That is the headmatter minus slide-local and head-only keys, with the
    headmatter's ``defaults`` map laid over it.
    """
    base = {
        k: v for k, v in headmatter.items()
        if k not in SLIDE_LOCAL_KEYS and k not in HEAD_ONLY_KEYS
    }
    defaults = headmatter.get("defaults")
    if isinstance(defaults, dict):
        return merge_config(base, defaults)
    if defaults is not None:
        logger.warning("Ignoring headmatter 'defaults': expected a mapping, got %s",
                       type(defaults).__name__)
    return copy.deepcopy(base)


def effective_config(headmatter: dict[str, Any], slide_config: dict[str, Any]) -> dict[str, Any]:
    return merge_config(deck_defaults(headmatter), slide_config)
