"""Detect optional heavy features (math, diagrams, live editors) in slide content."""

from __future__ import annotations

import logging
import re

from .splitter import closes_fence, fence_info, opens_fence

logger = logging.getLogger(__name__)

MATH = "math"
MERMAID = "mermaid"
PLANTUML = "plantuml"
MONACO = "monaco"
TWEET = "tweet"

# Fence languages that render as diagrams
_DIAGRAM_LANGUAGES = {
    "mermaid": MERMAID,
    "plantuml": PLANTUML,
}

# Fence languages that are typeset as math
_MATH_LANGUAGES = {"math", "latex", "katex"}

# Live editor marker in a fence info string: ```ts {monaco} / {monaco-run}
_MONACO_RE = re.compile(r"\{monaco(-run|-diff)?\b[^}]*\}")

# Display math: a line holding $$ (opening or closing a block, or both)
_BLOCK_MATH_RE = re.compile(r"^\s*\$\$", re.MULTILINE)

# Inline math: $x^2$, not "$5 and $10" and not an escaped \$
_INLINE_MATH_RE = re.compile(r"(?<![\\$\w])\$(?=\S)[^$\n]*?(?<=\S)\$(?![\d$])")

_INLINE_CODE_RE = re.compile(r"`+[^`\n]*`+")

# Markers registered by default on top of the structural checks
DEFAULT_MARKERS = {
    TWEET: r"<Tweet\b",
}


def _split_code(content: str) -> tuple[str, list[str]]:
    """Return the prose of *content* with fenced code removed, plus fence info strings."""
    prose: list[str] = []
    infos: list[str] = []
    fence = None
    for line in content.splitlines():
        if fence is not None:
            if closes_fence(line, fence):
                fence = None
            continue
        fence = opens_fence(line)
        if fence is not None:
            infos.append(fence_info(line))
            continue
        prose.append(line)
    return "\n".join(prose), infos


class FeatureDetector:
    """Scans slide content for feature markers.

    Structural checks (math, diagram and editor fences) are always on; extra
    markers are plain regexes searched in the whole content.
    """

    def __init__(self, markers: dict[str, str] | None = None):
        self._markers: dict[str, re.Pattern] = {}
        for name, pattern in DEFAULT_MARKERS.items():
            self.register(name, pattern)
        for name, pattern in (markers or {}).items():
            self.register(name, pattern)

    def register(self, name: str, pattern: str) -> None:
        self._markers[name] = re.compile(pattern, re.MULTILINE)
        logger.debug("Registered feature marker %s: %s", name, pattern)

    @property
    def markers(self) -> dict[str, str]:
        return {name: rx.pattern for name, rx in self._markers.items()}

    def detect(self, content: str) -> frozenset[str]:
        features: set[str] = set()
        prose, infos = _split_code(content)

        for info in infos:
            lang = info.split(None, 1)[0].lower() if info else ""
            lang = lang.split("{", 1)[0]
            if lang in _DIAGRAM_LANGUAGES:
                features.add(_DIAGRAM_LANGUAGES[lang])
            if lang in _MATH_LANGUAGES:
                features.add(MATH)
            if _MONACO_RE.search(info):
                features.add(MONACO)

        prose = _INLINE_CODE_RE.sub("", prose)
        if _BLOCK_MATH_RE.search(prose) or _INLINE_MATH_RE.search(prose):
            features.add(MATH)

        for name, rx in self._markers.items():
            if rx.search(content):
                features.add(name)

        return frozenset(features)


_default_detector: FeatureDetector | None = None


def detect_features(content: str) -> frozenset[str]:
    """Detect features with the default marker set."""
    global _default_detector
    if _default_detector is None:
        _default_detector = FeatureDetector()
    return _default_detector.detect(content)
