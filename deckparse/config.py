"""Parser options."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ParserOptions:
    # Extra directories searched for bare (non-relative) ``src`` paths.
    search_paths: list[str] = field(default_factory=list)
    # Threads used to read sibling imports of one file.
    max_workers: int = 4
    # Extra feature markers, name -> regex.
    markers: dict[str, str] = field(default_factory=dict)
    # Seconds a reparse waits for further changes before starting.
    debounce: float = 0.0
    # Resolve ``src: pkg/slides.md`` through installed Python packages.
    package_lookup: bool = True
