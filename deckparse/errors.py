"""Exceptions raised while reading, splitting and assembling a deck."""

from __future__ import annotations


class DeckError(Exception):
    """Base class for every parse error.  Carries the offending location."""

    code = "deck-error"

    def __init__(self, message: str, path: str = "<string>", line: int = 1,
                 end_line: int | None = None):
        super().__init__(f"{path}:{line}: {message}")
        self.message = message
        self.path = path
        self.line = line
        self.end_line = end_line if end_line is not None else line


class ConfigParseError(DeckError):
    """Frontmatter is not valid YAML, or is not a mapping."""

    code = "config-parse"


class ImportNotFoundError(DeckError):
    """A ``src`` reference could not be resolved or read."""

    code = "import-not-found"

    def __init__(self, message: str, path: str = "<string>", line: int = 1,
                 end_line: int | None = None, candidates: tuple[str, ...] = ()):
        super().__init__(message, path, line, end_line)
        self.candidates = tuple(candidates)


class ImportRangeError(DeckError):
    """A selection expression names a position outside the imported file."""

    code = "import-range"


class ImportCycleError(DeckError):
    """A file imports itself, directly or through other files."""

    code = "import-cycle"

    def __init__(self, chain: tuple[str, ...] | list[str], line: int = 1):
        self.chain = tuple(chain)
        super().__init__(
            "import cycle: " + " -> ".join(self.chain),
            path=self.chain[-2] if len(self.chain) > 1 else self.chain[0],
            line=line,
        )


class SourceReadError(DeckError):
    """The file-access layer could not supply a file's text."""

    code = "source-read"
