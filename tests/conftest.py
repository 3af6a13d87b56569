"""Shared fixtures for deckparse tests."""

from __future__ import annotations

import logging
import textwrap

import pytest

from deckparse.assembler import DeckAssembler
from deckparse.config import ParserOptions
from deckparse.source import MemorySource


# ---------------------------------------------------------------------------
# Minimal decks (strings) used across multiple test modules
# ---------------------------------------------------------------------------

COVER_DECK = "---\nlayout: cover\n---\n# A\n---\n# B"

FIVE_SLIDES = textwrap.dedent("""\
    # One
    ---
    # Two
    ---
    # Three
    ---
    # Four
    ---
    # Five
    """)

THREE_SLIDES = textwrap.dedent("""\
    # B1
    ---
    # B2
    ---
    # B3
    """)

FENCED_DECK = textwrap.dedent("""\
    ---
    title: Fences
    ---

    # Code

    ```yaml
    ---
    key: value
    ---
    ```

    ---

    # After
    """)


def make_assembler(files: dict[str, str], **options) -> tuple[DeckAssembler, MemorySource]:
    source = MemorySource(files)
    return DeckAssembler(source, ParserOptions(**options)), source


@pytest.fixture
def memory_deck():
    """Factory: build an assembler over in-memory files."""
    return make_assembler


@pytest.fixture
def tmp_deck(tmp_path):
    """Write COVER_DECK to a temp file and return its path."""
    p = tmp_path / "deck.md"
    p.write_text(COVER_DECK)
    return p


@pytest.fixture(autouse=True)
def _reset_cli_logging():
    """The CLI attaches handlers to the package logger; drop them after each test."""
    yield
    logger = logging.getLogger("deckparse")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
