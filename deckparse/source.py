"""File access: where deck text comes from."""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path

from .errors import SourceReadError

logger = logging.getLogger(__name__)


def fingerprint(data: bytes) -> str:
    """Content fingerprint used by the parse cache."""
    return hashlib.sha256(data).hexdigest()


def decode(data: bytes, path: str) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise SourceReadError(f"not valid UTF-8: {exc.reason}", path=path) from exc


class FileSource:
    """Interface the parser uses to read files.

    Paths handed to ``read`` and ``exists`` have already gone through
    ``normalize``.
    """

    def normalize(self, path: str) -> str:
        return os.path.normpath(path)

    def read(self, path: str) -> bytes:
        raise NotImplementedError

    def exists(self, path: str) -> bool:
        raise NotImplementedError


class LocalFileSource(FileSource):
    """Reads files from the local filesystem."""

    def normalize(self, path: str) -> str:
        return os.path.abspath(os.path.expanduser(path))

    def read(self, path: str) -> bytes:
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            raise SourceReadError(exc.strerror or str(exc), path=path) from exc
        logger.debug("Read %s (%d bytes)", path, len(data))
        return data

    def exists(self, path: str) -> bool:
        return os.path.isfile(path)


class MemorySource(FileSource):
    """Serves files from a dict, e.g. unsaved editor buffers or test fixtures."""

    def __init__(self, files: dict[str, str | bytes] | None = None):
        self._files: dict[str, bytes] = {}
        self.reads: list[str] = []
        for path, text in (files or {}).items():
            self.set(path, text)

    def set(self, path: str, text: str | bytes) -> str:
        key = self.normalize(path)
        self._files[key] = text.encode("utf-8") if isinstance(text, str) else text
        return key

    def remove(self, path: str) -> None:
        self._files.pop(self.normalize(path), None)

    def read(self, path: str) -> bytes:
        self.reads.append(path)
        try:
            return self._files[path]
        except KeyError:
            raise SourceReadError("no such file", path=path) from None

    def exists(self, path: str) -> bool:
        return path in self._files
