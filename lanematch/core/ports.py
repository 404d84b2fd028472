"""
Ports
=====

Side-effect boundaries of the engine: audio feedback and the persistent
best-time record. Both are fire-and-forget from the session's point of view.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Dict, Optional, Protocol

from lanematch.core.exceptions import StorageError

logger = logging.getLogger(__name__)


class AudioFeedback(Protocol):
    """Plays a sound for a semantic event name ("success", "miss", ...)."""

    def play(self, event_name: str) -> None:
        ...


class NullAudio:
    """Audio port that does nothing."""

    def play(self, event_name: str) -> None:
        pass


class BestTimeStore(Protocol):
    """Single numeric record: the fastest full continuous-mode cycle, in ms."""

    def load(self) -> Optional[int]:
        ...

    def save(self, best_time_ms: int) -> None:
        ...


class MemoryBestTimeStore:
    """In-process store, lost when the process exits."""

    def __init__(self, initial: Optional[int] = None):
        self._value = initial

    def load(self) -> Optional[int]:
        return self._value

    def save(self, best_time_ms: int) -> None:
        self._value = int(best_time_ms)


class JsonBestTimeStore:
    """
    Best time kept in a small JSON file under a named key.

    Other keys in the file are preserved. A missing, unreadable or corrupt
    file reads as "no record". Writes go through a temp file and os.replace
    so a crash never leaves a half-written record.
    """

    def __init__(self, path: str, key: str = "continuousModeHighScore"):
        self._path = path
        self._key = key

    @property
    def path(self) -> str:
        return self._path

    def _read_all(self) -> Dict:
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Best-time store %s unreadable: %s", self._path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Best-time store %s is not a JSON object, ignoring", self._path)
            return {}
        return data

    def load(self) -> Optional[int]:
        value = self._read_all().get(self._key)
        if value is None:
            return None
        try:
            value = int(value)
        except (TypeError, ValueError):
            logger.warning("Best-time record %r is not a number, ignoring", value)
            return None
        return value if value > 0 else None

    def save(self, best_time_ms: int) -> None:
        """
        Persist a new record.

        Raises:
            StorageError: If the file cannot be written.
        """
        data = self._read_all()
        data[self._key] = int(best_time_ms)
        directory = os.path.dirname(os.path.abspath(self._path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_path, self._path)
            except BaseException:
                os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StorageError(f"Cannot save best time to {self._path}: {e}") from e
