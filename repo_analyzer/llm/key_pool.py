"""Round-robin API key rotation.

A KeyPool is built once from the configured keys and never mutated. The
only moving part is the cursor, advanced under a lock, so agents built
concurrently from the same pool each get the next key without racing.
"""

import threading
from typing import Sequence

from repo_analyzer.errors import ValidationError


class KeyPool:
    __slots__ = ("_keys", "_cursor", "_lock")

    def __init__(self, keys: Sequence[str]):
        cleaned = tuple(k for k in keys if k)
        if not cleaned:
            raise ValidationError("KeyPool needs at least one API key")
        self._keys = cleaned
        self._cursor = 0
        self._lock = threading.Lock()

    @property
    def keys(self) -> tuple[str, ...]:
        return self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def next_key(self) -> str:
        """Return the next key in rotation."""
        with self._lock:
            key = self._keys[self._cursor % len(self._keys)]
            self._cursor += 1
        return key
