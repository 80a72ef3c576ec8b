"""Monotonic generation tokens.

A consumer that issues asynchronous work for a slot (a widget, a row, a
media element) takes a fresh token with :meth:`GenerationCounter.advance`
and applies the result only if :meth:`GenerationCounter.is_current` still
holds when it arrives.  Newer requests and :meth:`release` invalidate older
tokens.
"""

from __future__ import annotations

import itertools
import threading
from typing import Hashable


class GenerationCounter:
    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._current: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def advance(self, key: Hashable) -> int:
        """Issue a new token for *key*, superseding any earlier one."""
        with self._lock:
            token = next(self._counter)
            self._current[key] = token
            return token

    def is_current(self, key: Hashable, token: int) -> bool:
        with self._lock:
            return self._current.get(key) == token

    def release(self, key: Hashable) -> None:
        """Forget *key*; every outstanding token for it becomes stale."""
        with self._lock:
            self._current.pop(key, None)

    def __len__(self) -> int:
        return len(self._current)
