# nanochat/utils/async_helpers.py

import asyncio
import itertools
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable, Iterable, List, Tuple

logger = logging.getLogger(__name__)


class KeyedLocks:
    """One asyncio.Lock per key, created on demand and dropped once unused.

    `hold(*keys)` acquires several keys in sorted order so two holders of
    overlapping key sets cannot deadlock.
    """

    def __init__(self):
        self._locks: Dict[Hashable, Tuple[asyncio.Lock, int]] = {}

    def _checkout(self, key: Hashable) -> asyncio.Lock:
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)
        return lock

    def _checkin(self, key: Hashable) -> None:
        lock, users = self._locks[key]
        if users <= 1:
            del self._locks[key]
        else:
            self._locks[key] = (lock, users - 1)

    @asynccontextmanager
    async def hold(self, *keys: Hashable) -> AsyncIterator[None]:
        ordered: List[Hashable] = sorted(set(keys), key=repr)
        acquired: List[Hashable] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    await lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                lock, _ = self._locks[key]
                lock.release()
                self._checkin(key)

    def locked(self, key: Hashable) -> bool:
        entry = self._locks.get(key)
        return bool(entry and entry[0].locked())

    def __len__(self) -> int:
        return len(self._locks)


class GenerationToken:
    """Liveness token of one fetch; dies when cancelled or superseded"""

    def __init__(self, tracker: "GenerationTracker", key: Hashable, generation: int):
        self._tracker = tracker
        self.key = key
        self.generation = generation

    def is_live(self) -> bool:
        return self._tracker.current(self.key) == self.generation

    def cancel(self) -> None:
        self._tracker.cancel_token(self)

    def __repr__(self) -> str:
        state = "live" if self.is_live() else "dead"
        return f"GenerationToken({self.key!r}, {self.generation}, {state})"


class GenerationTracker:
    """Issues generation tokens per scope key"""

    def __init__(self):
        self._counter = itertools.count(1)
        self._live: Dict[Hashable, int] = {}

    def begin(self, key: Hashable) -> GenerationToken:
        """Start a new generation for `key`; older tokens for it die"""
        generation = next(self._counter)
        self._live[key] = generation
        return GenerationToken(self, key, generation)

    def current(self, key: Hashable):
        return self._live.get(key)

    def cancel(self, key: Hashable) -> None:
        if self._live.pop(key, None) is not None:
            logger.debug(f"Cancelled generation for {key!r}")

    def cancel_token(self, token: GenerationToken) -> None:
        if self._live.get(token.key) == token.generation:
            del self._live[token.key]

    def finish(self, token: GenerationToken) -> None:
        """Retire a token that completed"""
        self.cancel_token(token)

    def cancel_all(self, keys: Iterable[Hashable] = None) -> None:
        for key in list(keys if keys is not None else self._live):
            self._live.pop(key, None)
