from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import ExitStack, contextmanager
from threading import Lock, RLock
from typing import ClassVar

CATALOGUE_LOCK_KEY = "__identity_catalogue__"


class DepartmentLockRegistry:
    """Exclusive write locks keyed by department id.

    Readers never take these locks. Multi-department writers acquire in sorted
    key order so two writers cannot deadlock each other.
    """

    _guard: ClassVar[Lock] = Lock()
    _locks: ClassVar[dict[str, RLock]] = {}

    @classmethod
    def _lock_for(cls, key: str) -> RLock:
        with cls._guard:
            lock = cls._locks.get(key)
            if lock is None:
                lock = RLock()
                cls._locks[key] = lock
            return lock

    @classmethod
    @contextmanager
    def hold(cls, *keys: str) -> Iterator[None]:
        with cls.hold_all(keys):
            yield

    @classmethod
    @contextmanager
    def hold_all(cls, keys: Iterable[str]) -> Iterator[None]:
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(cls._lock_for(key))
            yield
