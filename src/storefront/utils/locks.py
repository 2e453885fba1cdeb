"""Keyed exclusive locks for read-modify-write sequences.

Order transitions, stock mutations and payment resolutions take a lock per
affected key (``order:<id>``, ``product:<id>``) for the duration of their
unit of work. Keys are always acquired in sorted order so two operations
touching overlapping key sets cannot deadlock. Locks are per process.

An entry lives only while some thread holds or waits for its key, so the
table never outgrows the number of keys in flight.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


def order_key(order_id) -> str:
    return f"order:{order_id}"


def product_key(product_id) -> str:
    return f"product:{product_id}"


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Hold every given key exclusively until the block exits."""
        acquired: list[tuple[str, _Entry]] = []
        try:
            for key in sorted(set(keys)):
                entry = self._checkout(key)
                try:
                    entry.lock.acquire()
                except BaseException:
                    self._checkin(key, entry)
                    raise
                acquired.append((key, entry))
            yield
        finally:
            for key, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(key, entry)
