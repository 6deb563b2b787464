"""Common storage utilities shared between the in-memory stores.

Holds the reader/writer lock guarding each store's mapping and the helpers
used for record copying and secret comparison.
"""

from __future__ import annotations

import contextlib
import copy
import hmac
import threading
from typing import Iterator, TypeVar

T = TypeVar("T")


class ReadWriteLock:
    """Many concurrent readers or a single writer.

    Writers are preferred: once a writer is waiting, new readers block until
    it has run, so a steady stream of lookups cannot starve ``create`` or
    ``delete``. Not reentrant; never acquire the write side while holding
    the read side on the same thread.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextlib.contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextlib.contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def detached(record: T) -> T:
    """Return a copy so callers never hold a reference into a store's mapping."""

    return copy.copy(record)


def secrets_match(expected: str, presented: str) -> bool:
    """Constant-time comparison of two opaque secrets."""

    if not isinstance(expected, str) or not isinstance(presented, str):
        return False
    return hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))


__all__ = ["ReadWriteLock", "detached", "secrets_match"]
