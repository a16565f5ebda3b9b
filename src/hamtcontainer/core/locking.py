"""Reader/writer lock guarding a container's mutable state."""

import threading
from contextlib import contextmanager
from typing import Iterator, Optional


class ReadWriteLock:
    """Many concurrent readers or one writer.

    Waiting writers block new readers, so a steady stream of reads cannot
    starve a commit. The thread holding the write lock may enter ``read()``
    and ``write()`` again; callbacks run under the lock can therefore call
    back into the container that invoked them.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer: Optional[int] = None
        self._depth = 0
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        if self._owned():
            yield
            return

        with self._cond:
            while self._writer is not None or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        if self._owned():
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer is not None or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = threading.get_ident()
            self._depth = 1
        try:
            yield
        finally:
            with self._cond:
                self._depth = 0
                self._writer = None
                self._cond.notify_all()

    def _owned(self) -> bool:
        # Only the owning thread can observe its own ident here.
        return self._writer == threading.get_ident()
