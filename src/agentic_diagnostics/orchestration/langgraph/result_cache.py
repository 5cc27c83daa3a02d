"""Turn-scoped caches shared by the tool workers of one turn."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass


class ReadWriteLock:
    """Many concurrent readers or one exclusive writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ResultCache:
    """Successful tool results keyed by call signature."""

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._results: dict[str, str] = {}

    def get(self, signature: str) -> str | None:
        if not signature:
            return None
        with self._lock.read_locked():
            return self._results.get(signature)

    def put(self, signature: str, result: str) -> None:
        if not signature:
            return
        with self._lock.write_locked():
            self._results[signature] = result

    def __contains__(self, signature: object) -> bool:
        with self._lock.read_locked():
            return signature in self._results

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._results)


@dataclass(frozen=True)
class ArtifactRef:
    path: str
    sha256: str


class ArtifactCache:
    """Artifact location per signature, so a repeated oversized result is written once."""

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._refs: dict[str, ArtifactRef] = {}

    def get(self, signature: str) -> ArtifactRef | None:
        if not signature:
            return None
        with self._lock.read_locked():
            return self._refs.get(signature)

    def put(self, signature: str, ref: ArtifactRef) -> None:
        if not signature or not ref.path:
            return
        with self._lock.write_locked():
            self._refs[signature] = ref

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._refs)
