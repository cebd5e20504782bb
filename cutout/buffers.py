"""
Reusable scratch storage for the mask refinement and inference stages.

Buffers are borrowed for the duration of one stage and always handed back,
so repeated calls reuse the same memory instead of allocating per image.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Generic, Iterator, List, TypeVar

import numpy as np

from .config import INPUT_SIZE

T = TypeVar("T")


class Pool(Generic[T]):
    """Internally locked free-list of objects produced by ``factory``."""

    def __init__(self, factory: Callable[[], T]):
        self._factory = factory
        self._free: List[T] = []
        self._lock = threading.Lock()

    def get(self) -> T:
        with self._lock:
            if self._free:
                return self._free.pop()
        return self._factory()

    def put(self, item: T) -> None:
        with self._lock:
            self._free.append(item)

    @contextmanager
    def borrow(self) -> Iterator[T]:
        item = self.get()
        try:
            yield item
        finally:
            self.put(item)

    def __len__(self) -> int:
        with self._lock:
            return len(self._free)


class ScratchBuffers:
    """
    Pair of uint8 buffers:
      - tmp: resized mask
      - h_pass: horizontal blur output

    Capacity only grows; the working length is set per call by ``reserve``.
    """

    __slots__ = ("_tmp", "_h_pass", "size")

    def __init__(self) -> None:
        self._tmp = np.empty(0, dtype=np.uint8)
        self._h_pass = np.empty(0, dtype=np.uint8)
        self.size = 0

    @property
    def capacity(self) -> int:
        return int(self._tmp.size)

    def reserve(self, size: int) -> None:
        if size < 0:
            raise ValueError(f"Buffer size must be >= 0, got {size}")
        if self._tmp.size < size:
            self._tmp = np.empty(size, dtype=np.uint8)
            self._h_pass = np.empty(size, dtype=np.uint8)
        self.size = size

    @property
    def tmp(self) -> np.ndarray:
        return self._tmp[: self.size]

    @property
    def h_pass(self) -> np.ndarray:
        return self._h_pass[: self.size]


class ScratchPool:
    def __init__(self) -> None:
        self._pool: Pool[ScratchBuffers] = Pool(ScratchBuffers)

    def get(self, size: int) -> ScratchBuffers:
        buf = self._pool.get()
        try:
            buf.reserve(size)
        except ValueError:
            self._pool.put(buf)
            raise
        return buf

    def put(self, buf: ScratchBuffers) -> None:
        self._pool.put(buf)

    @contextmanager
    def lease(self, size: int) -> Iterator[ScratchBuffers]:
        buf = self.get(size)
        try:
            yield buf
        finally:
            self.put(buf)


class TensorPool:
    """Pooled float32 arrays for the model input (1,3,S,S) and logit output (1,1,S,S)."""

    def __init__(self, input_size: int = INPUT_SIZE):
        self.input_size = int(input_size)
        s = self.input_size
        self._inputs: Pool[np.ndarray] = Pool(lambda: np.zeros((1, 3, s, s), dtype=np.float32))
        self._outputs: Pool[np.ndarray] = Pool(lambda: np.zeros((1, 1, s, s), dtype=np.float32))

    def input(self):
        return self._inputs.borrow()

    def output(self):
        return self._outputs.borrow()
