"""Block-growing record arenas with an intrusive free list.

Records live in parallel lists (one list per field) and are addressed by
integer handles. Free records are chained through the ``next`` field, so a
handle that is released goes straight back to the head of the free list and
is the first one handed out again.
"""
from __future__ import annotations

from typing import List, Optional, Tuple

from loguru import logger

NIL = -1


class PoolExhaustedError(MemoryError):
    """Raised when an arena would have to grow beyond its record limit."""


class Arena:
    """Struct-of-lists record allocator.

    Subclasses name their payload fields in ``fields``; every field becomes a
    list attribute indexed by handle. The arena grows ``block_size`` records at
    a time and never shrinks, so handles stay valid for the arena's lifetime.
    """

    fields: Tuple[str, ...] = ()

    def __init__(self, block_size: int, max_records: Optional[int] = None):
        if block_size < 1:
            raise ValueError(f"block_size must be >= 1, got {block_size}")
        self.block_size = block_size
        self.max_records = max_records
        self.next: List[int] = []
        for name in self.fields:
            setattr(self, name, [])
        self._free = NIL
        self.live = 0

    @property
    def capacity(self) -> int:
        return len(self.next)

    @property
    def free(self) -> int:
        return self.capacity - self.live

    def _grow(self) -> None:
        start = self.capacity
        size = self.block_size
        if self.max_records is not None:
            size = min(size, self.max_records - start)
            if size <= 0:
                raise PoolExhaustedError(
                    f"{type(self).__name__} exhausted: {self.max_records} records in use"
                )
        for name in self.fields:
            getattr(self, name).extend([0] * size)
        self.next.extend(range(start + 1, start + size + 1))
        self.next[-1] = NIL
        self._free = start
        logger.debug(f"{type(self).__name__} grew to {self.capacity} records")

    def acquire(self) -> int:
        """Pop a free handle, growing the arena by one block when needed."""
        if self._free == NIL:
            self._grow()
        handle = self._free
        self._free = self.next[handle]
        self.next[handle] = NIL
        self.live += 1
        return handle

    def release(self, handle: int) -> int:
        """Return ``handle`` to the free list. Returns its old ``next`` link."""
        following = self.next[handle]
        self.next[handle] = self._free
        self._free = handle
        self.live -= 1
        return following

    def release_chain(self, head: int) -> int:
        """Release every record of a ``next``-linked chain; returns how many."""
        released = 0
        while head != NIL:
            head = self.release(head)
            released += 1
        return released
