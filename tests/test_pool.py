import pytest

from motion_blobs.background import FREE_CELLS_BLOCK_SIZE, CellPool
from motion_blobs.blobs import FREE_BLOBS_BLOCK_SIZE, BlobPool
from motion_blobs.pool import NIL, Arena, PoolExhaustedError


def test_acquire_grows_one_block_at_a_time():
    pool = CellPool()
    assert pool.capacity == 0
    first = pool.acquire()
    assert pool.capacity == FREE_CELLS_BLOCK_SIZE
    assert pool.live == 1
    assert pool.free == FREE_CELLS_BLOCK_SIZE - 1
    for _ in range(FREE_CELLS_BLOCK_SIZE - 1):
        pool.acquire()
    assert pool.capacity == FREE_CELLS_BLOCK_SIZE
    pool.acquire()
    assert pool.capacity == 2 * FREE_CELLS_BLOCK_SIZE
    assert first == 0


def test_released_handle_is_reused_first():
    pool = BlobPool()
    a = pool.acquire()
    b = pool.acquire()
    pool.release(a)
    assert pool.acquire() == a
    assert pool.live == 2
    assert pool.capacity == FREE_BLOBS_BLOCK_SIZE
    assert b != a


def test_release_keeps_other_handles_intact():
    pool = CellPool()
    a = pool.new_cell(1, 2, 3)
    b = pool.new_cell(4, 5, 6, count=2)
    pool.release(a)
    pool.new_cell(9, 9, 9)
    assert (pool.r[b], pool.g[b], pool.b[b], pool.count[b]) == (4, 5, 6, 2)


def test_bounded_pool_reports_exhaustion():
    pool = CellPool(max_cells=3)
    handles = [pool.acquire() for _ in range(3)]
    assert pool.capacity == 3
    with pytest.raises(PoolExhaustedError):
        pool.acquire()
    pool.release(handles[0])
    assert pool.acquire() == handles[0]


def test_exhaustion_is_a_memory_error():
    assert issubclass(PoolExhaustedError, MemoryError)


def test_release_chain_frees_linked_records():
    pool = CellPool()
    a, b, c = pool.acquire(), pool.acquire(), pool.acquire()
    pool.next[a] = b
    pool.next[b] = c
    pool.next[c] = NIL
    assert pool.release_chain(a) == 3
    assert pool.live == 0


def test_block_size_must_be_positive():
    with pytest.raises(ValueError):
        Arena(0)
