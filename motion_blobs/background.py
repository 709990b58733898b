"""Multi-modal mean background model.

Every pixel owns a short linked list of color cells. A cell keeps running
R/G/B sums plus an observation count, so its mean color is implicit
(``sum // count``). Incoming pixels are matched against the cells of their
list in order; a pixel whose matching cell is mature (``count >= cth``) is
background and gets blacked out, anything else is left untouched.

Typical use::

    model = BackgroundModel.from_frame(first_frame)
    for n, frame in enumerate(frames, start=1):
        model.match_foreground(frame, epsilon=33, cth=4)
        if n % dec_rate == 0:
            model.decimate(cth=4)

Reference: Apewokin et al., "Multimodal Mean Adaptive Backgrounding for
Embedded Real-time Video Surveillance", ECVW 2007.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Set, Tuple

import numpy as np
from loguru import logger

from .pool import NIL, Arena

FREE_CELLS_BLOCK_SIZE = 100


class LockedModelError(RuntimeError):
    """A ratiometric operation was applied to a color-locked cell list."""


class CellPool(Arena):
    """Arena of color cells: ``r, g, b`` sums, ``count`` and the list link."""

    fields = ("r", "g", "b", "count")

    def __init__(self, max_cells: Optional[int] = None):
        super().__init__(FREE_CELLS_BLOCK_SIZE, max_cells)

    def new_cell(self, r: int, g: int, b: int, count: int = 1) -> int:
        cell = self.acquire()
        self.r[cell] = r
        self.g[cell] = g
        self.b[cell] = b
        self.count[cell] = count
        return cell

    def mean(self, cell: int) -> Tuple[int, int, int]:
        count = self.count[cell]
        return self.r[cell] // count, self.g[cell] // count, self.b[cell] // count


@dataclass
class Demographics:
    """Population study of a background model."""
    num_sets: int
    average_length: float
    average_predominance: int  # percent of observations held by the top cell
    # lengths 1..9 and 10+
    length_histogram: List[int] = field(default_factory=lambda: [0] * 10)
    # index 0 is "<55%", index i >= 1 is the [50 + 5i, 55 + 5i) bucket
    predominance_histogram: List[int] = field(default_factory=lambda: [0] * 11)

    def summary(self) -> str:
        lengths = ", ".join(
            f"{i + 1}: {n}" for i, n in enumerate(self.length_histogram[:9])
        )
        lengths += f", 10+: {self.length_histogram[9]}"
        rates = ", ".join(
            f"{5 * i + 50}%: {self.predominance_histogram[i]}" for i in range(10, 0, -1)
        )
        rates += f", <50%: {self.predominance_histogram[0]}"
        return (
            f"length avg={self.average_length:.1f} [{lengths}] | "
            f"predominance avg={self.average_predominance} [{rates}]"
        )


def rainbow(x: int) -> Tuple[int, int, int]:
    """Map 0..255 onto a blue -> cyan -> green -> yellow -> red spectrum."""
    if x < 64:
        return 0, x << 2, 255
    if x < 128:
        return 0, 255, 255 - ((x % 64) << 2)
    if x < 192:
        return (x % 64) << 2, 255, 0
    return 255, 255 - ((x % 64) << 2), 0


def rainbow_array(values: np.ndarray) -> np.ndarray:
    """Vectorised ``rainbow`` over an integer array; returns ``values.shape + (3,)``."""
    x = np.asarray(values, dtype=np.int32)
    ramp = (x % 64) << 2
    out = np.zeros(x.shape + (3,), dtype=np.uint8)
    low, mid, high = x < 64, (x >= 64) & (x < 128), (x >= 128) & (x < 192)
    top = x >= 192
    out[..., 0] = np.select([low | mid, high, top], [0, ramp, 255])
    out[..., 1] = np.select([low, mid | high, top], [x << 2, 255, 255 - ramp])
    out[..., 2] = np.select([low, mid, high | top], [255, 255 - ramp, 0])
    return out


class BackgroundModel:
    """Per-pixel lists of color cells backed by a shared ``CellPool``."""

    def __init__(self, width: int, height: int, pool: Optional[CellPool] = None):
        if width < 1 or height < 1:
            raise ValueError(f"Model dimensions must be positive, got {width}x{height}")
        self.width = width
        self.height = height
        self.pool = pool if pool is not None else CellPool()
        self.heads: List[int] = []
        self._locked: Set[int] = set()

    @classmethod
    def from_frame(cls, frame: np.ndarray, pool: Optional[CellPool] = None) -> "BackgroundModel":
        """Build the initial model: one cell per pixel seeded with its color."""
        height, width = _frame_size(frame)
        model = cls(width, height, pool)
        new_cell = model.pool.new_cell
        model.heads = [new_cell(r, g, b) for r, g, b in frame.reshape(-1, 3).tolist()]
        logger.info(f"Built {width}x{height} background model ({len(model.heads)} sets)")
        return model

    @property
    def num_sets(self) -> int:
        return len(self.heads)

    # === List helpers ===

    def cells(self, index: int) -> Iterator[int]:
        cell = self.heads[index]
        following = self.pool.next
        while cell != NIL:
            yield cell
            cell = following[cell]

    def length(self, index: int) -> int:
        return sum(1 for _ in self.cells(index))

    def last_cell(self, index: int) -> int:
        following = self.pool.next
        cell = self.heads[index]
        while following[cell] != NIL:
            cell = following[cell]
        return cell

    def describe(self, index: int) -> str:
        """Human readable dump of one set (ratiometric and reduced values)."""
        pool = self.pool
        lines = [f"Set {index}:"]
        for cell in self.cells(index):
            count = pool.count[cell]
            if count > 0:
                r, g, b = pool.mean(cell)
                lines.append(
                    f"   {cell}: [{pool.r[cell]:8d} ({r:3d}), {pool.g[cell]:8d} ({g:3d}), "
                    f"{pool.b[cell]:8d} ({b:3d}), {count:6d}]"
                )
            else:
                lines.append(
                    f"   {cell}: [({pool.r[cell]:3d}, {pool.g[cell]:3d}, {pool.b[cell]:3d}), {-count:6d}]"
                )
        return "\n".join(lines)

    def _pixels(self, frame: np.ndarray) -> list:
        height, width = _frame_size(frame)
        if (width, height) != (self.width, self.height):
            raise ValueError(
                f"Frame is {width}x{height}, model was built for {self.width}x{self.height}"
            )
        return frame.reshape(-1, 3).tolist()

    def _check_ratiometric(self) -> None:
        if self._locked:
            raise LockedModelError(
                f"{len(self._locked)} sets are color-locked; ratiometric operations are invalid"
            )

    # === Matching ===

    def ratio_match(self, index: int, r: int, g: int, b: int, epsilon: int) -> int:
        """Absorb the pixel into the first cell whose mean is within epsilon.

        Returns the matched cell, or ``NIL`` when no cell matches.
        """
        pool = self.pool
        sum_r, sum_g, sum_b, counts, following = pool.r, pool.g, pool.b, pool.count, pool.next
        cell = self.heads[index]
        while cell != NIL:
            count = counts[cell]
            if (abs(r - sum_r[cell] // count) <= epsilon
                    and abs(g - sum_g[cell] // count) <= epsilon
                    and abs(b - sum_b[cell] // count) <= epsilon):
                sum_r[cell] += r
                sum_g[cell] += g
                sum_b[cell] += b
                counts[cell] += 1
                return cell
            cell = following[cell]
        return NIL

    def scalar_match(self, index: int, r: int, g: int, b: int, epsilon: int) -> int:
        """Match against a color-locked list; a hit decrements the cell count."""
        pool = self.pool
        for cell in self.cells(index):
            if (abs(r - pool.r[cell]) <= epsilon
                    and abs(g - pool.g[cell]) <= epsilon
                    and abs(b - pool.b[cell]) <= epsilon):
                pool.count[cell] -= 1
                return cell
        return NIL

    def merge_cell(self, source: int, index: int, epsilon: int) -> int:
        """Fold a detached ratiometric cell into the first close cell of a set.

        On a match the source cell is released and the absorbing cell is
        returned; otherwise ``NIL`` is returned and the caller keeps ``source``.
        """
        pool = self.pool
        sr, sg, sb = pool.mean(source)
        for cell in self.cells(index):
            r, g, b = pool.mean(cell)
            if abs(sr - r) <= epsilon and abs(sg - g) <= epsilon and abs(sb - b) <= epsilon:
                pool.r[cell] += pool.r[source]
                pool.g[cell] += pool.g[source]
                pool.b[cell] += pool.b[source]
                pool.count[cell] += pool.count[source]
                pool.release(source)
                return cell
        return NIL

    def add_cell(self, index: int, r: int, g: int, b: int, cth: int) -> int:
        """Record an unmatched pixel.

        A new cell is appended when the current last cell is mature; an
        immature last cell is overwritten instead, which keeps noisy pixels
        from growing their lists without bound.
        """
        pool = self.pool
        last = self.last_cell(index)
        if pool.count[last] >= cth:
            cell = pool.new_cell(r, g, b)
            pool.next[last] = cell
            return cell
        pool.r[last] = r
        pool.g[last] = g
        pool.b[last] = b
        pool.count[last] = 1
        return last

    def _update(self, pixels: list, epsilon: int, cth: int) -> List[int]:
        matched = []
        for index, (r, g, b) in enumerate(pixels):
            cell = self.ratio_match(index, r, g, b, epsilon)
            if cell == NIL:
                self.add_cell(index, r, g, b, cth)
            matched.append(cell)
        return matched

    def match_foreground(self, frame: np.ndarray, epsilon: int, cth: int) -> int:
        """Update the model and black out background pixels in place.

        A pixel is background when it matched a cell holding at least ``cth``
        observations. Returns the number of pixels left untouched.
        """
        self._check_ratiometric()
        pixels = self._pixels(frame)
        counts = self.pool.count
        matched = self._update(pixels, epsilon, cth)
        background = np.fromiter(
            (cell != NIL and counts[cell] >= cth for cell in matched),
            dtype=bool,
            count=len(matched),
        ).reshape(self.height, self.width)
        frame[background] = 0
        return int(background.size - np.count_nonzero(background))

    def process_frame_background(self, frame: np.ndarray, epsilon: int, cth: int) -> None:
        """Update the model, then replace each pixel with its predominant color."""
        self._check_ratiometric()
        self._update(self._pixels(frame), epsilon, cth)
        self.background_frame(frame)

    def process_frame_predominance(self, frame: np.ndarray, epsilon: int, cth: int) -> None:
        """Update the model, then paint the predominance map into the frame."""
        self._check_ratiometric()
        self._update(self._pixels(frame), epsilon, cth)
        self.predominance_map(frame)

    # === Queries ===

    def predominant_cell(self, index: int) -> Tuple[int, int]:
        """Return ``(cell with the largest count, sum of all counts)``."""
        self._check_ratiometric()
        counts = self.pool.count
        best = self.heads[index]
        best_count = counts[best]
        total = 0
        for cell in self.cells(index):
            count = counts[cell]
            total += count
            if count > best_count:
                best, best_count = cell, count
        return best, total

    def predominance_rate(self, index: int) -> int:
        """Percent of observations NOT explained by the dominant cell."""
        cell, total = self.predominant_cell(index)
        return (total - self.pool.count[cell]) * 100 // total

    def background_frame(self, frame: np.ndarray) -> None:
        """Write every pixel's predominant mean color into ``frame``."""
        self._check_ratiometric()
        _frame_size(frame)
        colors = [self.pool.mean(self.predominant_cell(i)[0]) for i in range(self.num_sets)]
        frame[...] = np.array(colors, dtype=np.uint8).reshape(self.height, self.width, 3)

    def predominance_map(self, frame: np.ndarray) -> None:
        """Paint ``rainbow(rate * 255 // 100)`` for every pixel into ``frame``."""
        self._check_ratiometric()
        _frame_size(frame)
        rates = np.array(
            [self.predominance_rate(i) for i in range(self.num_sets)], dtype=np.int32
        )
        frame[...] = rainbow_array(rates * 255 // 100).reshape(self.height, self.width, 3)

    def demographics(self) -> Demographics:
        self._check_ratiometric()
        counts = self.pool.count
        stats = Demographics(num_sets=self.num_sets, average_length=0.0, average_predominance=0)
        length_total = predominance_total = 0
        for index in range(self.num_sets):
            length = 0
            top = counts[self.heads[index]]
            total = 0
            for cell in self.cells(index):
                length += 1
                total += counts[cell]
                top = max(top, counts[cell])
            length_total += length
            stats.length_histogram[min(length, 10) - 1] += 1
            rate = top * 100 // total
            predominance_total += rate
            bucket = rate // 5
            stats.predominance_histogram[bucket - 10 if bucket > 10 else 0] += 1
        stats.average_length = length_total / self.num_sets
        stats.average_predominance = predominance_total // self.num_sets
        return stats

    # === Maintenance ===

    def decimate(self, cth: int) -> int:
        """Age the model and prune cells that fall below ``cth``.

        Mature cells have their sums and count halved, so older evidence fades
        logarithmically. Any cell below ``cth`` is then unlinked and released,
        except the sole remaining cell of a list, which keeps at least one
        observation. Returns the number of cells reclaimed.
        """
        self._check_ratiometric()
        pool = self.pool
        sum_r, sum_g, sum_b, counts, following = pool.r, pool.g, pool.b, pool.count, pool.next
        heads = self.heads
        freed = 0
        for index in range(len(heads)):
            trail = NIL
            cell = heads[index]
            while cell != NIL:
                sole = cell == heads[index] and following[cell] == NIL
                # a sole count-1 cell would halve to nothing; leave it whole
                if counts[cell] >= cth and not (sole and counts[cell] == 1):
                    sum_r[cell] >>= 1
                    sum_g[cell] >>= 1
                    sum_b[cell] >>= 1
                    counts[cell] >>= 1
                if counts[cell] < cth and not sole:
                    cell = pool.release(cell)
                    if trail == NIL:
                        heads[index] = cell
                    else:
                        following[trail] = cell
                    freed += 1
                else:
                    trail = cell
                    cell = following[cell]
        logger.debug(f"Decimation reclaimed {freed} cells ({pool.live} live)")
        return freed

    def trim_sort(self, index: int, trim_length: int = -1) -> int:
        """Sort a set by decreasing ``abs(count)``, keeping at most ``trim_length`` cells.

        ``trim_length == -1`` only sorts. Among equal counts the later cell
        comes first. Returns the number of cells released.
        """
        if trim_length == 0 or trim_length < -1:
            raise ValueError(f"trim_length must be -1 or positive, got {trim_length}")
        pool = self.pool
        ordered = sorted(reversed(list(self.cells(index))), key=lambda cell: -abs(pool.count[cell]))
        released = 0
        if trim_length > 0:
            for cell in ordered[trim_length:]:
                pool.release(cell)
                released += 1
            ordered = ordered[:trim_length]
        for cell, following in zip(ordered, ordered[1:] + [NIL]):
            pool.next[cell] = following
        self.heads[index] = ordered[0]
        return released

    def color_lock(self, index: int, clear: bool = False) -> None:
        """Switch a set from ratiometric sums to locked scalar colors.

        Counts become negative (or zero with ``clear``) and are consumed by
        ``scalar_match``.
        """
        if index in self._locked:
            return
        pool = self.pool
        for cell in self.cells(index):
            count = pool.count[cell]
            pool.r[cell] //= count
            pool.g[cell] //= count
            pool.b[cell] //= count
            pool.count[cell] = 0 if clear else -count
        self._locked.add(index)

    def is_locked(self, index: int) -> bool:
        return index in self._locked

    def release(self) -> int:
        """Hand every cell back to the pool; the model is unusable afterwards."""
        released = sum(self.pool.release_chain(head) for head in self.heads)
        self.heads = []
        self._locked.clear()
        return released


def _frame_size(frame: np.ndarray) -> Tuple[int, int]:
    if frame.ndim != 3 or frame.shape[2] != 3:
        raise ValueError(f"Expected an (height, width, 3) frame, got shape {frame.shape}")
    height, width = frame.shape[:2]
    if height < 1 or width < 1:
        raise ValueError(f"Frame dimensions must be positive, got {width}x{height}")
    return height, width
