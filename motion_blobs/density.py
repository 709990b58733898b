"""Sliding-window salience density ("rollers").

A roller walks a line of pixels keeping a bit wheel of the last
``wheel_size`` salience flags plus their running sum, so every position costs
O(1) regardless of window size. A pixel is salient when any of its channels
is non-zero, which after background extraction means foreground.

The value written for position ``p`` counts salient pixels in
``[p + h - wheel_size + 1, p + h]`` with ``h = wheel_size >> 1``; windows that
hang over an edge are truncated, so the values taper off towards the borders.
"""
from typing import List

import numpy as np

from .config import DENSITY_MODES

# 16 color density palette, black (empty) through white (full)
W2C16UP = np.array(
    [
        (0, 0, 0),
        (0, 0, 128),
        (128, 0, 0),
        (0, 128, 0),
        (128, 0, 128),
        (128, 128, 0),
        (0, 128, 128),
        (128, 128, 128),
        (0, 0, 255),
        (192, 192, 192),
        (255, 0, 255),
        (0, 255, 255),
        (0, 255, 0),
        (255, 255, 0),
        (255, 0, 0),
        (255, 255, 255),
    ],
    dtype=np.uint8,
)


def salience(frame: np.ndarray) -> np.ndarray:
    """Boolean (height, width) map of pixels with any non-zero channel."""
    if frame.ndim != 3 or frame.shape[2] != 3:
        raise ValueError(f"Expected an (height, width, 3) frame, got shape {frame.shape}")
    return frame.any(axis=2)


def max_density(wheel_size: int, mode: str) -> int:
    return wheel_size * wheel_size if mode == "area" else wheel_size


def _salient_lines(frame: np.ndarray, wheel_size: int, extents) -> np.ndarray:
    salient = salience(frame)
    height, width = salient.shape
    if height < 1 or width < 1:
        raise ValueError(f"Frame dimensions must be positive, got {width}x{height}")
    if wheel_size < 1:
        raise ValueError(f"wheel_size must be >= 1, got {wheel_size}")
    for name, extent in extents(width, height):
        if wheel_size > extent:
            raise ValueError(f"wheel_size {wheel_size} exceeds frame {name} {extent}")
    return salient


def roll_line(line: List[bool], wheel_size: int) -> List[int]:
    """Window counts along one row or column."""
    edge = 1 << (wheel_size - 1)
    offset = wheel_size >> 1
    length = len(line)
    out = [0] * length
    wheel = total = 0
    for i, bit in enumerate(line):
        total -= wheel & 1  # outgoing pixel
        wheel >>= 1
        if bit:
            total += 1
            wheel |= edge
        if i >= offset:  # window fully entered
            out[i - offset] = total
    for i in range(length - offset, length):  # drain the wheel past the end
        total -= wheel & 1
        wheel >>= 1
        out[i] = total
    return out


def horizontal_density(frame: np.ndarray, wheel_size: int) -> np.ndarray:
    salient = _salient_lines(frame, wheel_size, lambda w, h: [("width", w)])
    return np.array([roll_line(row, wheel_size) for row in salient.tolist()], dtype=np.int32)


def vertical_density(frame: np.ndarray, wheel_size: int) -> np.ndarray:
    salient = _salient_lines(frame, wheel_size, lambda w, h: [("height", h)])
    columns = [roll_line(column, wheel_size) for column in salient.T.tolist()]
    return np.array(columns, dtype=np.int32).T.copy()


def area_density(frame: np.ndarray, wheel_size: int) -> np.ndarray:
    """Square window counts in O(1) amortized per pixel.

    Each row keeps its own horizontal wheel and sum. Sweeping column by
    column, a vertical ring of ``wheel_size`` row sums slides down the column,
    turning the box sum into one subtraction and one addition per pixel.
    """
    salient = _salient_lines(
        frame, wheel_size, lambda w, h: [("width", w), ("height", h)]
    )
    rows = salient.tolist()
    height, width = salient.shape
    edge = 1 << (wheel_size - 1)
    half = wheel_size >> 1
    wheels = [0] * height
    sums = [0] * height
    out = [[0] * width for _ in range(height)]
    for x in range(width + half):  # extra columns drain the row wheels
        ring = [0] * wheel_size
        vsum = ptr = 0
        for y in range(height + half):  # extra rows drain the ring
            vsum -= ring[ptr]
            if y < height:
                sums[y] -= wheels[y] & 1
                wheels[y] >>= 1
                if x < width and rows[y][x]:
                    sums[y] += 1
                    wheels[y] |= edge
                ring[ptr] = sums[y]
                vsum += sums[y]
            else:
                ring[ptr] = 0
            ptr += 1
            if ptr == wheel_size:
                ptr = 0
            if x >= half and y >= half:
                out[y - half][x - half] = vsum
    return np.array(out, dtype=np.int32)


def image_density(frame: np.ndarray, wheel_size: int, mode: str = "area") -> np.ndarray:
    if mode == "horizontal":
        return horizontal_density(frame, wheel_size)
    if mode == "vertical":
        return vertical_density(frame, wheel_size)
    if mode == "area":
        return area_density(frame, wheel_size)
    raise ValueError(f"Unsupported density mode: {mode}. Use one of {DENSITY_MODES}")


# === Rendering ===

def _check_map(frame: np.ndarray, density_map: np.ndarray) -> None:
    if density_map.shape != frame.shape[:2]:
        raise ValueError(
            f"Density map shape {density_map.shape} does not match frame {frame.shape[:2]}"
        )


def paint_frame(frame: np.ndarray, max_count: int, density_map: np.ndarray) -> None:
    """Colorize ``frame`` with the palette, scaled so ``max_count`` is white."""
    _check_map(frame, density_map)
    index = np.clip(density_map.astype(np.int64) * 15 // max_count, 0, 15)
    frame[...] = W2C16UP[index]


def paint_frame_mod(frame: np.ndarray, density_map: np.ndarray) -> None:
    """Colorize ``frame`` with the palette cycled by value (handy for ID maps)."""
    _check_map(frame, density_map)
    frame[...] = W2C16UP[density_map.astype(np.int64) % 15]


def grayscale_frame(frame: np.ndarray, max_count: int, density_map: np.ndarray) -> None:
    _check_map(frame, density_map)
    gray = np.clip(density_map.astype(np.int64) * 255 // max_count, 0, 255).astype(np.uint8)
    frame[...] = gray[..., np.newaxis]


def threshold_frame(frame: np.ndarray, threshold: int, density_map: np.ndarray) -> None:
    """Binary frame: white where the density reaches ``threshold``, black elsewhere."""
    _check_map(frame, density_map)
    frame[...] = np.where(density_map >= threshold, 255, 0).astype(np.uint8)[..., np.newaxis]
