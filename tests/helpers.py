from collections import deque

import numpy as np


def solid(width, height, color):
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[...] = color
    return frame


def random_salient_frame(rng, width, height, fill=0.4):
    """Frame whose non-black pixels are scattered at random."""
    mask = rng.random((height, width)) < fill
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[mask] = (10, 0, 200)
    return frame


def window_count(salient, wheel_size, x, y, horizontal=True, vertical=True):
    """Recount salient pixels in the roller window of (x, y), clipped to the frame."""
    height, width = salient.shape
    half = wheel_size >> 1
    x0, x1 = (x + half - wheel_size + 1, x + half) if horizontal else (x, x)
    y0, y1 = (y + half - wheel_size + 1, y + half) if vertical else (y, y)
    x0, y0 = max(x0, 0), max(y0, 0)
    x1, y1 = min(x1, width - 1), min(y1, height - 1)
    return int(salient[y0:y1 + 1, x0:x1 + 1].sum())


def components(mask):
    """4-connected components of a boolean map as lists of (x, y)."""
    height, width = mask.shape
    seen = np.zeros_like(mask, dtype=bool)
    found = []
    for y in range(height):
        for x in range(width):
            if not mask[y, x] or seen[y, x]:
                continue
            queue = deque([(x, y)])
            seen[y, x] = True
            pixels = []
            while queue:
                cx, cy = queue.popleft()
                pixels.append((cx, cy))
                for nx, ny in ((cx + 1, cy), (cx - 1, cy), (cx, cy + 1), (cx, cy - 1)):
                    if 0 <= nx < width and 0 <= ny < height and mask[ny, nx] and not seen[ny, nx]:
                        seen[ny, nx] = True
                        queue.append((nx, ny))
            found.append(pixels)
    return found
