"""Frame sequence I/O helpers (OpenCV based).

Frames handed to the rest of the package are RGB ``uint8`` arrays.
"""
from pathlib import Path
from typing import List, Optional, Sequence

import cv2
import numpy as np
from loguru import logger


def sequence_paths(directory: Path, start: int, end: int, step: int = 1,
                   pattern: str = "{:05d}.jpg") -> List[Path]:
    """Numbered frames ``start + 1 .. end`` of a sequence that exist on disk."""
    if start < 0 or end < start or step < 1:
        raise ValueError(f"[{start}:{end}:{step}] are invalid start/end/step numbers")
    directory = Path(directory)
    paths = []
    for n in range(start + 1, end + 1, step):
        path = directory / pattern.format(n)
        if path.exists():
            paths.append(path)
        else:
            logger.warning(f"Missing frame: {path}")
    return paths


def read_frame(path: Path) -> Optional[np.ndarray]:
    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None:
        logger.error(f"Failed to load frame: {path}")
        return None
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def write_frame(path: Path, frame: np.ndarray, quality: int = 75) -> bool:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    ok = cv2.imwrite(
        str(path),
        cv2.cvtColor(frame, cv2.COLOR_RGB2BGR),
        [cv2.IMWRITE_JPEG_QUALITY, quality],
    )
    if not ok:
        logger.error(f"Failed to write frame: {path}")
    return ok


def results_stack(tiles: Sequence[np.ndarray]) -> np.ndarray:
    """Stack same-sized frames top to bottom into one image."""
    shapes = {tile.shape for tile in tiles}
    if len(shapes) != 1:
        raise ValueError(f"Result tiles must share one shape, got {sorted(shapes)}")
    return np.vstack(tiles)
