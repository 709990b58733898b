"""Single-pass blob finding on a density map.

The map is scanned once in raster order. ``column[x]`` remembers the blob
seen at ``x`` in the previous row and ``row_blob`` the blob of the current
run. When a run touches a different blob from above, that column blob is
folded into the row blob and left behind as a forwarding stub; stubs are
resolved lazily the next time their column is visited.

A stub created while scanning row ``y`` may still be referenced by columns
not yet revisited, so it is stamped to expire at ``y + 1`` and only reclaimed
once that row is complete.

Blob lifecycle: active -> root (reported) or active -> forwarded -> reclaimed.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np
from loguru import logger

from .pool import NIL, Arena

FREE_BLOBS_BLOCK_SIZE = 20


class ForwardedBlobError(RuntimeError):
    """Geometry was requested from a blob that has been merged away."""


@dataclass(frozen=True)
class BlobRecord:
    """Final measurements of one 4-connected region."""
    id: int
    area: int
    xmin: int
    ymin: int
    xmax: int
    ymax: int
    xsum: int
    ysum: int
    xreg: int  # upper-left registration point
    yreg: int

    @property
    def bbox(self) -> Tuple[int, int, int, int]:
        return self.xmin, self.ymin, self.xmax, self.ymax

    @property
    def centroid(self) -> Tuple[int, int]:
        return self.xsum // self.area, self.ysum // self.area

    @property
    def registration(self) -> Tuple[int, int]:
        return self.xreg, self.yreg

    def describe(self) -> str:
        cx, cy = self.centroid
        return (
            f"Blob {self.id:2d}: RegPT= ({self.xreg:3d},{self.yreg:3d}) "
            f"BB= ({self.xmin:3d},{self.ymin:3d})x({self.xmax:3d},{self.ymax:3d}) "
            f"CoM= ({cx:3d},{cy:3d}), area= {self.area}"
        )


class BlobPool(Arena):
    fields = (
        "count", "xmin", "ymin", "xmax", "ymax", "xsum", "ysum",
        "xreg", "yreg", "id", "fp", "expire",
    )

    def __init__(self, max_blobs: Optional[int] = None):
        super().__init__(FREE_BLOBS_BLOCK_SIZE, max_blobs)

    def new_blob(self, x: int, y: int) -> int:
        """Fresh, empty blob registered at ``(x, y)``."""
        blob = self.acquire()
        self.count[blob] = 0
        self.xmin[blob] = self.xmax[blob] = self.ymin[blob] = self.ymax[blob] = 0
        self.xsum[blob] = self.ysum[blob] = 0
        self.xreg[blob] = x
        self.yreg[blob] = y
        self.id[blob] = 0
        self.fp[blob] = NIL
        self.expire[blob] = -1
        return blob

    def add_position(self, blob: int, x: int, y: int) -> None:
        if self.count[blob] == 0:
            self.xmin[blob] = self.xmax[blob] = x
            self.ymin[blob] = self.ymax[blob] = y
        else:
            if x < self.xmin[blob]:
                self.xmin[blob] = x
            if y < self.ymin[blob]:
                self.ymin[blob] = y
            if x > self.xmax[blob]:
                self.xmax[blob] = x
            if y > self.ymax[blob]:
                self.ymax[blob] = y
        self.xsum[blob] += x
        self.ysum[blob] += y
        self.count[blob] += 1

    def resolve(self, blob: int) -> int:
        """Follow forwarding pointers to the root, compressing the path."""
        fp = self.fp
        root = blob
        while fp[root] != NIL:
            root = fp[root]
        while blob != root:
            following = fp[blob]
            fp[blob] = root
            blob = following
        return root

    def merge(self, source: int, target: int, expire: int) -> None:
        """Fold root ``source`` into root ``target`` and turn it into a stub."""
        if source == target:
            return
        if self.xmin[source] < self.xmin[target]:
            self.xmin[target] = self.xmin[source]
        if self.ymin[source] < self.ymin[target]:
            self.ymin[target] = self.ymin[source]
        if self.xmax[source] > self.xmax[target]:
            self.xmax[target] = self.xmax[source]
        if self.ymax[source] > self.ymax[target]:
            self.ymax[target] = self.ymax[source]
        if (self.yreg[source], self.xreg[source]) < (self.yreg[target], self.xreg[target]):
            self.xreg[target] = self.xreg[source]
            self.yreg[target] = self.yreg[source]
        self.xsum[target] += self.xsum[source]
        self.ysum[target] += self.ysum[source]
        self.count[target] += self.count[source]
        self.fp[source] = target
        self.expire[source] = expire

    def reclaim(self, blob: int, now: int) -> None:
        """Release a stub whose expiry row has been completed."""
        if self.fp[blob] != NIL and self.expire[blob] > now:
            raise RuntimeError(
                f"Blob {blob} reclaimed at row {now} before its expiry row {self.expire[blob]}"
            )
        self.release(blob)

    def record(self, blob: int) -> BlobRecord:
        if self.fp[blob] != NIL:
            raise ForwardedBlobError(f"Blob {blob} is forwarded to {self.fp[blob]}")
        return BlobRecord(
            id=self.id[blob],
            area=self.count[blob],
            xmin=self.xmin[blob],
            ymin=self.ymin[blob],
            xmax=self.xmax[blob],
            ymax=self.ymax[blob],
            xsum=self.xsum[blob],
            ysum=self.ysum[blob],
            xreg=self.xreg[blob],
            yreg=self.yreg[blob],
        )


class BlobFinder:
    """Finds 4-connected regions whose density reaches a threshold.

    The finder owns its ``BlobPool``; every blob is handed back to the pool
    once its record has been produced, so repeated calls reuse the same
    storage.
    """

    def __init__(self, pool: Optional[BlobPool] = None):
        self.pool = pool if pool is not None else BlobPool()

    def find(self, density_map: np.ndarray, bth: int) -> List[BlobRecord]:
        records, _ = self._scan(density_map, bth, annotate=False)
        return records

    def find_with_map(self, density_map: np.ndarray, bth: int) -> Tuple[List[BlobRecord], np.ndarray]:
        """Like ``find`` but also returns an int32 map of blob IDs (0 = none).

        The density map itself is left unchanged.
        """
        records, id_map = self._scan(density_map, bth, annotate=True)
        return records, id_map

    def _scan(self, density_map: np.ndarray, bth: int, annotate: bool):
        if density_map.ndim != 2 or density_map.shape[0] < 1 or density_map.shape[1] < 1:
            raise ValueError(f"Expected a non-empty 2D density map, got shape {density_map.shape}")
        height, width = density_map.shape
        pool = self.pool
        fp = pool.fp
        expire = pool.expire
        blobs: List[int] = []
        column = [NIL] * width
        refs = [[NIL] * width for _ in range(height)] if annotate else None

        try:
            for y, row in enumerate(density_map.tolist()):
                row_blob = NIL
                for x, value in enumerate(row):
                    col_blob = column[x]
                    if col_blob != NIL and fp[col_blob] != NIL:
                        col_blob = pool.resolve(col_blob)
                    if value >= bth:
                        if row_blob != NIL and col_blob != NIL:
                            pool.merge(col_blob, row_blob, y + 1)
                        elif col_blob != NIL:
                            row_blob = col_blob
                        elif row_blob == NIL:
                            row_blob = pool.new_blob(x, y)
                            blobs.append(row_blob)
                        pool.add_position(row_blob, x, y)
                        column[x] = row_blob
                        if annotate:
                            refs[y][x] = row_blob
                    else:
                        row_blob = column[x] = NIL
                # the annotated map still points at stubs, so they must survive the scan
                if not annotate:
                    live = []
                    for blob in blobs:
                        if fp[blob] != NIL and expire[blob] == y:
                            pool.reclaim(blob, y)
                        else:
                            live.append(blob)
                    blobs = live
        except Exception:
            # stubs may still be inside their expiry window, so skip the epoch check
            for blob in blobs:
                pool.release(blob)
            raise

        roots = [blob for blob in blobs if fp[blob] == NIL]
        for blob_id, blob in enumerate(roots, start=1):
            pool.id[blob] = blob_id

        id_map = self._flatten(refs) if annotate else None
        records = [pool.record(blob) for blob in roots]
        for blob in blobs:
            pool.reclaim(blob, height)
        logger.debug(f"Found {len(records)} blobs in {width}x{height} map (bth={bth})")
        return records, id_map

    def _flatten(self, refs: List[List[int]]) -> np.ndarray:
        pool = self.pool
        ids: Dict[int, int] = {NIL: 0}
        flat = []
        for row in refs:
            out = []
            for blob in row:
                blob_id = ids.get(blob)
                if blob_id is None:
                    blob_id = ids[blob] = pool.id[pool.resolve(blob)]
                out.append(blob_id)
            flat.append(out)
        return np.array(flat, dtype=np.int32)


def filter_blobs(blobs: List[BlobRecord], min_area: int) -> List[BlobRecord]:
    return [blob for blob in blobs if blob.area >= min_area]


def describe_blobs(blobs: List[BlobRecord]) -> str:
    return "\n".join(blob.describe() for blob in blobs)


def mark_blob_com(frame: np.ndarray, blobs: List[BlobRecord], color=(0, 255, 0)) -> None:
    """Draw a plus at each blob's center of mass."""
    for blob in blobs:
        cv2.drawMarker(frame, blob.centroid, color, markerType=cv2.MARKER_CROSS, markerSize=5, thickness=1)


def mark_blob_bb(frame: np.ndarray, blobs: List[BlobRecord], color=(255, 255, 0)) -> None:
    """Draw each blob's bounding box."""
    for blob in blobs:
        cv2.rectangle(frame, (blob.xmin, blob.ymin), (blob.xmax, blob.ymax), color, 1)
