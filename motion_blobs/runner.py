"""Frame sequence pipeline: background extraction, density, blob finding.

For every frame the pipeline produces a results stack (original,
foreground, painted density map, blob annotations) and logs the blobs it
found.
"""
import argparse
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import numpy as np
from loguru import logger

from .background import BackgroundModel, CellPool
from .blobs import BlobFinder, BlobRecord, describe_blobs, filter_blobs, mark_blob_bb, mark_blob_com
from .config import (
    DENSITY_MODES,
    BackgroundConfig,
    BlobConfig,
    DensityConfig,
    OutputConfig,
    PipelineConfig,
)
from .density import image_density, max_density, paint_frame
from .video import read_frame, results_stack, sequence_paths, write_frame


@dataclass
class FrameResult:
    frame_number: int
    original: np.ndarray
    foreground: np.ndarray  # background pixels blacked out
    density_map: np.ndarray
    blobs: List[BlobRecord]
    painted: np.ndarray  # density map rendered with the palette
    annotated: np.ndarray  # painted density plus blob centers and boxes
    foreground_pixels: int
    reclaimed_cells: int = 0
    id_map: Optional[np.ndarray] = None
    processing_time: float = 0.0

    def stack(self) -> np.ndarray:
        return results_stack([self.original, self.foreground, self.painted, self.annotated])


class Pipeline:
    """Owns the background model and both record pools for one sequence."""

    def __init__(self, cfg: PipelineConfig):
        self.cfg = cfg
        self.cell_pool = CellPool(cfg.background.max_cells)
        self.blob_finder = BlobFinder()
        self.model: Optional[BackgroundModel] = None
        self.frame_count = 0
        self.stats = {
            "frames_processed": 0,
            "processing_time": 0.0,
            "blobs_found": 0,
            "cells_reclaimed": 0,
        }

    def seed(self, frame: np.ndarray) -> None:
        """Build the background model from an initial frame."""
        if self.model is not None:
            self.model.release()
        self.model = BackgroundModel.from_frame(frame, self.cell_pool)
        self.frame_count = 0

    def _require_model(self) -> BackgroundModel:
        if self.model is None:
            raise RuntimeError("Pipeline has no background model; call seed() first")
        return self.model

    def warm_up(self, frames: Iterable[np.ndarray]) -> int:
        """Settle the model on a few frames before extracting foreground."""
        model = self._require_model()
        bg = self.cfg.background
        n = 0
        for n, frame in enumerate(frames, start=1):
            model.process_frame_background(frame.copy(), bg.epsilon, bg.cth)
            if n % bg.dec_rate == 0:
                model.decimate(bg.cth)
        logger.info(f"Warm-up done on {n} frames ({self.cell_pool.live} live cells)")
        return n

    def process_frame(self, frame: np.ndarray) -> FrameResult:
        """Run one frame through the whole chain."""
        start_time = time.time()
        model = self._require_model()
        bg, dens, blob_cfg = self.cfg.background, self.cfg.density, self.cfg.blobs
        self.frame_count += 1

        foreground = frame.copy()
        foreground_pixels = model.match_foreground(foreground, bg.epsilon, bg.cth)

        density_map = image_density(foreground, dens.wheel_size, dens.mode)
        id_map = None
        if blob_cfg.annotate_map:
            blobs, id_map = self.blob_finder.find_with_map(density_map, blob_cfg.bth)
        else:
            blobs = self.blob_finder.find(density_map, blob_cfg.bth)
        blobs = filter_blobs(blobs, blob_cfg.min_area)

        painted = np.empty_like(frame)
        paint_frame(painted, max_density(dens.wheel_size, dens.mode), density_map)
        annotated = painted.copy()
        mark_blob_com(annotated, blobs)
        mark_blob_bb(annotated, blobs)

        reclaimed = 0
        if self.frame_count % bg.dec_rate == 0:
            reclaimed = model.decimate(bg.cth)

        processing_time = time.time() - start_time
        self.stats["frames_processed"] += 1
        self.stats["processing_time"] += processing_time
        self.stats["blobs_found"] += len(blobs)
        self.stats["cells_reclaimed"] += reclaimed

        if blobs:
            logger.debug(f"Frame {self.frame_count} blobs:\n{describe_blobs(blobs)}")

        return FrameResult(
            frame_number=self.frame_count,
            original=frame,
            foreground=foreground,
            density_map=density_map,
            blobs=blobs,
            painted=painted,
            annotated=annotated,
            foreground_pixels=foreground_pixels,
            reclaimed_cells=reclaimed,
            id_map=id_map,
            processing_time=processing_time,
        )

    def run(self, paths: Sequence[Path]) -> dict:
        """Process a sequence of frame files and write result stacks."""
        if not paths:
            raise ValueError("No frames to process")
        out = self.cfg.output
        first = read_frame(paths[0])
        if first is None:
            raise FileNotFoundError(f"Cannot read seed frame: {paths[0]}")
        self.seed(first)

        warmup = self.cfg.background.warmup_frames
        self.warm_up(f for f in (read_frame(p) for p in paths[:warmup]) if f is not None)

        logger.info(f"Processing {len(paths)} frames from {self.cfg.source}")
        for path in paths:
            frame = read_frame(path)
            if frame is None:
                continue
            result = self.process_frame(frame)
            logger.info(
                f"{path.name}: {result.foreground_pixels} foreground px, "
                f"{len(result.blobs)} blobs, {result.processing_time:.2f}s"
            )
            if out.write_stack:
                write_frame(out.results_dir / f"rs{path.stem}.jpg", result.stack(), out.jpeg_quality)

        logger.info(f"Model demographics: {self.model.demographics().summary()}")
        stats = self.get_statistics()
        logger.info(f"Final stats: {stats}")
        return stats

    def get_statistics(self) -> dict:
        stats = self.stats.copy()
        if stats["processing_time"] > 0:
            stats["avg_fps"] = stats["frames_processed"] / stats["processing_time"]
        stats["live_cells"] = self.cell_pool.live
        return stats


def setup_logging(cfg: OutputConfig, verbose: bool = False) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")
    if cfg.enable_file_logging:
        cfg.log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(cfg.log_dir / "motion_blobs_{time}.log", level="DEBUG", rotation="10 MB")


def parse_args(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Foreground extraction and blob finding on a frame sequence")
    parser.add_argument("source", type=str, help="Directory holding numbered frames (00001.jpg, ...)")
    parser.add_argument("start", type=int, help="Frames after this number are processed")
    parser.add_argument("end", type=int, help="Last frame number")
    parser.add_argument("step", type=int, nargs="?", default=1, help="Frame stride")
    parser.add_argument("--epsilon", type=int, default=33, help="Per-channel match tolerance")
    parser.add_argument("--cth", type=int, default=4, help="Cell maturity/pruning threshold")
    parser.add_argument("--dec-rate", type=int, default=2, help="Frames between decimations")
    parser.add_argument("--warmup", type=int, default=3, help="Frames used to settle the model")
    parser.add_argument("--wheel-size", type=int, default=7, help="Density window edge length")
    parser.add_argument("--mode", choices=DENSITY_MODES, default="area", help="Density scanner")
    parser.add_argument("--bth", type=int, default=20, help="Blob density threshold")
    parser.add_argument("--min-area", type=int, default=0, help="Drop blobs smaller than this")
    parser.add_argument("--results-dir", type=str, default="trials", help="Where result stacks go")
    parser.add_argument("--no-file-log", action="store_true", help="Log to the console only")
    parser.add_argument("--verbose", action="store_true", help="Log per-frame blob details")
    return parser.parse_args(argv)


def build_config(args) -> PipelineConfig:
    return PipelineConfig(
        source=Path(args.source),
        background=BackgroundConfig(
            epsilon=args.epsilon, cth=args.cth, dec_rate=args.dec_rate, warmup_frames=args.warmup
        ),
        density=DensityConfig(wheel_size=args.wheel_size, mode=args.mode),
        blobs=BlobConfig(bth=args.bth, min_area=args.min_area),
        output=OutputConfig(
            results_dir=Path(args.results_dir), enable_file_logging=not args.no_file_log
        ),
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        cfg = build_config(args)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    setup_logging(cfg.output, args.verbose)

    try:
        paths = sequence_paths(cfg.source, args.start, args.end, args.step)
        Pipeline(cfg).run(paths)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except (ValueError, FileNotFoundError, MemoryError) as e:
        logger.error(f"Processing failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
