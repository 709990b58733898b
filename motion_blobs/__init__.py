"""Foreground extraction and blob finding for frame sequences.

Modules:
- config: tunable parameters.
- pool: block-growing record arenas shared by cells and blobs.
- background: multi-modal mean per-pixel background model.
- density: sliding-window salience density scanners.
- blobs: single-pass blob finder and blob rendering.
- video: frame sequence read/write helpers.
- runner: pipeline orchestration and CLI.
"""

__all__ = [
    "config",
    "pool",
    "background",
    "density",
    "blobs",
    "video",
    "runner",
]
