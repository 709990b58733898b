from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

DENSITY_MODES = ("horizontal", "vertical", "area")


@dataclass
class BackgroundConfig:
    # Maximum per-channel deviation from a cell mean that still counts as a match.
    # Smaller = closer matches and more modes, larger = more aliasing.
    epsilon: int = 33

    # Cell threshold: a cell needs this many observations to classify pixels as
    # background, and must keep it through decimation or it is pruned.
    cth: int = 4

    # Frames between decimations (long term adaptation rate)
    dec_rate: int = 2

    # Frames used to settle the model before foreground extraction starts
    warmup_frames: int = 3

    # Upper bound on live cells; None = grow without limit
    max_cells: Optional[int] = None

    def __post_init__(self):
        if self.epsilon < 0:
            raise ValueError(f"epsilon must be >= 0, got {self.epsilon}")
        if self.cth < 1:
            raise ValueError(f"cth must be >= 1, got {self.cth}")
        if self.dec_rate < 1:
            raise ValueError(f"dec_rate must be >= 1, got {self.dec_rate}")
        if self.warmup_frames < 0:
            raise ValueError(f"warmup_frames must be >= 0, got {self.warmup_frames}")
        if self.max_cells is not None and self.max_cells < 1:
            raise ValueError(f"max_cells must be positive, got {self.max_cells}")


@dataclass
class DensityConfig:
    # Window edge length in pixels
    wheel_size: int = 7
    # "horizontal" | "vertical" | "area"
    mode: str = "area"

    def __post_init__(self):
        if self.wheel_size < 1:
            raise ValueError(f"wheel_size must be >= 1, got {self.wheel_size}")
        if self.mode not in DENSITY_MODES:
            raise ValueError(f"Unsupported density mode: {self.mode}. Use one of {DENSITY_MODES}")


@dataclass
class BlobConfig:
    # Density value at or above which a position is blob-worthy
    bth: int = 20
    # Blobs smaller than this are dropped from the results
    min_area: int = 0
    # Also produce a per-pixel blob ID map
    annotate_map: bool = False

    def __post_init__(self):
        if self.bth < 0:
            raise ValueError(f"bth must be >= 0, got {self.bth}")
        if self.min_area < 0:
            raise ValueError(f"min_area must be >= 0, got {self.min_area}")


@dataclass
class OutputConfig:
    results_dir: Path = Path("trials")
    log_dir: Path = Path("logs")
    enable_file_logging: bool = True
    write_stack: bool = True  # original / foreground / density / blobs, top to bottom
    jpeg_quality: int = 75

    def __post_init__(self):
        self.results_dir = Path(self.results_dir)
        self.log_dir = Path(self.log_dir)
        if not 0 <= self.jpeg_quality <= 100:
            raise ValueError(f"jpeg_quality must be in [0, 100], got {self.jpeg_quality}")


@dataclass
class PipelineConfig:
    source: Path = Path("InSeq")  # directory holding the numbered frame sequence
    background: BackgroundConfig = field(default_factory=BackgroundConfig)
    density: DensityConfig = field(default_factory=DensityConfig)
    blobs: BlobConfig = field(default_factory=BlobConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    def __post_init__(self):
        self.source = Path(self.source)
        max_bth = self.density.wheel_size
        if self.density.mode == "area":
            max_bth *= self.density.wheel_size
        if self.blobs.bth > max_bth:
            raise ValueError(
                f"bth={self.blobs.bth} can never be reached with a {self.density.mode} "
                f"window of {self.density.wheel_size} (max {max_bth})"
            )
