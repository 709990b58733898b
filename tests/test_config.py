from pathlib import Path

import pytest

from motion_blobs.config import (
    BackgroundConfig,
    BlobConfig,
    DensityConfig,
    OutputConfig,
    PipelineConfig,
)


def test_defaults():
    cfg = PipelineConfig()
    assert cfg.source == Path("InSeq")
    assert (cfg.background.epsilon, cfg.background.cth, cfg.background.dec_rate) == (33, 4, 2)
    assert (cfg.density.wheel_size, cfg.density.mode) == (7, "area")
    assert cfg.blobs.bth == 20
    assert cfg.output.jpeg_quality == 75


@pytest.mark.parametrize("kwargs", [
    {"epsilon": -1},
    {"cth": 0},
    {"dec_rate": 0},
    {"warmup_frames": -2},
    {"max_cells": 0},
])
def test_background_config_rejects(kwargs):
    with pytest.raises(ValueError):
        BackgroundConfig(**kwargs)


def test_density_config_rejects():
    with pytest.raises(ValueError):
        DensityConfig(wheel_size=0)
    with pytest.raises(ValueError):
        DensityConfig(mode="diagonal")


def test_blob_config_rejects():
    with pytest.raises(ValueError):
        BlobConfig(bth=-1)
    with pytest.raises(ValueError):
        BlobConfig(min_area=-5)


def test_output_config_coerces_paths():
    out = OutputConfig(results_dir="res", log_dir="lg")
    assert out.results_dir == Path("res")
    assert out.log_dir == Path("lg")
    with pytest.raises(ValueError):
        OutputConfig(jpeg_quality=101)


def test_unreachable_blob_threshold():
    PipelineConfig(density=DensityConfig(wheel_size=3), blobs=BlobConfig(bth=9))
    with pytest.raises(ValueError):
        PipelineConfig(density=DensityConfig(wheel_size=3), blobs=BlobConfig(bth=10))
    with pytest.raises(ValueError):
        PipelineConfig(density=DensityConfig(wheel_size=3, mode="horizontal"), blobs=BlobConfig(bth=4))
