import numpy as np
import pytest
from loguru import logger


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture(autouse=True)
def quiet_logs():
    logger.disable("motion_blobs")
    yield
    logger.enable("motion_blobs")
