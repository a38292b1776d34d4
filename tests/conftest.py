from pathlib import Path

import numpy as np
import pytest

from qcalib.config import ModelConfig
from tests.helpers import CONV_GRAPH, TWO_BLOB_GRAPH, conv_state_dict, write_model, write_npy_samples


@pytest.fixture
def two_blob_model(tmp_path) -> ModelConfig:
    """Graph with blob A (the input) and blob B = 0.4 * A - 2."""
    return write_model(tmp_path / "two_blob", TWO_BLOB_GRAPH, {})


@pytest.fixture
def two_blob_dataset_dir(tmp_path) -> Path:
    # A spans [0, 10], so B spans [-2, 2]
    arrays = [
        np.array([[0.0, 2.5, 5.0, 7.5]]),
        np.array([[1.0, 10.0, 3.0, 4.0]]),
        np.array([[6.0, 2.0, 0.5, 9.0]]),
    ]
    return write_npy_samples(tmp_path / "two_blob_data", arrays)


@pytest.fixture
def conv_model(tmp_path) -> ModelConfig:
    return write_model(tmp_path / "conv", CONV_GRAPH, conv_state_dict())


@pytest.fixture
def conv_dataset_dir(tmp_path) -> Path:
    rng = np.random.default_rng(42)
    arrays = [rng.normal(0.0, 1.0, size=(1, 3, 8, 8)) for _ in range(6)]
    return write_npy_samples(tmp_path / "conv_data", arrays)
