from pathlib import Path

import numpy as np
import torch
import yaml

from qcalib.config import ModelConfig


def write_model(directory: Path, graph: dict, state_dict: dict[str, torch.Tensor]) -> ModelConfig:
    """Write a proto/weights pair and return the ModelConfig pointing at it."""
    directory.mkdir(parents=True, exist_ok=True)
    proto_path = directory / "model.yaml"
    model_path = directory / "model.pt"
    proto_path.write_text(yaml.safe_dump(graph, sort_keys=False), encoding="utf-8")
    torch.save(state_dict, model_path)
    return ModelConfig(proto_path=str(proto_path), model_path=str(model_path))


def write_npy_samples(directory: Path, arrays: list[np.ndarray]) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for i, array in enumerate(arrays):
        np.save(directory / f"sample_{i:03d}.npy", array.astype(np.float32))
    return directory


TWO_BLOB_GRAPH = {
    "inputs": [{"name": "A", "shape": [1, 4]}],
    "layers": [
        {"name": "shift", "type": "affine", "inputs": ["A"], "outputs": ["B"], "params": {"scale": 0.4, "bias": -2.0}},
    ],
}

CONV_GRAPH = {
    "inputs": [{"name": "data", "shape": [1, 3, 8, 8]}],
    "layers": [
        {
            "name": "conv1",
            "type": "conv2d",
            "inputs": ["data"],
            "outputs": ["conv1_out"],
            "params": {"in_channels": 3, "out_channels": 4, "kernel_size": 3, "padding": 1},
        },
        {"name": "relu1", "type": "relu", "inputs": ["conv1_out"], "outputs": ["relu1_out"]},
        {"name": "pool1", "type": "max_pool2d", "inputs": ["relu1_out"], "outputs": ["pool1_out"]},
        {"name": "flat", "type": "flatten", "inputs": ["pool1_out"], "outputs": ["flat_out"]},
        {
            "name": "fc",
            "type": "linear",
            "inputs": ["flat_out"],
            "outputs": ["logits"],
            "params": {"in_features": 64, "out_features": 5},
        },
    ],
}


def conv_state_dict(seed: int = 0) -> dict[str, torch.Tensor]:
    generator = torch.Generator().manual_seed(seed)
    return {
        "conv1.weight": torch.randn(4, 3, 3, 3, generator=generator) * 0.5,
        "conv1.bias": torch.randn(4, generator=generator) * 0.1,
        "fc.weight": torch.randn(5, 64, generator=generator) * 0.2,
        "fc.bias": torch.randn(5, generator=generator) * 0.1,
    }
