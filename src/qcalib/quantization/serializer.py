import logging
from pathlib import Path

import torch
import yaml

from qcalib.errors import SerializeError
from qcalib.quantization.assembler import QuantizedModel

logger = logging.getLogger(__name__)


def quantized_proto_dict(model: QuantizedModel) -> dict:
    """The structure file: graph layout, layer annotations and the full blob scale table."""
    return {
        "version": model.model_version.name,
        "bits": model.bits,
        "inputs": model.graph.to_dict()["inputs"],
        "layers": [{**layer.to_dict(), "type": f"quantized_{layer.type}"} for layer in model.layers],
        "blob_scales": {name: entry.to_dict() for name, entry in model.blob_scales.items()},
    }


def quantized_state_dict(model: QuantizedModel) -> dict[str, dict[str, torch.Tensor]]:
    """The parameters file: integer weights and biases plus their float scales."""
    return {
        "weights": dict(model.weights),
        "biases": dict(model.biases),
        "weight_scales": {
            name: torch.tensor(entry.scales, dtype=torch.float32) for name, entry in model.weight_scales.items()
        },
    }


def _check_written(path: Path) -> None:
    if not path.is_file() or path.stat().st_size == 0:
        raise SerializeError(path, "file is missing or empty after writing")


def serialize(model: QuantizedModel, proto_path: str | Path, model_path: str | Path) -> tuple[Path, Path]:
    """
    Write the quantized graph and its parameters.

    Raises:
        SerializeError: Naming whichever of the two files could not be written.
    """
    proto_path = Path(proto_path)
    model_path = Path(model_path)

    try:
        proto_path.parent.mkdir(parents=True, exist_ok=True)
        with open(proto_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(quantized_proto_dict(model), f, default_flow_style=False, sort_keys=False)
    except (OSError, yaml.YAMLError) as e:
        raise SerializeError(proto_path, str(e)) from e
    _check_written(proto_path)

    try:
        model_path.parent.mkdir(parents=True, exist_ok=True)
        torch.save(quantized_state_dict(model), model_path)
    except (OSError, RuntimeError) as e:
        raise SerializeError(model_path, str(e)) from e
    _check_written(model_path)

    logger.info(f"Wrote quantized proto to {proto_path} and model to {model_path}")
    return proto_path, model_path
