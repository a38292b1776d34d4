import logging
from pathlib import Path

import torch

from qcalib.errors import GraphLoadError
from qcalib.graph.network import Network
from qcalib.graph.spec import load_graph_spec

logger = logging.getLogger(__name__)


def load_graph(proto_path: str | Path, model_path: str | Path, device: str | torch.device = "cpu") -> Network:
    """
    Load a floating-point graph from its proto and weights files.

    Args:
        proto_path: YAML graph description.
        model_path: ``torch.save``d state dict keyed ``<layer>.<param>``.
        device: Device to place the network on.

    Returns:
        The network in eval mode.

    Raises:
        GraphLoadError: If either file is missing or malformed.
    """
    proto_path = Path(proto_path)
    model_path = Path(model_path)

    try:
        text = proto_path.read_text(encoding="utf-8")
    except OSError as e:
        raise GraphLoadError(f"Cannot read proto file {proto_path}: {e}") from e

    spec = load_graph_spec(text)
    network = Network(spec)

    try:
        state_dict = torch.load(model_path, map_location="cpu", weights_only=True)
    except FileNotFoundError as e:
        raise GraphLoadError(f"Model file not found: {model_path}") from e
    except Exception as e:
        raise GraphLoadError(f"Cannot read model file {model_path}: {e}") from e

    if not isinstance(state_dict, dict):
        raise GraphLoadError(f"Model file {model_path} does not hold a state dict")
    network.load_weights(state_dict)

    network.to(device)
    network.eval()
    logger.info(f"Loaded graph: {len(spec.inputs)} inputs, {len(spec.layers)} layers, {len(spec.blob_names)} blobs")
    return network
