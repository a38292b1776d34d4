"""
Forward-pass runner.

``Network`` executes a GraphSpec layer by layer and returns every blob it
produced, keyed by name. Execution is deterministic and side-effect free.
"""

import torch
import torch.nn as nn

from qcalib.errors import GraphLoadError
from qcalib.graph.layers import build_layer
from qcalib.graph.spec import GraphSpec, LayerSpec


class Network(nn.Module):
    """A floating-point graph built from a proto."""

    def __init__(self, spec: GraphSpec):
        super().__init__()
        self.spec = spec
        self.layers = nn.ModuleDict()
        for layer_spec in spec.layers:
            try:
                self.layers[layer_spec.name] = build_layer(layer_spec)
            except (KeyError, TypeError, ValueError) as e:
                raise GraphLoadError(f"Cannot build layer '{layer_spec.name}': {e}") from e

    def weighted_layers(self) -> list[tuple[LayerSpec, nn.Module]]:
        return [(s, self.layers[s.name]) for s in self.spec.layers if getattr(self.layers[s.name], "has_weights", False)]

    def weight_tensors(self) -> dict[str, torch.Tensor]:
        """Static weights keyed ``<layer>.weight``. Biases are quantized from blob and weight scales instead."""
        return {f"{spec.name}.weight": module.weight.detach() for spec, module in self.weighted_layers()}

    def load_weights(self, state_dict: dict[str, torch.Tensor]) -> None:
        own = {f"{name}.{key}": value for name, layer in self.layers.items() for key, value in layer.state_dict().items()}
        missing = sorted(set(own) - set(state_dict))
        unexpected = sorted(set(state_dict) - set(own))
        if missing or unexpected:
            raise GraphLoadError(f"Weights do not match the proto: missing={missing}, unexpected={unexpected}")

        for key, value in state_dict.items():
            if tuple(value.shape) != tuple(own[key].shape):
                raise GraphLoadError(f"Weight '{key}' has shape {tuple(value.shape)}, expected {tuple(own[key].shape)}")

        layer_states: dict[str, dict[str, torch.Tensor]] = {}
        for key, value in state_dict.items():
            layer_name, param = key.split(".", 1)
            layer_states.setdefault(layer_name, {})[param] = value.float()
        for layer_name, state in layer_states.items():
            self.layers[layer_name].load_state_dict(state)

    def forward(self, inputs: dict[str, torch.Tensor]) -> dict[str, torch.Tensor]:
        blobs: dict[str, torch.Tensor] = {}
        for input_spec in self.spec.inputs:
            if input_spec.name not in inputs:
                raise KeyError(f"Missing graph input '{input_spec.name}'")
            blobs[input_spec.name] = inputs[input_spec.name]

        for layer_spec in self.spec.layers:
            out = self.layers[layer_spec.name](*(blobs[name] for name in layer_spec.inputs))
            if isinstance(out, torch.Tensor):
                out = (out,)
            for name, tensor in zip(layer_spec.outputs, out, strict=True):
                blobs[name] = tensor
        return blobs
