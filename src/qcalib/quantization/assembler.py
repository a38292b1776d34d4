"""
Quantized model assembly.

Applies the scale table to the floating-point graph: weights become integer
levels, biases become int32 at ``input_scale * weight_scale``, and every layer
is annotated with the scales of the blobs it reads and writes.
"""

import logging
from dataclasses import dataclass, field

import torch

from qcalib.config import CalibrationParams, ModelVersion
from qcalib.errors import MissingScaleError
from qcalib.graph.network import Network
from qcalib.graph.spec import GraphSpec
from qcalib.quantization.scale import ScaleEntry, TensorKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuantizedLayer:
    """A graph layer annotated with the scales needed at inference time."""

    name: str
    type: str
    inputs: tuple[str, ...]
    outputs: tuple[str, ...]
    params: dict
    input_scales: dict[str, tuple[float, ...]]
    output_scales: dict[str, tuple[float, ...]]
    weight_scales: tuple[float, ...] | None = None

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "type": self.type,
            "inputs": list(self.inputs),
            "outputs": list(self.outputs),
            "params": dict(self.params),
            "input_scales": {k: list(v) for k, v in self.input_scales.items()},
            "output_scales": {k: list(v) for k, v in self.output_scales.items()},
        }
        if self.weight_scales is not None:
            data["weight_scales"] = list(self.weight_scales)
        return data


@dataclass
class QuantizedModel:
    graph: GraphSpec
    scale_table: dict[str, ScaleEntry]
    layers: list[QuantizedLayer]
    weights: dict[str, torch.Tensor] = field(default_factory=dict)
    biases: dict[str, torch.Tensor] = field(default_factory=dict)
    model_version: ModelVersion = ModelVersion.RAPIDNET_V3
    bits: int = 8

    @property
    def blob_scales(self) -> dict[str, ScaleEntry]:
        return {k: v for k, v in self.scale_table.items() if v.kind == TensorKind.BLOB}

    @property
    def weight_scales(self) -> dict[str, ScaleEntry]:
        return {k: v for k, v in self.scale_table.items() if v.kind == TensorKind.WEIGHT}


def _level_dtype(bits: int) -> torch.dtype:
    return torch.int8 if bits <= 8 else torch.int16


def _broadcast_scales(scales: tuple[float, ...], tensor: torch.Tensor) -> torch.Tensor:
    s = torch.tensor(scales, dtype=torch.float64)
    if len(scales) > 1:
        s = s.view([-1] + [1] * (tensor.dim() - 1))
    return s


def quantize_tensor(tensor: torch.Tensor, scales: tuple[float, ...], bits: int = 8) -> torch.Tensor:
    """
    Round ``tensor`` to integer levels at ``scales`` (one per tensor or per dim-0 slice)
    and clip to ``[-qmax, qmax]``. A zero scale maps to level 0.
    """
    qmax = 2 ** (bits - 1) - 1
    w = tensor.detach().double()
    s = _broadcast_scales(scales, w)
    levels = torch.where(s > 0, torch.round(w / torch.where(s > 0, s, torch.ones_like(s))), torch.zeros_like(w))
    return levels.clamp(-qmax, qmax).to(_level_dtype(bits))


def quantize_bias(bias: torch.Tensor, input_scale: float, weight_scales: tuple[float, ...]) -> torch.Tensor:
    """int32 bias at ``input_scale * weight_scale``; 0 where that product is 0."""
    b = bias.detach().double()
    s = torch.tensor(weight_scales, dtype=torch.float64) * input_scale
    q = torch.where(s > 0, torch.round(b / torch.where(s > 0, s, torch.ones_like(s))), torch.zeros_like(b))
    info = torch.iinfo(torch.int32)
    return q.clamp(info.min, info.max).to(torch.int32)


def assemble(network: Network, scale_table: dict[str, ScaleEntry], params: CalibrationParams) -> QuantizedModel:
    """
    Build the quantized model.

    Raises:
        MissingScaleError: If any blob of the graph or any weight lacks an entry.
    """
    spec = network.spec
    weights = network.weight_tensors()

    required = list(spec.blob_names) + list(weights)
    missing = [name for name in required if name not in scale_table]
    if missing:
        raise MissingScaleError(missing)

    quantized_weights: dict[str, torch.Tensor] = {}
    quantized_biases: dict[str, torch.Tensor] = {}
    for name, weight in weights.items():
        quantized_weights[name] = quantize_tensor(weight, scale_table[name].scales, params.bits)

    layers = []
    for layer_spec in spec.layers:
        module = network.layers[layer_spec.name]
        weight_scales = None
        if getattr(module, "has_weights", False):
            weight_scales = scale_table[f"{layer_spec.name}.weight"].scales
            if module.bias is not None:
                # per-channel input scales collapse to their max for the bias
                input_scale = max(scale_table[layer_spec.inputs[0]].scales)
                quantized_biases[f"{layer_spec.name}.bias"] = quantize_bias(module.bias, input_scale, weight_scales)

        layers.append(
            QuantizedLayer(
                name=layer_spec.name,
                type=layer_spec.type,
                inputs=layer_spec.inputs,
                outputs=layer_spec.outputs,
                params=dict(layer_spec.params),
                input_scales={b: scale_table[b].scales for b in layer_spec.inputs},
                output_scales={b: scale_table[b].scales for b in layer_spec.outputs},
                weight_scales=weight_scales,
            )
        )

    logger.info(f"Assembled quantized model: {len(layers)} layers, {len(quantized_weights)} quantized weights")
    return QuantizedModel(
        graph=spec,
        scale_table=dict(scale_table),
        layers=layers,
        weights=quantized_weights,
        biases=quantized_biases,
        model_version=params.model_version,
        bits=params.bits,
    )
