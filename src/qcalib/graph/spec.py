"""
Graph description ("proto") parsing.

A proto is a YAML document::

    inputs:
      - name: data
        shape: [1, 3, 32, 32]
    layers:
      - name: conv1
        type: conv2d
        inputs: [data]
        outputs: [conv1_out]
        params: {in_channels: 3, out_channels: 8, kernel_size: 3, padding: 1}

Layers are listed in execution order. Weights live in a separate model file.
"""

from dataclasses import dataclass, field
from typing import Any

import yaml

from qcalib.errors import GraphLoadError


@dataclass(frozen=True)
class InputSpec:
    name: str
    shape: tuple[int, ...]

    @property
    def channels(self) -> int:
        return self.shape[1] if len(self.shape) >= 2 else 1


@dataclass(frozen=True)
class LayerSpec:
    name: str
    type: str
    inputs: tuple[str, ...]
    outputs: tuple[str, ...]
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GraphSpec:
    inputs: tuple[InputSpec, ...]
    layers: tuple[LayerSpec, ...]

    @property
    def blob_names(self) -> list[str]:
        """Every blob in production order, graph inputs first."""
        names = [i.name for i in self.inputs]
        for layer in self.layers:
            names.extend(layer.outputs)
        return names

    def to_dict(self) -> dict:
        return {
            "inputs": [{"name": i.name, "shape": list(i.shape)} for i in self.inputs],
            "layers": [
                {
                    "name": layer.name,
                    "type": layer.type,
                    "inputs": list(layer.inputs),
                    "outputs": list(layer.outputs),
                    "params": dict(layer.params),
                }
                for layer in self.layers
            ],
        }


def _as_names(value, where: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list | tuple) or not value:
        raise GraphLoadError(f"{where} must be a non-empty list of blob names")
    return tuple(str(v) for v in value)


def parse_graph_spec(data: Any) -> GraphSpec:
    """Validate a decoded proto document and build a GraphSpec."""
    if not isinstance(data, dict):
        raise GraphLoadError("Proto must be a mapping with 'inputs' and 'layers'")

    raw_inputs = data.get("inputs")
    if not isinstance(raw_inputs, list) or not raw_inputs:
        raise GraphLoadError("Proto declares no inputs")

    inputs = []
    for entry in raw_inputs:
        try:
            shape = tuple(int(d) for d in entry["shape"])
            inputs.append(InputSpec(name=str(entry["name"]), shape=shape))
        except (KeyError, TypeError, ValueError) as e:
            raise GraphLoadError(f"Malformed input entry {entry!r}: {e}") from e
        if any(d <= 0 for d in shape):
            raise GraphLoadError(f"Input '{entry['name']}' has a non-positive dimension: {shape}")

    raw_layers = data.get("layers") or []
    if not isinstance(raw_layers, list):
        raise GraphLoadError("'layers' must be a list")

    produced = {i.name for i in inputs}
    if len(produced) != len(inputs):
        raise GraphLoadError("Duplicate input names")

    layers = []
    layer_names = set()
    for entry in raw_layers:
        if not isinstance(entry, dict) or "name" not in entry or "type" not in entry:
            raise GraphLoadError(f"Malformed layer entry {entry!r}")
        name = str(entry["name"])
        if "." in name:
            raise GraphLoadError(f"Layer name '{name}' must not contain '.'")
        if name in layer_names:
            raise GraphLoadError(f"Duplicate layer name '{name}'")
        layer_names.add(name)

        layer_inputs = _as_names(entry.get("inputs"), f"Layer '{name}' inputs")
        layer_outputs = _as_names(entry.get("outputs"), f"Layer '{name}' outputs")
        missing = [b for b in layer_inputs if b not in produced]
        if missing:
            raise GraphLoadError(f"Layer '{name}' consumes blobs that are not produced before it: {missing}")
        for blob in layer_outputs:
            if blob in produced:
                raise GraphLoadError(f"Blob '{blob}' is produced more than once")
            produced.add(blob)

        params = entry.get("params") or {}
        if not isinstance(params, dict):
            raise GraphLoadError(f"Layer '{name}' params must be a mapping")
        layers.append(
            LayerSpec(
                name=name,
                type=str(entry["type"]).lower(),
                inputs=layer_inputs,
                outputs=layer_outputs,
                params=params,
            )
        )

    return GraphSpec(inputs=tuple(inputs), layers=tuple(layers))


def load_graph_spec(text: str) -> GraphSpec:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise GraphLoadError(f"Proto is not valid YAML: {e}") from e
    return parse_graph_spec(data)
