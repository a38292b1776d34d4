"""
Layer types understood by the forward-pass runner.

Each class is registered under the ``type`` used in the proto and built with
``from_spec``. Layers holding weights subclass the matching torch module so the
weights file is a plain state dict.
"""

import torch
import torch.nn as nn
import torch.nn.functional as F

from qcalib.core.registry import LAYER_REGISTRY
from qcalib.graph.spec import LayerSpec


def _require(spec: LayerSpec, *keys: str) -> None:
    missing = [k for k in keys if k not in spec.params]
    if missing:
        raise ValueError(f"Layer '{spec.name}' ({spec.type}) is missing params: {missing}")


# ============================================================================
# Weighted layers
# ============================================================================


@LAYER_REGISTRY.register("conv2d")
class Conv2dLayer(nn.Conv2d):
    has_weights = True

    @classmethod
    def from_spec(cls, spec: LayerSpec) -> "Conv2dLayer":
        _require(spec, "in_channels", "out_channels", "kernel_size")
        p = spec.params
        return cls(
            in_channels=int(p["in_channels"]),
            out_channels=int(p["out_channels"]),
            kernel_size=p["kernel_size"],
            stride=p.get("stride", 1),
            padding=p.get("padding", 0),
            dilation=p.get("dilation", 1),
            groups=int(p.get("groups", 1)),
            bias=bool(p.get("bias", True)),
        )


@LAYER_REGISTRY.register("linear")
class LinearLayer(nn.Linear):
    has_weights = True

    @classmethod
    def from_spec(cls, spec: LayerSpec) -> "LinearLayer":
        _require(spec, "in_features", "out_features")
        p = spec.params
        return cls(int(p["in_features"]), int(p["out_features"]), bias=bool(p.get("bias", True)))


# ============================================================================
# Parameter-free layers
# ============================================================================


class _Op(nn.Module):
    has_weights = False

    @classmethod
    def from_spec(cls, spec: LayerSpec) -> "_Op":
        return cls(**spec.params)


@LAYER_REGISTRY.register("relu")
class ReLULayer(_Op):
    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return F.relu(x)


@LAYER_REGISTRY.register("relu6")
class ReLU6Layer(_Op):
    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return F.relu6(x)


@LAYER_REGISTRY.register("sigmoid")
class SigmoidLayer(_Op):
    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return torch.sigmoid(x)


@LAYER_REGISTRY.register("softmax")
class SoftmaxLayer(_Op):
    def __init__(self, dim: int = 1):
        super().__init__()
        self.dim = dim

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return F.softmax(x, dim=self.dim)


@LAYER_REGISTRY.register("max_pool2d")
class MaxPool2dLayer(_Op):
    def __init__(self, kernel_size=2, stride=None, padding=0):
        super().__init__()
        self.kernel_size = kernel_size
        self.stride = stride
        self.padding = padding

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return F.max_pool2d(x, self.kernel_size, self.stride, self.padding)


@LAYER_REGISTRY.register("avg_pool2d")
class AvgPool2dLayer(MaxPool2dLayer):
    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return F.avg_pool2d(x, self.kernel_size, self.stride, self.padding)


@LAYER_REGISTRY.register("flatten")
class FlattenLayer(_Op):
    def __init__(self, start_dim: int = 1):
        super().__init__()
        self.start_dim = start_dim

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return torch.flatten(x, self.start_dim)


@LAYER_REGISTRY.register("affine")
class AffineLayer(_Op):
    """Elementwise ``x * scale + bias`` with constant coefficients."""

    def __init__(self, scale: float = 1.0, bias: float = 0.0):
        super().__init__()
        self.scale = float(scale)
        self.bias = float(bias)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return x * self.scale + self.bias


@LAYER_REGISTRY.register("add")
class AddLayer(_Op):
    def forward(self, *xs: torch.Tensor) -> torch.Tensor:
        out = xs[0]
        for x in xs[1:]:
            out = out + x
        return out


@LAYER_REGISTRY.register("mul")
class MulLayer(_Op):
    def forward(self, *xs: torch.Tensor) -> torch.Tensor:
        out = xs[0]
        for x in xs[1:]:
            out = out * x
        return out


@LAYER_REGISTRY.register("concat")
class ConcatLayer(_Op):
    def __init__(self, dim: int = 1):
        super().__init__()
        self.dim = dim

    def forward(self, *xs: torch.Tensor) -> torch.Tensor:
        return torch.cat(xs, dim=self.dim)


def build_layer(spec: LayerSpec) -> nn.Module:
    layer_cls = LAYER_REGISTRY.get(spec.type)
    return layer_cls.from_spec(spec)
