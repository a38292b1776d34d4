"""
Scale calculation for blobs and weights.

Methods are registered by lower-case ``CalibrationMethod`` name and return one
scale per channel (a single scale when channels are merged). Quantization is
symmetric, so every zero-point is 0. An all-zero tensor yields the sentinel
scale 0.0.
"""

import logging
from dataclasses import dataclass
from enum import Enum

import torch

from qcalib.config import CalibrationParams
from qcalib.core.registry import BLOB_SCALE_REGISTRY, WEIGHT_SCALE_REGISTRY
from qcalib.errors import CalibrationStateError, DegenerateHistogramError
from qcalib.quantization.admm import admm_scale
from qcalib.quantization.histogram import search_threshold
from qcalib.quantization.statistics import BlobStatistics

logger = logging.getLogger(__name__)


class TensorKind(Enum):
    BLOB = "blob"
    WEIGHT = "weight"


@dataclass(frozen=True)
class ScaleEntry:
    """Quantization parameters of one tensor."""

    tensor_name: str
    scales: tuple[float, ...]
    zero_points: tuple[int, ...]
    kind: TensorKind = TensorKind.BLOB

    @property
    def per_channel(self) -> bool:
        return len(self.scales) > 1

    @property
    def scale(self) -> float:
        if self.per_channel:
            raise ValueError(f"'{self.tensor_name}' has {len(self.scales)} per-channel scales")
        return self.scales[0]

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "scales": list(self.scales),
            "zero_points": list(self.zero_points),
        }


def min_max_scale(abs_max: float, bits: int = 8) -> float:
    """``abs_max / (2**(bits-1) - 1)``; 0.0 for an all-zero range."""
    if abs_max == 0:
        return 0.0
    return abs_max / (2 ** (bits - 1) - 1)


# ============================================================================
# Blob methods
# ============================================================================


@BLOB_SCALE_REGISTRY.register("min_max")
def blob_min_max(stats: BlobStatistics, params: CalibrationParams) -> tuple[float, ...]:
    return tuple(min_max_scale(m, params.bits) for m in stats.abs_max)


@BLOB_SCALE_REGISTRY.register("kl_divergence")
def blob_kl_divergence(stats: BlobStatistics, params: CalibrationParams) -> tuple[float, ...]:
    if stats.histogram is None:
        raise CalibrationStateError(f"Blob '{stats.name}' has no histogram for KL calibration")

    logger.info(f"KL threshold search for blob '{stats.name}' over {stats.channels} channel(s)")
    scales = []
    for channel, abs_max in enumerate(stats.abs_max):
        try:
            result = search_threshold(stats.histogram[channel], abs_max, params.bits)
        except DegenerateHistogramError:
            logger.debug(f"Blob '{stats.name}' channel {channel} is all zero; using zero scale")
            scales.append(0.0)
            continue
        logger.debug(
            f"Blob '{stats.name}' channel {channel}: threshold {result.threshold:.6g} of {abs_max:.6g} "
            f"(divergence {result.divergence:.6g})"
        )
        scales.append(result.threshold / params.qmax)
    return tuple(scales)


# ============================================================================
# Weight methods
# ============================================================================


def _output_channels(weight: torch.Tensor, merge_channel: bool) -> list[torch.Tensor]:
    if merge_channel or weight.dim() < 2:
        return [weight]
    return list(weight.detach().reshape(weight.shape[0], -1))


@WEIGHT_SCALE_REGISTRY.register("min_max")
def weight_min_max(weight: torch.Tensor, params: CalibrationParams) -> tuple[float, ...]:
    return tuple(
        min_max_scale(float(w.detach().abs().max()), params.bits) for w in _output_channels(weight, params.merge_channel)
    )


@WEIGHT_SCALE_REGISTRY.register("admm")
def weight_admm(weight: torch.Tensor, params: CalibrationParams) -> tuple[float, ...]:
    scales = []
    for w in _output_channels(weight, params.merge_channel):
        result = admm_scale(w, bits=params.bits)
        if not result.converged:
            logger.warning(
                f"ADMM did not converge after {result.iterations} iterations; "
                f"using best scale {result.scale:.6g} (error {result.error:.6g})"
            )
        scales.append(result.scale)
    return tuple(scales)


class ScaleCalculator:
    """Reduces blob statistics and static weights into ScaleEntries."""

    def __init__(self, params: CalibrationParams):
        self.params = params
        self._blob_fn = BLOB_SCALE_REGISTRY.get(params.blob_method.name.lower())
        self._weight_fn = WEIGHT_SCALE_REGISTRY.get(params.weight_method.name.lower())

    def blob_scales(self, stats: dict[str, BlobStatistics]) -> dict[str, ScaleEntry]:
        entries = {}
        for name, blob_stats in stats.items():
            scales = self._blob_fn(blob_stats, self.params)
            entries[name] = ScaleEntry(name, scales, (0,) * len(scales), TensorKind.BLOB)
        logger.info(f"Computed {len(entries)} blob scales ({self.params.blob_method.name})")
        return entries

    def weight_scales(self, weights: dict[str, torch.Tensor]) -> dict[str, ScaleEntry]:
        entries = {}
        for name, weight in weights.items():
            scales = self._weight_fn(weight, self.params)
            entries[name] = ScaleEntry(name, scales, (0,) * len(scales), TensorKind.WEIGHT)
        logger.info(f"Computed {len(entries)} weight scales ({self.params.weight_method.name})")
        return entries
