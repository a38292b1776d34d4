"""
Activation statistics for calibration.

The collector works in stages. ``RANGE_DISCOVERY`` tracks per-channel min/max;
``HISTOGRAM_FILL`` bins every value into a fixed number of bins over the
symmetric range ``[-m, m]`` found by the first stage. Both are order
independent, so calibration results do not depend on sample order.
"""

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np
import torch

from qcalib.config import DEFAULT_NUM_BINS
from qcalib.errors import CalibrationStateError, EmptyDatasetError, GraphError, ShapeMismatchError

logger = logging.getLogger(__name__)


class CollectionStage(Enum):
    RANGE_DISCOVERY = "range_discovery"
    HISTOGRAM_FILL = "histogram_fill"


@dataclass(frozen=True, eq=False)
class BlobStatistics:
    """Immutable per-blob statistics handed to the scale calculator."""

    name: str
    count: int
    running_min: tuple[float, ...]
    running_max: tuple[float, ...]
    histogram: np.ndarray | None = None  # [channels, num_bins], read-only

    @property
    def channels(self) -> int:
        return len(self.running_min)

    @property
    def abs_max(self) -> tuple[float, ...]:
        return tuple(max(abs(lo), abs(hi)) for lo, hi in zip(self.running_min, self.running_max, strict=True))

    @property
    def num_bins(self) -> int:
        return 0 if self.histogram is None else self.histogram.shape[1]


@dataclass
class _BlobAccumulator:
    """Mutable running aggregates for one blob; owned by the collector."""

    name: str
    layout: tuple[int, int | None]
    running_min: torch.Tensor
    running_max: torch.Tensor
    count: int = 0
    histogram: torch.Tensor | None = None
    filled: int = 0

    def update_range(self, values: torch.Tensor) -> None:
        self.running_min = torch.minimum(self.running_min, values.amin(dim=1))
        self.running_max = torch.maximum(self.running_max, values.amax(dim=1))
        self.count += 1

    def update_histogram(self, values: torch.Tensor, num_bins: int) -> None:
        if self.histogram is None:
            self.histogram = torch.zeros(values.shape[0], num_bins, dtype=torch.float64)

        channels = values.shape[0]
        abs_max = torch.maximum(self.running_min.abs(), self.running_max.abs())
        safe = torch.where(abs_max > 0, abs_max, torch.ones_like(abs_max)).unsqueeze(1)

        idx = torch.floor((values + safe) / (2 * safe) * num_bins).long().clamp_(0, num_bins - 1)
        idx += torch.arange(channels).unsqueeze(1) * num_bins
        counts = torch.bincount(idx.flatten(), minlength=channels * num_bins).view(channels, num_bins)
        # all-zero channels keep an empty histogram
        counts[abs_max == 0] = 0
        self.histogram += counts.double()
        self.filled += 1

    def snapshot(self) -> BlobStatistics:
        histogram = None
        if self.histogram is not None:
            histogram = self.histogram.numpy().copy()
            histogram.flags.writeable = False
        return BlobStatistics(
            name=self.name,
            count=self.count,
            running_min=tuple(self.running_min.tolist()),
            running_max=tuple(self.running_max.tolist()),
            histogram=histogram,
        )


class StatisticsCollector:
    """
    Accumulates per-blob statistics across calibration samples.

    Args:
        merge_channel: Fold all channels of a blob into one record.
        collect_histogram: Whether a histogram fill stage is required before
            ``finalize``.
        num_bins: Histogram resolution.
    """

    def __init__(self, merge_channel: bool = False, collect_histogram: bool = False, num_bins: int = DEFAULT_NUM_BINS):
        if num_bins <= 0:
            raise ValueError("num_bins must be positive")
        self.merge_channel = merge_channel
        self.collect_histogram = collect_histogram
        self.num_bins = num_bins
        self.stage: CollectionStage | None = None
        self._completed: set[CollectionStage] = set()
        self._stats: dict[str, _BlobAccumulator] = {}
        self._finalized = False

    @property
    def blob_names(self) -> list[str]:
        return list(self._stats)

    def begin_stage(self, stage: CollectionStage) -> None:
        if self._finalized:
            raise CalibrationStateError("Statistics already finalized")
        if stage == CollectionStage.HISTOGRAM_FILL:
            if not self.collect_histogram:
                raise CalibrationStateError("Histogram collection was not requested")
            if CollectionStage.RANGE_DISCOVERY not in self._completed:
                raise CalibrationStateError("Histogram fill needs a finished range discovery stage")
        if self.stage is not None:
            self._completed.add(self.stage)
        self.stage = stage
        logger.debug(f"Statistics stage: {stage.value}")

    def end_stage(self) -> None:
        if self.stage is not None:
            self._completed.add(self.stage)
        self.stage = None

    def _layout(self, tensor: torch.Tensor) -> tuple[int, int | None]:
        return (tensor.dim(), tensor.shape[1] if tensor.dim() >= 2 else None)

    def _channel_values(self, tensor: torch.Tensor) -> torch.Tensor:
        values = tensor.detach().to("cpu", torch.float64)
        if self.merge_channel or values.dim() < 2:
            return values.reshape(1, -1)
        return values.movedim(1, 0).reshape(values.shape[1], -1)

    def observe(self, tensor_name: str, tensor_values: torch.Tensor) -> None:
        """Fold one activation tensor into the statistics of ``tensor_name``."""
        if self.stage is None:
            raise CalibrationStateError("observe() called outside a collection stage")
        if tensor_values.numel() == 0:
            raise ShapeMismatchError(tensor_name, ("non-empty",), tuple(tensor_values.shape))

        layout = self._layout(tensor_values)
        values = self._channel_values(tensor_values)
        acc = self._stats.get(tensor_name)

        if self.stage == CollectionStage.RANGE_DISCOVERY:
            if acc is None:
                acc = _BlobAccumulator(
                    name=tensor_name,
                    layout=layout,
                    running_min=torch.full((values.shape[0],), float("inf"), dtype=torch.float64),
                    running_max=torch.full((values.shape[0],), float("-inf"), dtype=torch.float64),
                )
                self._stats[tensor_name] = acc
            elif acc.layout != layout:
                raise ShapeMismatchError(tensor_name, acc.layout, layout)
            acc.update_range(values)
        else:
            if acc is None:
                raise GraphError(f"Blob '{tensor_name}' was not seen during range discovery")
            if acc.layout != layout:
                raise ShapeMismatchError(tensor_name, acc.layout, layout)
            acc.update_histogram(values, self.num_bins)

    def observe_all(self, blobs: dict[str, torch.Tensor]) -> None:
        for name, tensor in blobs.items():
            self.observe(name, tensor)

    def finalize(self) -> dict[str, BlobStatistics]:
        """
        Hand out immutable snapshots of every observed blob.

        Raises:
            EmptyDatasetError: If nothing was observed.
            CalibrationStateError: If a histogram was requested but never filled.
        """
        self.end_stage()
        if not self._stats or all(acc.count == 0 for acc in self._stats.values()):
            raise EmptyDatasetError("No calibration samples were processed")
        if self.collect_histogram and CollectionStage.HISTOGRAM_FILL not in self._completed:
            raise CalibrationStateError("Histogram fill stage never ran")

        self._finalized = True
        snapshot = {name: acc.snapshot() for name, acc in self._stats.items()}
        self._stats.clear()
        logger.info(f"Finalized statistics for {len(snapshot)} blobs")
        return snapshot
