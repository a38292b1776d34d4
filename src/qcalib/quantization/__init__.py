"""
Calibration engine.

Collects activation statistics, computes blob and weight scales and assembles
the quantized model.
"""

from qcalib.quantization.admm import AdmmResult, admm_scale
from qcalib.quantization.assembler import QuantizedLayer, QuantizedModel, assemble, quantize_tensor
from qcalib.quantization.calibration import Calibration, CalibrationState
from qcalib.quantization.histogram import ThresholdResult, search_threshold
from qcalib.quantization.scale import ScaleCalculator, ScaleEntry, TensorKind, min_max_scale
from qcalib.quantization.serializer import serialize
from qcalib.quantization.statistics import BlobStatistics, CollectionStage, StatisticsCollector

__all__ = [
    "AdmmResult",
    "BlobStatistics",
    "Calibration",
    "CalibrationState",
    "CollectionStage",
    "QuantizedLayer",
    "QuantizedModel",
    "ScaleCalculator",
    "ScaleEntry",
    "StatisticsCollector",
    "TensorKind",
    "ThresholdResult",
    "admm_scale",
    "assemble",
    "min_max_scale",
    "quantize_tensor",
    "search_threshold",
    "serialize",
]
