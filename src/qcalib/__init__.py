# Expose version

__version__ = "0.1.0"

# Import components so the layer and scale-method registries are populated
# whenever 'qcalib' is imported.
import qcalib.graph.layers  # noqa: F401
import qcalib.quantization.scale  # noqa: F401
from qcalib.config import CalibrationMethod, CalibrationParams, ModelConfig, ModelVersion, NetworkConfig
from qcalib.data import DataSet, FileFormat, Sample, import_dataset
from qcalib.quantization import Calibration, CalibrationState

__all__ = [
    "Calibration",
    "CalibrationMethod",
    "CalibrationParams",
    "CalibrationState",
    "DataSet",
    "FileFormat",
    "ModelConfig",
    "ModelVersion",
    "NetworkConfig",
    "Sample",
    "import_dataset",
]
