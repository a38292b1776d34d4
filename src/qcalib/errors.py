"""
Error taxonomy for calibration runs.

Every component raises one of these; the orchestrator records the first one,
moves to ``FAILED`` and re-raises it to the caller.
"""


class CalibrationError(Exception):
    """Base class for all calibration failures."""


# ============================================================================
# Configuration
# ============================================================================


class ConfigError(CalibrationError):
    """Bad configuration values; the caller can re-invoke with corrected input."""


class InvalidParamsError(ConfigError):
    """Calibration parameters failed validation."""


class EmptyDatasetError(ConfigError):
    """No calibration samples were found or processed."""


class CalibrationStateError(ConfigError):
    """An operation was called in a state that does not allow it."""


# ============================================================================
# I/O
# ============================================================================


class CalibrationIOError(CalibrationError, OSError):
    """A dataset file could not be read or an output file could not be written."""


class DatasetIOError(CalibrationIOError):
    """The dataset folder could not be scanned."""


class SampleLoadError(CalibrationIOError):
    """A single calibration sample could not be decoded."""

    def __init__(self, path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Failed to load sample {self.path}: {reason}")


class SerializeError(CalibrationIOError):
    """Writing one of the output artifacts failed."""

    def __init__(self, path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Failed to write {self.path}: {reason}")


# ============================================================================
# Graph
# ============================================================================


class GraphError(CalibrationError):
    """Malformed model or inconsistent tensors; always fatal to the run."""


class GraphLoadError(GraphError):
    """The model proto or weights could not be loaded."""


class MissingScaleError(GraphError):
    """A tensor that must be quantized has no scale entry."""

    def __init__(self, tensor_names: list[str]):
        self.tensor_names = list(tensor_names)
        super().__init__(f"No scale computed for tensors: {self.tensor_names}")


class ShapeMismatchError(GraphError):
    """An activation changed its channel layout between samples."""

    def __init__(self, tensor_name: str, expected: tuple, actual: tuple):
        self.tensor_name = tensor_name
        self.expected = expected
        self.actual = actual
        super().__init__(f"Blob '{tensor_name}' changed layout: expected {expected}, got {actual}")


# ============================================================================
# Numerics
# ============================================================================


class NumericalError(CalibrationError):
    """Degenerate statistics."""


class DegenerateHistogramError(NumericalError):
    """Every observed value was zero, so no clipping threshold exists."""
