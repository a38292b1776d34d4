"""
Calibration orchestrator.

Drives a run through ``UNINITIALIZED -> INITIALIZED -> PARAMS_SET -> RUNNING ->
COMPLETED``. Any error moves it to ``FAILED``, which is terminal; the first error
is kept in ``Calibration.error`` and re-raised to the caller.
"""

import dataclasses
import logging
from enum import Enum
from pathlib import Path

import torch

from qcalib.config import CalibrationMethod, CalibrationParams, ModelConfig, ModelVersion, NetworkConfig
from qcalib.data.dataset import DataSet
from qcalib.data.loader import SampleLoader
from qcalib.errors import (
    CalibrationError,
    CalibrationStateError,
    EmptyDatasetError,
    GraphError,
    InvalidParamsError,
)
from qcalib.graph.io import load_graph
from qcalib.graph.network import Network
from qcalib.quantization.assembler import QuantizedModel, assemble
from qcalib.quantization.scale import ScaleCalculator, ScaleEntry
from qcalib.quantization.serializer import serialize
from qcalib.quantization.statistics import CollectionStage, StatisticsCollector

logger = logging.getLogger(__name__)


class CalibrationState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    PARAMS_SET = "params_set"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Calibration:
    """
    Post-training calibration of one model.

    Example:
        >>> calibration = Calibration()
        >>> calibration.init(NetworkConfig(), ModelConfig("model.yaml", "model.pt"))
        >>> calibration.set_calibration_params(CalibrationParams(merge_channel=True))
        >>> calibration.run_calibration(import_dataset("calib/"))
        >>> calibration.serialize("model_quantized.qproto.yaml", "model_quantized.qmodel.pt")
    """

    def __init__(self, log_interval: int = 10):
        self.state = CalibrationState.UNINITIALIZED
        self.error: BaseException | None = None
        self.network: Network | None = None
        self.params: CalibrationParams | None = None
        self.quantized_model: QuantizedModel | None = None
        self.device = torch.device("cpu")
        self.log_interval = log_interval
        self._model_version: ModelVersion | None = None

    # ------------------------------------------------------------------
    # State handling
    # ------------------------------------------------------------------

    def _fail(self, error: BaseException) -> None:
        if self.error is None:
            self.error = error
        if self.state != CalibrationState.FAILED:
            logger.error(f"Calibration failed in state {self.state.value}: {error}")
        self.state = CalibrationState.FAILED

    def _require(self, operation: str, *states: CalibrationState) -> None:
        if self.state in states:
            return
        error = CalibrationStateError(
            f"{operation}() needs state {' or '.join(s.value for s in states)}, current state is {self.state.value}"
        )
        self._fail(error)
        raise error

    @property
    def scale_table(self) -> dict[str, ScaleEntry]:
        if self.quantized_model is None:
            raise CalibrationStateError("No scales available before a completed run")
        return self.quantized_model.scale_table

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def set_model_version(self, version: ModelVersion | int) -> None:
        """Override the version written into the quantized graph."""
        try:
            version = ModelVersion(version)
        except ValueError:
            error = InvalidParamsError(f"Unknown model version: {version!r}")
            self._fail(error)
            raise error from None
        self._model_version = version
        if self.params is not None:
            self.params = dataclasses.replace(self.params, model_version=version)

    def init(self, network_config: NetworkConfig, model_config: ModelConfig) -> Network:
        """Load the floating-point graph."""
        self._require("init", CalibrationState.UNINITIALIZED)
        try:
            self.device = torch.device(network_config.device)
            self.network = load_graph(model_config.proto_path, model_config.model_path, self.device)
        except CalibrationError as e:
            self._fail(e)
            raise
        except RuntimeError as e:
            # bad device strings surface as RuntimeError from torch
            error = InvalidParamsError(f"Invalid network config: {e}")
            self._fail(error)
            raise error from e

        self.state = CalibrationState.INITIALIZED
        return self.network

    def set_calibration_params(self, params: CalibrationParams | dict) -> CalibrationParams:
        """Validate and store the parameters for the run."""
        self._require("set_calibration_params", CalibrationState.INITIALIZED, CalibrationState.PARAMS_SET)
        try:
            if isinstance(params, dict):
                params = CalibrationParams(**params)
            elif not isinstance(params, CalibrationParams):
                raise InvalidParamsError(f"Expected CalibrationParams, got {type(params).__name__}")
            for input_spec in self.network.spec.inputs:
                params.validate_input_channels(input_spec.channels)
            if self._model_version is not None:
                params = dataclasses.replace(params, model_version=self._model_version)
        except (TypeError, ValueError) as e:
            error = InvalidParamsError(str(e))
            self._fail(error)
            raise error from e
        except CalibrationError as e:
            self._fail(e)
            raise

        self.params = params
        self.state = CalibrationState.PARAMS_SET
        logger.info(
            f"Calibration params: blob={params.blob_method.name}, weight={params.weight_method.name}, "
            f"merge_channel={params.merge_channel}, bits={params.bits}"
        )
        return params

    def run_calibration(self, dataset: DataSet) -> QuantizedModel:
        """
        Collect statistics over ``dataset``, compute every scale and assemble the model.

        MIN_MAX blob calibration takes one pass over the dataset; KL_DIVERGENCE
        takes two (range discovery, then histogram fill).
        """
        self._require("run_calibration", CalibrationState.PARAMS_SET)
        self.state = CalibrationState.RUNNING
        params = self.params

        try:
            if len(dataset) == 0:
                raise EmptyDatasetError("Calibration dataset is empty")

            calculator = ScaleCalculator(params)
            weight_entries = calculator.weight_scales(self.network.weight_tensors())

            use_histogram = params.blob_method == CalibrationMethod.KL_DIVERGENCE
            collector = StatisticsCollector(
                merge_channel=params.merge_channel,
                collect_histogram=use_histogram,
                num_bins=params.num_bins,
            )
            loader = SampleLoader(self.network.spec.inputs, params.input_bias, params.input_scale)

            stages = [CollectionStage.RANGE_DISCOVERY]
            if use_histogram:
                stages.append(CollectionStage.HISTOGRAM_FILL)
            for stage in stages:
                self._run_pass(dataset, loader, collector, stage)

            blob_entries = calculator.blob_scales(collector.finalize())
            model = assemble(self.network, {**blob_entries, **weight_entries}, params)
        except Exception as e:
            self._fail(e)
            raise

        self.quantized_model = model
        self.state = CalibrationState.COMPLETED
        logger.info(f"Calibration completed over {len(dataset)} samples")
        return model

    def _run_pass(
        self,
        dataset: DataSet,
        loader: SampleLoader,
        collector: StatisticsCollector,
        stage: CollectionStage,
    ) -> None:
        collector.begin_stage(stage)
        logger.info(f"Pass {stage.value}: {len(dataset)} samples")

        with torch.no_grad():
            for i, sample in enumerate(dataset):
                inputs = {name: t.to(self.device) for name, t in loader.load(sample).items()}
                try:
                    blobs = self.network(inputs)
                except (RuntimeError, KeyError, TypeError, ValueError) as e:
                    raise GraphError(f"Forward pass failed on {sample.path}: {e}") from e
                collector.observe_all(blobs)

                if (i + 1) % self.log_interval == 0:
                    logger.info(f"[{stage.value}] processed {i + 1}/{len(dataset)} samples")

        collector.end_stage()

    def serialize(self, proto_path: str | Path, model_path: str | Path) -> tuple[Path, Path]:
        """Write the quantized graph and weights files."""
        self._require("serialize", CalibrationState.COMPLETED)
        try:
            return serialize(self.quantized_model, proto_path, model_path)
        except CalibrationError as e:
            self._fail(e)
            raise
