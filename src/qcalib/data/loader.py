"""
Sample decoding.

Turns one calibration file into the input tensors of the graph. Preprocessing
follows the ``dst = src * scale + bias`` convention, applied per channel
(dimension 1) after decoding and before the forward pass.
"""

import logging
import math
from pathlib import Path

import numpy as np
import torch
from PIL import Image, UnidentifiedImageError

from qcalib.data.dataset import FileFormat, Sample
from qcalib.errors import SampleLoadError
from qcalib.graph.spec import InputSpec

logger = logging.getLogger(__name__)

_IMAGE_MODES = {1: "L", 3: "RGB", 4: "RGBA"}


class SampleLoader:
    """
    Decodes samples into graph inputs.

    Text and npy samples hold the flattened values of every graph input, in the
    order the inputs are declared. Image samples are only accepted for graphs
    with a single NCHW input of 1, 3 or 4 channels.
    """

    def __init__(
        self,
        inputs: tuple[InputSpec, ...] | list[InputSpec],
        input_bias: tuple[float, ...] = (0.0, 0.0, 0.0, 0.0),
        input_scale: tuple[float, ...] = (1.0, 1.0, 1.0, 1.0),
    ):
        if not inputs:
            raise ValueError("SampleLoader needs at least one graph input")
        self.inputs = tuple(inputs)
        self.input_bias = tuple(input_bias)
        self.input_scale = tuple(input_scale)

    def load(self, sample: Sample) -> dict[str, torch.Tensor]:
        path = Path(sample.path)
        try:
            match sample.format:
                case FileFormat.TEXT:
                    tensors = self._split(self._read_text(path), path)
                case FileFormat.NPY:
                    tensors = self._split(np.load(path, allow_pickle=False).astype(np.float32).ravel(), path)
                case FileFormat.IMAGE:
                    tensors = {self.inputs[0].name: self._read_image(path)}
                case _:
                    raise SampleLoadError(path, f"unsupported format {sample.format}")
        except SampleLoadError:
            raise
        except (OSError, ValueError, UnidentifiedImageError) as e:
            raise SampleLoadError(path, str(e)) from e

        logger.debug(f"Loaded {path.name}: {[tuple(t.shape) for t in tensors.values()]}")
        return {name: self.preprocess(tensor) for name, tensor in tensors.items()}

    def preprocess(self, tensor: torch.Tensor) -> torch.Tensor:
        """Apply ``value * scale[c] + bias[c]`` along the channel dimension."""
        channels = tensor.shape[1] if tensor.dim() >= 2 else 1
        scale = torch.tensor(self._per_channel(self.input_scale, channels), dtype=tensor.dtype)
        bias = torch.tensor(self._per_channel(self.input_bias, channels), dtype=tensor.dtype)
        if tensor.dim() >= 2:
            view = [1, channels] + [1] * (tensor.dim() - 2)
            scale = scale.view(view)
            bias = bias.view(view)
        return tensor * scale + bias

    @staticmethod
    def _per_channel(values: tuple[float, ...], channels: int) -> list[float]:
        if len(values) >= channels:
            return list(values[:channels])
        # shorter vectors broadcast their last entry
        return list(values) + [values[-1]] * (channels - len(values))

    @staticmethod
    def _read_text(path: Path) -> np.ndarray:
        tokens = path.read_text(encoding="utf-8").split()
        return np.array([float(t) for t in tokens], dtype=np.float32)

    def _split(self, values: np.ndarray, path: Path) -> dict[str, torch.Tensor]:
        expected = sum(math.prod(i.shape) for i in self.inputs)
        if values.size != expected:
            raise SampleLoadError(path, f"holds {values.size} values, graph inputs need {expected}")
        if not np.isfinite(values).all():
            raise SampleLoadError(path, "holds non-finite values")

        tensors = {}
        offset = 0
        for input_spec in self.inputs:
            n = math.prod(input_spec.shape)
            chunk = values[offset : offset + n].reshape(input_spec.shape)
            tensors[input_spec.name] = torch.from_numpy(np.ascontiguousarray(chunk))
            offset += n
        return tensors

    def _read_image(self, path: Path) -> torch.Tensor:
        if len(self.inputs) != 1:
            raise SampleLoadError(path, "image samples need a single-input graph")
        input_spec = self.inputs[0]
        if len(input_spec.shape) != 4 or input_spec.shape[1] not in _IMAGE_MODES:
            raise SampleLoadError(path, f"input '{input_spec.name}' {input_spec.shape} is not an NCHW image input")

        batch, channels, height, width = input_spec.shape
        with Image.open(path) as img:
            img = img.convert(_IMAGE_MODES[channels])
            if img.size != (width, height):
                img = img.resize((width, height), Image.BILINEAR)
            array = np.asarray(img, dtype=np.float32)

        if array.ndim == 2:
            array = array[:, :, None]
        tensor = torch.from_numpy(np.ascontiguousarray(array.transpose(2, 0, 1)))
        return tensor.unsqueeze(0).expand(batch, -1, -1, -1).contiguous()
