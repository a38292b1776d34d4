"""Tests for sample decoding and preprocessing."""

import numpy as np
import pytest
import torch
from PIL import Image

from qcalib.data.dataset import FileFormat, Sample
from qcalib.data.loader import SampleLoader
from qcalib.errors import SampleLoadError
from qcalib.graph.spec import InputSpec

IMAGE_INPUT = (InputSpec("data", (1, 3, 2, 2)),)


class TestNumericSamples:
    """Tests for npy and text samples."""

    def test_npy_split_across_inputs(self, tmp_path):
        """Test flat values are split over inputs in declaration order."""
        path = tmp_path / "s.npy"
        np.save(path, np.arange(10, dtype=np.float32))
        loader = SampleLoader((InputSpec("a", (1, 4)), InputSpec("b", (2, 3))))

        tensors = loader.load(Sample(str(path), FileFormat.NPY))

        assert tensors["a"].tolist() == [[0, 1, 2, 3]]
        assert tensors["b"].shape == (2, 3)
        assert tensors["b"][1].tolist() == [7, 8, 9]

    def test_text(self, tmp_path):
        path = tmp_path / "s.txt"
        path.write_text("1.5 -2\n3\n4e-1\n")
        loader = SampleLoader((InputSpec("a", (1, 4)),))

        tensors = loader.load(Sample(str(path), FileFormat.TEXT))

        assert tensors["a"].dtype == torch.float32
        assert tensors["a"][0].tolist() == pytest.approx([1.5, -2.0, 3.0, 0.4])

    def test_wrong_size(self, tmp_path):
        path = tmp_path / "s.npy"
        np.save(path, np.zeros(5, dtype=np.float32))
        loader = SampleLoader((InputSpec("a", (1, 4)),))

        with pytest.raises(SampleLoadError) as exc_info:
            loader.load(Sample(str(path), FileFormat.NPY))

        assert exc_info.value.path == str(path)

    def test_unparseable_text(self, tmp_path):
        path = tmp_path / "s.txt"
        path.write_text("1 2 three 4")
        loader = SampleLoader((InputSpec("a", (1, 4)),))

        with pytest.raises(SampleLoadError):
            loader.load(Sample(str(path), FileFormat.TEXT))

    @pytest.mark.parametrize("values", ["1 nan 3 4", "1 2 inf 4", "-inf 0 0 0"])
    def test_non_finite_text(self, tmp_path, values):
        """Test NaN and infinite values are rejected as a load error."""
        path = tmp_path / "s.txt"
        path.write_text(values)
        loader = SampleLoader((InputSpec("a", (1, 4)),))

        with pytest.raises(SampleLoadError) as exc_info:
            loader.load(Sample(str(path), FileFormat.TEXT))

        assert "non-finite" in str(exc_info.value)

    def test_non_finite_npy(self, tmp_path):
        path = tmp_path / "s.npy"
        np.save(path, np.array([0.0, np.inf, 1.0, 2.0], dtype=np.float32))
        loader = SampleLoader((InputSpec("a", (1, 4)),))

        with pytest.raises(SampleLoadError):
            loader.load(Sample(str(path), FileFormat.NPY))

    def test_missing_file(self, tmp_path):
        loader = SampleLoader((InputSpec("a", (1, 4)),))

        with pytest.raises(SampleLoadError):
            loader.load(Sample(str(tmp_path / "gone.npy"), FileFormat.NPY))


class TestImageSamples:
    """Tests for image samples."""

    def test_resize_and_layout(self, tmp_path):
        """Test images become NCHW tensors at the input resolution."""
        path = tmp_path / "img.png"
        Image.new("RGB", (4, 4), (10, 20, 30)).save(path)
        loader = SampleLoader(IMAGE_INPUT)

        tensor = loader.load(Sample(str(path), FileFormat.IMAGE))["data"]

        assert tensor.shape == (1, 3, 2, 2)
        assert tensor[0, :, 0, 0].tolist() == pytest.approx([10.0, 20.0, 30.0])

    def test_preprocessing(self, tmp_path):
        """Test value * scale + bias per channel."""
        path = tmp_path / "img.bmp"
        Image.new("RGB", (2, 2), (10, 20, 30)).save(path)
        loader = SampleLoader(IMAGE_INPUT, input_bias=(-1.0, -2.0, -3.0), input_scale=(0.5, 0.5, 0.5))

        tensor = loader.load(Sample(str(path), FileFormat.IMAGE))["data"]

        assert tensor[0, :, 1, 1].tolist() == pytest.approx([4.0, 8.0, 12.0])

    def test_grayscale(self, tmp_path):
        path = tmp_path / "img.png"
        Image.new("RGB", (2, 2), (50, 50, 50)).save(path)
        loader = SampleLoader((InputSpec("data", (1, 1, 2, 2)),))

        tensor = loader.load(Sample(str(path), FileFormat.IMAGE))["data"]

        assert tensor.shape == (1, 1, 2, 2)
        assert tensor.flatten().tolist() == [50.0] * 4

    def test_not_an_image(self, tmp_path):
        path = tmp_path / "img.png"
        path.write_bytes(b"definitely not a png")

        with pytest.raises(SampleLoadError):
            SampleLoader(IMAGE_INPUT).load(Sample(str(path), FileFormat.IMAGE))

    def test_multi_input_graph(self, tmp_path):
        """Test images need a single NCHW input."""
        path = tmp_path / "img.png"
        Image.new("RGB", (2, 2)).save(path)
        loader = SampleLoader(IMAGE_INPUT + (InputSpec("extra", (1, 4)),))

        with pytest.raises(SampleLoadError):
            loader.load(Sample(str(path), FileFormat.IMAGE))


class TestPreprocess:
    """Tests for SampleLoader.preprocess."""

    def test_default_vectors_truncate(self):
        """Test four-entry defaults apply to a three-channel input."""
        loader = SampleLoader(IMAGE_INPUT, input_bias=(1.0, 2.0, 3.0, 4.0))

        out = loader.preprocess(torch.zeros(1, 3, 1, 1))

        assert out.flatten().tolist() == [1.0, 2.0, 3.0]

    def test_short_vector_broadcasts(self):
        """Test a shorter vector repeats its last entry."""
        loader = SampleLoader(IMAGE_INPUT, input_scale=(2.0,))

        out = loader.preprocess(torch.ones(1, 3, 1, 1))

        assert out.flatten().tolist() == [2.0, 2.0, 2.0]

    def test_one_dimensional(self):
        loader = SampleLoader((InputSpec("x", (4,)),), input_bias=(1.0,), input_scale=(3.0,))

        out = loader.preprocess(torch.ones(4))

        assert out.tolist() == [4.0, 4.0, 4.0, 4.0]

    def test_needs_inputs(self):
        with pytest.raises(ValueError):
            SampleLoader(())
