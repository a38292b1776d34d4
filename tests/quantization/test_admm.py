"""Tests for ADMM weight scale search."""

import pytest
import torch

from qcalib.quantization.admm import admm_scale, quantize_levels, reconstruction_error


class TestAdmmScale:
    """Tests for admm_scale."""

    def test_zero_weights(self):
        """Test all-zero weights give the zero scale."""
        result = admm_scale(torch.zeros(3, 4))

        assert result.converged
        assert result.scale == 0.0
        assert result.error == 0.0

    def test_never_worse_than_min_max(self):
        """Test the result error is bounded by the min-max error."""
        torch.manual_seed(0)
        for _ in range(5):
            w = torch.randn(64) * torch.rand(1) * 3
            min_max = float(w.abs().max()) / 127

            result = admm_scale(w)

            assert result.error <= reconstruction_error(w, min_max, 127) + 1e-12
            assert result.error == pytest.approx(reconstruction_error(w, result.scale, 127))

    def test_weights_on_grid(self):
        """Test weights already on the int8 grid converge immediately with no error."""
        levels = torch.arange(-127, 128, dtype=torch.float64)
        w = levels * 0.01

        result = admm_scale(w)

        assert result.converged
        assert result.iterations == 1
        assert result.scale == pytest.approx(0.01)
        assert result.error == pytest.approx(0.0, abs=1e-12)

    def test_iteration_cap(self):
        """Test non-convergence is reported, not raised."""
        torch.manual_seed(1)
        w = torch.randn(256)

        result = admm_scale(w, max_iterations=1, tolerance=0.0)

        assert not result.converged
        assert result.iterations == 1
        assert result.scale > 0

    def test_lower_bit_width(self):
        """Test the level range follows the bit width."""
        w = torch.linspace(-1, 1, 50)

        result = admm_scale(w, bits=4)

        levels = quantize_levels(w.double(), result.scale, 7)
        assert levels.abs().max() <= 7


class TestHelpers:
    """Tests for level and error helpers."""

    def test_quantize_levels_clamps(self):
        """Test levels are clipped to [-qmax, qmax]."""
        levels = quantize_levels(torch.tensor([-500.0, 0.2, 500.0]), 1.0, 127)

        assert levels.tolist() == [-127.0, 0.0, 127.0]

    def test_zero_scale(self):
        """Test a zero scale maps everything to level 0."""
        w = torch.tensor([3.0, 4.0])

        assert quantize_levels(w, 0.0, 127).tolist() == [0.0, 0.0]
        assert reconstruction_error(w, 0.0, 127) == pytest.approx(5.0)
