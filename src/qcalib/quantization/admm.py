"""
Alternating optimization of a weight scale and its integer levels.

Each iteration rounds the weights to the nearest level at the current scale,
then solves the least-squares scale for those levels in closed form:
``s = <w, q> / <q, q>``. Both steps never increase ``||w - s * q||``, and the
loop starts from the min-max scale, so the result is never worse than min-max.
"""

from dataclasses import dataclass

import torch


@dataclass(frozen=True)
class AdmmResult:
    converged: bool
    scale: float
    iterations: int
    error: float


def quantize_levels(weights: torch.Tensor, scale: float, qmax: int) -> torch.Tensor:
    if scale == 0:
        return torch.zeros_like(weights)
    return torch.clamp(torch.round(weights / scale), -qmax, qmax)


def reconstruction_error(weights: torch.Tensor, scale: float, qmax: int) -> float:
    """L2 distance between ``weights`` and their dequantized levels at ``scale``."""
    w = weights.detach().double()
    return float(torch.linalg.vector_norm(w - quantize_levels(w, scale, qmax) * scale))


def admm_scale(
    weights: torch.Tensor,
    bits: int = 8,
    max_iterations: int = 100,
    tolerance: float = 1e-6,
) -> AdmmResult:
    """
    Search the scale minimizing reconstruction error for ``weights``.

    Args:
        weights: Any-shaped float tensor quantized with one scale.
        bits: Target bit width (symmetric, ``qmax = 2**(bits-1) - 1``).
        max_iterations: Iteration cap.
        tolerance: Relative scale change below which the loop has converged.

    Returns:
        The lowest-error scale seen and whether the loop converged. Never raises
        on non-convergence.
    """
    w = weights.detach().double().flatten()
    qmax = 2 ** (bits - 1) - 1
    abs_max = float(w.abs().max()) if w.numel() else 0.0
    if abs_max == 0:
        return AdmmResult(converged=True, scale=0.0, iterations=0, error=0.0)

    scale = abs_max / qmax
    best_scale = scale
    best_error = reconstruction_error(w, scale, qmax)

    for iteration in range(1, max_iterations + 1):
        q = quantize_levels(w, scale, qmax)
        denom = float(torch.dot(q, q))
        if denom == 0:
            return AdmmResult(converged=False, scale=best_scale, iterations=iteration, error=best_error)

        new_scale = float(torch.dot(w, q)) / denom
        error = reconstruction_error(w, new_scale, qmax)
        if error < best_error:
            best_scale, best_error = new_scale, error

        if abs(new_scale - scale) <= tolerance * scale:
            return AdmmResult(converged=True, scale=best_scale, iterations=iteration, error=best_error)
        scale = new_scale

    return AdmmResult(converged=False, scale=best_scale, iterations=max_iterations, error=best_error)
