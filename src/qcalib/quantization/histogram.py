"""
KL-divergence (entropy) threshold search over an activation histogram.

The histogram is symmetric around zero: ``num_bins`` bins over ``[-m, m]``.
Candidate ``i`` keeps the ``2 * i`` central bins, i.e. clips at ``i * bin_width``.

For each candidate:

* P is the kept window with the clipped mass of each side folded into the
  outermost kept bin;
* Q quantizes the kept window (without the folded mass) into ``2**bits``
  levels and expands it back, spreading each level's mass uniformly over the
  bins that are non-empty in P;
* both are smoothed so empty bins hold a tiny ``eps`` mass, normalized, and
  compared with ``sum(p * log(p / q))``.

Clipped outliers therefore always cost divergence, and a window with one bin per
level does not trivially reproduce P.

This departs from the TensorRT / MXNet entropy calibrator, which builds Q from
the clipped window *with* the outliers merged in. With merged outliers and one
bin per level, Q equals P, so the narrowest candidate scores 0 and always wins.
Thresholds from this module are therefore not bit-identical to those tools.
"""

import logging
from dataclasses import dataclass

import numpy as np

from qcalib.errors import DegenerateHistogramError

logger = logging.getLogger(__name__)

SMOOTHING_EPS = 1e-4


@dataclass(frozen=True)
class ThresholdResult:
    bin_index: int  # half-width of the kept window, in bins
    threshold: float
    divergence: float


def kl_divergence(p: np.ndarray, q: np.ndarray) -> float:
    """``sum(p * log(p / q))`` over bins where both are nonzero. Inputs are normalized here."""
    p = p / p.sum()
    q = q / q.sum()
    mask = (p > 0) & (q > 0)
    return float(np.sum(p[mask] * np.log(p[mask] / q[mask])))


def smooth_distribution(hist: np.ndarray, eps: float = SMOOTHING_EPS) -> np.ndarray | None:
    """
    Give empty bins ``eps`` mass taken evenly from the non-empty ones.

    Returns None when that is impossible (no mass, or non-empty bins too small
    to give up ``eps``).
    """
    is_zero = hist == 0
    n_zero = int(is_zero.sum())
    n_nonzero = hist.size - n_zero
    if n_nonzero == 0:
        return None
    eps1 = eps * n_zero / n_nonzero
    if n_zero and eps1 >= hist[~is_zero].min():
        return None
    return np.where(is_zero, eps, hist - eps1)


def quantize_expand(hist: np.ndarray, num_levels: int, mask: np.ndarray | None = None) -> np.ndarray:
    """
    Merge ``hist`` into ``num_levels`` contiguous groups and expand it back.

    Group ``j`` covers bins ``[j * n // L, (j + 1) * n // L)``. Each group's total
    mass is shared equally among the bins selected by ``mask`` (default: the
    non-empty bins of ``hist``); other bins get nothing.
    """
    n = hist.shape[0]
    if n < num_levels:
        raise ValueError(f"Cannot quantize {n} bins into {num_levels} levels")
    if mask is None:
        mask = hist > 0

    edges = (np.arange(num_levels + 1) * n) // num_levels
    levels = np.repeat(np.arange(num_levels), np.diff(edges))

    level_mass = np.bincount(levels, weights=hist, minlength=num_levels)
    level_slots = np.bincount(levels, weights=mask.astype(np.float64), minlength=num_levels)

    expanded = np.zeros(n, dtype=np.float64)
    expanded[mask] = level_mass[levels[mask]] / level_slots[levels[mask]]
    return expanded


def clip_histogram(hist: np.ndarray, half_width: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Keep the ``2 * half_width`` central bins.

    Returns:
        ``(window, folded)``: the kept bins as-is, and a copy with the clipped
        mass of each side added to the outermost kept bin.
    """
    center = hist.shape[0] // 2
    lo, hi = center - half_width, center + half_width
    window = hist[lo:hi].astype(np.float64, copy=True)
    folded = window.copy()
    folded[0] += hist[:lo].sum()
    folded[-1] += hist[hi:].sum()
    return window, folded


def candidate_divergence(hist: np.ndarray, half_width: int, num_levels: int) -> float:
    window, p = clip_histogram(hist, half_width)
    q = quantize_expand(window, num_levels, mask=p > 0)

    p = smooth_distribution(p)
    q = smooth_distribution(q)
    if p is None or q is None:
        return float("inf")
    return kl_divergence(p, q)


def search_threshold(hist: np.ndarray, abs_max: float, bits: int = 8) -> ThresholdResult:
    """
    Find the clipping threshold minimizing KL divergence.

    Args:
        hist: 1-D symmetric histogram over ``[-abs_max, abs_max]``.
        abs_max: Half range of the histogram.
        bits: Target bit width; Q uses ``2**bits`` levels.

    Returns:
        The best candidate. Ties go to the smaller threshold.

    Raises:
        DegenerateHistogramError: If the histogram is empty (all-zero activation).
    """
    hist = np.asarray(hist, dtype=np.float64)
    num_bins = hist.shape[0]
    if hist.sum() <= 0 or abs_max <= 0:
        raise DegenerateHistogramError("Histogram holds no nonzero values")

    num_levels = 2**bits
    center = num_bins // 2
    start = num_levels // 2
    if start > center:
        raise ValueError(f"{num_bins} bins are too few for {bits}-bit levels")

    best_index = center
    best_divergence = float("inf")
    for i in range(start, center + 1):
        divergence = candidate_divergence(hist, i, num_levels)
        if divergence < best_divergence:
            best_divergence = divergence
            best_index = i

    bin_width = 2.0 * abs_max / num_bins
    logger.debug(f"KL search: best half-width {best_index}/{center} bins, divergence {best_divergence:.6g}")
    return ThresholdResult(bin_index=best_index, threshold=best_index * bin_width, divergence=best_divergence)
