from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Union

import numpy as np

from .likelihood import InbreedingLikelihood

RandomState = Union[None, int, np.random.Generator]


class DegenerateLikelihoodError(ValueError):
    """Raised when an individual's likelihood is zero for every F on the grid."""


@dataclass
class DensityGrid:
    """Discretised likelihood density of F on an even grid over [0, 1]."""

    f: np.ndarray  # (M,)
    mass: np.ndarray  # (M,), sums to 1 unless degenerate
    loglik: np.ndarray  # (M,)
    degenerate: bool = False

    @property
    def M(self) -> int:
        return int(self.f.shape[0])

    def mean(self) -> float:
        if self.degenerate:
            return float("nan")
        return float(np.sum(self.f * self.mass))


def check_positive_int(value: int, name: str) -> int:
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, (int, np.integer)):
        raise ValueError(f"{name} must be a positive integer, got {value!r}.")
    if value < 1:
        raise ValueError(f"{name} must be a positive integer, got {value!r}.")
    return int(value)


def make_f_grid(M: int) -> np.ndarray:
    """M evenly spaced F values over the closed interval [0, 1]."""
    M = check_positive_int(M, "M")
    return np.linspace(0.0, 1.0, M)


def build_grid(likelihood: InbreedingLikelihood, M: int) -> DensityGrid:
    """Evaluate the likelihood on the F grid and normalise it to unit mass.

    Masses are exp(loglik - max loglik) rescaled to sum to 1, so extreme
    log-likelihoods do not underflow. When every grid point has zero
    likelihood the grid is flagged degenerate and carries zero mass.
    """
    f = make_f_grid(M)
    loglik = np.atleast_1d(np.asarray(likelihood.log_likelihood(f), dtype=np.float64))

    top = np.max(loglik)
    if not np.isfinite(top):
        return DensityGrid(f=f, mass=np.zeros_like(f), loglik=loglik, degenerate=True)

    weight = np.exp(loglik - top)
    return DensityGrid(f=f, mass=weight / np.sum(weight), loglik=loglik)


def sample_grid(grid: DensityGrid, N: int, rng: RandomState = None) -> np.ndarray:
    """Draw N values of F with replacement, proportional to grid mass.

    Only the M grid values can be drawn, so M should be well above N for the
    sample to resemble a continuous one.
    """
    N = check_positive_int(N, "N")
    if grid.degenerate:
        raise DegenerateLikelihoodError("Cannot sample from a degenerate density grid.")
    rng = np.random.default_rng(rng)
    return rng.choice(grid.f, size=N, replace=True, p=grid.mass)


def _golden_section_max(
    fn: Callable[[float], float],
    lo: float,
    hi: float,
    tol: float = 1e-8,
    max_iter: int = 100,
) -> float:
    """Maximise a unimodal function on [lo, hi] by golden-section search."""
    phi = (1.0 + 5.0 ** 0.5) / 2.0
    invphi = 1.0 / phi
    invphi2 = 1.0 / (phi**2)

    a, b = float(lo), float(hi)
    h = b - a
    if h <= tol:
        return (a + b) / 2.0

    c = a + invphi2 * h
    d = a + invphi * h
    fc = fn(c)
    fd = fn(d)

    for _ in range(max_iter):
        if fc > fd:
            b, d, fd = d, c, fc
            h = b - a
            c = a + invphi2 * h
            fc = fn(c)
        else:
            a, c, fc = c, d, fd
            h = b - a
            d = a + invphi * h
            fd = fn(d)
        if h <= tol:
            break

    return c if fc > fd else d


def estimate_mle(
    grid: DensityGrid,
    likelihood: Optional[InbreedingLikelihood] = None,
    refine: bool = False,
    tol: float = 1e-6,
) -> float:
    """Maximum-likelihood F from a density grid.

    Returns the grid point with the largest mass, ties going to the lowest F.
    With refine=True the log-likelihood is maximised by golden-section search
    between the neighbouring grid points; the refined value replaces the grid
    value only if its log-likelihood is at least as high. F is evaluated in
    float32, so tol below ~1e-7 buys nothing.
    """
    if grid.degenerate:
        raise DegenerateLikelihoodError("Degenerate density grid has no maximum.")

    i = int(np.argmax(grid.mass))
    f_hat = float(grid.f[i])
    if not refine or likelihood is None or grid.M < 2:
        return f_hat

    lo = float(grid.f[max(i - 1, 0)])
    hi = float(grid.f[min(i + 1, grid.M - 1)])
    f_ref = _golden_section_max(likelihood.log_likelihood, lo, hi, tol=tol)
    f_ref = float(np.clip(f_ref, lo, hi))
    if likelihood.log_likelihood(f_ref) >= grid.loglik[i]:
        return f_ref
    return f_hat
