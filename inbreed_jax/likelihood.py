from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

import jax.numpy as jnp
import numpy as np

from .homozygosity import HomState

ArrayLike = Union[float, np.ndarray, jnp.ndarray]


def expected_homozygosity(freqs: np.ndarray, ploidy: Union[int, np.ndarray]) -> np.ndarray:
    """Σ_i p_i^k over the last (allele) axis.

    This is the probability that k alleles drawn independently from the
    population are all identical. NaN where the frequencies are undefined.
    """
    freqs = np.asarray(freqs, dtype=np.float64)
    k = np.asarray(ploidy, dtype=np.float64)
    return np.sum(freqs ** k[..., None], axis=-1)


def prob_hom(f: ArrayLike, s: ArrayLike) -> jnp.ndarray:
    """P(homozygous | F) = F + (1 - F) s."""
    return f + (1.0 - f) * s


def prob_het(f: ArrayLike, s: ArrayLike) -> jnp.ndarray:
    """P(heterozygous | F) = (1 - F)(1 - s)."""
    return (1.0 - f) * (1.0 - s)


def safe_log(x: ArrayLike) -> jnp.ndarray:
    """log(x) with zero (or negative rounding noise) mapped to -inf."""
    x = jnp.asarray(x)
    pos = x > 0.0
    return jnp.where(pos, jnp.log(jnp.where(pos, x, 1.0)), -jnp.inf)


def _check_f(f: ArrayLike) -> np.ndarray:
    f_np = np.asarray(f, dtype=np.float64)
    if np.any(~np.isfinite(f_np)) or np.any(f_np < 0.0) or np.any(f_np > 1.0):
        raise ValueError("F must lie within [0, 1].")
    return f_np


@dataclass(frozen=True)
class InbreedingLikelihood:
    """Likelihood of F for one individual under the inbreeding mixture model.

    Holds only the loci that contribute: expected homozygosity s at the
    homozygous loci and expected heterozygosity 1 - s at the heterozygous
    loci. Missing calls and loci without population frequencies are left out.
    Calling the object returns the likelihood; log_likelihood the log scale.
    Both broadcast over arrays of F.
    """

    hom_s: np.ndarray
    het_h: np.ndarray
    sample_id: Optional[str] = None

    @property
    def n_loci(self) -> int:
        return int(self.hom_s.shape[0] + self.het_h.shape[0])

    @property
    def is_degenerate(self) -> bool:
        """A heterozygote at a fixed locus makes the likelihood 0 for every F."""
        return bool(np.any(self.het_h <= 0.0))

    def log_likelihood(self, f: ArrayLike) -> Union[float, np.ndarray]:
        f_np = _check_f(f)
        f_j = jnp.asarray(f_np, dtype=jnp.float32)[..., None]
        hom = jnp.asarray(self.hom_s, dtype=jnp.float32)
        het = jnp.asarray(self.het_h, dtype=jnp.float32)

        # Per-locus terms in float32; the sum over loci is accumulated in float64.
        hom_terms = np.asarray(safe_log(prob_hom(f_j, hom)), dtype=np.float64)
        het_terms = np.asarray(safe_log((1.0 - f_j) * het), dtype=np.float64)

        out = hom_terms.sum(axis=-1) + het_terms.sum(axis=-1)
        if f_np.ndim == 0:
            return float(out)
        return out

    def __call__(self, f: ArrayLike) -> Union[float, np.ndarray]:
        return np.exp(self.log_likelihood(f))


def likelihood_for_individual(
    states: np.ndarray,
    s: np.ndarray,
    sample_id: Optional[str] = None,
) -> InbreedingLikelihood:
    """Build an individual's likelihood from its per-locus states and Σp^k.

    Args:
        states: (n_loc,) HomState codes for the individual.
        s: (n_loc,) expected homozygosity at each locus in the individual's
           population, NaN where frequencies are undefined.
        sample_id: optional label carried on the result.
    """
    states = np.asarray(states)
    s = np.asarray(s, dtype=np.float64)
    if states.shape != s.shape:
        raise ValueError("states and s must have the same shape")

    used = (states != HomState.MISSING) & np.isfinite(s)
    s_used = np.clip(s, 0.0, 1.0)
    hom = used & (states == HomState.HOMOZYGOUS)
    het = used & (states == HomState.HETEROZYGOUS)

    return InbreedingLikelihood(
        hom_s=s_used[hom],
        het_h=1.0 - s_used[het],
        sample_id=sample_id,
    )
