from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np

from .io import GenotypeData


@dataclass
class SimulatedGenotypes:
    data: GenotypeData
    true_f: np.ndarray  # (n_ind,)
    freqs: np.ndarray   # (n_pop, n_loc, n_alleles)


def simulate_inbred_genotypes(
    n_ind: int,
    n_loc: int,
    n_alleles: int = 4,
    ploidy: Union[int, Sequence[int]] = 2,
    f: Union[float, Sequence[float]] = 0.0,
    n_pop: int = 1,
    alpha: float = 1.0,
    missing_rate: float = 0.0,
    seed: Optional[int] = None,
) -> SimulatedGenotypes:
    """Simulate multi-allelic genotypes of inbred individuals.

    Allele frequencies per population and locus are Dirichlet(alpha). At each
    locus an individual is identical by descent with probability F, in which
    case every copy carries one allele drawn from the population; otherwise
    its copies are independent draws. Individuals are split evenly over
    populations 'P1'..'Pn' in order.
    """
    if n_alleles < 1 or n_loc < 1 or n_ind < 1 or n_pop < 1:
        raise ValueError("n_ind, n_loc, n_alleles and n_pop must be positive.")
    rng = np.random.default_rng(seed)

    ploidy_arr = np.broadcast_to(np.asarray(ploidy, dtype=np.int32), (n_ind,)).copy()
    f_arr = np.broadcast_to(np.asarray(f, dtype=np.float64), (n_ind,)).copy()
    if np.any((f_arr < 0.0) | (f_arr > 1.0)):
        raise ValueError("F must lie within [0, 1].")

    freqs = rng.dirichlet(np.full(n_alleles, alpha), size=(n_pop, n_loc))
    cum = np.cumsum(freqs, axis=2)
    pop_idx = np.minimum(np.arange(n_ind) * n_pop // n_ind, n_pop - 1)

    max_ploidy = int(ploidy_arr.max())
    alleles = np.full((n_ind, n_loc, max_ploidy), -1, dtype=np.int32)

    for i in range(n_ind):
        k = int(ploidy_arr[i])
        u = rng.random((n_loc, k))
        # Inverse CDF per copy.
        codes = np.sum(u[:, :, None] > cum[pop_idx[i]][:, None, :], axis=2)
        codes = np.minimum(codes, n_alleles - 1)

        ibd = rng.random(n_loc) < f_arr[i]
        codes[ibd, :] = codes[ibd, :1]

        missing = rng.random(n_loc) < missing_rate
        codes[missing, :] = -1
        alleles[i, :, :k] = codes

    data = GenotypeData(
        sample_ids=[f"S{i + 1}" for i in range(n_ind)],
        loci=[f"L{l + 1}" for l in range(n_loc)],
        allele_names=[[str(100 + 2 * a) for a in range(n_alleles)] for _ in range(n_loc)],
        alleles=alleles,
        ploidy=ploidy_arr,
        populations=np.array([f"P{p + 1}" for p in pop_idx], dtype=str),
    )
    return SimulatedGenotypes(data=data, true_f=f_arr, freqs=freqs)
