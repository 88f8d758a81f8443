from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .freq import AlleleFrequencyTable, allele_frequencies, resolve_populations
from .grid import (
    DegenerateLikelihoodError,
    RandomState,
    check_positive_int,
    build_grid,
    estimate_mle,
    make_f_grid,
    sample_grid,
)
from .homozygosity import homozygosity_states
from .io import GenotypeData
from .likelihood import InbreedingLikelihood, expected_homozygosity, likelihood_for_individual

logger = logging.getLogger(__name__)

RES_TYPES = ("sample", "function", "estimate")


@dataclass
class InbreedingResult:
    """Per-individual inbreeding results in input order.

    values maps each individual key to a numpy array of N draws ("sample"),
    an InbreedingLikelihood ("function") or a float MLE ("estimate").
    Individuals whose likelihood is zero for every F are listed in
    `degenerate`; their samples are all-NaN and their estimate is NaN.
    """

    res_type: str
    values: Dict[str, Any]
    degenerate: List[str] = field(default_factory=list)

    def __getitem__(self, key: str) -> Any:
        return self.values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def keys(self) -> List[str]:
        return list(self.values.keys())

    def to_frame(self, f_values: Optional[Sequence[float]] = None) -> pd.DataFrame:
        """Tabulate results.

        - estimate: sample_id, F, degenerate
        - sample:   sample_id, draw, F (long form)
        - function: sample_id, F, loglik evaluated at f_values
        """
        degenerate = set(self.degenerate)
        if self.res_type == "estimate":
            return pd.DataFrame(
                {
                    "sample_id": list(self.values.keys()),
                    "F": np.asarray(list(self.values.values()), dtype=np.float64),
                    "degenerate": [k in degenerate for k in self.values],
                }
            )

        if self.res_type == "sample":
            frames = [
                pd.DataFrame(
                    {"sample_id": key, "draw": np.arange(1, len(draws) + 1), "F": draws}
                )
                for key, draws in self.values.items()
            ]
            if not frames:
                return pd.DataFrame(columns=["sample_id", "draw", "F"])
            return pd.concat(frames, ignore_index=True)

        if f_values is None:
            raise ValueError("f_values are required to tabulate likelihood functions.")
        f_arr = np.asarray(f_values, dtype=np.float64)
        frames = [
            pd.DataFrame({"sample_id": key, "F": f_arr, "loglik": lik.log_likelihood(f_arr)})
            for key, lik in self.values.items()
        ]
        if not frames:
            return pd.DataFrame(columns=["sample_id", "F", "loglik"])
        return pd.concat(frames, ignore_index=True)


def validate_options(res_type: str, N: int, M: Optional[int]) -> Tuple[str, int, int]:
    """Check result type and grid/sample sizes; M defaults to 10 * N."""
    if not isinstance(res_type, str) or res_type.lower() not in RES_TYPES:
        raise ValueError(
            f"Unsupported res_type {res_type!r} (expected one of {', '.join(RES_TYPES)})."
        )
    res_type = res_type.lower()
    N = check_positive_int(N, "N")
    M = N * 10 if M is None else check_positive_int(M, "M")
    if res_type == "sample" and M <= N:
        logger.warning(
            "Grid size M=%d does not exceed sample size N=%d; draws can only take %d values.",
            M,
            N,
            M,
        )
    return res_type, N, M


def inbreeding(
    data: GenotypeData,
    populations: Optional[Sequence[str]] = None,
    res_type: str = "sample",
    N: int = 200,
    M: Optional[int] = None,
    truenames: bool = True,
    freqs: Optional[AlleleFrequencyTable] = None,
    seed: RandomState = None,
    refine: bool = False,
) -> InbreedingResult:
    """Likelihood-based inbreeding coefficient F for every individual.

    Args:
        data: genotype calls.
        populations: population label per individual; defaults to
            data.populations, else all individuals form one population.
        res_type: "sample" (N draws from the likelihood density of F),
            "function" (the likelihood itself) or "estimate" (the MLE).
        N: sample size for res_type="sample".
        M: number of grid points over [0, 1] (default 10 * N).
        truenames: key results by sample ID; otherwise by 'ind1', 'ind2', ...
        freqs: pre-computed allele frequencies; computed from data if None.
        seed: seed or Generator for res_type="sample".
        refine: refine the MLE between neighbouring grid points.
    """
    res_type, N, M = validate_options(res_type, N, M)

    labels, _ = resolve_populations(data, populations)
    if freqs is None:
        table = allele_frequencies(data, labels)
    else:
        table = freqs.align_to(data)
        unknown = sorted(set(labels) - set(table.populations))
        if unknown:
            raise ValueError(
                f"No allele frequencies supplied for populations: {', '.join(unknown)}"
            )

    states = homozygosity_states(data)
    rng = np.random.default_rng(seed) if res_type == "sample" else None

    # Σp^k per (population, ploidy), shared by all members.
    s_cache: Dict[Tuple[str, int], np.ndarray] = {}

    values: Dict[str, Any] = {}
    degenerate: List[str] = []

    for i in range(data.n_ind):
        key = data.sample_ids[i] if truenames else f"ind{i + 1}"
        ck = (labels[i], int(data.ploidy[i]))
        if ck not in s_cache:
            s_cache[ck] = expected_homozygosity(
                table.freqs[table.pop_index(ck[0])], ck[1]
            )
        lik = likelihood_for_individual(states[i], s_cache[ck], sample_id=key)

        if lik.n_loci == 0:
            logger.debug("Individual %s has no usable loci; density of F is flat", key)

        if res_type == "function":
            values[key] = lik
            if lik.is_degenerate:
                degenerate.append(key)
            continue

        values[key], ok = _grid_result(lik, res_type, N, M, rng, refine)
        if not ok:
            degenerate.append(key)

    if degenerate:
        logger.warning(
            "%d of %d individuals have zero likelihood for every F: %s",
            len(degenerate),
            data.n_ind,
            ", ".join(degenerate[:5]),
        )

    return InbreedingResult(res_type=res_type, values=values, degenerate=degenerate)


def _grid_result(
    lik: InbreedingLikelihood,
    res_type: str,
    N: int,
    M: int,
    rng: Optional[np.random.Generator],
    refine: bool,
) -> Tuple[Any, bool]:
    grid = build_grid(lik, M)
    try:
        if res_type == "sample":
            return sample_grid(grid, N, rng), True
        return estimate_mle(grid, lik, refine=refine), True
    except DegenerateLikelihoodError:
        if res_type == "sample":
            return np.full(N, np.nan), False
        return float("nan"), False


def likelihood_grid(
    result: InbreedingResult,
    M: int,
) -> pd.DataFrame:
    """Evaluate "function" results on an M-point grid over [0, 1]."""
    if result.res_type != "function":
        raise ValueError("likelihood_grid requires res_type='function' results.")
    return result.to_frame(f_values=make_f_grid(M))
