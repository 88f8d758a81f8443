from __future__ import annotations

from enum import IntEnum
from typing import Any, Optional, Sequence

import numpy as np

from .io import MISSING_TOKENS, GenotypeData


class HomState(IntEnum):
    """Per-locus state of one genotype call."""

    MISSING = -1
    HETEROZYGOUS = 0
    HOMOZYGOUS = 1


def _is_missing_allele(allele: Any) -> bool:
    if allele is None:
        return True
    if isinstance(allele, str):
        return allele.strip() in MISSING_TOKENS
    if isinstance(allele, (float, np.floating)):
        return bool(np.isnan(allele))
    if isinstance(allele, (int, np.integer)):
        return int(allele) < 0
    return False


def classify_call(call: Optional[Sequence[Any]], ploidy: Optional[int] = None) -> HomState:
    """Reduce one genotype call to a homozygosity state.

    A call is homozygous when all of its ploidy-many alleles are identical.
    A missing call, an empty call, a call holding any unobserved allele, or a
    call with fewer than `ploidy` alleles is MISSING. Allele copies beyond
    `ploidy` (array padding) are ignored.
    """
    if call is None:
        return HomState.MISSING
    alleles = list(call)
    if ploidy is not None:
        if len(alleles) < ploidy:
            return HomState.MISSING
        alleles = alleles[:ploidy]
    if not alleles or any(_is_missing_allele(a) for a in alleles):
        return HomState.MISSING
    if all(a == alleles[0] for a in alleles[1:]):
        return HomState.HOMOZYGOUS
    return HomState.HETEROZYGOUS


def homozygosity_states(data: GenotypeData) -> np.ndarray:
    """Vectorised classify_call over a dataset: (n_ind, n_loc) int8 of HomState values."""
    in_call = data.copy_mask()
    missing = data.missing_mask()
    first = data.alleles[:, :, :1]
    same = np.all((data.alleles == first) | ~in_call, axis=2)

    states = np.where(same, int(HomState.HOMOZYGOUS), int(HomState.HETEROZYGOUS)).astype(np.int8)
    states[missing] = int(HomState.MISSING)
    return states
