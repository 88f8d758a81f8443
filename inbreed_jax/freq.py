from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .io import GenotypeData

logger = logging.getLogger(__name__)

DEFAULT_POPULATION = "all"


@dataclass
class AlleleFrequencyTable:
    """Per-population allele frequencies, padded over alleles.

    freqs[p, l, a] is the frequency of allele_names[l][a] at locus l in
    population populations[p]. Padding alleles (a >= len(allele_names[l]))
    are 0. A (population, locus) pair without any observed allele is all-NaN.
    """

    populations: List[str]
    loci: List[str]
    allele_names: List[List[str]]
    freqs: np.ndarray  # (n_pop, n_loc, max_alleles), float64

    def __post_init__(self) -> None:
        self.freqs = np.array(self.freqs, dtype=np.float64)
        if self.freqs.shape[:2] != (len(self.populations), len(self.loci)):
            raise ValueError("freqs must have shape (n_pop, n_loc, max_alleles)")
        self.freqs.setflags(write=False)

    @property
    def n_pop(self) -> int:
        return len(self.populations)

    def pop_index(self, population: str) -> int:
        try:
            return self.populations.index(str(population))
        except ValueError:
            raise KeyError(f"Population '{population}' not in frequency table") from None

    def locus_index(self, locus: str) -> int:
        try:
            return self.loci.index(str(locus))
        except ValueError:
            raise KeyError(f"Locus '{locus}' not in frequency table") from None

    def frequency(self, population: str, locus: str, allele: str) -> float:
        """Frequency of one allele; 0 for alleles never seen at the locus."""
        p = self.pop_index(population)
        l = self.locus_index(locus)
        names = self.allele_names[l]
        if str(allele) not in names:
            row = self.freqs[p, l]
            return float("nan") if np.all(np.isnan(row)) else 0.0
        return float(self.freqs[p, l, names.index(str(allele))])

    def is_defined(self) -> np.ndarray:
        """(n_pop, n_loc) mask of pairs with at least one observation."""
        return ~np.all(np.isnan(self.freqs), axis=2)

    def to_frame(self) -> pd.DataFrame:
        """Long form with columns population, locus, allele, frequency."""
        rows = []
        for p, pop in enumerate(self.populations):
            for l, locus in enumerate(self.loci):
                for a, allele in enumerate(self.allele_names[l]):
                    rows.append((pop, locus, allele, self.freqs[p, l, a]))
        return pd.DataFrame(rows, columns=["population", "locus", "allele", "frequency"])

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "AlleleFrequencyTable":
        """Build a table from long form (population, locus, allele, frequency).

        Frequencies are renormalised per (population, locus); pairs whose
        frequencies sum to 0 are treated as undefined.
        """
        cols = {c.lower(): c for c in df.columns}
        needed = ["population", "locus", "allele", "frequency"]
        missing = [c for c in needed if c not in cols]
        if missing:
            raise ValueError(f"Frequency table is missing columns: {', '.join(missing)}")

        pop_s = df[cols["population"]].astype(str).to_numpy()
        loc_s = df[cols["locus"]].astype(str).to_numpy()
        all_s = df[cols["allele"]].astype(str).to_numpy()
        val_s = df[cols["frequency"]].astype(float).to_numpy()
        if np.any(val_s < 0):
            raise ValueError("Allele frequencies must be non-negative.")

        populations = _first_appearance(pop_s)
        loci = _first_appearance(loc_s)
        loc_idx = {loc: i for i, loc in enumerate(loci)}
        pop_idx = {pop: i for i, pop in enumerate(populations)}

        allele_codes: List[Dict[str, int]] = [{} for _ in loci]
        for loc, allele in zip(loc_s, all_s):
            allele_codes[loc_idx[loc]].setdefault(allele, len(allele_codes[loc_idx[loc]]))
        max_alleles = max([len(c) for c in allele_codes] + [1])

        counts = np.zeros((len(populations), len(loci), max_alleles), dtype=np.float64)
        for pop, loc, allele, val in zip(pop_s, loc_s, all_s, val_s):
            l = loc_idx[loc]
            if np.isfinite(val):
                counts[pop_idx[pop], l, allele_codes[l][allele]] += val

        return cls(
            populations=populations,
            loci=loci,
            allele_names=[list(c.keys()) for c in allele_codes],
            freqs=_normalise(counts),
        )

    def align_to(self, data: GenotypeData) -> "AlleleFrequencyTable":
        """Re-index onto a dataset's locus and allele coding.

        The data's allele codes keep their positions. Alleles seen in the data
        but absent from the table get frequency 0; table alleles never seen in
        the data are appended after them. Loci absent from the table are
        undefined (NaN) for every population.
        """
        own_loci = {loc: i for i, loc in enumerate(self.loci)}
        names: List[List[str]] = []
        for l, locus in enumerate(data.loci):
            merged = list(data.allele_names[l])
            src = own_loci.get(locus)
            if src is not None:
                known = set(merged)
                merged += [a for a in self.allele_names[src] if a not in known]
            names.append(merged)

        max_alleles = max([len(n) for n in names] + [1])
        freqs = np.full((self.n_pop, data.n_loc, max_alleles), np.nan, dtype=np.float64)
        defined = self.is_defined()

        for l, locus in enumerate(data.loci):
            src = own_loci.get(locus)
            if src is None:
                logger.debug("Locus %s has no supplied frequencies", locus)
                continue
            src_names = {name: a for a, name in enumerate(self.allele_names[src])}
            row = np.zeros((self.n_pop, max_alleles), dtype=np.float64)
            for a, name in enumerate(names[l]):
                if name in src_names:
                    row[:, a] = self.freqs[:, src, src_names[name]]
            row[~defined[:, src], :] = np.nan
            freqs[:, l, :] = row

        return AlleleFrequencyTable(
            populations=list(self.populations),
            loci=list(data.loci),
            allele_names=names,
            freqs=freqs,
        )


def _first_appearance(labels: Sequence[str]) -> List[str]:
    seen: Dict[str, bool] = {}
    for lab in labels:
        seen.setdefault(str(lab), True)
    return list(seen.keys())


def _normalise(counts: np.ndarray) -> np.ndarray:
    totals = counts.sum(axis=2, keepdims=True)
    with np.errstate(divide="ignore", invalid="ignore"):
        freqs = counts / totals
    return np.where(totals > 0.0, freqs, np.nan)


def resolve_populations(
    data: GenotypeData,
    populations: Optional[Sequence[str]] = None,
) -> Tuple[np.ndarray, List[str]]:
    """Population label per individual plus population names.

    Labels come from `populations`, else from data.populations, else every
    individual is placed in one population. Names follow first appearance.
    """
    if populations is None:
        populations = data.populations
    if populations is None:
        labels = np.array([DEFAULT_POPULATION] * data.n_ind, dtype=object)
    else:
        labels = np.asarray([str(p) for p in populations], dtype=object)
        if labels.shape[0] != data.n_ind:
            raise ValueError(
                f"Got {labels.shape[0]} population labels for {data.n_ind} individuals."
            )
    return labels, _first_appearance(labels)


def allele_frequencies(
    data: GenotypeData,
    populations: Optional[Sequence[str]] = None,
) -> AlleleFrequencyTable:
    """Allele frequencies per population from observed allele copies.

    Every non-missing call contributes ploidy allele copies. Missing calls are
    dropped from both numerator and denominator of their own locus only.
    """
    labels, popnames = resolve_populations(data, populations)
    pop_lookup = {lab: i for i, lab in enumerate(popnames)}
    pop_idx = np.array([pop_lookup[lab] for lab in labels], dtype=np.int32)

    max_alleles = max([len(n) for n in data.allele_names] + [1])
    counts = np.zeros((len(popnames), data.n_loc, max_alleles), dtype=np.float64)
    called = ~data.missing_mask()

    for i in range(data.n_ind):
        k = int(data.ploidy[i])
        loc = np.where(called[i])[0]
        if loc.size == 0:
            continue
        codes = data.alleles[i, loc, :k]  # (n_called, k)
        np.add.at(counts[pop_idx[i]], (np.repeat(loc, k), codes.ravel()), 1.0)

    table = AlleleFrequencyTable(
        populations=popnames,
        loci=list(data.loci),
        allele_names=[list(n) for n in data.allele_names],
        freqs=_normalise(counts),
    )
    n_undefined = int(np.sum(~table.is_defined()))
    if n_undefined:
        logger.debug(
            "%d population/locus pairs have no observed alleles and are skipped",
            n_undefined,
        )
    return table
