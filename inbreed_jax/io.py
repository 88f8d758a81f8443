from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import zarr


MISSING_TOKENS = frozenset({"", "NA", "NaN", "nan", ".", "-", "?"})
_CALL_SEP = re.compile(r"[/|,:]")


@dataclass
class GenotypeData:
    """Multi-allelic, multi-ploidy genotype calls.

    Shapes:
    - n_ind:       number of individuals
    - n_loc:       number of loci
    - max_ploidy:  largest ploidy in the dataset
    - alleles[i, l, c]: allele code of copy c at locus l for individual i,
      indexing allele_names[l]; -1 marks a missing allele and pads copies
      beyond ploidy[i].
    """

    sample_ids: List[str]
    loci: List[str]
    allele_names: List[List[str]]
    alleles: np.ndarray  # (n_ind, n_loc, max_ploidy), int32
    ploidy: np.ndarray  # (n_ind,), int32
    populations: Optional[np.ndarray] = None  # (n_ind,), str

    def __post_init__(self) -> None:
        self.alleles = np.asarray(self.alleles, dtype=np.int32)
        self.ploidy = np.asarray(self.ploidy, dtype=np.int32)
        if self.alleles.ndim != 3:
            raise ValueError("alleles must be a 3D array (n_ind, n_loc, max_ploidy)")
        n_ind, n_loc, max_ploidy = self.alleles.shape
        if len(self.sample_ids) != n_ind:
            raise ValueError("sample_ids length must match the number of individuals")
        if len(set(self.sample_ids)) != n_ind:
            seen: Dict[str, int] = {}
            for sid in self.sample_ids:
                seen[sid] = seen.get(sid, 0) + 1
            dups = [sid for sid, n in seen.items() if n > 1]
            raise ValueError(f"Duplicate sample IDs: {', '.join(map(str, dups[:5]))}")
        if len(self.loci) != n_loc or len(self.allele_names) != n_loc:
            raise ValueError("loci and allele_names must have one entry per locus")
        if self.ploidy.shape != (n_ind,):
            raise ValueError("ploidy must have one entry per individual")
        if n_ind and (self.ploidy.min() < 2 or self.ploidy.max() > max_ploidy):
            raise ValueError("ploidy must be >= 2 and fit within the allele array")
        if self.populations is not None:
            self.populations = np.asarray(self.populations, dtype=str)
            if self.populations.shape != (n_ind,):
                raise ValueError("populations must have one label per individual")

    @property
    def n_ind(self) -> int:
        return int(self.alleles.shape[0])

    @property
    def n_loc(self) -> int:
        return int(self.alleles.shape[1])

    @property
    def max_ploidy(self) -> int:
        return int(self.alleles.shape[2])

    def copy_mask(self) -> np.ndarray:
        """True for allele slots that belong to a call (slot < ploidy)."""
        slot = np.arange(self.max_ploidy)
        mask = slot[None, :] < self.ploidy[:, None]
        return np.broadcast_to(mask[:, None, :], self.alleles.shape)

    def missing_mask(self) -> np.ndarray:
        """(n_ind, n_loc) mask of calls with at least one unobserved allele."""
        return np.any((self.alleles < 0) & self.copy_mask(), axis=2)


def _parse_call(cell: str) -> Optional[List[str]]:
    cell = cell.strip()
    if cell in MISSING_TOKENS:
        return None
    parts = [a.strip() for a in _CALL_SEP.split(cell)]
    if any(a in MISSING_TOKENS for a in parts):
        return None
    return parts


def genotypes_from_calls(
    sample_ids: Sequence[str],
    loci: Sequence[str],
    calls: Sequence[Sequence[Optional[Sequence[str]]]],
    populations: Optional[Sequence[str]] = None,
    ploidy: Optional[Sequence[int]] = None,
    default_ploidy: int = 2,
) -> GenotypeData:
    """Build GenotypeData from nested per-individual, per-locus allele lists.

    calls[i][l] is a list of allele names or None for a missing call. When
    ploidy is not given it is inferred per individual from its called loci
    (default_ploidy if the individual has no calls at all).
    """
    n_ind = len(sample_ids)
    n_loc = len(loci)
    if len(calls) != n_ind:
        raise ValueError("calls must have one row per individual")

    if ploidy is None:
        inferred = []
        for i, row in enumerate(calls):
            sizes = {len(c) for c in row if c is not None}
            if len(sizes) > 1:
                raise ValueError(
                    f"Individual {sample_ids[i]} has calls of differing ploidy {sorted(sizes)}"
                )
            inferred.append(sizes.pop() if sizes else default_ploidy)
        ploidy_arr = np.asarray(inferred, dtype=np.int32)
    else:
        ploidy_arr = np.asarray(ploidy, dtype=np.int32)

    max_ploidy = int(ploidy_arr.max()) if n_ind else default_ploidy
    alleles = np.full((n_ind, n_loc, max_ploidy), -1, dtype=np.int32)
    codes: List[Dict[str, int]] = [{} for _ in range(n_loc)]

    for i, row in enumerate(calls):
        if len(row) != n_loc:
            raise ValueError(f"Individual {sample_ids[i]} has {len(row)} calls, expected {n_loc}")
        k = int(ploidy_arr[i])
        for l, call in enumerate(row):
            if call is None:
                continue
            if len(call) != k:
                raise ValueError(
                    f"Call at locus {loci[l]} for {sample_ids[i]} has {len(call)} alleles, "
                    f"expected ploidy {k}"
                )
            lookup = codes[l]
            for c, name in enumerate(call):
                alleles[i, l, c] = lookup.setdefault(str(name), len(lookup))

    allele_names = [list(lookup.keys()) for lookup in codes]
    return GenotypeData(
        sample_ids=[str(s) for s in sample_ids],
        loci=[str(l) for l in loci],
        allele_names=allele_names,
        alleles=alleles,
        ploidy=ploidy_arr,
        populations=None if populations is None else np.asarray(populations, dtype=str),
    )


def read_genotype_table(
    path: str | Path,
    pop_col: Optional[str] = None,
    default_ploidy: int = 2,
) -> GenotypeData:
    """Read a delimited genotype table into GenotypeData.

    Layout:
    - first column: sample IDs
    - optional population column ('pop' or 'population', or pop_col)
    - one column per locus with calls like 'A/B' or '101/103/103/105'
    - missing calls are empty, 'NA', '.', '-' or '?'.

    Files ending in .csv are comma-separated, everything else tab-separated.
    """
    path = Path(path)
    if path.suffix.lower() == ".csv":
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
    else:
        df = pd.read_table(path, dtype=str, keep_default_na=False)
    if df.shape[1] < 2:
        raise ValueError(f"Genotype file {path} must have an ID column and at least one locus")

    cols = {c.lower(): c for c in df.columns}
    if pop_col is None:
        pop_col = cols.get("pop", cols.get("population"))
    elif pop_col not in df.columns:
        raise ValueError(f"Population column '{pop_col}' not found in {path}")

    id_col = df.columns[0]
    locus_cols = [c for c in df.columns[1:] if c != pop_col]
    if not locus_cols:
        raise ValueError(f"Genotype file {path} has no locus columns")

    calls = [
        [_parse_call(df.at[r, c]) for c in locus_cols] for r in range(df.shape[0])
    ]
    populations = df[pop_col].astype(str).to_numpy() if pop_col is not None else None

    return genotypes_from_calls(
        sample_ids=df[id_col].astype(str).tolist(),
        loci=locus_cols,
        calls=calls,
        populations=populations,
        default_ploidy=default_ploidy,
    )


def write_genotype_table(data: GenotypeData, path: str | Path) -> None:
    """Write GenotypeData as a table readable by read_genotype_table."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    columns: Dict[str, List[str]] = {"ID": list(data.sample_ids)}
    if data.populations is not None:
        columns["pop"] = [str(p) for p in data.populations]

    missing = data.missing_mask()
    for l, locus in enumerate(data.loci):
        names = data.allele_names[l]
        col = []
        for i in range(data.n_ind):
            if missing[i, l]:
                col.append("NA")
            else:
                k = int(data.ploidy[i])
                col.append("/".join(names[a] for a in data.alleles[i, l, :k]))
        columns[locus] = col

    sep = "," if path.suffix.lower() == ".csv" else "\t"
    pd.DataFrame(columns).to_csv(path, index=False, sep=sep)


def load_populations(pop_file: str | Path, sample_ids: Sequence[str]) -> np.ndarray:
    """Population label per sample from a CSV with sample_id,pop columns."""
    df = pd.read_csv(pop_file)
    cols = {c.lower(): c for c in df.columns}
    if "sample_id" in cols:
        sample_col = cols["sample_id"]
    elif "sample" in cols:
        sample_col = cols["sample"]
    else:
        raise ValueError("Population file must have a 'sample_id' or 'sample' column.")

    if "pop" in cols:
        pop_col = cols["pop"]
    elif "population" in cols:
        pop_col = cols["population"]
    else:
        raise ValueError("Population file must have a 'pop' or 'population' column.")

    pop_map = dict(zip(df[sample_col].astype(str), df[pop_col].astype(str)))
    missing = [sid for sid in sample_ids if sid not in pop_map]
    if missing:
        missing_str = ", ".join(missing[:5])
        raise ValueError(
            f"Population assignments missing for {len(missing)} samples, e.g. {missing_str}."
        )
    return np.array([pop_map[sid] for sid in sample_ids], dtype=str)


def write_genotype_store(data: GenotypeData, store_path: str | Path) -> None:
    """Write GenotypeData to a Zarr store.

    Layout:
      - sample_ids:  (n_ind,)
      - loci:        (n_loc,)
      - ploidy:      (n_ind,)
      - alleles:     (n_ind, n_loc, max_ploidy), chunked along loci
      - populations: (n_ind,), only when present
      - attrs['allele_names']: per-locus allele name lists
    """
    store_path = Path(store_path)
    store_path.parent.mkdir(parents=True, exist_ok=True)

    g = zarr.open_group(store_path.as_posix(), mode="w")

    g.create_dataset(
        "sample_ids",
        data=np.asarray(data.sample_ids, dtype="U"),
        compressor=None,
        overwrite=True,
    )
    g.create_dataset(
        "loci",
        data=np.asarray(data.loci, dtype="U"),
        compressor=None,
        overwrite=True,
    )
    g.create_dataset("ploidy", data=data.ploidy, overwrite=True)
    if data.populations is not None:
        g.create_dataset(
            "populations",
            data=np.asarray(data.populations, dtype="U"),
            compressor=None,
            overwrite=True,
        )

    loc_chunk = max(1, min(data.n_loc, 1024))
    g.create_dataset(
        "alleles",
        data=data.alleles,
        chunks=(max(1, data.n_ind), loc_chunk, max(1, data.max_ploidy)),
        overwrite=True,
    )
    g.attrs["allele_names"] = [list(names) for names in data.allele_names]


def read_genotype_store(store_path: str | Path) -> GenotypeData:
    """Read a Zarr store written by write_genotype_store."""
    store_path = Path(store_path)
    g = zarr.open_group(store_path.as_posix(), mode="r")

    populations = None
    if "populations" in g:
        populations = np.asarray(g["populations"][:]).astype(str)

    return GenotypeData(
        sample_ids=[str(s) for s in np.asarray(g["sample_ids"][:])],
        loci=[str(s) for s in np.asarray(g["loci"][:])],
        allele_names=[list(map(str, names)) for names in g.attrs["allele_names"]],
        alleles=np.asarray(g["alleles"][:], dtype=np.int32),
        ploidy=np.asarray(g["ploidy"][:], dtype=np.int32),
        populations=populations,
    )


def load_genotypes(path: str | Path) -> GenotypeData:
    """Read either a Zarr store (directory) or a delimited genotype table."""
    path = Path(path)
    if path.is_dir():
        return read_genotype_store(path)
    return read_genotype_table(path)


def select_samples(data: GenotypeData, sample_indices: Sequence[int]) -> GenotypeData:
    """Return GenotypeData restricted to a subset of individuals."""
    idx = np.asarray(sample_indices, dtype=int)
    return GenotypeData(
        sample_ids=[data.sample_ids[i] for i in idx],
        loci=data.loci,
        allele_names=data.allele_names,
        alleles=data.alleles[idx, :, :],
        ploidy=data.ploidy[idx],
        populations=None if data.populations is None else data.populations[idx],
    )


def select_loci(data: GenotypeData, locus_indices: Sequence[int]) -> GenotypeData:
    """Return GenotypeData restricted to a subset of loci."""
    idx = np.asarray(locus_indices, dtype=int)
    return GenotypeData(
        sample_ids=data.sample_ids,
        loci=[data.loci[l] for l in idx],
        allele_names=[data.allele_names[l] for l in idx],
        alleles=data.alleles[:, idx, :],
        ploidy=data.ploidy,
        populations=data.populations,
    )
