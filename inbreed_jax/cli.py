from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd

from . import freq, inbreeding, io, sim


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="inbreed-jax",
        description="Likelihood-based inbreeding coefficients from multilocus genotypes.",
    )
    p.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log debug messages (sparse loci, degenerate individuals).",
    )

    sub = p.add_subparsers(dest="command", required=True)

    # Per-individual F.
    inb = sub.add_parser(
        "inbreed",
        help="Estimate, sample or tabulate the likelihood of F per individual.",
    )
    inb.add_argument("genotypes", type=Path, help="Genotype table (.csv/.tsv) or Zarr store")
    inb.add_argument(
        "--pop-file",
        type=Path,
        default=None,
        help="Optional CSV with columns sample_id,pop overriding the table's populations.",
    )
    inb.add_argument(
        "--freq-file",
        type=Path,
        default=None,
        help="Optional CSV with columns population,locus,allele,frequency.",
    )
    inb.add_argument(
        "--res-type",
        choices=list(inbreeding.RES_TYPES),
        default="sample",
        help="sample: N draws of F; estimate: MLE of F; function: log-likelihood on the grid "
        "(default: sample).",
    )
    inb.add_argument(
        "-N",
        "--n-sample",
        type=int,
        default=200,
        help="Number of draws per individual for --res-type sample (default: 200).",
    )
    inb.add_argument(
        "-M",
        "--n-grid",
        type=int,
        default=None,
        help="Number of grid points over [0,1] (default: 10 * N).",
    )
    inb.add_argument("--seed", type=int, default=None, help="Random seed for sampling.")
    inb.add_argument(
        "--refine",
        action="store_true",
        help="Refine the MLE between neighbouring grid points.",
    )
    inb.add_argument(
        "--generic-names",
        action="store_true",
        help="Label output rows ind1, ind2, ... instead of sample IDs.",
    )
    inb.add_argument(
        "--out",
        type=Path,
        required=True,
        help="Output CSV (estimate: sample_id,F,degenerate; sample: sample_id,draw,F; "
        "function: sample_id,F,loglik).",
    )

    # Allele frequencies.
    fq = sub.add_parser("freq", help="Per-population allele frequency table.")
    fq.add_argument("genotypes", type=Path, help="Genotype table (.csv/.tsv) or Zarr store")
    fq.add_argument(
        "--pop-file",
        type=Path,
        default=None,
        help="Optional CSV with columns sample_id,pop overriding the table's populations.",
    )
    fq.add_argument(
        "--out",
        type=Path,
        required=True,
        help="Output CSV with columns population,locus,allele,frequency.",
    )

    # Simulation.
    simp = sub.add_parser("simulate", help="Simulate inbred genotypes with known F.")
    simp.add_argument("--n-ind", type=int, default=100, help="Number of individuals.")
    simp.add_argument("--n-loc", type=int, default=50, help="Number of loci.")
    simp.add_argument("--n-alleles", type=int, default=4, help="Alleles per locus.")
    simp.add_argument("--ploidy", type=int, default=2, help="Ploidy of every individual.")
    simp.add_argument(
        "--f",
        type=float,
        nargs="+",
        default=[0.0],
        help="True F; one value for all or one per individual.",
    )
    simp.add_argument("--n-pop", type=int, default=1, help="Number of populations.")
    simp.add_argument("--missing-rate", type=float, default=0.0, help="Per-call missing rate.")
    simp.add_argument("--seed", type=int, default=None, help="Random seed.")
    simp.add_argument(
        "--prefix",
        type=Path,
        required=True,
        help="Output prefix; writes <prefix>.geno.csv and <prefix>.truef.csv.",
    )

    # Zarr conversion.
    store = sub.add_parser("to-store", help="Convert a genotype table to a Zarr store.")
    store.add_argument("genotypes", type=Path, help="Genotype table (.csv/.tsv)")
    store.add_argument("--out", type=Path, required=True, help="Output Zarr directory.")

    return p


def _load_inputs(args: argparse.Namespace) -> io.GenotypeData:
    try:
        data = io.load_genotypes(args.genotypes)
        if args.pop_file is not None:
            data.populations = io.load_populations(args.pop_file, data.sample_ids)
    except (OSError, ValueError) as exc:
        raise SystemExit(str(exc)) from exc
    return data


def cmd_inbreed(args: argparse.Namespace) -> None:
    """Per-individual inbreeding coefficients under the mixture likelihood."""
    data = _load_inputs(args)

    table = None
    if args.freq_file is not None:
        try:
            table = freq.AlleleFrequencyTable.from_frame(pd.read_csv(args.freq_file))
        except ValueError as exc:
            raise SystemExit(str(exc)) from exc

    try:
        res = inbreeding.inbreeding(
            data,
            res_type=args.res_type,
            N=args.n_sample,
            M=args.n_grid,
            truenames=not args.generic_names,
            freqs=table,
            seed=args.seed,
            refine=args.refine,
        )
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    if res.res_type == "function":
        M = args.n_grid if args.n_grid is not None else 10 * args.n_sample
        out_df = inbreeding.likelihood_grid(res, M)
    else:
        out_df = res.to_frame()
    args.out.parent.mkdir(parents=True, exist_ok=True)
    out_df.to_csv(args.out, index=False)

    print(f"Inbreeding ({res.res_type}) for {len(res)} individuals written to {args.out}")
    if res.res_type == "estimate" and len(res):
        est = out_df["F"].to_numpy()
        print(f"F mean: {np.nanmean(est):.4f}  median: {np.nanmedian(est):.4f}")
    if res.degenerate:
        shown = ", ".join(res.degenerate[:5])
        print(f"Warning: {len(res.degenerate)} individuals with zero likelihood, e.g. {shown}")


def cmd_freq(args: argparse.Namespace) -> None:
    data = _load_inputs(args)
    table = freq.allele_frequencies(data)
    args.out.parent.mkdir(parents=True, exist_ok=True)
    table.to_frame().to_csv(args.out, index=False)
    n_undefined = int(np.sum(~table.is_defined()))
    print(
        f"Allele frequencies for {table.n_pop} populations x {len(table.loci)} loci "
        f"written to {args.out} ({n_undefined} population/locus pairs without data)"
    )


def cmd_simulate(args: argparse.Namespace) -> None:
    """Simulate genotypes and write the genotype table plus true F."""
    f_vals = args.f[0] if len(args.f) == 1 else args.f
    try:
        simdata = sim.simulate_inbred_genotypes(
            n_ind=args.n_ind,
            n_loc=args.n_loc,
            n_alleles=args.n_alleles,
            ploidy=args.ploidy,
            f=f_vals,
            n_pop=args.n_pop,
            missing_rate=args.missing_rate,
            seed=args.seed,
        )
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    prefix = Path(args.prefix)
    geno_path = prefix.parent / f"{prefix.name}.geno.csv"
    truef_path = prefix.parent / f"{prefix.name}.truef.csv"

    io.write_genotype_table(simdata.data, geno_path)
    pd.DataFrame(
        {"sample_id": simdata.data.sample_ids, "F_true": simdata.true_f}
    ).to_csv(truef_path, index=False)

    print(f"Wrote genotype table: {geno_path}")
    print(f"Wrote true F values: {truef_path}")


def cmd_to_store(args: argparse.Namespace) -> None:
    try:
        data = io.read_genotype_table(args.genotypes)
    except (OSError, ValueError) as exc:
        raise SystemExit(str(exc)) from exc
    io.write_genotype_store(data, args.out)
    print(f"Wrote genotype Zarr store: {args.out}")


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if args.command == "inbreed":
        cmd_inbreed(args)
    elif args.command == "freq":
        cmd_freq(args)
    elif args.command == "simulate":
        cmd_simulate(args)
    elif args.command == "to-store":
        cmd_to_store(args)
    else:
        parser.error(f"Unknown command {args.command}")


if __name__ == "__main__":
    main()
