from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

import numpy as np
import pandas as pd

from inbreed_jax import cli, freq, grid, homozygosity, inbreeding, io, likelihood
from inbreed_jax.homozygosity import HomState


def _toy_data() -> io.GenotypeData:
    # Two populations, three loci, one tetraploid individual in pop B.
    calls = [
        [["A", "A"], ["1", "2"], None],
        [["A", "B"], ["2", "2"], ["x", "x"]],
        [["B", "B"], ["1", "1"], ["x", "y"]],
        [["A", "A", "A", "B"], ["1", "1", "1", "1"], None],
    ]
    return io.genotypes_from_calls(
        sample_ids=["S1", "S2", "S3", "S4"],
        loci=["L1", "L2", "L3"],
        calls=calls,
        populations=["A", "A", "B", "B"],
    )


class TestGenotypeIO(unittest.TestCase):
    def test_from_calls_infers_ploidy_and_codes(self) -> None:
        data = _toy_data()
        np.testing.assert_array_equal(data.ploidy, [2, 2, 2, 4])
        self.assertEqual(data.alleles.shape, (4, 3, 4))
        self.assertEqual(data.allele_names[0], ["A", "B"])
        self.assertEqual(data.allele_names[2], ["x", "y"])
        np.testing.assert_array_equal(
            data.missing_mask(),
            [[False, False, True], [False, False, False], [False, False, False], [False, False, True]],
        )

    def test_inconsistent_call_size_rejected(self) -> None:
        with self.assertRaises(ValueError):
            io.genotypes_from_calls(
                sample_ids=["S1"],
                loci=["L1", "L2"],
                calls=[[["A", "A"], ["A", "B", "B"]]],
            )

    def test_duplicate_sample_ids_rejected(self) -> None:
        with self.assertRaises(ValueError):
            io.genotypes_from_calls(
                sample_ids=["S1", "S1"],
                loci=["L1"],
                calls=[[["A", "A"]], [["A", "B"]]],
            )
        data = _toy_data()
        with self.assertRaises(ValueError):
            io.GenotypeData(
                sample_ids=["S1", "S2", "S1", "S4"],
                loci=data.loci,
                allele_names=data.allele_names,
                alleles=data.alleles,
                ploidy=data.ploidy,
            )

    def test_read_table_parses_calls_and_missing(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "geno.csv"
            pd.DataFrame(
                {
                    "ID": ["S1", "S2", "S3"],
                    "pop": ["P1", "P1", "P2"],
                    "Loc1": ["101/103", "103|103", "NA"],
                    "Loc2": ["A/?", "A/B", "B/B"],
                }
            ).to_csv(path, index=False)
            data = io.read_genotype_table(path)

        self.assertEqual(data.sample_ids, ["S1", "S2", "S3"])
        self.assertEqual(data.loci, ["Loc1", "Loc2"])
        self.assertEqual(list(data.populations), ["P1", "P1", "P2"])
        np.testing.assert_array_equal(
            data.missing_mask(), [[False, True], [False, False], [True, False]]
        )

    def test_table_write_read_roundtrip(self) -> None:
        data = _toy_data()
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "geno.tsv"
            io.write_genotype_table(data, path)
            data2 = io.read_genotype_table(path)
        self.assertEqual(data2.sample_ids, data.sample_ids)
        np.testing.assert_array_equal(data2.ploidy, data.ploidy)
        np.testing.assert_array_equal(
            homozygosity.homozygosity_states(data2), homozygosity.homozygosity_states(data)
        )

    def test_store_roundtrip(self) -> None:
        data = _toy_data()
        with tempfile.TemporaryDirectory() as tmp:
            store_path = Path(tmp) / "toy.geno.zarr"
            io.write_genotype_store(data, store_path)
            data2 = io.read_genotype_store(store_path)

        self.assertEqual(data2.sample_ids, data.sample_ids)
        self.assertEqual(data2.loci, data.loci)
        self.assertEqual(data2.allele_names, data.allele_names)
        np.testing.assert_array_equal(data2.alleles, data.alleles)
        np.testing.assert_array_equal(data2.ploidy, data.ploidy)
        np.testing.assert_array_equal(data2.populations, data.populations)

    def test_load_populations(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "pops.csv"
            pd.DataFrame({"sample": ["S2", "S1"], "population": ["B", "A"]}).to_csv(
                path, index=False
            )
            pops = io.load_populations(path, ["S1", "S2"])
            np.testing.assert_array_equal(pops, ["A", "B"])
            with self.assertRaises(ValueError):
                io.load_populations(path, ["S1", "S3"])

    def test_select_samples_and_loci(self) -> None:
        data = _toy_data()
        sub = io.select_loci(io.select_samples(data, [0, 2]), [1])
        self.assertEqual(sub.sample_ids, ["S1", "S3"])
        self.assertEqual(sub.loci, ["L2"])
        self.assertEqual(sub.alleles.shape, (2, 1, 4))


class TestAlleleFrequencies(unittest.TestCase):
    def test_per_population_counts(self) -> None:
        table = freq.allele_frequencies(_toy_data())
        self.assertEqual(table.populations, ["A", "B"])
        # Pop A, L1: A,A,A,B
        self.assertAlmostEqual(table.frequency("A", "L1", "A"), 0.75)
        # Pop B, L1: B,B + A,A,A,B
        self.assertAlmostEqual(table.frequency("B", "L1", "A"), 0.5)
        # Pop A, L3: only S2 called
        self.assertAlmostEqual(table.frequency("A", "L3", "x"), 1.0)
        self.assertAlmostEqual(table.frequency("A", "L3", "y"), 0.0)

    def test_rows_sum_to_one_or_undefined(self) -> None:
        data = _toy_data()
        data.alleles[1, 2, :] = -1  # leave pop A without calls at L3
        table = freq.allele_frequencies(data)
        defined = table.is_defined()
        self.assertFalse(defined[0, 2])
        sums = np.nansum(table.freqs, axis=2)
        np.testing.assert_allclose(sums[defined], 1.0)

    def test_no_populations_means_one_group(self) -> None:
        data = _toy_data()
        data.populations = None
        table = freq.allele_frequencies(data)
        self.assertEqual(table.populations, [freq.DEFAULT_POPULATION])

    def test_population_length_mismatch(self) -> None:
        with self.assertRaises(ValueError):
            freq.allele_frequencies(_toy_data(), ["A", "B"])

    def test_unknown_population_or_locus_is_key_error(self) -> None:
        table = freq.allele_frequencies(_toy_data())
        with self.assertRaises(KeyError):
            table.frequency("C", "L1", "A")
        with self.assertRaises(KeyError):
            table.frequency("A", "L9", "A")

    def test_frame_roundtrip_and_align(self) -> None:
        data = _toy_data()
        table = freq.allele_frequencies(data)
        df = table.to_frame()
        self.assertEqual(list(df.columns), ["population", "locus", "allele", "frequency"])

        table2 = freq.AlleleFrequencyTable.from_frame(df).align_to(data)
        np.testing.assert_allclose(table2.freqs, table.freqs, equal_nan=True)

    def test_align_fills_unknown_alleles_and_loci(self) -> None:
        data = _toy_data()
        df = pd.DataFrame(
            {
                "population": ["A", "A"],
                "locus": ["L1", "L1"],
                "allele": ["A", "Z"],
                "frequency": [0.6, 0.4],
            }
        )
        aligned = freq.AlleleFrequencyTable.from_frame(df).align_to(data)
        self.assertAlmostEqual(aligned.frequency("A", "L1", "A"), 0.6)
        self.assertAlmostEqual(aligned.frequency("A", "L1", "B"), 0.0)
        self.assertTrue(np.isnan(aligned.frequency("A", "L2", "1")))


class TestHomozygosity(unittest.TestCase):
    def test_classify_call(self) -> None:
        self.assertEqual(homozygosity.classify_call(["A", "A"]), HomState.HOMOZYGOUS)
        self.assertEqual(homozygosity.classify_call(["A", "B"]), HomState.HETEROZYGOUS)
        self.assertEqual(homozygosity.classify_call([3, 3, 3, 3]), HomState.HOMOZYGOUS)
        self.assertEqual(homozygosity.classify_call([3, 3, 3, 4]), HomState.HETEROZYGOUS)
        self.assertEqual(homozygosity.classify_call(None), HomState.MISSING)
        self.assertEqual(homozygosity.classify_call(["A", None]), HomState.MISSING)
        self.assertEqual(homozygosity.classify_call([1, -1]), HomState.MISSING)
        self.assertEqual(homozygosity.classify_call([1.0, np.nan]), HomState.MISSING)
        self.assertEqual(homozygosity.classify_call(["A", "NA"]), HomState.MISSING)

    def test_classify_call_with_padding(self) -> None:
        self.assertEqual(homozygosity.classify_call([2, 2, -1, -1], ploidy=2), HomState.HOMOZYGOUS)
        self.assertEqual(homozygosity.classify_call([2], ploidy=2), HomState.MISSING)

    def test_states_match_scalar_classifier(self) -> None:
        data = _toy_data()
        states = homozygosity.homozygosity_states(data)
        for i in range(data.n_ind):
            for l in range(data.n_loc):
                expected = homozygosity.classify_call(
                    list(data.alleles[i, l]), ploidy=int(data.ploidy[i])
                )
                self.assertEqual(states[i, l], expected)


class TestGrid(unittest.TestCase):
    def test_grid_spacing_and_mass(self) -> None:
        lik = likelihood.InbreedingLikelihood(hom_s=np.array([0.3]), het_h=np.array([0.7]))
        g = grid.build_grid(lik, 11)
        np.testing.assert_allclose(g.f, np.linspace(0, 1, 11))
        self.assertFalse(g.degenerate)
        self.assertAlmostEqual(g.mass.sum(), 1.0)
        # F = 1 is impossible with a heterozygous locus.
        self.assertEqual(g.mass[-1], 0.0)

    def test_degenerate_grid(self) -> None:
        lik = likelihood.InbreedingLikelihood(hom_s=np.zeros(0), het_h=np.array([0.0]))
        self.assertTrue(lik.is_degenerate)
        g = grid.build_grid(lik, 10)
        self.assertTrue(g.degenerate)
        np.testing.assert_array_equal(g.mass, np.zeros(10))
        with self.assertRaises(grid.DegenerateLikelihoodError):
            grid.sample_grid(g, 5, rng=1)
        with self.assertRaises(grid.DegenerateLikelihoodError):
            grid.estimate_mle(g)

    def test_invalid_sizes(self) -> None:
        for bad in (0, -3, 2.5, True):
            with self.assertRaises(ValueError):
                grid.make_f_grid(bad)

    def test_refined_mle_within_one_step(self) -> None:
        # Interior optimum: one homozygous and several heterozygous loci.
        lik = likelihood.InbreedingLikelihood(
            hom_s=np.array([0.05, 0.05, 0.05]), het_h=np.array([0.9])
        )
        g = grid.build_grid(lik, 21)
        f_grid = grid.estimate_mle(g)
        f_ref = grid.estimate_mle(g, lik, refine=True)
        self.assertLessEqual(abs(f_ref - f_grid), 1.0 / 20 + 1e-12)
        self.assertGreaterEqual(lik.log_likelihood(f_ref), lik.log_likelihood(f_grid) - 1e-6)


class TestInbreedingComposer(unittest.TestCase):
    def test_estimate_keys_follow_input_order(self) -> None:
        data = _toy_data()
        res = inbreeding.inbreeding(data, res_type="estimate", M=101)
        self.assertEqual(res.keys(), ["S1", "S2", "S3", "S4"])
        for key in res:
            self.assertGreaterEqual(res[key], 0.0)
            self.assertLessEqual(res[key], 1.0)

    def test_generic_names(self) -> None:
        res = inbreeding.inbreeding(_toy_data(), res_type="estimate", M=11, truenames=False)
        self.assertEqual(res.keys(), ["ind1", "ind2", "ind3", "ind4"])

    def test_sample_shape_and_seed(self) -> None:
        data = _toy_data()
        res1 = inbreeding.inbreeding(data, res_type="sample", N=50, seed=7)
        res2 = inbreeding.inbreeding(data, res_type="sample", N=50, seed=7)
        for key in res1:
            self.assertEqual(res1[key].shape, (50,))
            np.testing.assert_array_equal(res1[key], res2[key])
        df = res1.to_frame()
        self.assertEqual(list(df.columns), ["sample_id", "draw", "F"])
        self.assertEqual(df.shape[0], 4 * 50)

    def test_function_results_are_callable(self) -> None:
        res = inbreeding.inbreeding(_toy_data(), res_type="function")
        lik = res["S2"]
        self.assertIsInstance(lik, likelihood.InbreedingLikelihood)
        vals = lik(np.array([0.0, 0.5]))
        self.assertEqual(vals.shape, (2,))
        table = inbreeding.likelihood_grid(res, 5)
        self.assertEqual(table.shape, (4 * 5, 3))

    def test_invalid_options_raise_before_work(self) -> None:
        data = _toy_data()
        with self.assertRaises(ValueError):
            inbreeding.inbreeding(data, res_type="median")
        with self.assertRaises(ValueError):
            inbreeding.inbreeding(data, N=0)
        with self.assertRaises(ValueError):
            inbreeding.inbreeding(data, M=-1)

    def test_supplied_frequencies(self) -> None:
        data = _toy_data()
        table = freq.allele_frequencies(data)
        res_a = inbreeding.inbreeding(data, res_type="estimate", M=101)
        res_b = inbreeding.inbreeding(data, res_type="estimate", M=101, freqs=table)
        self.assertEqual(res_a.values, res_b.values)

    def test_supplied_frequencies_must_cover_populations(self) -> None:
        data = _toy_data()
        table = freq.allele_frequencies(data, ["A"] * data.n_ind)
        with self.assertRaises(ValueError):
            inbreeding.inbreeding(data, res_type="estimate", freqs=table)

    def test_degenerate_individual_does_not_abort_batch(self) -> None:
        # L1 is fixed for allele A in population A except for S2's call at it.
        freqs_df = pd.DataFrame(
            {
                "population": ["A", "A", "B", "B"],
                "locus": ["L1", "L1", "L1", "L1"],
                "allele": ["A", "B", "A", "B"],
                "frequency": [1.0, 0.0, 0.5, 0.5],
            }
        )
        table = freq.AlleleFrequencyTable.from_frame(freqs_df)
        data = _toy_data()
        res = inbreeding.inbreeding(data, res_type="estimate", M=11, freqs=table)
        self.assertEqual(res.degenerate, ["S2"])
        self.assertTrue(np.isnan(res["S2"]))
        self.assertFalse(np.isnan(res["S1"]))

        res_s = inbreeding.inbreeding(data, res_type="sample", N=5, M=11, freqs=table, seed=0)
        self.assertTrue(np.all(np.isnan(res_s["S2"])))
        self.assertTrue(np.all(np.isfinite(res_s["S3"])))

        res_f = inbreeding.inbreeding(data, res_type="function", freqs=table)
        self.assertEqual(res_f.degenerate, ["S2"])


class TestCli(unittest.TestCase):
    def test_simulate_then_estimate(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            prefix = Path(tmp) / "sim"
            cli.main(
                ["simulate", "--n-ind", "6", "--n-loc", "20", "--seed", "3", "--prefix", str(prefix)]
            )
            geno = Path(tmp) / "sim.geno.csv"
            self.assertTrue(geno.exists())

            out = Path(tmp) / "est.csv"
            cli.main(["inbreed", str(geno), "--res-type", "estimate", "-M", "101", "--out", str(out)])
            df = pd.read_csv(out)
            self.assertEqual(list(df["sample_id"]), [f"S{i}" for i in range(1, 7)])
            self.assertTrue(np.all((df["F"] >= 0.0) & (df["F"] <= 1.0)))

            freq_out = Path(tmp) / "freq.csv"
            cli.main(["freq", str(geno), "--out", str(freq_out)])
            self.assertEqual(
                list(pd.read_csv(freq_out).columns), ["population", "locus", "allele", "frequency"]
            )

            store = Path(tmp) / "sim.geno.zarr"
            cli.main(["to-store", str(geno), "--out", str(store)])
            samp_out = Path(tmp) / "samp.csv"
            cli.main(
                ["inbreed", str(store), "-N", "10", "--seed", "1", "--generic-names",
                 "--freq-file", str(freq_out), "--out", str(samp_out)]
            )
            samp = pd.read_csv(samp_out)
            self.assertEqual(samp.shape[0], 6 * 10)
            self.assertEqual(samp["sample_id"].iloc[0], "ind1")

    def test_missing_input_exits(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(SystemExit):
                cli.main(["inbreed", str(Path(tmp) / "nope.csv"), "--out", str(Path(tmp) / "o.csv")])


if __name__ == "__main__":
    unittest.main()
