from __future__ import annotations

import unittest
import numpy as np

from inbreed_jax import likelihood


class TestMixtureProbabilities(unittest.TestCase):
    def test_expected_homozygosity_diploid(self) -> None:
        freqs = np.array([0.5, 0.3, 0.2])
        s = likelihood.expected_homozygosity(freqs, 2)
        self.assertAlmostEqual(float(s), 0.25 + 0.09 + 0.04)

    def test_expected_homozygosity_tetraploid(self) -> None:
        freqs = np.array([0.5, 0.5])
        s = likelihood.expected_homozygosity(freqs, 4)
        self.assertAlmostEqual(float(s), 2 * 0.5**4)

    def test_expected_homozygosity_undefined_is_nan(self) -> None:
        freqs = np.array([[np.nan, np.nan], [1.0, 0.0]])
        s = likelihood.expected_homozygosity(freqs, 2)
        self.assertTrue(np.isnan(s[0]))
        self.assertEqual(s[1], 1.0)

    def test_prob_hom_boundaries(self) -> None:
        s = 0.3
        self.assertAlmostEqual(float(likelihood.prob_hom(0.0, s)), s)
        self.assertAlmostEqual(float(likelihood.prob_hom(1.0, s)), 1.0)
        self.assertAlmostEqual(
            float(likelihood.prob_hom(0.4, s) + likelihood.prob_het(0.4, s)), 1.0
        )

    def test_safe_log_zero_is_neg_inf(self) -> None:
        out = np.asarray(likelihood.safe_log(np.array([0.0, 1.0, np.e], dtype=np.float32)))
        self.assertEqual(out[0], -np.inf)
        np.testing.assert_allclose(out[1:], [0.0, 1.0], rtol=1e-6)


class TestLikelihoodEvaluation(unittest.TestCase):
    def test_log_likelihood_matches_formula(self) -> None:
        lik = likelihood.InbreedingLikelihood(
            hom_s=np.array([0.2, 0.5]), het_h=np.array([0.6])
        )
        f = 0.3
        expected = (
            np.log(f + (1 - f) * 0.2) + np.log(f + (1 - f) * 0.5) + np.log((1 - f) * 0.6)
        )
        self.assertAlmostEqual(lik.log_likelihood(f), expected, places=5)
        self.assertAlmostEqual(lik(f), np.exp(expected), places=5)

    def test_no_loci_gives_flat_likelihood(self) -> None:
        lik = likelihood.InbreedingLikelihood(hom_s=np.zeros(0), het_h=np.zeros(0))
        np.testing.assert_array_equal(lik.log_likelihood(np.linspace(0, 1, 5)), np.zeros(5))

    def test_f_outside_unit_interval_rejected(self) -> None:
        lik = likelihood.InbreedingLikelihood(hom_s=np.array([0.2]), het_h=np.zeros(0))
        with self.assertRaises(ValueError):
            lik.log_likelihood(1.5)
        with self.assertRaises(ValueError):
            lik.log_likelihood(-0.1)


class TestManyLoci(unittest.TestCase):
    def test_log_likelihood_accumulates_without_drift(self) -> None:
        rng = np.random.default_rng(0)
        hom_s = rng.uniform(0.05, 0.6, size=12_000)
        het_h = rng.uniform(0.3, 0.9, size=8_000)
        lik = likelihood.InbreedingLikelihood(hom_s=hom_s, het_h=het_h)

        f = np.linspace(0.0, 0.99, 23)
        expected = (
            np.log(f[:, None] + (1 - f[:, None]) * hom_s).sum(axis=1)
            + np.log((1 - f[:, None]) * het_h).sum(axis=1)
        )
        np.testing.assert_allclose(lik.log_likelihood(f), expected, rtol=0, atol=1e-2)
