"""Likelihood-based individual inbreeding coefficients from multilocus genotypes."""

__version__ = "0.1.0"
