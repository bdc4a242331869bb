#!/usr/bin/env python
# coding: utf-8


"""
Tests for cellmix.core.mixture.solvers.

Covers:
- Simplex- and box-constrained per-row least squares.
- Degenerate rows and their fallbacks.
- Missing-value handling and input immutability of the half-steps.
"""


import numpy as np
import pytest
from scipy.optimize import lsq_linear

from cellmix.core.errors import DegenerateSubproblem
from cellmix.core.mixture.solvers import (
    box_lstsq,
    simplex_lstsq,
    update_mu,
    update_omega,
)


class TestSimplexLstsq:
    """Per-sample mixing-proportion solver"""

    def setup_method(self):
        rng = np.random.default_rng(0)
        self.A = rng.uniform(0, 1, size=(50, 3))

    def test_recovers_exact_mixture(self):
        w_true = np.array([0.2, 0.5, 0.3])
        w = simplex_lstsq(self.A, self.A @ w_true)
        np.testing.assert_allclose(w, w_true, atol=1e-4)

    def test_result_on_simplex(self):
        rng = np.random.default_rng(1)
        for _ in range(10):
            b = rng.uniform(-1, 2, size=50)
            w = simplex_lstsq(self.A, b)
            assert np.all(w >= -1e-8)
            assert abs(w.sum() - 1.0) < 1e-8

    def test_single_component(self):
        w = simplex_lstsq(self.A[:, :1], np.zeros(50))
        np.testing.assert_array_equal(w, [1.0])

    def test_vertex_solution(self):
        # observation equals the second column exactly
        w = simplex_lstsq(self.A, self.A[:, 1])
        np.testing.assert_allclose(w, [0.0, 1.0, 0.0], atol=1e-4)

    def test_zero_design_is_degenerate(self):
        with pytest.raises(DegenerateSubproblem):
            simplex_lstsq(np.zeros((10, 3)), np.ones(10))

    def test_all_missing_is_degenerate(self):
        with pytest.raises(DegenerateSubproblem):
            simplex_lstsq(self.A, np.full(50, np.nan))

    def test_missing_entries_skipped(self):
        w_true = np.array([0.6, 0.1, 0.3])
        b = self.A @ w_true
        b[::5] = np.nan
        w = simplex_lstsq(self.A, b)
        np.testing.assert_allclose(w, w_true, atol=1e-4)


class TestBoxLstsq:
    """Per-CpG signature solver"""

    def setup_method(self):
        rng = np.random.default_rng(2)
        self.omega = rng.dirichlet(np.ones(3), size=40)

    def test_recovers_interior_signature(self):
        mu_true = np.array([0.1, 0.8, 0.4])
        mu = box_lstsq(self.omega, self.omega @ mu_true)
        np.testing.assert_allclose(mu, mu_true, atol=1e-8)

    def test_bounds_enforced(self):
        b = self.omega @ np.array([1.5, -0.5, 0.5])
        mu = box_lstsq(self.omega, b)
        assert np.all(mu >= 0.0)
        assert np.all(mu <= 1.0)
        reference = lsq_linear(self.omega, b, bounds=(0.0, 1.0), method="trf").x
        assert np.sum((self.omega @ mu - b) ** 2) == pytest.approx(
            np.sum((self.omega @ reference - b) ** 2), abs=1e-5
        )

    def test_zero_row_gives_zero_signature(self):
        np.testing.assert_array_equal(box_lstsq(self.omega, np.zeros(40)), 0.0)

    def test_custom_bounds(self):
        b = self.omega @ np.array([0.9, 0.9, 0.9])
        mu = box_lstsq(self.omega, b, lower=0.0, upper=0.5)
        assert np.all(mu <= 0.5 + 1e-12)

    def test_zero_design_is_degenerate(self):
        with pytest.raises(DegenerateSubproblem):
            box_lstsq(np.zeros((40, 3)), np.ones(40))


class TestHalfSteps:
    """Omega and Mu half-steps"""

    def setup_method(self):
        rng = np.random.default_rng(3)
        self.mu = rng.beta(0.5, 0.5, size=(60, 3))
        self.omega = rng.dirichlet(np.ones(3), size=15)
        self.Y = self.mu @ self.omega.T

    def test_update_omega_shape_and_simplex(self):
        omega = update_omega(self.Y, self.mu)
        assert omega.shape == (15, 3)
        np.testing.assert_allclose(omega.sum(axis=1), 1.0, atol=1e-8)
        np.testing.assert_allclose(omega, self.omega, atol=1e-3)

    def test_update_mu_shape_and_bounds(self):
        mu = update_mu(self.Y, self.omega)
        assert mu.shape == (60, 3)
        assert mu.min() >= -1e-8
        assert mu.max() <= 1 + 1e-8
        np.testing.assert_allclose(mu, self.mu, atol=1e-6)

    def test_inputs_not_mutated(self):
        Y0, mu0, omega0 = self.Y.copy(), self.mu.copy(), self.omega.copy()
        update_omega(self.Y, self.mu)
        update_mu(self.Y, self.omega)
        np.testing.assert_array_equal(self.Y, Y0)
        np.testing.assert_array_equal(self.mu, mu0)
        np.testing.assert_array_equal(self.omega, omega0)

    def test_missing_sample_falls_back_to_uniform(self):
        Y = self.Y.copy()
        Y[:, 4] = np.nan
        omega = update_omega(Y, self.mu)
        np.testing.assert_allclose(omega[4], np.full(3, 1 / 3))

    def test_zero_signature_falls_back_to_uniform(self):
        omega = update_omega(self.Y, np.zeros((60, 3)))
        np.testing.assert_allclose(omega, 1 / 3)

    def test_nan_signature_rows_ignored(self):
        mu = self.mu.copy()
        mu[:5] = np.nan
        omega = update_omega(self.Y, mu)
        np.testing.assert_allclose(omega, self.omega, atol=1e-3)

    def test_missing_cpg_row_falls_back_to_zero(self):
        Y = self.Y.copy()
        Y[7] = np.nan
        mu = update_mu(Y, self.omega)
        np.testing.assert_array_equal(mu[7], 0.0)

    def test_parallel_matches_serial(self):
        serial = update_mu(self.Y, self.omega, n_jobs=1)
        parallel = update_mu(self.Y, self.omega, n_jobs=2)
        np.testing.assert_allclose(parallel, serial)
