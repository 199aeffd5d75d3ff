########################################################################################
##
##                                  TESTS FOR
##                        'opt/direction.py' and 'opt/line_search.py'
##
########################################################################################

# IMPORTS ==============================================================================

import unittest
import warnings

import numpy as np

from nlsid.opt.direction import (
    gauss_newton_direction,
    robust_gauss_newton_direction,
    search_direction,
    steepest_descent_direction,
    truncated_svd_solve,
)
from nlsid.opt.exceptions import NumericalFailure, RankDeficiencyWarning
from nlsid.opt.line_search import backtracking
from nlsid.opt.options import Algorithm


# TESTS ================================================================================

class TestTruncatedSVDSolve(unittest.TestCase):
    """Least-squares solve over the dominant singular subspace."""

    def test_full_rank_matches_lstsq(self):
        rng = np.random.default_rng(3)
        A = rng.normal(size=(8, 3))
        b = rng.normal(size=8)

        x, rank = truncated_svd_solve(A, b, 1e-10)

        self.assertEqual(rank, 3)
        np.testing.assert_allclose(x, np.linalg.lstsq(A, b, rcond=None)[0], atol=1e-12)

    def test_small_singular_values_dropped(self):
        A = np.diag([2.0, 1e-8])
        x, rank = truncated_svd_solve(A, np.array([4.0, 1.0]), 1e-4)
        self.assertEqual(rank, 1)
        np.testing.assert_allclose(x, [2.0, 0.0])

    def test_nothing_retained_gives_zero(self):
        x, rank = truncated_svd_solve(np.zeros((4, 2)), np.ones(4), 1e-4)
        self.assertEqual(rank, 0)
        np.testing.assert_array_equal(x, np.zeros(2))

    def test_empty_matrix(self):
        x, rank = truncated_svd_solve(np.zeros((4, 0)), np.ones(4), 1e-4)
        self.assertEqual(rank, 0)
        self.assertEqual(x.shape, (0,))


class TestSearchDirection(unittest.TestCase):
    """Gauss-Newton, robust Gauss-Newton and steepest descent directions."""

    def setUp(self):
        rng = np.random.default_rng(0)
        self.J = rng.normal(size=(10, 3))
        self.eps = rng.normal(size=10)

    def test_gauss_newton_and_robust_agree_on_full_rank(self):
        p_gn = gauss_newton_direction(self.J, self.eps).p
        p_rgn = robust_gauss_newton_direction(self.J, self.eps, 1e-4).p
        np.testing.assert_allclose(p_gn, p_rgn, rtol=1e-9, atol=1e-12)

    def test_gauss_newton_is_descent_direction(self):
        p = gauss_newton_direction(self.J, self.eps).p
        self.assertLess((self.J.T @ self.eps) @ p, 0.0)

    def test_steepest_descent_is_negative_gradient(self):
        d = steepest_descent_direction(self.J, self.eps)
        np.testing.assert_allclose(d.p, -(self.J.T @ self.eps))
        self.assertIsNone(d.rank)
        self.assertFalse(d.stalled)

    def test_singular_normal_equations_raise(self):
        J = np.column_stack([np.ones(5), np.ones(5)])
        with self.assertRaises(NumericalFailure):
            gauss_newton_direction(J, np.arange(5.0))

    def test_rank_zero_warns_and_stalls(self):
        with self.assertWarns(RankDeficiencyWarning):
            d = robust_gauss_newton_direction(np.zeros((5, 2)), np.ones(5), 1e-4)
        self.assertTrue(d.stalled)
        np.testing.assert_array_equal(d.p, np.zeros(2))

    def test_rank_deficient_but_nonzero_does_not_warn(self):
        J = np.column_stack([np.ones(5), np.ones(5)])
        with warnings.catch_warnings():
            warnings.simplefilter("error", RankDeficiencyWarning)
            d = robust_gauss_newton_direction(J, np.arange(5.0), 1e-4)
        self.assertEqual(d.rank, 1)
        np.testing.assert_allclose(d.p[0], d.p[1])

    def test_dispatch(self):
        for alg in (Algorithm.GAUSS_NEWTON, Algorithm.ROBUST_GAUSS_NEWTON, Algorithm.STEEPEST_DESCENT):
            with self.subTest(algorithm=alg.value):
                d = search_direction(alg, self.J, self.eps, 1e-4)
                self.assertEqual(d.p.shape, (3,))
                self.assertLess((self.J.T @ self.eps) @ d.p, 0.0)
        with self.assertRaises(ValueError):
            search_direction(Algorithm.LEVENBERG_MARQUARDT, self.J, self.eps, 1e-4)


class TestBacktracking(unittest.TestCase):
    """Armijo backtracking on a one-dimensional quadratic."""

    def test_full_step_accepted(self):
        # f(alpha) = (1 - alpha)^2, slope -2
        res = backtracking(lambda a: (1.0 - a) ** 2, 1.0, -2.0, 50)
        self.assertTrue(res.satisfied)
        self.assertEqual(res.alpha, 1.0)
        self.assertEqual(res.evaluations, 1)

    def test_step_is_halved(self):
        # minimum at alpha = 0.25, the full step overshoots
        res = backtracking(lambda a: (1.0 - 4.0 * a) ** 2, 1.0, -8.0, 50)
        self.assertTrue(res.satisfied)
        self.assertEqual(res.alpha, 0.25)
        self.assertEqual(res.evaluations, 3)

    def test_non_finite_trials_are_skipped(self):
        res = backtracking(lambda a: np.nan if a > 0.5 else (1.0 - a) ** 2, 1.0, -2.0, 50)
        self.assertEqual(res.alpha, 0.5)

    def test_exhaustion_returns_best_alpha(self):
        costs = {1.0: 5.0, 0.5: 3.0, 0.25: 4.0}
        res = backtracking(lambda a: costs[a], 1.0, -1.0, 3)
        self.assertFalse(res.satisfied)
        self.assertEqual(res.alpha, 0.5)
        self.assertEqual(res.cost, 3.0)
        self.assertEqual(res.evaluations, 3)

    def test_all_non_finite_raises(self):
        with self.assertRaises(NumericalFailure):
            backtracking(lambda a: np.inf, 1.0, -1.0, 4)
