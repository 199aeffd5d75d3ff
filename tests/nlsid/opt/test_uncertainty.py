########################################################################################
##
##                                  TESTS FOR
##                              'opt/uncertainty.py'
##
########################################################################################

# IMPORTS ==============================================================================

import unittest

import numpy as np

from nlsid.opt.cost import CostEvaluation
from nlsid.opt.masks import FreeCoordinates
from nlsid.opt.options import NLSOptions
from nlsid.opt.uncertainty import (
    UncertaintyEstimate,
    estimate_noise_covariance,
    estimate_uncertainty,
    information_matrix,
    psd_covariance,
)


# TESTS ================================================================================

class TestNoiseCovariance(unittest.TestCase):
    """Selection and estimation of the noise covariance."""

    def test_identity_by_default(self):
        R = estimate_noise_covariance(np.ones(6), 2)
        np.testing.assert_array_equal(R, np.eye(2))

    def test_external_used_when_not_estimating(self):
        R = estimate_noise_covariance(np.ones(6), 2, external=np.diag([2.0, 3.0]))
        np.testing.assert_array_equal(R, np.diag([2.0, 3.0]))

    def test_external_shape_checked(self):
        with self.assertRaises(ValueError):
            estimate_noise_covariance(np.ones(6), 2, external=np.eye(3))

    def test_estimate_from_residual(self):
        # residual blocks [1, -1], [1, 1], [-1, 1], [-1, -1]
        eps = np.array([1.0, -1.0, 1.0, 1.0, -1.0, 1.0, -1.0, -1.0])
        R = estimate_noise_covariance(eps, 2, estimate=True, floor=0.0,
                                      external=np.diag([9.0, 9.0]))
        np.testing.assert_allclose(R, np.eye(2))

    def test_floor_added(self):
        R = estimate_noise_covariance(np.zeros(4), 1, estimate=True, floor=1e-3)
        np.testing.assert_allclose(R, [[1e-3]])


class TestInformation(unittest.TestCase):
    """Information matrix and covariance."""

    def test_identity_noise_gives_gauss_newton_hessian(self):
        rng = np.random.default_rng(1)
        J = rng.normal(size=(12, 3))
        np.testing.assert_allclose(information_matrix(J, np.eye(2), 2), J.T @ J, atol=1e-12)

    def test_weighting_by_inverse_noise(self):
        J = np.array([[1.0], [1.0], [2.0], [0.0]])
        R = np.diag([4.0, 1.0])
        # samples: [1, 1] and [2, 0] -> 1/4 + 1 + 4/4 = 2.25
        np.testing.assert_allclose(information_matrix(J, R, 2), [[2.25]])

    def test_no_free_coordinates(self):
        info = information_matrix(np.zeros((6, 0)), np.eye(2), 2)
        self.assertEqual(info.shape, (0, 0))
        self.assertEqual(psd_covariance(info).shape, (0, 0))

    def test_covariance_symmetric_and_psd(self):
        rng = np.random.default_rng(5)
        A = rng.normal(size=(20, 4))
        A[:, 3] = A[:, 2]              # rank deficient
        P = psd_covariance(A.T @ A)

        np.testing.assert_array_equal(P, P.T)
        self.assertGreaterEqual(np.linalg.eigvalsh(P).min(), 0.0)

    def test_covariance_inverts_well_conditioned_information(self):
        info = np.array([[4.0, 1.0], [1.0, 3.0]])
        np.testing.assert_allclose(psd_covariance(info), np.linalg.inv(info), rtol=1e-10)


class TestUncertaintyEstimate(unittest.TestCase):
    """Scattering of the free block into the full [th; x0] shape."""

    def setUp(self):
        self.free = FreeCoordinates(3, 2, thmask=[1, 0, 1], x0mask=[0, 1])
        self.info = np.diag([4.0, 1.0, 0.25])
        self.est = UncertaintyEstimate(self.info, np.eye(1), self.free, values=[1.0, 2.0, 3.0])

    def test_full_shapes(self):
        self.assertEqual(self.est.information.shape, (5, 5))
        self.assertEqual(self.est.covariance.shape, (5, 5))
        self.assertEqual(self.est.param_covariance.shape, (3, 3))
        self.assertEqual(self.est.x0_covariance.shape, (2, 2))

    def test_fixed_coordinates_have_zero_rows(self):
        np.testing.assert_array_equal(self.est.covariance[1], np.zeros(5))
        np.testing.assert_array_equal(self.est.covariance[:, 3], np.zeros(5))

    def test_free_block_is_inverse(self):
        P = self.est.covariance[np.ix_([0, 2, 4], [0, 2, 4])]
        np.testing.assert_allclose(np.diag(P), [0.25, 1.0, 4.0], rtol=1e-10)
        np.testing.assert_allclose(self.est.std_errors, [0.5, 1.0, 2.0], rtol=1e-10)

    def test_names(self):
        self.assertEqual(self.est.names, ["th[0]", "th[2]", "x0[1]"])

    def test_condition_number(self):
        self.assertAlmostEqual(self.est.condition_number, 16.0)

    def test_estimate_from_evaluation(self):
        J = np.array([[1.0, 0.0], [0.0, 2.0], [1.0, 1.0]])
        ev = CostEvaluation(cost=3.0, residual=np.ones(3), jacobian=J)
        est = estimate_uncertainty(ev, FreeCoordinates(2), 1, NLSOptions())
        np.testing.assert_allclose(est.information, J.T @ J)
        np.testing.assert_allclose(est.noise_covariance, np.eye(1))

        est = estimate_uncertainty(ev, FreeCoordinates(2), 1, NLSOptions(estimate_noise=True))
        np.testing.assert_allclose(est.noise_covariance, [[1.0 + np.finfo(float).eps]])
