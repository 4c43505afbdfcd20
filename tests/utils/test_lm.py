import unittest

import numpy as np

from zinbwave.utils import ridge_fit


class Test(unittest.TestCase):
    def assertArrayEqual(self, x, y, tol=1e-6):
        self.assertTrue(np.allclose(x, y, atol=tol))

    def test_ridge_fit(self):
        rng = np.random.default_rng(0)
        A = np.column_stack([np.ones(20), rng.normal(size=(20, 2))])
        B = rng.normal(size=(20, 4))
        penalty = np.array([0.0, 1.5, 3.0])

        res = ridge_fit(A, B, penalty)
        expected = np.linalg.solve(A.T @ A + np.diag(penalty), A.T @ B)
        self.assertArrayEqual(res.coefficients, expected)
        self.assertArrayEqual(res.fitted_values, A @ expected)
        self.assertArrayEqual(res.residuals, B - A @ expected)

        # vector response
        res = ridge_fit(A, B[:, 0], penalty)
        self.assertEqual(res.coefficients.shape, (3,))
        self.assertArrayEqual(res.coefficients, expected[:, 0])
        self.assertEqual(res.residuals.shape, (20,))

    def test_ridge_fit_unpenalized(self):
        A = np.arange(5, 11).reshape(3, 2)
        b = np.array([1.0 / 30, 1.0 / 31, 1.0 / 32])
        res = ridge_fit(A, b, 0)
        self.assertArrayEqual(res.coefficients, np.array([-0.03644713, 0.03592630]))
        self.assertArrayEqual(res.fitted_values, [0.03332213, 0.03228047, 0.03123880])

    def test_ridge_fit_collinear(self):
        # two unpenalized intercepts: the minimum-norm solution is returned
        A = np.ones((4, 2))
        res = ridge_fit(A, np.array([1.0, 2.0, 3.0, 4.0]), 0)
        self.assertArrayEqual(res.coefficients, [1.25, 1.25])

    def test_negative_penalty(self):
        with self.assertRaises(ValueError):
            ridge_fit(np.ones((3, 1)), np.ones(3), -1)
