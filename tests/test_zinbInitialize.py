import unittest

import numpy as np
from scipy.special import logit

from helper import poissonCounts
from zinbwave import zinbInitialize
from zinbwave.zinbInitialize import INIT_ZETA_RANGE, momentsLogDispersion


class Test(unittest.TestCase):
    def setUp(self):
        self.Y = poissonCounts()

    def test_intercept_only(self):
        Y = self.Y
        m = zinbInitialize(Y, K=0)
        self.assertEqual(m.K, 0)
        # both intercepts are unpenalized: the fit is the two-way additive fit
        L = np.log1p(Y)
        additive = (
            L.mean(axis=0)[None, :] + L.mean(axis=1)[:, None] - L.mean()
        )
        self.assertTrue(np.allclose(m.getLogMu(), additive))

        zeroRate = np.clip(np.mean(Y == 0, axis=0), 1e-3, 1 - 1e-3)
        self.assertTrue(np.allclose(m.beta_pi[0], logit(zeroRate)))
        self.assertTrue(np.allclose(m.zeta, momentsLogDispersion(Y)))

    def test_latent_factors(self):
        Y = self.Y
        m = zinbInitialize(Y, K=2, seed=1)
        self.assertEqual(m.W.shape, (30, 2))
        self.assertEqual(m.alpha_mu.shape, (2, 10))
        self.assertTrue(np.all(m.alpha_pi == 0))

        # W alpha is the best rank-2 approximation of the residuals
        L = np.log1p(Y)
        D = L - (L.mean(axis=0)[None, :] + L.mean(axis=1)[:, None] - L.mean())
        U, S, Vt = np.linalg.svd(D, full_matrices=False)
        best = (U[:, :2] * S[:2]) @ Vt[:2]
        self.assertTrue(np.allclose(m.W @ m.alpha_mu, best, atol=1e-6))

        # balanced and orthogonal
        WtW = m.W.T @ m.W
        self.assertTrue(np.allclose(WtW, np.diag(np.diag(WtW))))
        ratio = m.epsilon_alpha / m.epsilon_W
        self.assertTrue(
            np.allclose(
                np.sum(m.W**2, axis=0), ratio * np.sum(m.alpha_mu**2, axis=1)
            )
        )

        m2 = zinbInitialize(Y, K=2, seed=1)
        self.assertTrue(np.array_equal(m.W, m2.W))

    def test_more_factors_than_features(self):
        m = zinbInitialize(self.Y[:, :3], K=5, seed=1)
        self.assertEqual(m.W.shape, (30, 5))
        self.assertTrue(np.all(np.isfinite(m.W)))

    def test_covariates(self):
        X = np.column_stack([np.ones(30), np.repeat([0.0, 1.0], 15)])
        m = zinbInitialize(self.Y, X=X, K=1, seed=1)
        self.assertEqual(m.beta_mu.shape, (2, 10))
        self.assertEqual(m.beta_pi.shape, (2, 10))
        self.assertTrue(np.all(m.beta_pi[1] == 0))

        m = zinbInitialize(self.Y, X=X, which_X_pi=[1], K=1, seed=1)
        # no intercept in the dropout model
        self.assertTrue(np.all(m.beta_pi == 0))

        m = zinbInitialize(self.Y, K=1, seed=1, zeroinflation=False)
        self.assertTrue(np.all(m.getPi() == 0))

    def test_momentsLogDispersion(self):
        Y = np.array([[0, 1, 2], [10, 1, 2], [2, 1, 2], [20, 1, 3]])
        zeta = momentsLogDispersion(Y)
        m, v = Y[:, 0].mean(), Y[:, 0].var(ddof=1)
        self.assertTrue(np.isclose(zeta[0], np.log(m**2 / (v - m))))
        # under-dispersed features get the upper bound
        self.assertEqual(zeta[1], INIT_ZETA_RANGE[1])
        self.assertEqual(zeta[2], INIT_ZETA_RANGE[1])
