import unittest

import numpy as np

from helper import randomModel
from zinbwave import (
    NumericalInstabilityError,
    zinbAIC,
    zinbBIC,
    zinbEvaluate,
    zinbLoglik,
    zinbPenalizedLoglik,
    zinbSim,
)
from zinbwave.utils import dnbinom_mu
from zinbwave.zinbLoglik import zinbEntryTerms, zinbLoglikMatrix


def referenceLoglik(Y, mu, pi, theta):
    f = dnbinom_mu(Y, size=theta, mu=mu)
    return np.where(Y == 0, np.log(pi + (1 - pi) * f), np.log((1 - pi) * f))


def finiteDifference(model, Y, block, index, h=1e-6):
    value = np.array(getattr(model, block))
    value[index] += h
    up = zinbPenalizedLoglik(model.update(**{block: value}), Y)
    value[index] -= 2 * h
    down = zinbPenalizedLoglik(model.update(**{block: value}), Y)
    return (up - down) / (2 * h)


class Test(unittest.TestCase):
    def setUp(self):
        self.model = randomModel()
        self.Y = zinbSim(self.model, seed=3)["counts"]

    def test_loglik_matches_scipy(self):
        m, Y = self.model, self.Y
        ref = referenceLoglik(Y, m.getMu(), m.getPi(), m.getTheta()[None, :])
        self.assertTrue(np.allclose(zinbLoglikMatrix(m, Y), ref))
        self.assertTrue(np.isclose(zinbLoglik(m, Y), np.sum(ref)))
        self.assertTrue(
            np.isclose(zinbPenalizedLoglik(m, Y), np.sum(ref) - m.getPenalty())
        )

        m = randomModel(zeroinflation=False)
        ref = referenceLoglik(Y, m.getMu(), 0.0, m.getTheta()[None, :])
        self.assertTrue(np.allclose(zinbLoglikMatrix(m, Y), ref))

    def test_extreme_values_stay_finite(self):
        Y = np.array([0.0, 0.0, 5.0, 1000.0])
        # no floating point overflow on positive counts with huge dropout odds
        with np.errstate(over="raise", divide="raise", invalid="raise"):
            res = zinbEntryTerms(
                Y,
                logMu=np.array([-30.0, 30.0, 30.0, -30.0]),
                logitPi=np.array([30.0, -30.0, 30.0, -30.0]),
                zeta=np.array([-15.0, 15.0, 15.0, -15.0]),
            )
        for key, value in res.items():
            self.assertTrue(np.all(np.isfinite(value)), key)

    def test_gradients(self):
        m, Y = self.model, self.Y
        pll, grads = zinbEvaluate(m, Y)
        self.assertTrue(np.isclose(pll, zinbPenalizedLoglik(m, Y)))
        self.assertEqual(set(grads), set(m.freeParameters()))
        for block, g in grads.items():
            self.assertEqual(g.shape, getattr(m, block).shape)
            for index in ((0, 0), (-1, -1)) if g.ndim == 2 else ((0,), (3,)):
                fd = finiteDifference(m, Y, block, index)
                self.assertTrue(
                    np.isclose(g[index], fd, rtol=1e-4, atol=1e-4),
                    f"{block}{index}: {g[index]} != {fd}",
                )

    def test_gradients_without_zeroinflation(self):
        m = randomModel(zeroinflation=False)
        pll, grads = zinbEvaluate(m, self.Y, blocks=["W", "zeta"])
        self.assertEqual(set(grads), {"W", "zeta"})
        for block in ("W", "zeta"):
            index = (1, 1) if block == "W" else (2,)
            fd = finiteDifference(m, self.Y, block, index)
            self.assertTrue(np.isclose(grads[block][index], fd, rtol=1e-4, atol=1e-4))

    def test_clipped_entries_have_no_gradient(self):
        m = self.model
        beta_mu = np.array(m.beta_mu)
        beta_mu[0] = 100.0
        pll, grads = zinbEvaluate(m.update(beta_mu=beta_mu), self.Y, ["beta_mu"])
        self.assertTrue(np.all(grads["beta_mu"][0] == 0))

    def test_not_finite(self):
        Y = np.array(self.Y, dtype=float)
        Y[0, 0] = np.nan
        with self.assertRaises(NumericalInstabilityError):
            zinbPenalizedLoglik(self.model, Y)
        with self.assertRaises(NumericalInstabilityError):
            zinbEvaluate(self.model, Y)

    def test_information_criteria(self):
        m, Y = self.model, self.Y
        ll = zinbLoglik(m, Y)
        self.assertTrue(np.isclose(zinbAIC(m, Y), 2 * m.nParams() - 2 * ll))
        self.assertTrue(
            np.isclose(zinbBIC(m, Y), np.log(20 * 8) * m.nParams() - 2 * ll)
        )
