# -----------------------------------------------------------------------------
# Copyright (C) 2024-2025 The zinbwave Python authors

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.

# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
# -----------------------------------------------------------------------------

import numpy as np
from scipy.special import digamma, gammaln

from .errors import NumericalInstabilityError
from .utils import expit, log1pexp
from .zinbModel import ETA_MAX, ZETA_BOUNDS


def zinbEntryTerms(Y, logMu, logitPi, zeta, zeroinflation=True, derivatives=True):
    r"""
    Entry-wise ZINB log-likelihood and its derivatives

    For :math:`Y_{ij} = 0`, the log-likelihood is
    :math:`\log(\pi_{ij} + (1 - \pi_{ij}) f_{NB}(0; \mu_{ij}, \theta_j))`,
    and for :math:`Y_{ij} > 0` it is
    :math:`\log((1 - \pi_{ij}) f_{NB}(Y_{ij}; \mu_{ij}, \theta_j))`.
    Everything is computed in the log domain.

    All arguments must be broadcastable to the shape of :code:`Y`.

    Arguments
    ---------
    Y : ndarray
        counts
    logMu : ndarray
        :math:`\log \mu`
    logitPi : ndarray
        :math:`\mathrm{logit}\, \pi`, ignored if :code:`zeroinflation` is False
    zeta : ndarray
        :math:`\log \theta`
    zeroinflation : bool
        whether the model has a dropout component
    derivatives : bool
        whether to compute the derivatives

    Returns
    -------
    dict
        :code:`"loglik"`, the log-likelihood of each entry, and if
        :code:`derivatives` is True, :code:`"d_logMu"`, :code:`"d_logitPi"`
        and :code:`"d_zeta"` its derivatives with respect to the linear
        predictors and to the log-dispersion, as well as :code:`"nbWeight"`,
        the posterior probability that the entry comes from the negative
        binomial component.
    """
    Y = np.asarray(Y, dtype=float)
    log_theta_mu = np.logaddexp(zeta, logMu)
    theta = np.exp(zeta)
    lnb = (
        gammaln(Y + theta)
        - gammaln(theta)
        - gammaln(Y + 1)
        + theta * (zeta - log_theta_mu)
        + Y * (logMu - log_theta_mu)
    )

    if zeroinflation:
        isZero = Y == 0
        log_pi = -log1pexp(-logitPi)
        log_1mpi = -log1pexp(logitPi)
        lnb_part = log_1mpi + lnb
        loglik = np.where(isZero, np.logaddexp(log_pi, lnb_part), lnb_part)
    else:
        loglik = lnb

    res = {"loglik": loglik}
    if not derivatives:
        return res

    if zeroinflation:
        # positive counts only take the NB branch
        nbWeight = np.exp(np.where(isZero, lnb_part - loglik, 0.0))
        res["d_logitPi"] = np.exp(np.where(isZero, log_pi - loglik, -np.inf)) - expit(
            logitPi
        )
    else:
        nbWeight = np.ones(np.broadcast(Y, logMu).shape)
    mu = np.exp(logMu)
    # theta / (theta + mu), and mu / (theta + mu)
    r_theta = np.exp(zeta - log_theta_mu)
    r_mu = np.exp(logMu - log_theta_mu)
    res["nbWeight"] = nbWeight
    res["d_logMu"] = nbWeight * (Y - mu) * r_theta
    res["d_zeta"] = (
        nbWeight
        * theta
        * (
            digamma(Y + theta)
            - digamma(theta)
            + zeta
            - log_theta_mu
            + r_mu
            - Y / (theta + mu)
        )
    )
    return res


def zinbLoglikMatrix(model, Y):
    """
    n x J matrix of the log-likelihood of each entry of :code:`Y` under :code:`model`
    """
    return zinbEntryTerms(
        Y,
        model.getLogMu(),
        model.getLogitPi(),
        model.getZeta()[None, :],
        zeroinflation=model.zeroinflation,
        derivatives=False,
    )["loglik"]


def zinbLoglik(model, Y):
    """
    Log-likelihood of :code:`Y` under :code:`model`, without penalty
    """
    return np.sum(zinbLoglikMatrix(model, Y))


def zinbPenalizedLoglik(model, Y):
    """
    Penalized log-likelihood of :code:`Y` under :code:`model`

    Raises
    ------
    NumericalInstabilityError
        if the value is not finite
    """
    res = zinbLoglik(model, Y) - model.getPenalty()
    if not np.isfinite(res):
        raise NumericalInstabilityError(f"penalized log-likelihood is {res}")
    return res


def zinbEvaluate(model, Y, blocks=None):
    """
    Penalized log-likelihood and its gradients

    Arguments
    ---------
    model : ZinbModel
        the current model
    Y : ndarray
        n x J count matrix
    blocks : iterable of str, optional
        names of the parameters whose gradient is requested. Defaults to all
        the free parameters of the model.

    Returns
    -------
    float
        the penalized log-likelihood
    dict
        the gradient of the penalized log-likelihood with respect to each
        requested parameter, with the same shape as the parameter

    Raises
    ------
    NumericalInstabilityError
        if the log-likelihood or a gradient is not finite
    """
    if blocks is None:
        blocks = model.freeParameters()
    blocks = tuple(blocks)

    logMu = model.getLogMu()
    logitPi = model.getLogitPi()
    zeta = model.getZeta()
    terms = zinbEntryTerms(
        Y, logMu, logitPi, zeta[None, :], zeroinflation=model.zeroinflation
    )
    pll = np.sum(terms["loglik"]) - model.getPenalty()
    if not np.isfinite(pll):
        raise NumericalInstabilityError(f"penalized log-likelihood is {pll}")

    # clipped entries do not move with the parameters
    G_mu = np.where(np.abs(logMu) >= ETA_MAX, 0.0, terms["d_logMu"])
    if model.zeroinflation:
        G_pi = np.where(np.abs(logitPi) >= ETA_MAX, 0.0, terms["d_logitPi"])
    else:
        G_pi = np.zeros_like(G_mu)

    grads = {}
    for b in blocks:
        if b == "beta_mu":
            g = model.X_mu.T @ G_mu - model.epsilon_beta_mu[:, None] * model.beta_mu
        elif b == "beta_pi":
            g = model.X_pi.T @ G_pi - model.epsilon_beta_pi[:, None] * model.beta_pi
        elif b == "gamma_mu":
            g = (
                model.V_mu.T @ G_mu.T
                - model.epsilon_gamma_mu[:, None] * model.gamma_mu
            )
        elif b == "gamma_pi":
            g = (
                model.V_pi.T @ G_pi.T
                - model.epsilon_gamma_pi[:, None] * model.gamma_pi
            )
        elif b == "W":
            g = G_mu @ model.alpha_mu.T - model.epsilon_W * model.W
            if model.zeroinflation:
                g = g + G_pi @ model.alpha_pi.T
        elif b == "alpha_mu":
            g = model.W.T @ G_mu - model.epsilon_alpha * model.alpha_mu
        elif b == "alpha_pi":
            g = model.W.T @ G_pi - model.epsilon_alpha * model.alpha_pi
        elif b == "zeta":
            inside = (model.zeta > ZETA_BOUNDS[0]) & (model.zeta < ZETA_BOUNDS[1])
            g = np.where(inside, np.sum(terms["d_zeta"], axis=0), 0.0)
            g = g - model.epsilon_zeta * (model.zeta - np.mean(model.zeta))
        else:
            raise ValueError(f"unknown parameter block: {b}")
        if not np.all(np.isfinite(g)):
            raise NumericalInstabilityError(f"gradient with respect to {b} is not finite")
        grads[b] = g

    return pll, grads


def zinbAIC(model, Y):
    """Akaike information criterion of :code:`model` on :code:`Y`"""
    return 2 * model.nParams() - 2 * zinbLoglik(model, Y)


def zinbBIC(model, Y):
    """Bayesian information criterion of :code:`model` on :code:`Y`"""
    return np.log(model.n * model.J) * model.nParams() - 2 * zinbLoglik(model, Y)
