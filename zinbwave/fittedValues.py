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

from .utils import dnbinom_mu, log1pexp
from .zinbLoglik import zinbLoglikMatrix
from .zinbModel import ETA_MAX

# lower bound of the observational weights
MIN_WEIGHT = 1e-15


def computeNormalizedValues(model):
    """
    Normalized values of a fitted model

    The normalized values are :math:`\\log(1 + \\mu)` where the contribution
    of the latent factors, :math:`W \\alpha_\\mu`, has been removed from the
    linear predictor of :math:`\\log \\mu`.

    Arguments
    ---------
    model : ZinbModel
        a fitted model

    Returns
    -------
    ndarray
        n x J matrix
    """
    eta = model.X_mu @ model.beta_mu + (model.V_mu @ model.gamma_mu).T + model.O_mu
    return np.log1p(np.exp(np.clip(eta, -ETA_MAX, ETA_MAX)))


def computeDevianceResiduals(model, Y):
    """
    Deviance residuals of a fitted model

    The residual of an entry is :math:`\\pm \\sqrt{-2 \\ell_{ij}}`, where
    :math:`\\ell_{ij}` is its log-likelihood, with the sign of the difference
    between :math:`Y_{ij}` and its expected value :math:`(1 - \\pi_{ij})
    \\mu_{ij}` (negative when they are equal).

    Arguments
    ---------
    model : ZinbModel
        a fitted model
    Y : ndarray
        n x J count matrix

    Returns
    -------
    ndarray
        n x J matrix
    """
    Y = np.asarray(Y, dtype=float)
    expected = (1 - model.getPi()) * model.getMu()
    ll = zinbLoglikMatrix(model, Y)
    sign = np.where(Y - expected > 0, 1.0, -1.0)
    return sign * np.sqrt(np.maximum(-2 * ll, 0.0))


def computeObservationalWeights(model, Y):
    """
    Observational weights of a fitted model

    The weight of an entry is the posterior probability that it was drawn
    from the negative binomial component rather than being a dropout:

    .. math::

       w_{ij} = \\frac{(1 - \\pi_{ij}) f_{NB}(Y_{ij})}{\\pi_{ij} 1_{Y_{ij} = 0} + (1 - \\pi_{ij}) f_{NB}(Y_{ij})}

    Positive counts have weight 1, and so does every entry of a model without
    zero inflation. These weights can be used to down-weight likely dropouts
    in differential expression tools designed for bulk data.

    Arguments
    ---------
    model : ZinbModel
        a fitted model
    Y : ndarray
        n x J count matrix

    Returns
    -------
    ndarray
        n x J matrix of weights in [1e-15, 1]
    """
    Y = np.asarray(Y, dtype=float)
    if not model.zeroinflation:
        return np.ones(Y.shape)
    logitPi = model.getLogitPi()
    log_pi = -log1pexp(-logitPi)
    log_nb = -log1pexp(logitPi) + dnbinom_mu(
        Y, size=model.getTheta()[None, :], mu=model.getMu(), log=True
    )
    log_w = log_nb - np.logaddexp(np.where(Y == 0, log_pi, -np.inf), log_nb)
    w = np.clip(np.exp(log_w), MIN_WEIGHT, 1.0)
    w[Y > 0] = 1.0
    return w
