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
from scipy.special import logit
from sklearn.utils.extmath import randomized_svd

from .utils import LOGGER, ridge_fit
from .zinbModel import ZinbModel
from .zinbOptimize import orthogonalizeTraceNorm

# range of the initial log-dispersions
INIT_ZETA_RANGE = (-10.0, 10.0)
# range of the initial zero rates
INIT_PI_RANGE = (1e-3, 1 - 1e-3)


def zinbInitialize(
    Y,
    X=None,
    V=None,
    O_mu=None,
    O_pi=None,
    K=0,
    epsilon=None,
    which_X_mu=None,
    which_X_pi=None,
    which_V_mu=None,
    which_V_pi=None,
    zeroinflation=True,
    seed=None,
    ridgeIter=5,
    **penalties,
):
    """
    Initialize the parameters of a ZINB-WaVE model

    The starting point is deterministic given :code:`seed`:

    1. the mean coefficients :math:`\\beta_\\mu` and :math:`\\gamma_\\mu` are
       obtained by alternating ridge regressions of :math:`\\log(1 + Y) - O_\\mu`
       on :math:`X_\\mu` and :math:`V_\\mu`;
    2. the dropout coefficients are intercept-only: the intercept of
       :math:`X_\\pi` is set to the logit of the zero rate of each feature;
    3. the dispersions are moment estimates, feature by feature;
    4. :math:`W` and :math:`\\alpha_\\mu` are a rank-K truncated SVD of the
       residuals of step 1, balanced with :func:`orthogonalizeTraceNorm`.

    Arguments
    ---------
    Y : ndarray
        n x J count matrix
    X, V, O_mu, O_pi, which_X_mu, which_X_pi, which_V_mu, which_V_pi, epsilon, zeroinflation
        see :class:`~zinbwave.zinbModel.ZinbModel`
    K : int
        number of latent factors
    seed : int, optional
        seed of the truncated SVD
    ridgeIter : int
        number of alternating ridge regressions
    **penalties
        penalty overrides passed to :class:`~zinbwave.zinbModel.ZinbModel`

    Returns
    -------
    ZinbModel
    """
    Y = np.asarray(Y, dtype=float)
    n, J = Y.shape
    model = ZinbModel(
        X=X,
        V=V,
        O_mu=O_mu,
        O_pi=O_pi,
        which_X_mu=which_X_mu,
        which_X_pi=which_X_pi,
        which_V_mu=which_V_mu,
        which_V_pi=which_V_pi,
        n=n,
        J=J,
        K=K,
        epsilon=epsilon,
        zeroinflation=zeroinflation,
        **penalties,
    )
    params = {}

    # 1. mean model
    L = np.log1p(Y) - model.O_mu
    X_mu, V_mu = model.X_mu, model.V_mu
    beta_mu = np.zeros(model.beta_mu.shape)
    gamma_mu = np.zeros(model.gamma_mu.shape)
    for _ in range(ridgeIter):
        if X_mu.shape[1] > 0:
            beta_mu = ridge_fit(
                X_mu, L - (V_mu @ gamma_mu).T, model.epsilon_beta_mu
            ).coefficients
        if V_mu.shape[1] > 0:
            gamma_mu = ridge_fit(
                V_mu, (L - X_mu @ beta_mu).T, model.epsilon_gamma_mu
            ).coefficients
    params["beta_mu"] = beta_mu
    params["gamma_mu"] = gamma_mu

    # 2. dropout model
    if model.zeroinflation:
        intercepts = np.nonzero(model.X_intercept[model.which_X_pi])[0]
        if len(intercepts) > 0:
            zeroRate = np.clip(np.mean(Y == 0, axis=0), *INIT_PI_RANGE)
            beta_pi = np.zeros(model.beta_pi.shape)
            beta_pi[intercepts[0]] = logit(zeroRate)
            params["beta_pi"] = beta_pi

    # 3. dispersion
    params["zeta"] = momentsLogDispersion(Y)

    # 4. latent factors
    if model.K > 0:
        D = L - X_mu @ beta_mu - (V_mu @ gamma_mu).T
        W, alpha = lowRankFactors(D, model.K, seed)
        W, alpha = orthogonalizeTraceNorm(W, alpha, model.epsilon_W, model.epsilon_alpha)
        params["W"] = W
        params["alpha_mu"] = alpha

    LOGGER.debug(f"initialized {model}")
    return model.update(**params)


def momentsLogDispersion(Y):
    """
    Method-of-moments estimate of the log-dispersion of each feature

    For a negative binomial of mean :math:`m` and variance :math:`v`,
    :math:`\\theta = m^2 / (v - m)`. Features that are not over-dispersed get
    the upper end of :data:`INIT_ZETA_RANGE`.
    """
    Y = np.asarray(Y, dtype=float)
    m = np.mean(Y, axis=0)
    v = np.var(Y, axis=0, ddof=1) if Y.shape[0] > 1 else np.zeros_like(m)
    with np.errstate(divide="ignore", invalid="ignore"):
        zeta = np.where(
            (v > m) & (m > 0), 2 * np.log(m) - np.log(v - m), INIT_ZETA_RANGE[1]
        )
    return np.clip(zeta, *INIT_ZETA_RANGE)


def lowRankFactors(D, K, seed=None):
    """
    Rank-K factorization :math:`D \\approx W \\alpha` from a truncated SVD

    Returns
    -------
    W : ndarray
        n x K
    alpha : ndarray
        K x J
    """
    n, J = D.shape
    r = min(K, n, J)
    W = np.zeros((n, K))
    alpha = np.zeros((K, J))
    if r > 0:
        U, S, Vt = randomized_svd(D, n_components=r, random_state=seed)
        W[:, :r] = U * np.sqrt(S)
        alpha[:r] = np.sqrt(S)[:, None] * Vt
    # directions not supported by the residuals start as small noise
    empty = np.nonzero(np.sum(W**2, axis=0) * np.sum(alpha**2, axis=1) < 1e-12)[0]
    if len(empty) > 0:
        rng = np.random.default_rng(seed)
        W[:, empty] = rng.normal(scale=1e-2, size=(n, len(empty)))
        alpha[empty] = rng.normal(scale=1e-2, size=(len(empty), J))
    return W, alpha
