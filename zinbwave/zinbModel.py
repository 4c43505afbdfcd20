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

from .designMatrix import Design, interceptColumns
from .errors import DimensionMismatchError, InvalidArgumentError
from .utils import expit, rnbinom

# linear predictors are clipped to [-ETA_MAX, ETA_MAX], so that mu > 0 and
# 0 < pi < 1 hold in floating point
ETA_MAX = 30.0
# bounds on the log-dispersion zeta
ZETA_BOUNDS = (-15.0, 15.0)

# names of the estimated parameters, in a fixed order
PARAMETERS = (
    "beta_mu",
    "beta_pi",
    "gamma_mu",
    "gamma_pi",
    "W",
    "alpha_mu",
    "alpha_pi",
    "zeta",
)
PI_PARAMETERS = ("beta_pi", "gamma_pi", "alpha_pi")


class ZinbModel:
    r"""
    Parameters and structure of a ZINB-WaVE model

    For a count matrix :math:`Y` of :math:`n` samples and :math:`J`
    features, :math:`Y_{ij}` follows a zero-inflated negative binomial
    distribution of mean :math:`\mu_{ij}`, dispersion :math:`\theta_j` and
    dropout probability :math:`\pi_{ij}`, with

    .. math::

       \log \mu &= X_\mu \beta_\mu + (V_\mu \gamma_\mu)^T + W \alpha_\mu + O_\mu

       \mathrm{logit}\, \pi &= X_\pi \beta_\pi + (V_\pi \gamma_\pi)^T + W \alpha_\pi + O_\pi

       \log \theta &= \zeta

    where :math:`X_\mu` (resp. :math:`X_\pi`) holds the columns of :math:`X`
    selected by :code:`which_X_mu` (resp. :code:`which_X_pi`), and similarly
    for :math:`V`.

    A model is a value: its arrays are read-only, and :meth:`update` returns a
    new model instead of modifying this one.

    Arguments
    ---------
    X : ndarray or Design, optional
        sample-level design, n x M. Defaults to an intercept column.
    V : ndarray or Design, optional
        feature-level design, J x L. Defaults to an intercept column.
    O_mu, O_pi : ndarray, optional
        n x J offsets of the mean and dropout predictors. Default to 0.
    which_X_mu, which_X_pi, which_V_mu, which_V_pi : array-like, optional
        indices of the columns of X (resp. V) entering the mean and dropout
        predictors. Default to all columns.
    W : ndarray, optional
        n x K latent factors
    beta_mu, beta_pi : ndarray, optional
        regression coefficients for X, of shape (len(which_X_mu), J) and
        (len(which_X_pi), J)
    gamma_mu, gamma_pi : ndarray, optional
        regression coefficients for V, of shape (len(which_V_mu), n) and
        (len(which_V_pi), n)
    alpha_mu, alpha_pi : ndarray, optional
        K x J loadings
    zeta : ndarray, optional
        length J vector of log-dispersions
    n, J : int, optional
        number of samples and features, only needed when neither X nor V
        determine them
    K : int, optional
        number of latent factors, only needed when W is not given
    epsilon : float, optional
        regularization scale, defaults to J. It sets the default penalties
        :math:`\epsilon_\beta = \epsilon_\alpha = \epsilon / J`,
        :math:`\epsilon_\gamma = \epsilon_W = \epsilon / n` and
        :math:`\epsilon_\zeta = \epsilon`.
    epsilon_beta_mu, epsilon_beta_pi, epsilon_gamma_mu, epsilon_gamma_pi, epsilon_W, epsilon_alpha, epsilon_zeta : float, optional
        override the penalty of a single block
    epsilon_min_logit : float
        penalty applied to the intercepts of the dropout model
    zeroinflation : bool
        if False, :math:`\pi = 0` everywhere and the model is a negative
        binomial factor model
    """

    def __init__(
        self,
        X=None,
        V=None,
        O_mu=None,
        O_pi=None,
        which_X_mu=None,
        which_X_pi=None,
        which_V_mu=None,
        which_V_pi=None,
        W=None,
        beta_mu=None,
        beta_pi=None,
        gamma_mu=None,
        gamma_pi=None,
        alpha_mu=None,
        alpha_pi=None,
        zeta=None,
        n=None,
        J=None,
        K=None,
        epsilon=None,
        epsilon_beta_mu=None,
        epsilon_beta_pi=None,
        epsilon_gamma_mu=None,
        epsilon_gamma_pi=None,
        epsilon_W=None,
        epsilon_alpha=None,
        epsilon_zeta=None,
        epsilon_min_logit=1e-3,
        zeroinflation=True,
    ):
        X_names = V_names = X_int = V_int = None
        if isinstance(X, Design):
            X, X_names, X_int = X.matrix, X.names, X.intercept
        if isinstance(V, Design):
            V, V_names, V_int = V.matrix, V.names, V.intercept

        if n is None:
            n = _firstDim([(X, 0), (O_mu, 0), (O_pi, 0), (W, 0), (gamma_mu, 1)])
        if J is None:
            J = _firstDim([(V, 0), (zeta, 0), (O_mu, 1), (beta_mu, 1), (alpha_mu, 1)])
        if n is None or J is None:
            raise InvalidArgumentError(
                "cannot determine the number of samples and features of the model"
            )
        self.n = int(n)
        self.J = int(J)

        if K is None:
            K = _firstDim([(W, 1), (alpha_mu, 0)]) or 0
        if int(K) != K or K < 0:
            raise InvalidArgumentError(f"K must be an integer >= 0, got {K}")
        self.K = int(K)
        self.zeroinflation = bool(zeroinflation)

        self.X = _matrix(X, (self.n, None), "X", default=np.ones((self.n, 1)))
        self.V = _matrix(V, (self.J, None), "V", default=np.ones((self.J, 1)))
        self.X_names = X_names or [f"X{i + 1}" for i in range(self.X.shape[1])]
        self.V_names = V_names or [f"V{i + 1}" for i in range(self.V.shape[1])]
        self.O_mu = _matrix(O_mu, (self.n, self.J), "O_mu")
        self.O_pi = _matrix(O_pi, (self.n, self.J), "O_pi")

        self.which_X_mu = _columns(which_X_mu, self.X.shape[1], "which_X_mu")
        self.which_X_pi = _columns(which_X_pi, self.X.shape[1], "which_X_pi")
        self.which_V_mu = _columns(which_V_mu, self.V.shape[1], "which_V_mu")
        self.which_V_pi = _columns(which_V_pi, self.V.shape[1], "which_V_pi")

        M_mu, M_pi = len(self.which_X_mu), len(self.which_X_pi)
        L_mu, L_pi = len(self.which_V_mu), len(self.which_V_pi)
        n, J, K = self.n, self.J, self.K
        self.W = _matrix(W, (n, K), "W")
        self.beta_mu = _matrix(beta_mu, (M_mu, J), "beta_mu")
        self.beta_pi = _matrix(beta_pi, (M_pi, J), "beta_pi")
        self.gamma_mu = _matrix(gamma_mu, (L_mu, n), "gamma_mu")
        self.gamma_pi = _matrix(gamma_pi, (L_pi, n), "gamma_pi")
        self.alpha_mu = _matrix(alpha_mu, (K, J), "alpha_mu")
        self.alpha_pi = _matrix(alpha_pi, (K, J), "alpha_pi")
        self.zeta = _vector(zeta, J, "zeta")

        if epsilon is None:
            epsilon = J
        if not np.isfinite(epsilon) or epsilon <= 0:
            raise InvalidArgumentError(f"epsilon must be positive, got {epsilon}")
        self.epsilon = float(epsilon)
        self.epsilon_min_logit = float(epsilon_min_logit)

        def penalties(value, default, intercept, intercept_value):
            e = np.full(len(intercept), default if value is None else value, float)
            e[intercept] = intercept_value
            return e

        self.X_intercept = interceptColumns(self.X) if X_int is None else X_int
        self.V_intercept = interceptColumns(self.V) if V_int is None else V_int
        X_int, V_int = self.X_intercept, self.V_intercept
        self.epsilon_beta_mu = penalties(
            epsilon_beta_mu, epsilon / J, X_int[self.which_X_mu], 0.0
        )
        self.epsilon_beta_pi = penalties(
            epsilon_beta_pi, epsilon / J, X_int[self.which_X_pi], epsilon_min_logit
        )
        self.epsilon_gamma_mu = penalties(
            epsilon_gamma_mu, epsilon / n, V_int[self.which_V_mu], 0.0
        )
        self.epsilon_gamma_pi = penalties(
            epsilon_gamma_pi, epsilon / n, V_int[self.which_V_pi], epsilon_min_logit
        )
        self.epsilon_W = float(epsilon / n if epsilon_W is None else epsilon_W)
        self.epsilon_alpha = float(
            epsilon / J if epsilon_alpha is None else epsilon_alpha
        )
        self.epsilon_zeta = float(epsilon if epsilon_zeta is None else epsilon_zeta)

        for name in (
            "X",
            "V",
            "O_mu",
            "O_pi",
            "epsilon_beta_mu",
            "epsilon_beta_pi",
            "epsilon_gamma_mu",
            "epsilon_gamma_pi",
        ) + PARAMETERS:
            getattr(self, name).setflags(write=False)

    def update(self, **params):
        """
        Return a copy of this model where the given parameters are replaced

        Only the estimated parameters (see :data:`PARAMETERS`) may be
        replaced; their shapes must not change.
        """
        unknown = set(params) - set(PARAMETERS)
        if unknown:
            raise InvalidArgumentError(
                f"cannot update {', '.join(sorted(unknown))}: not a model parameter"
            )
        res = object.__new__(ZinbModel)
        res.__dict__.update(self.__dict__)
        for name, value in params.items():
            current = getattr(self, name)
            value = np.array(value, dtype=float)
            if value.shape != current.shape:
                raise DimensionMismatchError(
                    f"{name} has shape {value.shape}, expected {current.shape}"
                )
            value.setflags(write=False)
            setattr(res, name, value)
        return res

    def __repr__(self):
        return (
            f"ZinbModel(n={self.n}, J={self.J}, K={self.K}, "
            f"X={self.X.shape[1]} cols, V={self.V.shape[1]} cols, "
            f"zeroinflation={self.zeroinflation})"
        )

    @property
    def X_mu(self):
        return self.X[:, self.which_X_mu]

    @property
    def X_pi(self):
        return self.X[:, self.which_X_pi]

    @property
    def V_mu(self):
        return self.V[:, self.which_V_mu]

    @property
    def V_pi(self):
        return self.V[:, self.which_V_pi]

    def getLogMu(self):
        """n x J matrix of :math:`\\log \\mu`, clipped to [-ETA_MAX, ETA_MAX]"""
        eta = (
            self.X_mu @ self.beta_mu
            + (self.V_mu @ self.gamma_mu).T
            + self.W @ self.alpha_mu
            + self.O_mu
        )
        return np.clip(eta, -ETA_MAX, ETA_MAX)

    def getMu(self):
        """n x J matrix of means"""
        return np.exp(self.getLogMu())

    def getLogitPi(self):
        """
        n x J matrix of :math:`\\mathrm{logit}\\,\\pi`, clipped to [-ETA_MAX,
        ETA_MAX]. Equal to :code:`-inf` when the model has no zero inflation.
        """
        if not self.zeroinflation:
            return np.full((self.n, self.J), -np.inf)
        eta = (
            self.X_pi @ self.beta_pi
            + (self.V_pi @ self.gamma_pi).T
            + self.W @ self.alpha_pi
            + self.O_pi
        )
        return np.clip(eta, -ETA_MAX, ETA_MAX)

    def getPi(self):
        """n x J matrix of dropout probabilities"""
        return expit(self.getLogitPi())

    def getZeta(self):
        """log-dispersions, clipped to :data:`ZETA_BOUNDS`"""
        return np.clip(self.zeta, *ZETA_BOUNDS)

    def getTheta(self):
        """dispersion parameters :math:`\\theta_j` (inverse of overdispersion)"""
        return np.exp(self.getZeta())

    def getPenalty(self):
        """value of the regularization term subtracted from the log-likelihood"""
        pen = (
            np.sum(self.epsilon_beta_mu[:, None] * self.beta_mu**2)
            + np.sum(self.epsilon_gamma_mu[:, None] * self.gamma_mu**2)
            + self.epsilon_W * np.sum(self.W**2)
            + self.epsilon_alpha * np.sum(self.alpha_mu**2)
            + self.epsilon_zeta * np.sum((self.zeta - np.mean(self.zeta)) ** 2)
        )
        if self.zeroinflation:
            pen += (
                np.sum(self.epsilon_beta_pi[:, None] * self.beta_pi**2)
                + np.sum(self.epsilon_gamma_pi[:, None] * self.gamma_pi**2)
                + self.epsilon_alpha * np.sum(self.alpha_pi**2)
            )
        return pen / 2

    def nParams(self):
        """number of free parameters of the model"""
        n, J, K = self.n, self.J, self.K
        res = len(self.which_X_mu) * J + len(self.which_V_mu) * n + K * J + n * K + J
        if self.zeroinflation:
            res += len(self.which_X_pi) * J + len(self.which_V_pi) * n + K * J
        return res

    def freeParameters(self):
        """names of the parameters estimated by the optimizer"""
        return tuple(
            p for p in PARAMETERS if self.zeroinflation or p not in PI_PARAMETERS
        )


def zinbSim(model, seed=None):
    """
    Simulate counts from a ZINB-WaVE model

    Arguments
    ---------
    model : ZinbModel
        the model to simulate from
    seed : int or numpy.random.Generator, optional
        seed of the random number generator

    Returns
    -------
    dict
        with keys :code:`"counts"` (the simulated n x J matrix),
        :code:`"dataNB"` (the underlying negative binomial draws) and
        :code:`"dataDropouts"` (the boolean matrix of dropouts)
    """
    rng = np.random.default_rng(seed)
    mu = model.getMu()
    theta = np.broadcast_to(model.getTheta(), mu.shape)
    dataNB = rnbinom(mu.shape, size=theta, mu=mu, seed=rng)
    dataDropouts = rng.uniform(size=mu.shape) < model.getPi()
    counts = np.where(dataDropouts, 0, dataNB)
    return {"counts": counts, "dataNB": dataNB, "dataDropouts": dataDropouts}


def _firstDim(candidates):
    for a, axis in candidates:
        if a is not None:
            return np.shape(a)[axis]
    return None


def _matrix(value, shape, name, default=None):
    if value is None:
        if default is not None:
            return np.array(default, dtype=float)
        return np.zeros(shape)
    value = np.array(value, dtype=float)
    if value.ndim != 2:
        raise DimensionMismatchError(f"{name} must be a matrix, got {value.ndim} dims")
    for actual, expected in zip(value.shape, shape):
        if expected is not None and actual != expected:
            raise DimensionMismatchError(
                f"{name} has shape {value.shape}, expected "
                f"({', '.join('*' if e is None else str(e) for e in shape)})"
            )
    return value


def _vector(value, length, name):
    if value is None:
        return np.zeros(length)
    value = np.array(value, dtype=float)
    if value.shape != (length,):
        raise DimensionMismatchError(
            f"{name} has shape {value.shape}, expected ({length},)"
        )
    return value


def _columns(which, ncols, name):
    if which is None:
        return np.arange(ncols)
    which = np.asarray(which)
    if which.dtype == bool:
        if len(which) != ncols:
            raise DimensionMismatchError(
                f"{name} has length {len(which)}, expected {ncols}"
            )
        return np.nonzero(which)[0]
    which = which.astype(int).ravel()
    if np.any(which < 0) or np.any(which >= ncols):
        raise InvalidArgumentError(f"{name} refers to columns out of range")
    return which
