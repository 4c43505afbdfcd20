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

import warnings
from functools import partial

import numpy as np
from scipy.optimize import minimize

from .errors import (
    DimensionMismatchError,
    FitCancelledError,
    InvalidArgumentError,
    NonConvergenceWarning,
)
from .utils import LOGGER, parallelMap
from .utils.logging import progress
from .zinbLoglik import zinbEntryTerms, zinbEvaluate, zinbPenalizedLoglik
from .zinbModel import ZETA_BOUNDS

REGRESSION_BLOCK = ("beta_mu", "beta_pi", "gamma_mu", "gamma_pi")
FACTOR_BLOCK = ("W", "alpha_mu", "alpha_pi")


class ZinbFitResult:
    """
    Outcome of :func:`zinbOptimize`

    Attributes
    ----------
    model : ZinbModel
        the final model
    converged : bool
        whether the relative change of the penalized log-likelihood fell
        below the stopping tolerance. False means that the iteration cap was
        reached, the model is then the best estimate available.
    iterations : int
        number of outer iterations run
    loglik : ndarray
        penalized log-likelihood before the first iteration and after each
        iteration
    blockConvergence : dict
        for each block (:code:`"dispersion"`, :code:`"regression"`,
        :code:`"factors"`), one flag per outer iteration telling whether the
        inner optimizer converged
    sampleNames, featureNames : pandas.Index or None
        names of the samples and of the fitted features, set by
        :func:`~zinbwave.zinbFit.zinbFit`
    genes : ndarray or None
        indices of the fitted features among all the input features
    subsample : ndarray
        only set by :func:`~zinbwave.zinbsurf.zinbFitApprox`, indices of the
        samples the model was fitted on
    """

    def __init__(self, model, converged, iterations, loglik, blockConvergence):
        self.model = model
        self.converged = converged
        self.iterations = iterations
        self.loglik = np.asarray(loglik)
        self.blockConvergence = blockConvergence
        self.sampleNames = None
        self.featureNames = None
        self.genes = None

    @property
    def innerConverged(self):
        """whether every inner optimization converged"""
        return all(all(v) for v in self.blockConvergence.values())

    def __repr__(self):
        return (
            f"ZinbFitResult({self.model!r}, converged={self.converged}, "
            f"iterations={self.iterations}, loglik={self.loglik[-1]:.6g})"
        )


def zinbOptimize(
    model,
    Y,
    maxIters=25,
    stoppingTolerance=1e-4,
    commondispersion=False,
    maxitInner=100,
    executor=None,
    cancel=None,
    verbose=False,
):
    """
    Fit a ZINB-WaVE model by block-coordinate ascent of the penalized likelihood

    Each outer iteration optimizes, in turn, while holding the other blocks
    fixed:

    1. the dispersion parameters :math:`\\zeta`, independently for each
       feature (or jointly if :code:`commondispersion` is True);
    2. the regression coefficients :math:`\\beta_\\mu`, :math:`\\beta_\\pi`,
       :math:`\\gamma_\\mu` and :math:`\\gamma_\\pi`, jointly;
    3. the latent factors :math:`W` and loadings :math:`\\alpha_\\mu`,
       :math:`\\alpha_\\pi`, jointly, followed by
       :func:`orthogonalizeTraceNorm`.

    Each block is fitted with L-BFGS-B. Iterations stop when the relative
    change of the penalized log-likelihood is below
    :code:`stoppingTolerance`, or after :code:`maxIters` iterations.

    Arguments
    ---------
    model : ZinbModel
        the starting point, typically from :func:`zinbInitialize`
    Y : ndarray
        n x J count matrix
    maxIters : int
        maximum number of outer iterations
    stoppingTolerance : float
        relative tolerance on the penalized log-likelihood
    commondispersion : bool
        whether all features share the same dispersion
    maxitInner : int
        maximum number of iterations of each inner optimization
    executor : object, optional
        executor used to dispatch the per-feature dispersion fits, see
        :func:`~zinbwave.utils.parallelMap`. Defaults to sequential execution.
    cancel : object, optional
        an object with an :code:`is_set()` method (*e.g.* a
        :class:`threading.Event`), polled between outer iterations
    verbose : bool
        whether to log progress at INFO level

    Returns
    -------
    ZinbFitResult

    Raises
    ------
    NumericalInstabilityError
        if the likelihood becomes non-finite
    FitCancelledError
        if :code:`cancel` is set
    """
    Y = np.asarray(Y, dtype=float)
    if Y.shape != (model.n, model.J):
        raise DimensionMismatchError(
            f"count matrix has shape {Y.shape}, model expects {(model.n, model.J)}"
        )
    if int(maxIters) != maxIters or maxIters < 1:
        raise InvalidArgumentError(f"maxIters must be a positive integer, got {maxIters}")
    if stoppingTolerance < 0:
        raise InvalidArgumentError("stoppingTolerance must be non-negative")

    loglik = [zinbPenalizedLoglik(model, Y)]
    progress(verbose, f"penalized log-likelihood at start: {loglik[0]:.6f}")
    blockConvergence = {"dispersion": [], "regression": [], "factors": []}
    converged = False
    it = 0
    for it in range(1, int(maxIters) + 1):
        checkCancelled(cancel)

        model, ok = optimizeDispersion(
            model,
            Y,
            commondispersion=commondispersion,
            maxit=maxitInner,
            executor=executor,
        )
        blockConvergence["dispersion"].append(ok)
        model, ok = optimizeRegression(model, Y, maxit=maxitInner)
        blockConvergence["regression"].append(ok)
        model, ok = optimizeFactors(model, Y, maxit=maxitInner)
        blockConvergence["factors"].append(ok)

        loglik.append(zinbPenalizedLoglik(model, Y))
        progress(
            verbose, f"iteration {it}: penalized log-likelihood {loglik[-1]:.6f}"
        )
        delta = abs(loglik[-1] - loglik[-2]) / max(abs(loglik[-2]), 1e-12)
        if delta < stoppingTolerance:
            converged = True
            break

    failed = [k for k, v in blockConvergence.items() if not all(v)]
    if failed:
        LOGGER.debug(f"inner optimization did not always converge for: {', '.join(failed)}")
    if not converged:
        warnings.warn(
            f"ZINB-WaVE fit did not converge in {it} iterations",
            NonConvergenceWarning,
            stacklevel=2,
        )
    return ZinbFitResult(model, converged, it, loglik, blockConvergence)


def checkCancelled(cancel):
    if cancel is not None and cancel.is_set():
        raise FitCancelledError("fit cancelled")


def optimizeBlock(model, Y, blocks, maxit=100):
    """
    Optimize jointly the parameters named in :code:`blocks`, the others being fixed

    Returns
    -------
    ZinbModel
        the updated model. If the optimizer ends on a worse point than its
        starting point, the starting point is kept.
    bool
        whether the optimizer reported convergence
    """
    blocks = [b for b in blocks if getattr(model, b).size > 0]
    if not blocks:
        return model, True
    shapes = [getattr(model, b).shape for b in blocks]
    splits = np.cumsum([np.prod(s, dtype=int) for s in shapes])[:-1]

    def unpack(x):
        return {
            b: part.reshape(s) for b, s, part in zip(blocks, shapes, np.split(x, splits))
        }

    def objective(x):
        pll, grads = zinbEvaluate(model.update(**unpack(x)), Y, blocks)
        return -pll, -np.concatenate([grads[b].ravel() for b in blocks])

    x0 = np.concatenate([getattr(model, b).ravel() for b in blocks])
    f0, _ = objective(x0)
    res = minimize(
        objective, x0, jac=True, method="L-BFGS-B", options={"maxiter": maxit}
    )
    x = res.x if res.fun <= f0 else x0
    return model.update(**unpack(x)), bool(res.success)


def optimizeRegression(model, Y, maxit=100):
    """optimize the regression coefficients (beta and gamma) jointly"""
    blocks = [b for b in REGRESSION_BLOCK if b in model.freeParameters()]
    return optimizeBlock(model, Y, blocks, maxit=maxit)


def optimizeFactors(model, Y, maxit=100):
    """optimize the latent factors and loadings jointly, then orthogonalize them"""
    if model.K == 0:
        return model, True
    blocks = [b for b in FACTOR_BLOCK if b in model.freeParameters()]
    model, ok = optimizeBlock(model, Y, blocks, maxit=maxit)

    alpha = model.alpha_mu
    if model.zeroinflation:
        alpha = np.hstack([model.alpha_mu, model.alpha_pi])
    W, alpha = orthogonalizeTraceNorm(
        model.W, alpha, model.epsilon_W, model.epsilon_alpha
    )
    params = {"W": W, "alpha_mu": alpha[:, : model.J]}
    if model.zeroinflation:
        params["alpha_pi"] = alpha[:, model.J :]
    return model.update(**params), ok


def optimizeDispersion(
    model, Y, commondispersion=False, maxit=100, executor=None
):
    """
    Optimize the log-dispersions, the other parameters being fixed

    With :code:`commondispersion`, a single value shared by all features is
    fitted. Otherwise each feature is fitted independently, its penalty
    shrinking it towards the current mean log-dispersion. The per-feature
    problems are dispatched through :code:`executor`.
    """
    logMu = model.getLogMu()
    logitPi = model.getLogitPi()

    if commondispersion:
        z0 = np.clip(np.mean(model.zeta), *ZETA_BOUNDS)

        def objective(z):
            terms = zinbEntryTerms(
                Y, logMu, logitPi, z[0], zeroinflation=model.zeroinflation
            )
            return -np.sum(terms["loglik"]), -np.array([np.sum(terms["d_zeta"])])

        res = minimize(
            objective,
            [z0],
            jac=True,
            method="L-BFGS-B",
            bounds=[ZETA_BOUNDS],
            options={"maxiter": maxit},
        )
        z = res.x[0] if res.fun <= objective([z0])[0] else z0
        return model.update(zeta=np.full(model.J, z)), bool(res.success)

    zbar = np.mean(model.zeta)
    fn = partial(
        _optimizeDispersionFeature,
        zbar=zbar,
        epsilon=model.epsilon_zeta,
        zeroinflation=model.zeroinflation,
        maxit=maxit,
    )
    items = (
        (Y[:, j], logMu[:, j], logitPi[:, j], model.zeta[j]) for j in range(model.J)
    )
    results = parallelMap(executor, fn, items)
    zeta = np.array([r[0] for r in results])
    return model.update(zeta=zeta), all(r[1] for r in results)


def _optimizeDispersionFeature(item, zbar, epsilon, zeroinflation, maxit):
    y, logMu, logitPi, z0 = item
    z0 = float(np.clip(z0, *ZETA_BOUNDS))

    def objective(z):
        terms = zinbEntryTerms(y, logMu, logitPi, z[0], zeroinflation=zeroinflation)
        f = np.sum(terms["loglik"]) - epsilon / 2 * (z[0] - zbar) ** 2
        g = np.sum(terms["d_zeta"]) - epsilon * (z[0] - zbar)
        return -f, -np.array([g])

    res = minimize(
        objective,
        [z0],
        jac=True,
        method="L-BFGS-B",
        bounds=[ZETA_BOUNDS],
        options={"maxiter": maxit},
    )
    if res.fun <= objective([z0])[0]:
        return res.x[0], bool(res.success)
    return z0, bool(res.success)


def orthogonalizeTraceNorm(U, V, a=1.0, b=1.0):
    """
    Rebalance a matrix factorization without changing its product

    Given :math:`U` (n x K) and :math:`V` (K x J), find :math:`U'` and
    :math:`V'` with :math:`U' V' = U V` that minimize
    :math:`a \\|U'\\|^2 + b \\|V'\\|^2`. The columns of :math:`U'` are
    orthogonal, as are the rows of :math:`V'`.

    Arguments
    ---------
    U : ndarray
        n x K matrix
    V : ndarray
        K x J matrix
    a, b : float
        penalty weights of :math:`U` and :math:`V`

    Returns
    -------
    ndarray, ndarray
        :math:`U'` and :math:`V'`
    """
    U = np.asarray(U, dtype=float)
    V = np.asarray(V, dtype=float)
    K = U.shape[1]
    if K == 0:
        return U.copy(), V.copy()
    Q1, R1 = np.linalg.qr(U)
    Q2, R2 = np.linalg.qr(V.T)
    u, s, vt = np.linalg.svd(R1 @ R2.T, full_matrices=False)
    r = len(s)
    c = (b / a) ** 0.25
    sq = np.sqrt(s)
    U_new = np.zeros((U.shape[0], K))
    V_new = np.zeros((K, V.shape[1]))
    U_new[:, :r] = c * (Q1 @ u) * sq
    V_new[:r] = (sq[:, None] * (vt @ Q2.T)) / c
    return U_new, V_new
