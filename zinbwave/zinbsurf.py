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

"""
Large-scale approximation: fit on a subsample of the samples, then project
the remaining samples on the learned latent space
"""

import math
from functools import partial

import numpy as np
from scipy.optimize import minimize

from .assays import prepareInputs
from .errors import InvalidArgumentError
from .utils import parallelMap
from .utils.logging import progress
from .zinbFit import _checkK
from .zinbInitialize import zinbInitialize
from .zinbLoglik import zinbEntryTerms
from .zinbModel import ETA_MAX
from .zinbOptimize import checkCancelled, zinbOptimize


def zinbFitApprox(
    Y,
    X=None,
    V=None,
    K=None,
    prop_fit=0.1,
    which_assay=None,
    which_genes=None,
    commondispersion=False,
    zeroinflation=True,
    epsilon=None,
    O_mu=None,
    O_pi=None,
    maxIters=25,
    stoppingTolerance=1e-4,
    seed=None,
    executor=None,
    cancel=None,
    verbose=False,
    sampleData=None,
    featureData=None,
):
    """
    Approximate ZINB-WaVE fit, for large numbers of samples

    A random subsample of :code:`ceil(n * prop_fit)` samples is fitted with
    :func:`~zinbwave.zinbOptimize.zinbOptimize`. The latent factors of the
    other samples are then estimated by :func:`projectSamples`, holding all
    the feature-level parameters fixed.

    Arguments
    ---------
    Y : anndata.AnnData, pandas.DataFrame or ndarray
        the counts, one row per sample and one column per feature
    K : int
        number of latent factors
    prop_fit : float
        proportion of the samples used for the fit, in (0,1)
    seed : int, optional
        seed of the subsampling and of the initialization
    X, V, which_assay, which_genes, commondispersion, zeroinflation, epsilon, O_mu, O_pi, maxIters, stoppingTolerance, executor, cancel, verbose, sampleData, featureData
        see :func:`~zinbwave.zinbFit.zinbFit`. The executor dispatches both
        the per-feature dispersion fits and the per-sample projections.

    Returns
    -------
    ndarray
        n x K latent factors of all the samples, in the original order
    ZinbFitResult
        the fit on the subsample. Its :code:`subsample` attribute holds the
        indices of the fitted samples.
    """
    _checkK(K, allowZero=True)
    if not 0 < prop_fit < 1:
        raise InvalidArgumentError(f"`prop_fit` must be in (0,1), got {prop_fit}")

    inputs = prepareInputs(
        Y,
        X=X,
        V=V,
        which_assay=which_assay,
        which_genes=which_genes,
        sampleData=sampleData,
        featureData=featureData,
    )
    counts = inputs.counts
    n, J = counts.shape
    O_mu = inputs.subsetOffset(O_mu, "O_mu")
    O_pi = inputs.subsetOffset(O_pi, "O_pi")
    O_mu = np.zeros((n, J)) if O_mu is None else O_mu
    O_pi = np.zeros((n, J)) if O_pi is None else O_pi
    Xmat = inputs.X.matrix

    rng = np.random.default_rng(seed)
    nfit = math.ceil(n * prop_fit)
    fitted = np.sort(rng.choice(n, size=nfit, replace=False))
    projected = np.setdiff1d(np.arange(n), fitted)
    progress(
        verbose,
        f"fitting {nfit} samples out of {n}, projecting the {len(projected)} others",
    )

    model = zinbInitialize(
        counts[fitted],
        X=inputs.X.subset(fitted),
        V=inputs.V,
        O_mu=O_mu[fitted],
        O_pi=O_pi[fitted],
        K=K,
        epsilon=epsilon,
        zeroinflation=zeroinflation,
        seed=int(rng.integers(2**31 - 1)),
    )
    result = zinbOptimize(
        model,
        counts[fitted],
        maxIters=maxIters,
        stoppingTolerance=stoppingTolerance,
        commondispersion=commondispersion,
        executor=executor,
        cancel=cancel,
        verbose=verbose,
    )
    checkCancelled(cancel)

    W = np.zeros((n, K))
    W[fitted] = result.model.W
    if len(projected) > 0 and K > 0:
        W[projected] = projectSamples(
            result.model,
            counts[projected],
            Xmat[projected],
            O_mu=O_mu[projected],
            O_pi=O_pi[projected],
            executor=executor,
        )["W"]

    result.sampleNames = inputs.sampleNames
    result.featureNames = inputs.featureNames
    result.genes = inputs.genes
    result.subsample = fitted
    return W, result


def projectSamples(model, Y, X, O_mu=None, O_pi=None, maxit=100, executor=None):
    """
    Estimate the sample-level parameters of new samples

    For each sample, its latent factors (a row of :math:`W`) and its
    coefficients for the feature-level covariates (a column of
    :math:`\\gamma_\\mu` and :math:`\\gamma_\\pi`) are fitted by penalized
    maximum likelihood, all the feature-level parameters of :code:`model`
    being fixed. Samples are independent of each other and are dispatched
    through :code:`executor`.

    Arguments
    ---------
    model : ZinbModel
        a fitted model, providing :math:`\\beta`, :math:`\\alpha`,
        :math:`\\zeta` and the penalties
    Y : ndarray
        m x J counts of the new samples
    X : ndarray
        m x M sample-level design of the new samples, with the same columns as
        :code:`model.X`
    O_mu, O_pi : ndarray, optional
        m x J offsets of the new samples
    maxit : int
        maximum number of iterations of each optimization
    executor : object, optional
        see :func:`~zinbwave.utils.parallelMap`

    Returns
    -------
    dict
        :code:`"W"` (m x K), :code:`"gamma_mu"` and :code:`"gamma_pi"` (L x m),
        and :code:`"converged"`, one flag per sample
    """
    Y = np.asarray(Y, dtype=float)
    X = np.asarray(X, dtype=float)
    m = Y.shape[0]
    if O_mu is None:
        O_mu = np.zeros(Y.shape)
    if O_pi is None:
        O_pi = np.zeros(Y.shape)

    fixed_mu = X[:, model.which_X_mu] @ model.beta_mu + O_mu
    fixed_pi = X[:, model.which_X_pi] @ model.beta_pi + O_pi
    # start from the average sample of the fit
    gamma_mu0 = np.mean(model.gamma_mu, axis=1)
    gamma_pi0 = np.mean(model.gamma_pi, axis=1)

    fn = partial(
        _projectSample,
        V_mu=model.V_mu,
        V_pi=model.V_pi,
        alpha_mu=model.alpha_mu,
        alpha_pi=model.alpha_pi,
        zeta=model.getZeta(),
        epsilon_W=model.epsilon_W,
        epsilon_gamma_mu=model.epsilon_gamma_mu,
        epsilon_gamma_pi=model.epsilon_gamma_pi,
        zeroinflation=model.zeroinflation,
        x0=np.concatenate([np.zeros(model.K), gamma_mu0, gamma_pi0]),
        maxit=maxit,
    )
    items = ((Y[i], fixed_mu[i], fixed_pi[i]) for i in range(m))
    results = parallelMap(executor, fn, items)

    K, L_mu = model.K, len(model.which_V_mu)
    est = np.array([r[0] for r in results]).reshape(m, -1)
    return {
        "W": est[:, :K],
        "gamma_mu": est[:, K : K + L_mu].T,
        "gamma_pi": est[:, K + L_mu :].T,
        "converged": np.array([r[1] for r in results]),
    }


def _projectSample(
    item,
    V_mu,
    V_pi,
    alpha_mu,
    alpha_pi,
    zeta,
    epsilon_W,
    epsilon_gamma_mu,
    epsilon_gamma_pi,
    zeroinflation,
    x0,
    maxit,
):
    y, fixed_mu, fixed_pi = item
    K, L_mu = alpha_mu.shape[0], V_mu.shape[1]

    def objective(x):
        w, g_mu, g_pi = x[:K], x[K : K + L_mu], x[K + L_mu :]
        raw_mu = fixed_mu + V_mu @ g_mu + w @ alpha_mu
        logMu = np.clip(raw_mu, -ETA_MAX, ETA_MAX)
        if zeroinflation:
            raw_pi = fixed_pi + V_pi @ g_pi + w @ alpha_pi
            logitPi = np.clip(raw_pi, -ETA_MAX, ETA_MAX)
        else:
            logitPi = None
        terms = zinbEntryTerms(y, logMu, logitPi, zeta, zeroinflation=zeroinflation)
        G_mu = np.where(np.abs(logMu) >= ETA_MAX, 0.0, terms["d_logMu"])

        f = (
            np.sum(terms["loglik"])
            - epsilon_W / 2 * np.sum(w**2)
            - np.sum(epsilon_gamma_mu * g_mu**2) / 2
        )
        grad_w = alpha_mu @ G_mu - epsilon_W * w
        grad_mu = V_mu.T @ G_mu - epsilon_gamma_mu * g_mu
        if zeroinflation:
            G_pi = np.where(np.abs(logitPi) >= ETA_MAX, 0.0, terms["d_logitPi"])
            f -= np.sum(epsilon_gamma_pi * g_pi**2) / 2
            grad_w = grad_w + alpha_pi @ G_pi
            grad_pi = V_pi.T @ G_pi - epsilon_gamma_pi * g_pi
        else:
            grad_pi = np.zeros_like(g_pi)
        return -f, -np.concatenate([grad_w, grad_mu, grad_pi])

    res = minimize(
        objective, x0, jac=True, method="L-BFGS-B", options={"maxiter": maxit}
    )
    if res.fun <= objective(x0)[0]:
        return res.x, bool(res.success)
    return x0, bool(res.success)


def zinbsurf(adata, K=None, prop_fit=0.1, **kwargs):
    """
    Approximate ZINB-WaVE dimensionality reduction of an AnnData object

    Arguments
    ---------
    adata : anndata.AnnData
        the counts, samples in :code:`obs` and features in :code:`var`
    K : int
        number of latent factors
    prop_fit : float
        proportion of the samples used for the fit, in (0,1)
    **kwargs
        see :func:`zinbFitApprox`

    Returns
    -------
    anndata.AnnData
        a copy of :code:`adata`, with the latent factors in
        :code:`obsm["zinbwave"]` and a summary of the fit in
        :code:`uns["zinbwave"]`
    """
    W, result = zinbFitApprox(adata, K=K, prop_fit=prop_fit, **kwargs)
    res = adata.copy()
    res.obsm["zinbwave"] = W
    res.uns["zinbwave"] = {
        "converged": result.converged,
        "iterations": result.iterations,
        "loglik": float(result.loglik[-1]),
        "prop_fit": prop_fit,
        "subsample": res.obs_names[result.subsample].to_list(),
    }
    return res
