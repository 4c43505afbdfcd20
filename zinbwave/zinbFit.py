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

from .assays import prepareInputs
from .errors import InvalidArgumentError
from .utils.logging import progress
from .zinbInitialize import zinbInitialize
from .zinbOptimize import zinbOptimize


def zinbFit(
    Y,
    X=None,
    V=None,
    K=None,
    which_assay=None,
    which_genes=None,
    commondispersion=False,
    zeroinflation=True,
    epsilon=None,
    O_mu=None,
    O_pi=None,
    which_X_mu=None,
    which_X_pi=None,
    which_V_mu=None,
    which_V_pi=None,
    maxIters=25,
    stoppingTolerance=1e-4,
    seed=None,
    executor=None,
    cancel=None,
    verbose=False,
    sampleData=None,
    featureData=None,
    **penalties,
):
    """
    Fit a ZINB-WaVE model to a count matrix

    This is the combination of :func:`~zinbwave.zinbInitialize.zinbInitialize`
    and :func:`~zinbwave.zinbOptimize.zinbOptimize`, after resolution of the
    inputs (:func:`~zinbwave.assays.prepareInputs`).

    Arguments
    ---------
    Y : anndata.AnnData, pandas.DataFrame or ndarray
        the counts, one row per sample and one column per feature
    X : str, array-like or DesignSpec, optional
        sample-level covariates: a formula evaluated on :code:`obs`, the name
        of a column of :code:`obs`, or a matrix. Defaults to an intercept.
    V : str, array-like or DesignSpec, optional
        feature-level covariates, evaluated on :code:`var`. Defaults to an
        intercept.
    K : int
        number of latent factors, required. K=0 gives a plain regression model.
    which_assay : str or int, optional
        which count array of an AnnData object to use, see
        :func:`~zinbwave.assays.resolveAssay`
    which_genes : optional
        which features to use, see :func:`~zinbwave.assays.resolveGenes`
    commondispersion : bool
        whether all features share the same dispersion
    zeroinflation : bool
        if False, fit a negative binomial model without dropouts
    epsilon : float, optional
        regularization scale, defaults to the number of features
    O_mu, O_pi : ndarray, optional
        offsets of the mean and dropout predictors
    which_X_mu, which_X_pi, which_V_mu, which_V_pi : array-like, optional
        columns of X and V entering the mean and dropout predictors
    maxIters : int
        maximum number of outer iterations
    stoppingTolerance : float
        relative tolerance on the penalized log-likelihood
    seed : int, optional
        seed of the initialization
    executor : object, optional
        executor for the per-feature computations
    cancel : object, optional
        cancellation flag with an :code:`is_set()` method
    verbose : bool
        whether to log progress at INFO level
    sampleData, featureData : pandas.DataFrame, optional
        attribute tables for the formulas, when :code:`Y` is not an AnnData
        object
    **penalties
        per-block penalty overrides, see :class:`~zinbwave.zinbModel.ZinbModel`

    Returns
    -------
    ZinbFitResult
        the fit, with :code:`sampleNames` and :code:`featureNames` attached
    """
    _checkK(K, allowZero=True)
    inputs = prepareInputs(
        Y,
        X=X,
        V=V,
        which_assay=which_assay,
        which_genes=which_genes,
        sampleData=sampleData,
        featureData=featureData,
    )
    n, J = inputs.counts.shape
    progress(verbose, f"fitting a ZINB-WaVE model with K={K} on {n} samples and {J} features")

    model = zinbInitialize(
        inputs.counts,
        X=inputs.X,
        V=inputs.V,
        O_mu=inputs.subsetOffset(O_mu, "O_mu"),
        O_pi=inputs.subsetOffset(O_pi, "O_pi"),
        K=K,
        epsilon=epsilon,
        which_X_mu=which_X_mu,
        which_X_pi=which_X_pi,
        which_V_mu=which_V_mu,
        which_V_pi=which_V_pi,
        zeroinflation=zeroinflation,
        seed=seed,
        **penalties,
    )
    result = zinbOptimize(
        model,
        inputs.counts,
        maxIters=maxIters,
        stoppingTolerance=stoppingTolerance,
        commondispersion=commondispersion,
        executor=executor,
        cancel=cancel,
        verbose=verbose,
    )
    result.sampleNames = inputs.sampleNames
    result.featureNames = inputs.featureNames
    result.genes = inputs.genes
    return result


def _checkK(K, allowZero=True):
    if K is None:
        raise InvalidArgumentError("argument K is missing")
    if isinstance(K, bool) or not isinstance(K, (int, np.integer)):
        raise InvalidArgumentError(f"K must be an integer, got {K!r}")
    if K < 0 or (K == 0 and not allowZero):
        raise InvalidArgumentError(f"K must be >= {0 if allowZero else 1}, got {K}")
