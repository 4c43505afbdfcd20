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
from anndata import AnnData

from .assays import prepareInputs
from .errors import DimensionMismatchError, InvalidArgumentError
from .fittedValues import (
    computeDevianceResiduals,
    computeNormalizedValues,
    computeObservationalWeights,
)
from .utils.logging import progress
from .zinbFit import _checkK, zinbFit
from .zinbModel import ZinbModel
from .zinbOptimize import ZinbFitResult


def zinbwave(
    adata,
    K=None,
    X=None,
    V=None,
    which_assay=None,
    which_genes=None,
    epsilon=None,
    zeroinflation=True,
    commondispersion=False,
    observationalWeights=False,
    normalizedValues=False,
    residuals=False,
    fitted_model=None,
    maxIters=25,
    stoppingTolerance=1e-4,
    seed=None,
    executor=None,
    cancel=None,
    verbose=False,
):
    """
    Zero-inflated negative binomial based wanted variation extraction

    Fit a ZINB-WaVE model to the counts of an AnnData object and store the
    latent factors and, on demand, the normalized values, the deviance
    residuals and the observational weights.

    The model for the count :math:`Y_{ij}` of feature :math:`j` in sample
    :math:`i` is a zero-inflated negative binomial of mean :math:`\\mu_{ij}`,
    dropout probability :math:`\\pi_{ij}` and dispersion :math:`\\theta_j`,
    with

    .. math::

       \\log \\mu &= X \\beta_\\mu + (V \\gamma_\\mu)^T + W \\alpha_\\mu

       \\mathrm{logit}\\, \\pi &= X \\beta_\\pi + (V \\gamma_\\pi)^T + W \\alpha_\\pi

    where :math:`X` and :math:`V` are known sample-level and feature-level
    covariates, and :math:`W` (n x K) are the unknown latent factors. The
    parameters are estimated by penalized maximum likelihood, see
    :func:`~zinbwave.zinbOptimize.zinbOptimize`.

    Arguments
    ---------
    adata : anndata.AnnData
        the counts, samples in :code:`obs` and features in :code:`var`
    K : int
        number of latent factors, required unless :code:`fitted_model` is
        given. K=0 gives a plain regression model.
    X : str, array-like or DesignSpec, optional
        sample-level covariates, a formula on :code:`obs`, a column name of
        :code:`obs`, or a matrix. Defaults to an intercept.
    V : str, array-like or DesignSpec, optional
        feature-level covariates, a formula on :code:`var`, a column name of
        :code:`var`, or a matrix. Defaults to an intercept.
    which_assay : str or int, optional
        count array to use, see :func:`~zinbwave.assays.resolveAssay`
    which_genes : optional
        features to use for the fit, see :func:`~zinbwave.assays.resolveGenes`
    epsilon : float, optional
        regularization scale, defaults to the number of features used
    zeroinflation : bool
        if False, fit a negative binomial model without dropouts
    commondispersion : bool
        whether all features share the same dispersion
    observationalWeights, normalizedValues, residuals : bool
        whether to compute and store the corresponding layer
    fitted_model : ZinbFitResult or ZinbModel, optional
        a model already fitted on these data. If given, no fit is performed.
    maxIters, stoppingTolerance, seed, executor, cancel, verbose
        see :func:`~zinbwave.zinbFit.zinbFit`

    Returns
    -------
    anndata.AnnData
        a copy of :code:`adata` with

        - the latent factors in :code:`obsm["zinbwave"]`,
        - the requested layers :code:`"normalizedValues"`, :code:`"residuals"`
          and :code:`"weights"`, whose columns for the features not selected
          by :code:`which_genes` are NaN,
        - a summary of the fit in :code:`uns["zinbwave"]`.
    """
    if not isinstance(adata, AnnData):
        raise InvalidArgumentError("zinbwave expects an AnnData object")
    if fitted_model is None:
        _checkK(K, allowZero=True)
    inputs = prepareInputs(
        adata, X=X, V=V, which_assay=which_assay, which_genes=which_genes
    )
    n, J = inputs.counts.shape

    if fitted_model is None:
        result = zinbFit(
            inputs.counts,
            X=inputs.X,
            V=inputs.V,
            K=K,
            commondispersion=commondispersion,
            zeroinflation=zeroinflation,
            epsilon=epsilon,
            maxIters=maxIters,
            stoppingTolerance=stoppingTolerance,
            seed=seed,
            executor=executor,
            cancel=cancel,
            verbose=verbose,
        )
        model = result.model
        summary = {
            "converged": result.converged,
            "iterations": result.iterations,
            "loglik": float(result.loglik[-1]),
        }
    else:
        model = fitted_model.model if isinstance(fitted_model, ZinbFitResult) else fitted_model
        if not isinstance(model, ZinbModel):
            raise InvalidArgumentError("fitted_model must be a ZinbFitResult or a ZinbModel")
        if (model.n, model.J) != (n, J):
            raise DimensionMismatchError(
                f"fitted_model has {model.n} samples and {model.J} features, "
                f"the data have {n} samples and {J} selected features"
            )
        summary = {}

    res = adata.copy()
    res.obsm["zinbwave"] = np.array(model.W)
    summary.update({"K": model.K, "assay": inputs.assay})
    res.uns["zinbwave"] = summary

    layers = {}
    if normalizedValues:
        progress(verbose, "computing normalized values")
        layers["normalizedValues"] = computeNormalizedValues(model)
    if residuals:
        progress(verbose, "computing deviance residuals")
        layers["residuals"] = computeDevianceResiduals(model, inputs.counts)
    if observationalWeights:
        progress(verbose, "computing observational weights")
        layers["weights"] = computeObservationalWeights(model, inputs.counts)
    for name, values in layers.items():
        full = np.full((n, inputs.nFeatures), np.nan)
        full[:, inputs.genes] = values
        res.layers[name] = full
    return res
