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
Resolution of the inputs of a fit: which count matrix, which features, which
designs

These functions are the only place where a container
(:class:`anndata.AnnData`, :class:`pandas.DataFrame` or :class:`numpy.ndarray`)
is inspected. They return plain arrays to the rest of the package.
"""

import numpy as np
import pandas as pd
from anndata import AnnData
from scipy import sparse

from .designMatrix import ExplicitMatrix, asDesignSpec, buildDesign
from .errors import DimensionMismatchError, InvalidArgumentError
from .utils import LOGGER


def assayNames(adata):
    """names of the count arrays of :code:`adata`, in order: :code:`"X"` then the layers"""
    names = [] if adata.X is None else ["X"]
    return names + list(adata.layers.keys())


def resolveAssay(adata, which_assay=None):
    """
    Select the count array of an AnnData object

    The precedence order is:

    1. :code:`which_assay`, either the name of a layer, :code:`"X"`, or an
       index into :func:`assayNames`;
    2. the layer named :code:`"counts"`;
    3. the first array (:code:`X` when present), together with a warning.

    Arguments
    ---------
    adata : anndata.AnnData
        the container
    which_assay : str or int, optional
        the explicit choice

    Returns
    -------
    ndarray
        the dense count array (samples x features)
    str
        the name of the chosen array
    str or None
        a warning message when the choice fell back to the first array
    """
    names = assayNames(adata)
    if not names:
        raise InvalidArgumentError("the AnnData object holds no data")
    warning = None
    if which_assay is None:
        if "counts" in adata.layers:
            name = "counts"
        else:
            name = names[0]
            warning = (
                f"no assay named 'counts' found, using the first assay ('{name}') instead"
            )
    elif isinstance(which_assay, (int, np.integer)) and not isinstance(
        which_assay, bool
    ):
        if not 0 <= which_assay < len(names):
            raise InvalidArgumentError(
                f"which_assay={which_assay} is out of range: there are {len(names)} assays"
            )
        name = names[which_assay]
    elif isinstance(which_assay, str):
        if which_assay not in names:
            raise InvalidArgumentError(
                f"which_assay: no assay named '{which_assay}' (available: {', '.join(names)})"
            )
        name = which_assay
    else:
        raise InvalidArgumentError("which_assay must be a string or an integer")

    mat = adata.X if name == "X" else adata.layers[name]
    if sparse.issparse(mat):
        mat = mat.toarray()
    return np.asarray(mat), name, warning


def checkCounts(Y, what="counts"):
    """
    Check that :code:`Y` is a matrix of non-negative integers with no empty
    sample or feature, and return it as a float array
    """
    Y = np.asarray(Y)
    if Y.ndim != 2:
        raise DimensionMismatchError(f"{what} must be a matrix")
    if not np.issubdtype(Y.dtype, np.number) or np.issubdtype(Y.dtype, np.complexfloating):
        raise InvalidArgumentError(f"{what} must be numeric")
    Y = Y.astype(float)
    if not np.all(np.isfinite(Y)):
        raise InvalidArgumentError(f"{what} must be finite")
    if np.any(Y < 0) or np.any(Y != np.round(Y)):
        raise InvalidArgumentError(f"{what} must be non-negative integers")
    emptySamples = np.nonzero(np.sum(Y, axis=1) == 0)[0]
    if len(emptySamples) > 0:
        raise InvalidArgumentError(
            f"sample(s) {', '.join(map(str, emptySamples[:10]))} have only 0 counts"
        )
    emptyFeatures = np.nonzero(np.sum(Y, axis=0) == 0)[0]
    if len(emptyFeatures) > 0:
        raise InvalidArgumentError(
            f"feature(s) {', '.join(map(str, emptyFeatures[:10]))} have only 0 counts"
        )
    return Y


def resolveGenes(which_genes, J, featureNames=None, featureData=None):
    """
    Turn a feature selection into an array of feature indices

    Arguments
    ---------
    which_genes : None, str, or array-like
        :code:`None` selects every feature. A string names a boolean column of
        :code:`featureData`. An array-like is either a boolean mask of length J,
        a list of integer indices, or a list of feature names.
    J : int
        the number of features
    featureNames : array-like, optional
        the names of the features
    featureData : pandas.DataFrame, optional
        the feature attribute table

    Returns
    -------
    ndarray
        indices of the selected features
    """
    if which_genes is None:
        return np.arange(J)

    if isinstance(which_genes, str):
        if featureData is None or which_genes not in featureData.columns:
            raise InvalidArgumentError(
                f"which_genes: '{which_genes}' is not a column of the feature data"
            )
        which_genes = featureData[which_genes].to_numpy()
        if which_genes.dtype != bool:
            raise InvalidArgumentError(
                "which_genes: a feature data column used as selection must be boolean"
            )
    elif np.isscalar(which_genes):
        raise InvalidArgumentError(
            "which_genes must be a boolean mask, a list of indices, a list of names, "
            "or the name of a boolean column of the feature data"
        )

    which = np.asarray(which_genes)
    if which.ndim != 1 or len(which) == 0:
        raise InvalidArgumentError("which_genes must be a non-empty vector")

    if which.dtype == bool:
        if len(which) != J:
            raise InvalidArgumentError(
                f"which_genes: boolean mask has length {len(which)}, expected {J}"
            )
        idx = np.nonzero(which)[0]
    elif np.issubdtype(which.dtype, np.integer):
        if np.any(which < 0) or np.any(which >= J):
            raise InvalidArgumentError("which_genes: indices out of range")
        idx = which.astype(int)
    elif which.dtype.kind in ("U", "S", "O"):
        if featureNames is None:
            raise InvalidArgumentError(
                "which_genes: features are not named, cannot select them by name"
            )
        pos = pd.Index(featureNames).get_indexer(which)
        if np.any(pos < 0):
            missing = which[pos < 0]
            raise InvalidArgumentError(
                f"which_genes: unknown feature(s) {', '.join(map(str, missing[:10]))}"
            )
        idx = pos
    else:
        raise InvalidArgumentError(f"which_genes: unsupported type {which.dtype}")

    if len(idx) == 0:
        raise InvalidArgumentError("which_genes selects no feature")
    if len(np.unique(idx)) != len(idx):
        raise InvalidArgumentError("which_genes selects some features several times")
    return idx


class FitInputs:
    """
    Resolved inputs of a fit

    Attributes
    ----------
    counts : ndarray
        n x J count matrix, restricted to the selected features
    X : Design
        sample-level design
    V : Design
        feature-level design, restricted to the selected features
    genes : ndarray
        indices of the selected features among all the features
    nFeatures : int
        total number of features before selection
    sampleNames, featureNames : pandas.Index
        names of the samples and of the selected features
    assay : str or None
        name of the count array, when read from an AnnData object
    """

    def __init__(self, counts, X, V, genes, nFeatures, sampleNames, featureNames, assay):
        self.counts = counts
        self.X = X
        self.V = V
        self.genes = genes
        self.nFeatures = nFeatures
        self.sampleNames = sampleNames
        self.featureNames = featureNames
        self.assay = assay

    def subsetOffset(self, O, name):
        """restrict an n x J offset matrix to the selected features"""
        if O is None:
            return None
        O = np.asarray(O, dtype=float)
        n = self.counts.shape[0]
        if O.shape == (n, self.nFeatures):
            return O[:, self.genes]
        if O.shape == self.counts.shape:
            return O
        raise DimensionMismatchError(
            f"{name} has shape {O.shape}, expected {(n, self.nFeatures)}"
        )


def prepareInputs(
    Y,
    X=None,
    V=None,
    which_assay=None,
    which_genes=None,
    sampleData=None,
    featureData=None,
):
    """
    Resolve the count matrix, the feature selection and the designs of a fit

    Arguments
    ---------
    Y : anndata.AnnData, pandas.DataFrame or ndarray
        the counts, samples in rows and features in columns
    X, V : see :func:`~zinbwave.designMatrix.asDesignSpec`
        covariate specifications, resolved against :code:`sampleData` and
        :code:`featureData`
    which_assay : str or int, optional
        see :func:`resolveAssay`, only for AnnData inputs
    which_genes : optional
        see :func:`resolveGenes`
    sampleData, featureData : pandas.DataFrame, optional
        sample and feature attribute tables. For AnnData inputs they default
        to :code:`obs` and :code:`var`.

    Returns
    -------
    FitInputs
    """
    assay = None
    if isinstance(Y, AnnData):
        if not Y.obs_names.is_unique:
            raise InvalidArgumentError("sample names (obs_names) must be unique")
        if not Y.var_names.is_unique:
            raise InvalidArgumentError("feature names (var_names) must be unique")
        counts, assay, warning = resolveAssay(Y, which_assay)
        if warning is not None:
            LOGGER.warning(warning)
        sampleNames, featureNames = Y.obs_names, Y.var_names
        sampleData = Y.obs if sampleData is None else sampleData
        featureData = Y.var if featureData is None else featureData
    elif isinstance(Y, pd.DataFrame):
        if which_assay is not None:
            raise InvalidArgumentError("which_assay is only meaningful for AnnData inputs")
        counts = Y.to_numpy()
        sampleNames, featureNames = Y.index, Y.columns
    else:
        if which_assay is not None:
            raise InvalidArgumentError("which_assay is only meaningful for AnnData inputs")
        counts = np.asarray(Y)
        if counts.ndim != 2:
            raise DimensionMismatchError("counts must be a matrix")
        sampleNames = pd.RangeIndex(counts.shape[0])
        featureNames = None
        if featureData is not None:
            featureNames = featureData.index

    if counts.ndim != 2:
        raise DimensionMismatchError("counts must be a matrix")
    n, J = counts.shape
    for table, size, what in ((sampleData, n, "sample"), (featureData, J, "feature")):
        if table is not None and table.shape[0] != size:
            raise DimensionMismatchError(
                f"{what} data has {table.shape[0]} rows, expected {size}"
            )

    genes = resolveGenes(which_genes, J, featureNames, featureData)
    counts = checkCounts(counts[:, genes])
    if featureData is not None:
        featureData = featureData.iloc[genes]
    if featureNames is not None:
        featureNames = pd.Index(featureNames)[genes]

    V = asDesignSpec(V)
    if isinstance(V, ExplicitMatrix) and V.matrix.shape[0] == J != len(genes):
        V = ExplicitMatrix(V.matrix[genes], V.names)
    Xd = buildDesign(X, sampleData, n, "X")
    Vd = buildDesign(V, featureData, len(genes), "V")
    return FitInputs(
        counts, Xd, Vd, genes, J, pd.Index(sampleNames), featureNames, assay
    )
