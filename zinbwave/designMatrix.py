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
Construction of the sample-level (X) and feature-level (V) design matrices

A covariate specification is one of:

- :class:`InterceptOnly`, the default,
- :class:`ColumnReference`, a single named column of an attribute table,
- :class:`FormulaDesign`, a patsy formula evaluated against an attribute table,
- :class:`ExplicitMatrix`, a numeric matrix supplied by the caller.

:func:`asDesignSpec` converts the user-facing values (:code:`None`, strings,
arrays, data frames, :class:`patsy.DesignMatrix`) into one of the above, and
:func:`buildDesign` resolves it into a :class:`Design`.
"""

import ast

import numpy as np
import pandas as pd
import patsy

from .errors import DimensionMismatchError, InvalidDesignError

# names that patsy makes available when evaluating a formula
_PATSY_NAMES = {
    "C",
    "I",
    "Q",
    "np",
    "center",
    "standardize",
    "scale",
    "Treatment",
    "Sum",
    "Poly",
    "Helmert",
    "Diff",
    "bs",
    "cr",
    "cc",
    "te",
}


class Design:
    """
    A numeric design matrix together with its column names

    Attributes
    ----------
    matrix : ndarray
        the design matrix, one row per sample (X) or per feature (V)
    names : list of str
        the column names
    intercept : ndarray of bool
        which columns are intercepts (constant and equal to 1)
    """

    def __init__(self, matrix, names, intercept=None):
        self.matrix = np.asarray(matrix, dtype=float)
        self.names = list(names)
        if intercept is None:
            intercept = interceptColumns(self.matrix)
        self.intercept = np.asarray(intercept, dtype=bool)

    @property
    def shape(self):
        return self.matrix.shape

    def subset(self, rows):
        """the design restricted to :code:`rows`, keeping the intercept flags"""
        return Design(self.matrix[rows], self.names, self.intercept)

    def __repr__(self):
        return f"Design({self.shape[0]} x {self.shape[1]}: {', '.join(self.names)})"


def interceptColumns(matrix):
    """boolean mask of the columns of :code:`matrix` that are all ones"""
    matrix = np.asarray(matrix)
    if matrix.shape[0] == 0:
        return np.zeros(matrix.shape[1], dtype=bool)
    return np.all(matrix == 1, axis=0)


class DesignSpec:
    """base class of the covariate specifications"""

    def resolve(self, data, nrows, what):
        """
        Build the design matrix

        Arguments
        ---------
        data : pandas.DataFrame or None
            the attribute table (:code:`obs` for X, :code:`var` for V)
        nrows : int
            expected number of rows (n for X, J for V)
        what : str
            either :code:`"X"` or :code:`"V"`, used in error messages

        Returns
        -------
        Design
        """
        raise NotImplementedError


class InterceptOnly(DesignSpec):
    def resolve(self, data, nrows, what):
        return Design(np.ones((nrows, 1)), ["Intercept"])

    def __repr__(self):
        return "InterceptOnly()"


class ColumnReference(DesignSpec):
    """a single column of the attribute table, plus an intercept"""

    def __init__(self, name):
        self.name = name

    def resolve(self, data, nrows, what):
        table = _tableName(what)
        if data is None or self.name not in data.columns:
            raise InvalidDesignError(
                f"{what}: '{self.name}' is not among the variables in {table}"
            )
        return FormulaDesign(f"~ Q({self.name!r})").resolve(data, nrows, what)

    def __repr__(self):
        return f"ColumnReference({self.name!r})"


class FormulaDesign(DesignSpec):
    """a patsy formula, *e.g.* :code:`"~ batch + depth"`"""

    def __init__(self, formula):
        self.formula = formula

    def resolve(self, data, nrows, what):
        table = _tableName(what)
        try:
            desc = patsy.ModelDesc.from_formula(self.formula)
        except patsy.PatsyError as e:
            raise InvalidDesignError(
                f"{what}: could not parse formula {self.formula!r}: {e}"
            ) from e
        if desc.lhs_termlist:
            raise InvalidDesignError(
                f"{what}: formula {self.formula!r} should be one-sided"
            )

        if data is None:
            data = pd.DataFrame(index=range(nrows))
        missing = formulaVariables(desc) - set(data.columns)
        if missing:
            raise InvalidDesignError(
                f"{what}: formula {self.formula!r} refers to {', '.join(sorted(missing))}, "
                f"which are not among the variables in {table}"
            )

        try:
            dm = patsy.dmatrix(
                desc,
                data,
                NA_action="raise",
                eval_env=patsy.EvalEnvironment([{"np": np}]),
            )
        except patsy.PatsyError as e:
            raise InvalidDesignError(
                f"{what}: could not evaluate formula {self.formula!r} on {table}: {e}"
            ) from e

        if dm.shape[0] != nrows:
            raise DimensionMismatchError(
                f"{what}: design matrix has {dm.shape[0]} rows, expected {nrows}"
            )
        return Design(np.asarray(dm), dm.design_info.column_names)

    def __repr__(self):
        return f"FormulaDesign({self.formula!r})"


class ExplicitMatrix(DesignSpec):
    """a numeric matrix supplied by the caller, used as-is"""

    def __init__(self, matrix, names=None):
        if isinstance(matrix, pd.DataFrame):
            names = [str(c) for c in matrix.columns] if names is None else names
            matrix = matrix.to_numpy()
        elif isinstance(matrix, patsy.DesignMatrix):
            names = matrix.design_info.column_names if names is None else names
        matrix = np.asarray(matrix)
        if matrix.ndim == 1:
            matrix = matrix[:, None]
        if matrix.ndim != 2:
            raise InvalidDesignError("a design matrix must be two-dimensional")
        if not np.issubdtype(matrix.dtype, np.number):
            raise InvalidDesignError("a design matrix must be numeric")
        if not np.all(np.isfinite(matrix)):
            raise InvalidDesignError("a design matrix must only hold finite values")
        if names is None:
            names = [f"V{i + 1}" for i in range(matrix.shape[1])]
        self.matrix = matrix.astype(float)
        self.names = list(names)

    def resolve(self, data, nrows, what):
        expected = "samples" if what == "X" else "features"
        if self.matrix.shape[0] != nrows:
            raise DimensionMismatchError(
                f"{what} has {self.matrix.shape[0]} rows, but there are {nrows} {expected}"
            )
        return Design(self.matrix, self.names)

    def __repr__(self):
        return f"ExplicitMatrix({self.matrix.shape[0]} x {self.matrix.shape[1]})"


def asDesignSpec(obj):
    """
    Convert a user-supplied covariate specification into a :class:`DesignSpec`

    Arguments
    ---------
    obj : None, str, array-like, pandas.DataFrame or DesignSpec
        :code:`None` gives an intercept-only design. A string starting with
        :code:`~` is a formula, any other string names a column of the
        attribute table. Arrays and data frames are used as-is.
    """
    if obj is None:
        return InterceptOnly()
    if isinstance(obj, DesignSpec):
        return obj
    if isinstance(obj, Design):
        return ExplicitMatrix(obj.matrix, names=obj.names)
    if isinstance(obj, str):
        s = obj.strip()
        if s.startswith("~"):
            return FormulaDesign(s)
        if s == "":
            raise InvalidDesignError("empty covariate specification")
        return ColumnReference(s)
    if isinstance(obj, (np.ndarray, pd.DataFrame, pd.Series, list, tuple)):
        if isinstance(obj, pd.Series):
            return ExplicitMatrix(obj.to_numpy(), names=[str(obj.name)])
        return ExplicitMatrix(obj)
    raise InvalidDesignError(
        f"unsupported covariate specification of type {type(obj).__name__}"
    )


def buildDesign(spec, data, nrows, what):
    """
    Build a design matrix from a covariate specification

    Arguments
    ---------
    spec : None, str, array-like or DesignSpec
        see :func:`asDesignSpec`
    data : pandas.DataFrame or None
        the attribute table (samples for X, features for V)
    nrows : int
        the expected number of rows
    what : str
        :code:`"X"` or :code:`"V"`

    Returns
    -------
    Design
    """
    return asDesignSpec(spec).resolve(data, nrows, what)


def formulaVariables(desc):
    """names of the data variables a patsy formula refers to"""
    found = set()
    for term in desc.rhs_termlist:
        for factor in term.factors:
            code = getattr(factor, "code", None)
            if code is None:
                continue
            found |= _codeVariables(code)
    return found


def _codeVariables(code):
    tree = ast.parse(code, mode="eval")
    callees = set()
    names = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Call):
            if isinstance(node.func, ast.Name):
                callees.add(id(node.func))
                if node.func.id == "Q" and node.args:
                    arg = node.args[0]
                    if isinstance(arg, ast.Constant) and isinstance(arg.value, str):
                        names.add(arg.value)
        elif isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
            # module attributes, e.g. np.log
            callees.add(id(node.value))
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and id(node) not in callees:
            if node.id not in _PATSY_NAMES:
                names.add(node.id)
    return names


def _tableName(what):
    return "obs" if what == "X" else "var"
