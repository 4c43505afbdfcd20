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
from statsmodels.regression.linear_model import OLS


class ridge_fit:
    """
    Ridge regression of one or several responses on a common design.

    The penalized least-square problem

    .. math::

       \\min_X \\|A X - B\\|^2 + \\sum_k \\lambda_k X_k^2

    is solved as an ordinary least-square fit (based on the pseudo-inverse,
    see :class:`statsmodels.regression.linear_model.OLS`) of the augmented
    system :math:`[A; \\mathrm{diag}(\\sqrt{\\lambda})] X = [B; 0]`.

    Arguments
    ---------
    design : array_like
        matrix :math:`A` of the equation, of shape (nobs, p)
    b : array_like
        responses :math:`B`, either a vector of length nobs or a matrix of
        shape (nobs, q) whose columns are fitted independently
    penalty : float or array_like
        ridge penalty :math:`\\lambda`, either a scalar or a vector of length p.
        A zero entry leaves the corresponding coefficient unpenalized.
    """

    def __init__(self, design, b, penalty):
        design = np.asarray(design, dtype=float)
        b = np.asarray(b, dtype=float)
        p = design.shape[1]
        penalty = np.broadcast_to(np.asarray(penalty, dtype=float), (p,))
        if np.any(penalty < 0):
            raise ValueError("ridge penalty must be non-negative")

        self._vector = b.ndim == 1
        if self._vector:
            b = b[:, None]
        aug_design = np.vstack([design, np.diag(np.sqrt(penalty))])
        aug_b = np.vstack([b, np.zeros((p, b.shape[1]))])

        # only the pseudo-inverse of the design is taken from the OLS fit, it is
        # shared by all the responses
        model = OLS(aug_b[:, 0], aug_design)
        model.fit(method="pinv")
        self._coefficients = model.pinv_wexog @ aug_b
        self._fitted = design @ self._coefficients
        self._b = b

    @property
    def coefficients(self):
        """
        ndarray: the value found for :math:`X`
        """
        return self._coefficients[:, 0] if self._vector else self._coefficients

    @property
    def fitted_values(self):
        """
        ndarray: the value :math:`A X`
        """
        return self._fitted[:, 0] if self._vector else self._fitted

    @property
    def residuals(self):
        """
        ndarray: the residuals, *i.e.* the difference between :math:`B` and :math:`A X`
        """
        res = self._b - self._fitted
        return res[:, 0] if self._vector else res
