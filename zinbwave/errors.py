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

"""Exceptions and warnings raised while fitting ZINB-WaVE models"""


class InvalidDesignError(ValueError):
    """a covariate specification refers to an unknown variable or is malformed"""


class DimensionMismatchError(ValueError):
    """the shapes of the inputs are inconsistent with each other"""


class InvalidArgumentError(ValueError):
    """a scalar option or a selector is out of its allowed range"""


class NumericalInstabilityError(ArithmeticError):
    """the likelihood or one of its gradients is not finite

    This is fatal: the fit is aborted and no partial result is returned.
    """


class FitCancelledError(RuntimeError):
    """the fit was cancelled by the caller before completion"""


class NonConvergenceWarning(UserWarning):
    """the optimizer stopped before reaching its convergence criterion

    The best available estimate is still returned.
    """
