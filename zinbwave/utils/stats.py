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
from scipy.special import expit as _expit
from scipy.stats import nbinom


def rnbinom(n, size, mu, seed=None):
    r"""mimic R rnbinom function, to draw samples from a Negative Binomial distribution.

    The (:math:`size`, :math:`p`) parameterization used in R is the same as in scipy.stats:
    :math:`p = 1 / (1 + \mu/size) = size / (size + \mu)`.

    Arguments
    ---------
    n : int or tuple of ints
        shape of the output. If n = (n1, n2, ..., np) then n1*n2*...*np random samples are drawn.
    size : float or array-like
        size parameter of the Negative Binomial distribution.
        all values must be positive
    mu : float or array-like
        mean parameter of the Negative Binomial distribution
        all values must be positive
    seed : int or numpy.random.Generator, optional
        pass a seed to the underlying RNG. If `None`, then the RNG is seeded
        using unpredictable entropy from the system.
    """
    size = np.asarray(size, dtype=float)
    mu = np.asarray(mu, dtype=float)
    p = size / (size + mu)
    return nbinom(size, p).rvs(n, random_state=seed)


@np.errstate(divide="ignore")
def dnbinom_mu(x, size, mu, log=False):
    """mimic R dnbinom_mu function, to compute the density function of a Negative Binomial distribution.

    The (size, prob) parameterization used in R dnbinom is the same as in scipy.stats:
        mu = size * (1 - prob) / prob = size * (1/prob - 1)
    so
        mu / size + 1 = 1/prob
    hence
        prob = 1 / (1 + mu/size) = size / (size + mu)

    Arguments
    ---------
    x : array-like
        points where the density function is evaluated
    size : float or array-like
        size parameter of the Negative Binomial distribution.
        all values must be positive
    mu : float or array-like
        mean parameter of the Negative Binomial distribution
        all values must be positive
    log: bool, optional
        switch to output the density in normal (log=False) or log (log=True) scale
    """
    size = np.asarray(size, dtype=float)
    mu = np.asarray(mu, dtype=float)
    p = size / (size + mu)
    if log:
        return nbinom.logpmf(x, n=size, p=p)
    else:
        return nbinom.pmf(x, n=size, p=p)


def expit(x):
    """inverse of the logit link, :math:`1 / (1 + e^{-x})`"""
    return _expit(x)


def log1pexp(x):
    """numerically stable :math:`\\log(1 + e^x)`"""
    return np.logaddexp(0.0, x)
