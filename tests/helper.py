import numpy as np
import pandas as pd
from anndata import AnnData

from zinbwave import ZinbModel


def poissonCounts(n=30, J=10, lam=5, seed=987):
    """n x J matrix of Poisson counts, samples in rows"""
    rng = np.random.default_rng(seed)
    return rng.poisson(lam, size=(n, J))


def makeExampleAnnData(n=30, J=10, lam=5, seed=987, layers=None, var=None):
    """
    AnnData of Poisson counts, with a two-level factor :code:`bio` in obs

    If :code:`layers` is given, the counts are only stored in these layers
    (a dict of name to matrix) and X holds the first one.
    """
    obs = pd.DataFrame(
        {"bio": pd.Categorical(["A"] * (n // 2) + ["B"] * (n - n // 2))},
        index=[f"cell{i + 1}" for i in range(n)],
    )
    if var is None:
        var = pd.DataFrame(index=[f"gene{j + 1}" for j in range(J)])
    if layers is None:
        return AnnData(X=poissonCounts(n, J, lam, seed).astype(float), obs=obs, var=var)
    first = next(iter(layers.values()))
    adata = AnnData(X=np.asarray(first, dtype=float), obs=obs, var=var)
    for name, value in layers.items():
        adata.layers[name] = np.asarray(value, dtype=float)
    return adata


def randomModel(n=20, J=8, K=2, seed=42, **kwargs):
    """ZinbModel with random parameters, an intercept and one covariate in X"""
    rng = np.random.default_rng(seed)
    X = np.column_stack([np.ones(n), rng.normal(size=n)])
    return ZinbModel(
        X=X,
        W=rng.normal(size=(n, K)),
        beta_mu=np.vstack([np.full(J, 1.5), rng.normal(scale=0.2, size=J)]),
        beta_pi=np.vstack([np.full(J, -1.0), rng.normal(scale=0.2, size=J)]),
        gamma_mu=rng.normal(scale=0.1, size=(1, n)),
        gamma_pi=rng.normal(scale=0.1, size=(1, n)),
        alpha_mu=rng.normal(scale=0.3, size=(K, J)),
        alpha_pi=rng.normal(scale=0.3, size=(K, J)),
        zeta=rng.normal(size=J),
        **kwargs,
    )
