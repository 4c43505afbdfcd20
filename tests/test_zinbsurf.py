import unittest
import warnings
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd

from helper import makeExampleAnnData, poissonCounts
from zinbwave import (
    InvalidArgumentError,
    InvalidDesignError,
    projectSamples,
    zinbFitApprox,
    zinbsurf,
)


class Test(unittest.TestCase):
    def setUp(self):
        self.cc = poissonCounts(seed=13124)

    def test_range_of_proportions(self):
        adata = makeExampleAnnData(seed=13124)
        for p in (0.3, 0.5, 0.7):
            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter("always")
                m = zinbsurf(adata, K=2, which_assay=0, prop_fit=p, seed=987)
            overflows = [
                w
                for w in caught
                if issubclass(w.category, RuntimeWarning) and "overflow" in str(w.message)
            ]
            self.assertEqual(overflows, [])
            self.assertEqual(m.obsm["zinbwave"].shape, (30, 2))
            self.assertEqual(len(m.uns["zinbwave"]["subsample"]), int(np.ceil(30 * p)))
            self.assertTrue(np.all(np.isfinite(m.obsm["zinbwave"])))

        for p in (1, 0, -0.5, 1.5):
            with self.assertRaisesRegex(InvalidArgumentError, "`prop_fit` must be in"):
                zinbsurf(adata, K=2, which_assay=0, prop_fit=p)

    def test_one_dimensional_W(self):
        adata = makeExampleAnnData(seed=13124)
        fit = zinbsurf(adata, K=1, which_assay=0, seed=1)
        self.assertEqual(fit.obsm["zinbwave"].shape, (30, 1))
        # the input is left untouched
        self.assertNotIn("zinbwave", adata.obsm)

    def test_counts_layer(self):
        ll = np.random.default_rng(987).normal(size=self.cc.shape)
        adata = makeExampleAnnData(layers={"counts": self.cc, "norm": ll})
        m1 = zinbsurf(adata, K=2, prop_fit=0.5, seed=123)
        m2 = zinbsurf(adata, K=2, prop_fit=0.5, which_assay="counts", seed=123)
        self.assertTrue(np.array_equal(m1.obsm["zinbwave"], m2.obsm["zinbwave"]))
        self.assertEqual(m1.uns["zinbwave"]["subsample"], m2.uns["zinbwave"]["subsample"])

    def test_no_counts_layer(self):
        ll = np.random.default_rng(987).normal(size=self.cc.shape)
        adata = makeExampleAnnData(layers={"assay1": self.cc, "assay2": ll})
        with self.assertLogs("zinbwave", level="WARNING") as cm:
            m1 = zinbsurf(adata, K=2, prop_fit=0.5, seed=123)
        self.assertRegex(cm.output[0], "no assay named 'counts'")
        with self.assertNoLogs("zinbwave", level="WARNING"):
            m2 = zinbsurf(adata, K=2, prop_fit=0.5, which_assay="assay1", seed=123)
        self.assertTrue(np.array_equal(m1.obsm["zinbwave"], m2.obsm["zinbwave"]))

    def test_subset_of_genes(self):
        wh_genes = np.array([True] * 2 + [False] * 8)
        adata = makeExampleAnnData(
            layers={"counts": self.cc},
            var=pd.DataFrame(
                {"wh_genes": wh_genes}, index=[f"gene{j + 1}" for j in range(10)]
            ),
        )

        m1 = zinbsurf(adata, K=1, prop_fit=0.5, seed=123)
        for which_genes in (
            list(adata.var_names),
            list(range(10)),
            [True] * 10,
        ):
            m = zinbsurf(adata, K=1, prop_fit=0.5, seed=123, which_genes=which_genes)
            self.assertTrue(np.array_equal(m1.obsm["zinbwave"], m.obsm["zinbwave"]))

        m1 = zinbsurf(adata, K=1, prop_fit=0.5, seed=155, which_genes=wh_genes)
        m2 = zinbsurf(adata, K=1, prop_fit=0.5, seed=155, which_genes="wh_genes")
        self.assertTrue(np.array_equal(m1.obsm["zinbwave"], m2.obsm["zinbwave"]))

    def test_failures(self):
        adata = makeExampleAnnData(
            layers={"counts": self.cc},
            var=pd.DataFrame(
                {"wh_genes": [True] * 2 + [False] * 8},
                index=[f"gene{j + 1}" for j in range(10)],
            ),
        )
        with np.errstate(divide="ignore"):
            adata.layers["logcounts"] = np.log(adata.layers["counts"])

        with self.assertRaisesRegex(InvalidArgumentError, "missing"):
            zinbsurf(adata, prop_fit=0.5)
        with self.assertRaisesRegex(InvalidArgumentError, "K must be"):
            zinbsurf(adata, K=-1, prop_fit=0.5)
        with self.assertRaisesRegex(InvalidArgumentError, "which_genes"):
            zinbsurf(adata, K=1, prop_fit=0.5, which_genes=1)
        with self.assertRaisesRegex(InvalidDesignError, "variables in obs"):
            zinbsurf(adata, K=1, prop_fit=0.5, X="~bio2")
        with self.assertRaisesRegex(InvalidDesignError, "variables in var"):
            zinbsurf(adata, K=1, prop_fit=0.5, V="~bio2")
        with self.assertRaises(InvalidArgumentError):
            zinbsurf(adata, K=1, prop_fit=0.5, which_assay="logcounts")

    def test_covariates(self):
        cov = np.random.default_rng(987).normal(size=10)
        adata = makeExampleAnnData(
            layers={"counts": self.cc},
            var=pd.DataFrame({"cov": cov}, index=[f"gene{j + 1}" for j in range(10)]),
        )
        for kwargs in (
            {"X": "~bio"},
            {"V": "~cov"},
            {"X": "~bio", "V": "~cov"},
            {"zeroinflation": False},
        ):
            m = zinbsurf(adata, K=1, prop_fit=0.5, seed=1, **kwargs)
            self.assertEqual(m.obsm["zinbwave"].shape, (30, 1), kwargs)
            self.assertTrue(np.all(np.isfinite(m.obsm["zinbwave"])), kwargs)

    def test_zinbFitApprox(self):
        W, result = zinbFitApprox(self.cc, K=2, prop_fit=0.5, seed=7)
        self.assertEqual(W.shape, (30, 2))
        self.assertEqual(len(result.subsample), 15)
        self.assertEqual(result.model.n, 15)
        self.assertTrue(np.array_equal(W[result.subsample], result.model.W))

        W0, result = zinbFitApprox(self.cc, K=0, prop_fit=0.5, seed=7)
        self.assertEqual(W0.shape, (30, 0))

    def test_projectSamples(self):
        W, result = zinbFitApprox(self.cc, K=2, prop_fit=0.5, seed=7)
        others = np.setdiff1d(np.arange(30), result.subsample)
        X = np.ones((len(others), 1))
        proj = projectSamples(result.model, self.cc[others], X)
        self.assertEqual(proj["W"].shape, (15, 2))
        self.assertEqual(proj["gamma_mu"].shape, (1, 15))
        self.assertEqual(proj["gamma_pi"].shape, (1, 15))
        self.assertEqual(proj["converged"].shape, (15,))
        self.assertTrue(np.allclose(proj["W"], W[others]))

        with ThreadPoolExecutor(max_workers=3) as executor:
            threaded = projectSamples(
                result.model, self.cc[others], X, executor=executor
            )
        self.assertTrue(np.array_equal(threaded["W"], proj["W"]))

    def test_serial_and_parallel_fits_agree(self):
        W, _ = zinbFitApprox(self.cc, K=2, prop_fit=0.5, seed=11, maxIters=5)
        with ThreadPoolExecutor(max_workers=2) as executor:
            W2, _ = zinbFitApprox(
                self.cc, K=2, prop_fit=0.5, seed=11, maxIters=5, executor=executor
            )
        self.assertTrue(np.allclose(W, W2, rtol=1e-6))
