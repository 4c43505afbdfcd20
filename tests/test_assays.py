import unittest

import numpy as np
import pandas as pd
from anndata import AnnData

from helper import makeExampleAnnData, poissonCounts
from zinbwave import (
    DimensionMismatchError,
    InvalidArgumentError,
    prepareInputs,
    resolveAssay,
    resolveGenes,
)
from zinbwave.assays import checkCounts


class Test(unittest.TestCase):
    def test_resolveAssay(self):
        cc = poissonCounts()
        ll = np.random.default_rng(1).normal(size=cc.shape)

        adata = makeExampleAnnData(layers={"counts": cc, "norm": ll})
        Y, name, warning = resolveAssay(adata)
        self.assertEqual(name, "counts")
        self.assertIsNone(warning)
        self.assertTrue(np.array_equal(Y, cc))

        Y, name, warning = resolveAssay(adata, "norm")
        self.assertEqual(name, "norm")
        Y, name, warning = resolveAssay(adata, 2)
        self.assertEqual(name, "norm")

        adata = makeExampleAnnData(layers={"assay1": cc, "assay2": ll})
        Y, name, warning = resolveAssay(adata)
        self.assertEqual(name, "X")
        self.assertRegex(warning, "counts")
        self.assertTrue(np.array_equal(Y, cc))

        with self.assertRaisesRegex(InvalidArgumentError, "no assay named"):
            resolveAssay(adata, "counts")
        with self.assertRaisesRegex(InvalidArgumentError, "out of range"):
            resolveAssay(adata, 3)

    def test_checkCounts(self):
        self.assertEqual(checkCounts([[1, 2], [3, 4]]).dtype, float)
        with self.assertRaisesRegex(InvalidArgumentError, "non-negative integers"):
            checkCounts([[1, -2], [3, 4]])
        with self.assertRaisesRegex(InvalidArgumentError, "non-negative integers"):
            checkCounts([[1, 2.5], [3, 4]])
        with self.assertRaisesRegex(InvalidArgumentError, "finite"):
            checkCounts([[1, np.inf], [3, 4]])
        with self.assertRaisesRegex(InvalidArgumentError, "sample"):
            checkCounts([[0, 0], [3, 4]])
        with self.assertRaisesRegex(InvalidArgumentError, "feature"):
            checkCounts([[0, 2], [0, 4]])

    def test_resolveGenes(self):
        names = pd.Index([f"gene{j + 1}" for j in range(5)])
        var = pd.DataFrame({"keep": [True, False, True, False, False]}, index=names)
        expected = np.array([0, 2])

        self.assertTrue(np.array_equal(resolveGenes(None, 5), np.arange(5)))
        for sel in (
            [True, False, True, False, False],
            [0, 2],
            ["gene1", "gene3"],
            "keep",
        ):
            self.assertTrue(
                np.array_equal(resolveGenes(sel, 5, names, var), expected), sel
            )

        with self.assertRaisesRegex(InvalidArgumentError, "which_genes"):
            resolveGenes(1, 5, names, var)
        with self.assertRaisesRegex(InvalidArgumentError, "which_genes"):
            resolveGenes([True, False], 5, names, var)
        with self.assertRaisesRegex(InvalidArgumentError, "which_genes"):
            resolveGenes([0, 7], 5, names, var)
        with self.assertRaisesRegex(InvalidArgumentError, "which_genes"):
            resolveGenes(["gene1", "gene42"], 5, names, var)
        with self.assertRaisesRegex(InvalidArgumentError, "which_genes"):
            resolveGenes("absent", 5, names, var)
        with self.assertRaisesRegex(InvalidArgumentError, "which_genes"):
            resolveGenes([False] * 5, 5, names, var)

    def test_prepareInputs(self):
        adata = makeExampleAnnData()
        with self.assertLogs("zinbwave", level="WARNING") as cm:
            inputs = prepareInputs(adata, X="~bio", which_genes=[0, 1, 2])
        self.assertRegex(cm.output[0], "counts")
        self.assertEqual(inputs.counts.shape, (30, 3))
        self.assertEqual(inputs.X.shape, (30, 2))
        self.assertEqual(inputs.V.shape, (3, 1))
        self.assertEqual(list(inputs.featureNames), ["gene1", "gene2", "gene3"])
        self.assertEqual(inputs.assay, "X")

        # explicit V given for all features is restricted to the selection
        V = np.column_stack([np.ones(10), np.arange(10)])
        inputs = prepareInputs(adata, V=V, which_assay="X", which_genes=[0, 5])
        self.assertTrue(np.array_equal(inputs.V.matrix[:, 1], [0, 5]))

        O = np.zeros((30, 10))
        self.assertEqual(inputs.subsetOffset(O, "O_mu").shape, (30, 2))
        with self.assertRaises(DimensionMismatchError):
            inputs.subsetOffset(np.zeros((30, 4)), "O_mu")

        with self.assertRaisesRegex(InvalidArgumentError, "AnnData"):
            prepareInputs(poissonCounts(), which_assay="counts")

        adata = AnnData(X=poissonCounts(5, 3).astype(float))
        adata.obs_names = ["a", "a", "b", "c", "d"]
        with self.assertRaisesRegex(InvalidArgumentError, "unique"):
            prepareInputs(adata, which_assay="X")
