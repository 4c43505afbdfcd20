import importlib.metadata

__version__ = importlib.metadata.version(__package__)

from . import utils as utils
from .assays import prepareInputs, resolveAssay, resolveGenes
from .core import zinbwave
from .designMatrix import (
    ColumnReference,
    Design,
    ExplicitMatrix,
    FormulaDesign,
    InterceptOnly,
    buildDesign,
)
from .errors import (
    DimensionMismatchError,
    FitCancelledError,
    InvalidArgumentError,
    InvalidDesignError,
    NonConvergenceWarning,
    NumericalInstabilityError,
)
from .fittedValues import (
    computeDevianceResiduals,
    computeNormalizedValues,
    computeObservationalWeights,
)
from .zinbFit import zinbFit
from .zinbInitialize import zinbInitialize
from .zinbLoglik import zinbAIC, zinbBIC, zinbEvaluate, zinbLoglik, zinbPenalizedLoglik
from .zinbModel import ZinbModel, zinbSim
from .zinbOptimize import ZinbFitResult, orthogonalizeTraceNorm, zinbOptimize
from .zinbsurf import projectSamples, zinbFitApprox, zinbsurf
