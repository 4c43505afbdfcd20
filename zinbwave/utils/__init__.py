from .lm import ridge_fit
from .logging import LOGGER
from .parallel import SerialExecutor, parallelMap
from .stats import dnbinom_mu, expit, log1pexp, rnbinom
