"""
Gaussian Process Module

GP regression components used by the pitch-plunge experiments:

- distributions: Gaussian beliefs, robust Cholesky factorization, sampling
- kernels: Covariance functions (SE-ARD, linear over a feature map, composites)
- exact_gp: Full GP regression O(N³), with an optional observation operator
- sparse_gp: FITC sparse GP with fixed inducing points O(NM²)
- weight_space: Bayesian linear regression returning a belief over weights
- nigp: Noisy-input GP training
- sonig: Sequential noisy-input GP regression with inducing points

Usage:
    >>> from pitchplunge_gp.gp import SONIG, SONIGHyperparameters
    >>>
    >>> hyp = SONIGHyperparameters(lx=1.0, ly=1.0, sx=0.4, sy=0.1)
    >>> sonig = SONIG(hyp, inducing_points=np.linspace(-5, 5, 21))
    >>> sonig.implement_measurements(X_noisy, y_noisy)
    >>> pred = sonig.predict(Xs)
"""

from .distributions import (
    DegenerateCovarianceError,
    DegenerateUpdateError,
    GaussianDistribution,
    condition_gaussian,
    robust_cholesky,
    sample_gaussian,
    symmetrize,
)
from .exact_gp import (
    ExactGP,
    GPPrediction,
    negative_log_marginal_likelihood,
)
from .kernels import (
    # Base class
    Kernel,
    # Weight-space kernel
    LinearKernel,
    ProductKernel,
    # SE kernel
    SquaredExponentialARD,
    # Composite kernels
    SumKernel,
    # Factory functions
    create_se_kernel,
    # Feature maps
    moment_features,
    n_quadratic_features,
    quadratic_features,
    upper_triangular,
)
from .nigp import (
    NIGPConfig,
    NIGPModel,
    train_nigp,
)
from .sonig import (
    SONIG,
    SONIGHyperparameters,
)
from .sparse_gp import SparseGP
from .weight_space import WeightSpaceRegression

__all__ = [
    "SONIG",
    "DegenerateCovarianceError",
    "DegenerateUpdateError",
    # Exact GP
    "ExactGP",
    "GPPrediction",
    # Distributions
    "GaussianDistribution",
    # Kernels
    "Kernel",
    "LinearKernel",
    # NIGP
    "NIGPConfig",
    "NIGPModel",
    "ProductKernel",
    # SONIG
    "SONIGHyperparameters",
    # Sparse GP
    "SparseGP",
    "SquaredExponentialARD",
    "SumKernel",
    # Weight space
    "WeightSpaceRegression",
    "condition_gaussian",
    "create_se_kernel",
    "moment_features",
    "n_quadratic_features",
    "negative_log_marginal_likelihood",
    "quadratic_features",
    "robust_cholesky",
    "sample_gaussian",
    "symmetrize",
    "train_nigp",
    "upper_triangular",
]
