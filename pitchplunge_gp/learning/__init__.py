"""
Hyperparameter Learning Module

Maximum-likelihood tuning of the hyperparameters used by the experiments:

Components:
    hyperparameter_tuner: Bounded minimization of negative log marginal
        likelihoods, SE-kernel tuning, normalized-parameter tuning

Usage:
    >>> from pitchplunge_gp.learning import tune_gp_hyperparameters
    >>>
    >>> hyp = tune_gp_hyperparameters(X, y, lengthscales=1.0, signal_std=1.0, noise_std=0.1)
    >>> gp = ExactGP(hyp.kernel(), noise_variance=hyp.noise_std**2).fit(X, y)
"""

from ..gp.exact_gp import negative_log_marginal_likelihood
from .hyperparameter_tuner import (
    GPHyperparameters,
    HyperparameterConfig,
    HyperparameterTuner,
    TuningResult,
    se_negative_log_likelihood,
    tune_gp_hyperparameters,
)

__all__ = [
    "GPHyperparameters",
    # Hyperparameter Tuning
    "HyperparameterConfig",
    "HyperparameterTuner",
    "TuningResult",
    "negative_log_marginal_likelihood",
    "se_negative_log_likelihood",
    "tune_gp_hyperparameters",
]
