"""
Pitch-Plunge GP Regression

Gaussian process regression with noisy inputs, and its use for learning
the state transitions and value functions of a pitch-plunge wing section.

Modules:
    dynamics: Pitch-plunge model, discretization and discounted LQ rewards
    gp: Exact, sparse (FITC), weight-space, NIGP and SONIG regression
    learning: Maximum likelihood hyperparameter tuning
    experiments: Comparison, value function and state prediction experiments
    utils: Config loading and profiling
"""

__version__ = "0.1.0"
__author__ = "Pitch-Plunge GP Team"

# Convenience imports
from . import dynamics, experiments, gp, learning, utils

__all__ = [
    "dynamics",
    "experiments",
    "gp",
    "learning",
    "utils",
]
