"""
Experiment Configurations

One dataclass per experiment, with the constants of the thesis experiments
as defaults. Any subset of fields can be overridden from YAML through
``load_experiment_config``; nested sections (tuning, nigp) map onto their own
dataclasses.

Random numbers come from ``np.random.Generator(np.random.MT19937(seed))``,
built from the ``seed`` fields by ``make_rng``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple, Type, TypeVar

import numpy as np

from ..gp.nigp import NIGPConfig
from ..learning.hyperparameter_tuner import HyperparameterConfig
from ..utils.config_loader import load_config

C = TypeVar("C")


def make_rng(seed: int) -> np.random.Generator:
    """Mersenne Twister generator for a seed."""
    return np.random.Generator(np.random.MT19937(seed))


@dataclass
class ExperimentConfig:
    """Settings shared by all experiments."""

    seed: int = 1
    verbose: bool = True

    # Figures
    make_plots: bool = True
    output_dir: Optional[str] = None  # Save PNGs here when set
    use_color: bool = True


@dataclass
class ComparisonConfig(ExperimentConfig):
    """Noisy-input regression comparison on functions sampled from a GP prior."""

    # Input range
    x_min: float = -5.0
    x_max: float = 5.0

    # Point counts
    n_measurements: int = 800  # Used by FITC and the full SONIG runs
    n_subset: int = 200  # Used by the exact GPs, NIGP and the short SONIG run
    n_nigp_init: int = 100  # NIGP initialization of the last SONIG run
    n_trial: int = 101
    n_inducing: int = 21

    # Iterations
    n_iterations: int = 10
    max_redraws: int = 100  # Discarded iterations allowed before giving up
    part_used: float = 0.9  # Best fraction of iterations averaged in the summary

    # True function and noise
    lengthscale: float = 1.0
    signal_std: float = 1.0
    output_noise_std: float = 0.1
    input_noise_std: float = 0.4
    sample_epsilon: float = 1e-7  # Jitter when sampling from the GP prior

    # Which iteration to plot
    plot_sample: int = 0

    tuning: HyperparameterConfig = field(default_factory=HyperparameterConfig)
    nigp: NIGPConfig = field(default_factory=NIGPConfig)


@dataclass
class CostApproximationConfig(ExperimentConfig):
    """Value function regression for the pitch-plunge system."""

    noise_seed: int = 2  # Seed of the process-noise experiment

    # Simulation
    n_measurements: int = 50
    dt: float = 0.001
    T: float = 1.0
    wind_speed: float = 10.0

    # Initial state and input ranges (also the cost scaling)
    h0_range: float = 5e-3
    a0_range: float = 6e-2
    hd0_range: float = 5e-2
    ad0_range: float = 1.0
    beta_range: float = 0.5

    # Cost
    gamma: float = 0.5
    gain: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)

    # Noise-free regression
    noise_free_std: float = 1e-4  # σ_c

    # Process noise: σ_α = a0_range * alpha_noise_fraction
    alpha_noise_fraction: float = 0.1
    initial_sigma_c: float = 1e-2
    initial_bias_std: float = 1.0

    # Varying controllers
    n_controllers: int = 500
    gain_min: Tuple[float, float, float, float] = (-40.0, 0.0, 0.0, 0.0)
    gain_max: Tuple[float, float, float, float] = (0.0, 2.5, 0.0, 0.0)
    controller_sigma_c: float = 1e-4
    tune_controller_sigma_c: bool = False
    controller_bias_std: float = 1.0
    gain_guess: Tuple[float, float] = (-20.0, 2.0)

    n_grid: int = 21  # Trial points per plot dimension

    tuning: HyperparameterConfig = field(default_factory=HyperparameterConfig)


@dataclass
class StatePredictionConfig(ExperimentConfig):
    """Regression of the pitch-plunge state transition over a horizon T."""

    # Simulation
    n_measurements: int = 30
    dt: float = 0.001
    T: float = 0.1
    wind_speed: float = 15.0
    nonlinear: bool = True
    integrator: str = "rk4"
    max_redraws: int = 100  # Diverged rollouts allowed before giving up

    # Initial state and input ranges
    h0_range: float = 5e-3
    a0_range: float = 6e-2
    hd0_range: float = 5e-2
    ad0_range: float = 1.0
    beta_range: float = 0.5

    # Prior scales of [h, α, ḣ, α̇, β]
    x_scale: Tuple[float, float, float, float, float] = (1e-2, 2e-1, 1e-1, 5.0, 5e-1)
    weight_prior_factor: float = 4.0  # K_w = factor * diag(scale_out² / scale_in²)
    noise_fraction: float = 0.01  # σ = scale_out * fraction
    se_signal_factor: float = 4.0  # SE output scale = scale_out * factor
    prior_mean: float = 0.0

    n_grid: int = 21


def load_experiment_config(cls: Type[C], path: Optional[str] = None) -> C:
    """Defaults of an experiment config, overridden by a YAML file if given."""
    return load_config(cls, path)
