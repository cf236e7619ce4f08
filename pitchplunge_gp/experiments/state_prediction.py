"""
State Prediction for the Pitch-Plunge System

Learns the map from [x₀; β] (constant input β) to the state x_T after a short
horizon T. With a linear kernel this is Bayesian regression on the rows of
the discrete-time system matrix [A_d, B_d]; each output gets its own weight
prior K_w,i = c · diag(s_i² / s²) and noise σ_i = s_i / 100 from the scales s.

Runs:
    1. Linear covariance on linear data (exact discrete-time map)
    2. Linear covariance on nonlinear simulations
    3. Linear plus SE covariance on nonlinear simulations, with log p(y)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
from numpy.typing import NDArray

from ..dynamics.pitch_plunge import PitchPlungeConfig, PitchPlungeDynamics, constant_controller
from ..gp.distributions import GaussianDistribution
from ..gp.exact_gp import ExactGP
from ..gp.kernels import LinearKernel, create_se_kernel
from ..gp.weight_space import WeightSpaceRegression
from .config import StatePredictionConfig, make_rng
from .visualization import FigureConfig, SurfaceVisualizer, save_figure

N_STATE = 4
OUTPUT_LABELS = ("h_T", "α_T", "ḣ_T", "α̇_T")

# Figure settings per run and output: (name prefix, (elev, azim), zlim per plotted output)
FIGURE_SETTINGS = {
    "linear": ("NextStatePredictionLinear", (30, -200), (None, (-0.1, 0.1))),
    "nonlinear": ("NextStatePredictionNonlinear", (30, -200), (None, None)),
    "se_plus_linear": ("NextStatePredictionSEPlusLinear", (16, -40), ((-1.5e-2, 1e-2), (-0.2, 0.2))),
}


@dataclass
class TransitionData:
    inputs: NDArray  # [x₀; β] per experiment (N, 5)
    outputs: NDArray  # Simulated x_T (N, 4)
    linear_outputs: NDArray  # [A_d, B_d] [x₀; β] (N, 4)
    n_discarded: int = 0  # Diverged rollouts that were re-drawn


@dataclass
class OutputSurface:
    X1: NDArray
    X2: NDArray
    mean: NDArray
    std: NDArray
    reference: NDArray  # Exact linear map on the grid


@dataclass
class StatePredictionRun:
    """Predictions of one run for every output."""

    name: str
    surfaces: List[OutputSurface]
    system_matrix: Optional[NDArray] = None  # Posterior mean of [A_d, B_d] (4, 5)
    system_matrix_std: Optional[NDArray] = None
    weights: List[GaussianDistribution] = field(default_factory=list, repr=False)
    log_likelihoods: List[float] = field(default_factory=list)


@dataclass
class StatePredictionResults:
    true_system_matrix: NDArray
    runs: Dict[str, StatePredictionRun] = field(default_factory=dict)
    figures: List[plt.Figure] = field(default_factory=list, repr=False)


class StatePredictionExperiment:
    """
    Regression of x_T from [x₀; β].

    Example:
        >>> experiment = StatePredictionExperiment(StatePredictionConfig(n_measurements=30))
        >>> results = experiment.run()
        >>> results.runs["linear"].system_matrix
    """

    def __init__(self, config: Optional[StatePredictionConfig] = None):
        self.config = config or StatePredictionConfig()
        cfg = self.config

        self.system = PitchPlungeDynamics(PitchPlungeConfig(wind_speed=cfg.wind_speed))
        self.true_system_matrix = self.system.system_matrix(cfg.T)
        self.ranges = np.array([cfg.h0_range, cfg.a0_range, cfg.hd0_range, cfg.ad0_range, cfg.beta_range])
        self.x_scale = np.array(cfg.x_scale, dtype=float)
        self.fig_config = FigureConfig(use_color=cfg.use_color)

    def weight_prior(self, output: int) -> NDArray:
        """Diagonal of K_w for one output."""
        return self.config.weight_prior_factor * self.x_scale[output] ** 2 / self.x_scale**2

    def noise_std(self, output: int) -> float:
        return self.x_scale[output] * self.config.noise_fraction

    def generate_data(self) -> TransitionData:
        """
        Random initial states and inputs, simulated over the horizon.

        A rollout whose final state is not finite is discarded and its sample
        re-drawn.

        Raises:
            RuntimeError: If more than max_redraws rollouts diverge
        """
        cfg = self.config
        rng = make_rng(cfg.seed)

        inputs = np.zeros((cfg.n_measurements, N_STATE + 1))
        outputs = np.zeros((cfg.n_measurements, N_STATE))
        n_discarded = 0
        k = 0
        while k < cfg.n_measurements:
            inputs[k] = (rng.random(N_STATE + 1) * 2 - 1) * self.ranges
            x0, beta = inputs[k, :N_STATE], inputs[k, N_STATE]
            _, x, _ = self.system.simulate(
                x0, constant_controller(beta), cfg.T, cfg.dt, nonlinear=cfg.nonlinear, method=cfg.integrator
            )
            if not np.all(np.isfinite(x[-1])):
                n_discarded += 1
                if cfg.verbose:
                    print(f"  Rollout from {np.array2string(inputs[k], precision=4)} diverged. Re-drawing sample {k + 1}.")
                if n_discarded > cfg.max_redraws:
                    raise RuntimeError(f"More than {cfg.max_redraws} rollouts diverged")
                continue
            outputs[k] = x[-1]
            k += 1

        return TransitionData(
            inputs=inputs,
            outputs=outputs,
            linear_outputs=inputs @ self.true_system_matrix.T,
            n_discarded=n_discarded,
        )

    def trial_grid(self) -> Tuple[NDArray, NDArray, NDArray]:
        """(h₀, α₀) grid with zero rates and input, as inputs (n², 5)."""
        n = self.config.n_grid
        X1, X2 = np.meshgrid(
            np.linspace(-self.config.h0_range, self.config.h0_range, n),
            np.linspace(-self.config.a0_range, self.config.a0_range, n),
        )
        Xs = np.zeros((n * n, N_STATE + 1))
        Xs[:, 0] = X1.ravel()
        Xs[:, 1] = X2.ravel()
        return X1, X2, Xs

    def linear_regression(self, name: str, inputs: NDArray, targets: NDArray) -> StatePredictionRun:
        """Per-output weight-space regression: the rows of [A_d, B_d]."""
        X1, X2, Xs = self.trial_grid()
        reference = Xs @ self.true_system_matrix.T

        run = StatePredictionRun(
            name=name,
            surfaces=[],
            system_matrix=np.zeros((N_STATE, N_STATE + 1)),
            system_matrix_std=np.zeros((N_STATE, N_STATE + 1)),
        )
        for i in range(N_STATE):
            model = WeightSpaceRegression(self.weight_prior(i), noise_covariance=self.noise_std(i) ** 2)
            model.fit(inputs, targets[:, i])
            weights = model.weight_distribution
            run.weights.append(weights)
            run.system_matrix[i] = weights.mean
            run.system_matrix_std[i] = weights.std
            run.log_likelihoods.append(model.log_marginal_likelihood)

            prediction = model.predict(Xs)
            run.surfaces.append(
                OutputSurface(
                    X1, X2, prediction.mean.reshape(X1.shape), prediction.std.reshape(X1.shape), reference[:, i].reshape(X1.shape)
                )
            )

        if self.config.verbose:
            error = np.max(np.abs(run.system_matrix - self.true_system_matrix))
            print(f"{name}: largest system matrix error {error:.4g}")
        return run

    def se_plus_linear_regression(self, data: TransitionData) -> StatePredictionRun:
        """Linear plus SE covariance on the simulated outputs."""
        cfg = self.config
        X1, X2, Xs = self.trial_grid()
        reference = Xs @ self.true_system_matrix.T

        run = StatePredictionRun(name="Linear plus SE covariance", surfaces=[])
        for i in range(N_STATE):
            kernel = LinearKernel(self.weight_prior(i)) + create_se_kernel(
                self.x_scale, signal_std=cfg.se_signal_factor * self.x_scale[i]
            )
            gp = ExactGP(kernel, noise_variance=self.noise_std(i) ** 2, prior_mean=cfg.prior_mean)
            gp.fit(data.inputs, data.outputs[:, i])
            run.log_likelihoods.append(gp.log_marginal_likelihood)

            prediction = gp.predict(Xs)
            run.surfaces.append(
                OutputSurface(
                    X1, X2, prediction.mean.reshape(X1.shape), prediction.std.reshape(X1.shape), reference[:, i].reshape(X1.shape)
                )
            )

        if cfg.verbose:
            for label, logp in zip(OUTPUT_LABELS, run.log_likelihoods):
                print(f"  log p({label}) = {logp:.4f}")
        return run

    def plot_run(self, key: str, run: StatePredictionRun, outputs=(0, 1)) -> List[plt.Figure]:
        prefix, view, zlims = FIGURE_SETTINGS[key]
        visualizer = SurfaceVisualizer(self.fig_config)
        figures = []
        for i, zlim in zip(outputs, zlims):
            surface = run.surfaces[i]
            ax = visualizer.plot_surface(
                surface.X1,
                surface.X2,
                surface.mean,
                surface.std,
                reference=surface.reference,
                labels=("h₀", "α₀", OUTPUT_LABELS[i]),
                view=view,
                zlim=zlim,
            )
            fig = ax.get_figure()
            if self.config.output_dir is not None:
                save_figure(fig, self.config.output_dir, f"{prefix}{i + 1}", self.fig_config)
            figures.append(fig)
        return figures

    def run(self) -> StatePredictionResults:
        cfg = self.config
        data = self.generate_data()
        results = StatePredictionResults(true_system_matrix=self.true_system_matrix)

        results.runs["linear"] = self.linear_regression("Linear data", data.inputs, data.linear_outputs)
        results.runs["nonlinear"] = self.linear_regression("Simulated data", data.inputs, data.outputs)
        results.runs["se_plus_linear"] = self.se_plus_linear_regression(data)

        if cfg.make_plots:
            for key, run in results.runs.items():
                results.figures.extend(self.plot_run(key, run))
        return results


def run_state_prediction(config: Optional[StatePredictionConfig] = None) -> StatePredictionResults:
    """Run all state prediction regressions."""
    return StatePredictionExperiment(config).run()
