"""
Value Function Approximation for the Pitch-Plunge System

Regresses the discounted value V(x₀) = -ln(γ) x₀ᵀ X̄ x₀ of linear state
feedback from simulated rewards. A single experiment from x₀ to x_T yields

    c = (1 - γᵀ) r̄ = V(x₀) - γᵀ V(x_T) (+ noise)

so observations are linear combinations of function values, with the
observation operator M = kron(I, [1, -γᵀ]) over interleaved [x₀, x_T] inputs.
With quadratic features V is linear in the weights w = -ln(γ) triu(X̄),
which gives the analytic reference.

Parts:
    1. Noise-free rewards for one controller; weights against the analytic ones
    2. Process noise on the pitch angle; bias weight tr(W X̄); ML tuning of
       (σ_c, k_b) and the physically correct σ_c from the reward variance
    3. ML tuning of all weight prior variances plus σ_c
    4. Varying controllers: kernel (Φᵀ K_w Φ) ⊙ SE(gains), prediction of the
       expected value over a gain grid and maximization over the gains
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
from numpy.typing import NDArray
from scipy.linalg import expm

from ..dynamics.linear_quadratic import (
    DiscountedLQProblem,
    discretize_process_noise,
    simulate_discounted_reward,
)
from ..dynamics.pitch_plunge import PitchPlungeConfig, PitchPlungeDynamics
from ..gp.distributions import GaussianDistribution
from ..gp.exact_gp import ExactGP, negative_log_marginal_likelihood
from ..gp.kernels import (
    LinearKernel,
    ProductKernel,
    create_se_kernel,
    moment_features,
    quadratic_features,
    upper_triangular,
)
from ..gp.weight_space import WeightSpaceRegression
from ..learning.hyperparameter_tuner import HyperparameterTuner
from .analysis import format_weight_report
from .config import CostApproximationConfig, make_rng
from .visualization import FigureConfig, SurfaceVisualizer, save_figure

N_STATE = 4


@dataclass
class RewardData:
    """Interleaved start/end states of the experiments and their rewards."""

    X: NDArray  # States (2n, 4): x₀ of experiment k in row 2k, x_T in row 2k+1
    c: NDArray  # (1 - γᵀ) r̄ per experiment (n,)
    gains: Optional[NDArray] = None  # Controller per experiment (n, 4)

    @property
    def n_experiments(self) -> int:
        return len(self.c)


@dataclass
class ValueSurface:
    """Prediction on a 2-D grid."""

    X1: NDArray
    X2: NDArray
    mean: NDArray
    std: NDArray
    reference: Optional[NDArray] = None


@dataclass
class ValueRegressionResult:
    """Weight posterior of one value regression."""

    name: str
    weights: GaussianDistribution
    true_weights: NDArray
    sigma_c: float
    log_likelihood: float
    surface: ValueSurface
    prior_variances: NDArray = field(repr=False, default=None)

    @property
    def error_percentages(self) -> NDArray:
        return (self.weights.mean - self.true_weights) / self.true_weights * 100


@dataclass
class ControllerValueResult:
    """Value regression over varying controllers."""

    optimal_gain: NDArray  # Full LQ optimum (1, 4)
    optimal_value: float
    two_gain_optimum: NDArray  # Best (C_h, C_α) with the other gains zero
    two_gain_value: float
    predicted_gain: NDArray  # Maximizer of the GP mean over the gain box
    predicted_value: float
    sigma_c: float
    surface: ValueSurface


@dataclass
class CostApproximationResults:
    noise_free: Optional[ValueRegressionResult] = None
    process_noise: Optional[ValueRegressionResult] = None
    physical_sigma_c: Optional[float] = None
    tuned_priors: Optional[ValueRegressionResult] = None
    varying_controllers: Optional[ControllerValueResult] = None
    figures: List[plt.Figure] = field(default_factory=list, repr=False)


def weight_space_negative_log_likelihood(
    G: NDArray, prior_variances: NDArray, sigma_c: float, c: NDArray
) -> float:
    """-log p(c) for c = G w + ε, w ~ N(0, diag(prior_variances)), ε ~ N(0, σ_c² I)."""
    K_c = (G * prior_variances) @ G.T + sigma_c**2 * np.eye(len(c))
    return negative_log_marginal_likelihood(K_c, c)


class CostApproximationExperiment:
    """
    Value function regression experiments.

    Example:
        >>> experiment = CostApproximationExperiment(CostApproximationConfig(n_measurements=50))
        >>> part1 = experiment.noise_free_regression()
        >>> part1.error_percentages
    """

    def __init__(self, config: Optional[CostApproximationConfig] = None):
        self.config = config or CostApproximationConfig()
        cfg = self.config

        self.system = PitchPlungeDynamics(PitchPlungeConfig(wind_speed=cfg.wind_speed))
        A, B = self.system.state_matrices()
        self.ranges = np.array([cfg.h0_range, cfg.a0_range, cfg.hd0_range, cfg.ad0_range])
        Q = np.diag([0.0, 0.0, 1 / cfg.hd0_range**2, 1 / cfg.ad0_range**2])
        R = 4 / cfg.beta_range**2
        self.problem = DiscountedLQProblem(A, B, Q, R, gamma=cfg.gamma)

        n_steps = int(np.ceil(cfg.T / cfg.dt - 1e-9)) + 1
        self.t = cfg.dt * np.arange(n_steps)
        self.gamma_T = cfg.gamma**cfg.T

        self.tuner = HyperparameterTuner(cfg.tuning)
        self.tuning_rng = make_rng(cfg.seed)
        self.fig_config = FigureConfig(use_color=cfg.use_color)

    # =========================================================================
    # Shared pieces
    # =========================================================================

    @property
    def gain(self) -> NDArray:
        return np.array([self.config.gain], dtype=float)

    def weight_prior(self) -> NDArray:
        """Prior variances ln(γ)² triu(1 / (r rᵀ))² of the quadratic weights."""
        return self.problem.log_gamma**2 * upper_triangular(1 / np.outer(self.ranges, self.ranges)) ** 2

    def observation_matrix(self, n_experiments: int) -> NDArray:
        """M = kron(I, [1, -γᵀ])."""
        return np.kron(np.eye(n_experiments), [1.0, -self.gamma_T])

    def sample_initial_state(self, rng: np.random.Generator) -> NDArray:
        return (rng.random(N_STATE) * 2 - 1) * self.ranges

    def state_grid(self) -> Tuple[NDArray, NDArray, NDArray]:
        """(h₀, α₀) grid with zero rates, as states (n², 4)."""
        n = self.config.n_grid
        X1, X2 = np.meshgrid(
            np.linspace(-self.config.h0_range, self.config.h0_range, n),
            np.linspace(-self.config.a0_range, self.config.a0_range, n),
        )
        X = np.zeros((n * n, N_STATE))
        X[:, 0] = X1.ravel()
        X[:, 1] = X2.ravel()
        return X1, X2, X

    def process_noise_intensity(self, A_cl: NDArray) -> NDArray:
        """W = Ã e_α σ_α² e_αᵀ Ãᵀ: white noise on the pitch angle."""
        sigma_alpha = self.config.a0_range * self.config.alpha_noise_fraction
        e_alpha = np.zeros((N_STATE, 1))
        e_alpha[1] = 1.0
        return sigma_alpha**2 * A_cl @ e_alpha @ e_alpha.T @ A_cl.T

    def _report(self, result: ValueRegressionResult) -> None:
        if self.config.verbose:
            print(
                format_weight_report(
                    result.weights.mean,
                    result.weights.std,
                    result.true_weights,
                    title=f"{result.name}: estimated weights after {self.config.n_measurements} measurements",
                )
            )

    def _weight_regression(
        self,
        name: str,
        data: RewardData,
        prior_variances: NDArray,
        sigma_c: float,
        true_weights: NDArray,
        bias: bool,
        reference_offset: Optional[float],
    ) -> ValueRegressionResult:
        Phi = quadratic_features(data.X, bias=bias)
        model = WeightSpaceRegression(
            prior_variances,
            noise_covariance=sigma_c**2,
            observation_matrix=self.observation_matrix(data.n_experiments),
        ).fit(Phi, data.c)

        X1, X2, Xs = self.state_grid()
        prediction = model.predict(quadratic_features(Xs, bias=bias))
        shape = X1.shape
        reference = None
        if reference_offset is not None:
            reference = (quadratic_features(Xs) @ true_weights[: Phi.shape[1] - int(bias)] + reference_offset).reshape(
                shape
            )
        surface = ValueSurface(X1, X2, prediction.mean.reshape(shape), prediction.std.reshape(shape), reference)

        result = ValueRegressionResult(
            name=name,
            weights=model.weight_distribution,
            true_weights=true_weights,
            sigma_c=sigma_c,
            log_likelihood=model.log_marginal_likelihood,
            surface=surface,
            prior_variances=np.asarray(prior_variances),
        )
        self._report(result)
        return result

    # =========================================================================
    # Part 1: noise-free rewards
    # =========================================================================

    def noise_free_data(self) -> RewardData:
        """Start/end states over T and analytic rewards for the configured gain."""
        cfg = self.config
        rng = make_rng(cfg.seed)
        A_cl, _ = self.problem.closed_loop(self.gain)
        A_d = expm(A_cl * cfg.T)
        X_bar = self.problem.value_matrix(self.gain)

        X = np.zeros((2 * cfg.n_measurements, N_STATE))
        rb = np.zeros(cfg.n_measurements)
        for k in range(cfg.n_measurements):
            x0 = self.sample_initial_state(rng)
            xT = A_d @ x0
            X[2 * k] = x0
            X[2 * k + 1] = xT
            rb[k] = -self.problem.log_gamma / (1 - self.gamma_T) * (x0 @ X_bar @ x0 - self.gamma_T * xT @ X_bar @ xT)
        return RewardData(X=X, c=(1 - self.gamma_T) * rb)

    def noise_free_regression(self) -> ValueRegressionResult:
        data = self.noise_free_data()
        return self._weight_regression(
            "Noise-free rewards",
            data,
            self.weight_prior(),
            self.config.noise_free_std,
            self.problem.value_weights(self.gain),
            bias=False,
            reference_offset=None,
        )

    # =========================================================================
    # Part 2: process noise
    # =========================================================================

    def process_noise_data(self) -> Tuple[RewardData, NDArray]:
        """
        Noisy rollouts from random initial states.

        Returns:
            data: States and rewards
            W: Process noise intensity
        """
        cfg = self.config
        rng = make_rng(cfg.noise_seed)
        A_cl, Q_cl = self.problem.closed_loop(self.gain)
        W = self.process_noise_intensity(A_cl)
        noise = discretize_process_noise(A_cl, W, cfg.dt)

        X = np.zeros((2 * cfg.n_measurements, N_STATE))
        rb = np.zeros(cfg.n_measurements)
        for k in range(cfg.n_measurements):
            x0 = self.sample_initial_state(rng)
            x, value = simulate_discounted_reward(noise, Q_cl, x0, cfg.gamma, self.t, rng)
            X[2 * k] = x[0]
            X[2 * k + 1] = x[-1]
            rb[k] = -self.problem.log_gamma / (1 - self.gamma_T) * value
        return RewardData(X=X, c=(1 - self.gamma_T) * rb), W

    def physical_sigma_c(self, data: RewardData, W: NDArray) -> float:
        """sqrt of the mean finite-horizon reward variance over the initial states."""
        VJT = [self.problem.cost_moments(self.gain, x0, W, self.config.T).VJT for x0 in data.X[::2]]
        return float(np.sqrt(np.mean(VJT)))

    def process_noise_regression(self, data: RewardData, W: NDArray) -> ValueRegressionResult:
        """Tune (σ_c, k_b) by maximum likelihood, then regress the weights."""
        cfg = self.config
        G = self.observation_matrix(data.n_experiments) @ quadratic_features(data.X, bias=True)
        Kw = self.weight_prior()

        tuning = self.tuner.minimize(
            lambda p: weight_space_negative_log_likelihood(G, np.append(Kw, p[1] ** 2), p[0], data.c),
            np.array([cfg.initial_sigma_c, cfg.initial_bias_std]),
            bounds=[(1e-12, None), (1e-12, None)],
            rng=self.tuning_rng,
            label="sigma_c, k_b",
        )
        sigma_c, bias_std = tuning.x
        if cfg.verbose:
            print(f"Tuned sigma_c to {sigma_c:.4g} and k_b to {bias_std:.4g}")

        X_bar = self.problem.value_matrix(self.gain)
        return self._weight_regression(
            "Process noise, tuned (sigma_c, k_b)",
            data,
            np.append(Kw, bias_std**2),
            sigma_c,
            self.problem.value_weights(self.gain, W),
            bias=True,
            reference_offset=float(np.trace(W @ X_bar)),
        )

    # =========================================================================
    # Part 3: all prior variances
    # =========================================================================

    def tuned_prior_regression(
        self, data: RewardData, W: NDArray, previous: ValueRegressionResult
    ) -> ValueRegressionResult:
        """Tune every weight prior variance and σ_c, starting from the previous result."""
        cfg = self.config
        G = self.observation_matrix(data.n_experiments) @ quadratic_features(data.X, bias=True)
        n_weights = G.shape[1]

        if cfg.verbose:
            print(f"Log-likelihood with sigma_c {previous.sigma_c:.4g}: {previous.log_likelihood:.4f}")

        tuning = self.tuner.minimize_normalized(
            lambda p: weight_space_negative_log_likelihood(G, p[:n_weights], p[n_weights], data.c),
            np.append(previous.prior_variances, previous.sigma_c),
            rng=self.tuning_rng,
            label="weight prior variances, sigma_c",
        )
        prior_variances = tuning.x[:n_weights]
        sigma_c = float(tuning.x[n_weights])

        X_bar = self.problem.value_matrix(self.gain)
        result = self._weight_regression(
            "Process noise, tuned prior variances",
            data,
            prior_variances,
            sigma_c,
            self.problem.value_weights(self.gain, W),
            bias=True,
            reference_offset=float(np.trace(W @ X_bar)),
        )
        if cfg.verbose:
            print(f"Tuned sigma_c to {sigma_c:.4g}; log-likelihood {result.log_likelihood:.4f}")
        return result

    # =========================================================================
    # Part 4: varying controllers
    # =========================================================================

    def _initial_moment(self) -> NDArray:
        """Ψ₀ = ¼ r rᵀ, the initial state distribution the gains are judged on."""
        return 0.25 * np.outer(self.ranges, self.ranges)

    def _expected_value(self, gain: NDArray, Psi0: NDArray) -> float:
        return self.problem.expected_value(np.atleast_2d(gain), Psi0)

    def controller_data(self) -> RewardData:
        """Noise-free rollouts, each with a random gain from the gain box."""
        cfg = self.config
        rng = make_rng(cfg.seed)
        gain_min = np.array(cfg.gain_min)
        gain_max = np.array(cfg.gain_max)
        W = np.zeros((N_STATE, N_STATE))

        n = cfg.n_controllers
        X = np.zeros((2 * n, N_STATE))
        gains = np.zeros((n, N_STATE))
        rb = np.zeros(n)
        for k in range(n):
            gain = gain_min + rng.random(N_STATE) * (gain_max - gain_min)
            A_cl, Q_cl = self.problem.closed_loop(gain[None, :])
            noise = discretize_process_noise(A_cl, W, cfg.dt)
            x0 = self.sample_initial_state(rng)
            x, value = simulate_discounted_reward(noise, Q_cl, x0, cfg.gamma, self.t, rng)
            X[2 * k] = x[0]
            X[2 * k + 1] = x[-1]
            gains[k] = gain
            rb[k] = -self.problem.log_gamma / (1 - self.gamma_T) * value
            if cfg.verbose and (k + 1) % 100 == 0:
                print(f"Completed {k + 1}/{n} controller rollouts...")
        return RewardData(X=X, c=(1 - self.gamma_T) * rb, gains=gains)

    def controller_kernel(self) -> ProductKernel:
        """
        (φ(x)ᵀ K_w φ(x')) · SE(F̃, F̃') on inputs [φ(x) (11), F̃ (4)].
        """
        cfg = self.config
        n_features = len(self.weight_prior()) + 1
        Kw = np.append(self.weight_prior(), cfg.controller_bias_std**2)
        gain_lengthscales = 0.25 * cfg.beta_range / self.ranges
        return ProductKernel(
            LinearKernel(Kw, active_dims=range(n_features)),
            create_se_kernel(gain_lengthscales, active_dims=range(n_features, n_features + N_STATE)),
        )

    def varying_controller_regression(self, data: Optional[RewardData] = None) -> ControllerValueResult:
        cfg = self.config
        Psi0 = self._initial_moment()
        gain_min = np.array(cfg.gain_min)
        gain_max = np.array(cfg.gain_max)

        # Analytic references
        optimal_gain = self.problem.optimal_gain()
        optimal_value = self._expected_value(optimal_gain, Psi0)
        if cfg.verbose:
            print(f"The optimal control gains are {np.round(optimal_gain.flatten(), 4)}. The value is {optimal_value:.4f}.")

        def two_gain(g):
            return np.array([[g[0], g[1], 0.0, 0.0]])

        two = self.tuner.minimize(
            lambda g: -self._expected_value(two_gain(g), Psi0),
            optimal_gain.flatten()[:2],
            rng=self.tuning_rng,
            label="two-gain optimum",
        )
        two_gain_value = -two.fun
        if cfg.verbose:
            print(f"Using only the first two gains, the optimum is {np.round(two.x, 4)}. The value is {two_gain_value:.4f}.")

        # Regression
        data = data or self.controller_data()
        Z = np.hstack([quadratic_features(data.X, bias=True), np.repeat(data.gains, 2, axis=0)])
        M = self.observation_matrix(data.n_experiments)
        kernel = self.controller_kernel()

        sigma_c = cfg.controller_sigma_c
        if cfg.tune_controller_sigma_c:
            K_obs = M @ kernel(Z) @ M.T
            tuning = self.tuner.minimize(
                lambda p: negative_log_marginal_likelihood(K_obs + p[0] ** 2 * np.eye(len(data.c)), data.c),
                np.array([sigma_c]),
                bounds=[(1e-12, None)],
                rng=self.tuning_rng,
                label="sigma_c",
            )
            sigma_c = float(tuning.x[0])
        if cfg.verbose:
            print(f"The value of sigma_c used is {sigma_c:.4g}.")

        gp = ExactGP(kernel, noise_variance=sigma_c**2, observation_matrix=M).fit(Z, data.c)

        def trial_inputs(gains: NDArray) -> NDArray:
            features = np.tile(moment_features(Psi0, bias=True), (len(gains), 1))
            return np.hstack([features, gains])

        n = cfg.n_grid
        X1, X2 = np.meshgrid(
            np.linspace(gain_min[0], gain_max[0], n),
            np.linspace(gain_min[1], gain_max[1], n),
        )
        grid_gains = np.zeros((n * n, N_STATE))
        grid_gains[:, 0] = X1.ravel()
        grid_gains[:, 1] = X2.ravel()
        prediction = gp.predict(trial_inputs(grid_gains))
        reference = np.array([self._expected_value(g, Psi0) for g in grid_gains]).reshape(X1.shape)
        surface = ValueSurface(X1, X2, prediction.mean.reshape(X1.shape), prediction.std.reshape(X1.shape), reference)

        # Maximize the predicted value within the plotted gain box
        best = self.tuner.minimize(
            lambda g: -gp.predict(trial_inputs(two_gain(g))).mean[0],
            np.array(cfg.gain_guess, dtype=float),
            bounds=list(zip(gain_min[:2], gain_max[:2])),
            rng=self.tuning_rng,
            label="predicted gain optimum",
        )
        if cfg.verbose:
            print(f"The optimal gains predicted by the GP are {np.round(best.x, 4)}. The value is {-best.fun:.4f}.")

        return ControllerValueResult(
            optimal_gain=optimal_gain,
            optimal_value=optimal_value,
            two_gain_optimum=two.x,
            two_gain_value=two_gain_value,
            predicted_gain=best.x,
            predicted_value=-best.fun,
            sigma_c=sigma_c,
            surface=surface,
        )

    # =========================================================================
    # Plotting
    # =========================================================================

    def plot_surface(
        self,
        surface: ValueSurface,
        name: str,
        labels: Tuple[str, str, str],
        view: Tuple[float, float],
        zlim: Optional[Tuple[float, float]] = None,
    ) -> plt.Figure:
        visualizer = SurfaceVisualizer(self.fig_config)
        ax = visualizer.plot_surface(
            surface.X1, surface.X2, surface.mean, surface.std, reference=surface.reference, labels=labels, view=view, zlim=zlim
        )
        fig = ax.get_figure()
        if self.config.output_dir is not None:
            save_figure(fig, self.config.output_dir, name, self.fig_config)
        return fig

    # =========================================================================
    # All parts
    # =========================================================================

    def run(self, parts=(1, 2, 3, 4)) -> CostApproximationResults:
        cfg = self.config
        results = CostApproximationResults()
        state_labels = ("h₀", "α₀", "V(x₀)")
        noise_zlim = (-3.0, 0.5)

        if 1 in parts:
            results.noise_free = self.noise_free_regression()

        if 2 in parts or 3 in parts:
            data, W = self.process_noise_data()
            results.process_noise = self.process_noise_regression(data, W)
            results.physical_sigma_c = self.physical_sigma_c(data, W)
            if cfg.verbose:
                print(f"The physically correct value of sigma_c would be {results.physical_sigma_c:.4g}.")
            if 3 in parts:
                results.tuned_priors = self.tuned_prior_regression(data, W, results.process_noise)

        if 4 in parts:
            results.varying_controllers = self.varying_controller_regression()

        if cfg.make_plots:
            if results.noise_free is not None:
                results.figures.append(
                    self.plot_surface(results.noise_free.surface, "ValueFunctionSingleController", state_labels, (25, -202))
                )
            if results.process_noise is not None:
                results.figures.append(
                    self.plot_surface(
                        results.process_noise.surface,
                        "ValueFunctionSingleControllerWithNoise",
                        state_labels,
                        (14, -236),
                        noise_zlim,
                    )
                )
            if results.tuned_priors is not None:
                results.figures.append(
                    self.plot_surface(
                        results.tuned_priors.surface,
                        "ValueFunctionSingleControllerWithNoiseTunedHyperparameters",
                        state_labels,
                        (14, -236),
                        noise_zlim,
                    )
                )
            if results.varying_controllers is not None:
                results.figures.append(
                    self.plot_surface(
                        results.varying_controllers.surface,
                        "ValueFunctionForVaryingController",
                        ("C_h", "C_α", "V(x₀, θ)"),
                        (12, 26),
                    )
                )

        return results


def run_cost_approximation(
    config: Optional[CostApproximationConfig] = None, parts=(1, 2, 3, 4)
) -> CostApproximationResults:
    """Run the selected parts of the value function experiments."""
    return CostApproximationExperiment(config).run(parts)


def summarize(results: CostApproximationResults) -> Dict[str, float]:
    """Headline numbers of a run."""
    summary = {}
    for key in ("noise_free", "process_noise", "tuned_priors"):
        result = getattr(results, key)
        if result is not None:
            summary[f"{key}_max_error_pct"] = float(np.max(np.abs(result.error_percentages)))
            summary[f"{key}_sigma_c"] = result.sigma_c
    if results.physical_sigma_c is not None:
        summary["physical_sigma_c"] = results.physical_sigma_c
    if results.varying_controllers is not None:
        summary["predicted_value"] = results.varying_controllers.predicted_value
        summary["two_gain_value"] = results.varying_controllers.two_gain_value
    return summary
