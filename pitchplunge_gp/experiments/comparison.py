"""
Noisy-Input Regression Comparison

Repeatedly samples a function from an SE-kernel GP prior, measures it at
uniformly drawn inputs with input noise and output noise, and compares seven
regression methods on a dense trial grid:

    1. Exact GP on the true inputs with the true hyperparameters
    2. Exact GP on the noisy inputs with ML-tuned hyperparameters
    3. FITC on all measurements with the hyperparameters of method 2
    4. NIGP on the subset
    5. SONIG on the subset with the NIGP hyperparameters
    6. SONIG on all measurements with the NIGP hyperparameters
    7. SONIG started from an NIGP posterior on the first points, then
       continued sequentially on the remaining points

Methods 1, 2, 4 and 5 use the first n_subset measurements. An iteration in
which a SONIG run degenerates is discarded and re-drawn; its computation
times are not counted.

Results are summarized by sorting each metric over the iterations and
averaging the best part_used fraction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import matplotlib.pyplot as plt
import numpy as np
from numpy.typing import NDArray

from ..gp.distributions import DegenerateUpdateError, GaussianDistribution, sample_gaussian
from ..gp.exact_gp import ExactGP, GPPrediction
from ..gp.kernels import create_se_kernel
from ..gp.nigp import train_nigp
from ..gp.sonig import SONIG
from ..gp.sparse_gp import SparseGP
from ..learning.hyperparameter_tuner import tune_gp_hyperparameters
from ..utils.profiler import Profiler
from .analysis import RegressionMetrics, format_method_table, trimmed_best_mean
from .config import ComparisonConfig, make_rng
from .visualization import FigureConfig, GPVisualizer, save_figure

METHOD_NAMES = (
    "GP (true inputs)",
    "GP (tuned)",
    "FITC",
    "NIGP",
    "SONIG (subset)",
    "SONIG (all)",
    "NIGP + SONIG",
)

# Case numbers of the methods in the thesis figures
THESIS_CASES = (1, 2, 7, 3, 4, 5, 6)


@dataclass
class ComparisonData:
    """Measurements and true function of one iteration."""

    X_true: NDArray  # True measurement inputs (nm,)
    X_noisy: NDArray  # Measured inputs (nm,)
    f_true: NDArray  # Function at the true inputs (nm,)
    y_noisy: NDArray  # Measured outputs (nm,)
    f_trial: NDArray  # Function at the trial inputs (ns,)


@dataclass
class ComparisonSample:
    """Stored predictions of one iteration, for plotting."""

    data: ComparisonData
    predictions: List[GPPrediction]
    inducing: List[Optional[GaussianDistribution]]
    hyperparameters: Dict[str, Dict[str, float]] = field(default_factory=dict)
    timing_ms: Dict[str, float] = field(default_factory=dict)  # Wall-clock ms per method


@dataclass
class ComparisonResults:
    """Metrics of all iterations."""

    config: ComparisonConfig
    metrics: NDArray  # (n_iterations, n_methods, 3): mse, mean variance, mean normalized error
    samples: List[ComparisonSample]
    n_discarded: int = 0
    timing: Dict[str, float] = field(default_factory=dict)  # Mean ms per method

    @property
    def n_iterations(self) -> int:
        return self.metrics.shape[0]

    def summary_table(self) -> NDArray:
        """Trimmed means of [mse, mean variance, mean normalized error] per method."""
        return trimmed_best_mean(self.metrics, self.config.part_used)

    def summary(self) -> str:
        lines = [
            "Noisy-Input Regression Comparison",
            f"Iterations: {self.n_iterations} (discarded and re-drawn: {self.n_discarded}), "
            f"best {self.config.part_used * 100:.0f}% averaged",
            format_method_table(METHOD_NAMES, self.summary_table()),
        ]
        if self.timing:
            lines.append("Mean computation time per method:")
            for name, ms in self.timing.items():
                lines.append(f"  {name:24s}: {ms:10.1f} ms")
        return "\n".join(lines)


class ComparisonExperiment:
    """
    Runs the seven-method comparison.

    Example:
        >>> experiment = ComparisonExperiment(ComparisonConfig(n_iterations=20))
        >>> results = experiment.run()
        >>> print(results.summary())
        >>> experiment.plot_sample(results.samples[0])
    """

    def __init__(self, config: Optional[ComparisonConfig] = None):
        self.config = config or ComparisonConfig()
        cfg = self.config
        if not cfg.n_nigp_init < cfg.n_measurements or cfg.n_subset > cfg.n_measurements:
            raise ValueError("Point counts must satisfy n_nigp_init < n_measurements and n_subset <= n_measurements")

        self.Xs = np.linspace(cfg.x_min, cfg.x_max, cfg.n_trial)[:, None]
        self.Xu = np.linspace(cfg.x_min, cfg.x_max, cfg.n_inducing)[:, None]
        self.profiler = Profiler()

    # =========================================================================
    # Data
    # =========================================================================

    def generate_data(self, rng: np.random.Generator) -> ComparisonData:
        """
        Sample a function from the GP prior and measure it.

        The function is sampled jointly at the true measurement inputs and
        the trial inputs.
        """
        cfg = self.config
        nm = cfg.n_measurements

        X_true = cfg.x_min + rng.random(nm) * (cfg.x_max - cfg.x_min)
        X_noisy = X_true + cfg.input_noise_std * rng.standard_normal(nm)

        kernel = create_se_kernel(cfg.lengthscale, signal_std=cfg.signal_std)
        X_all = np.concatenate([X_true[:, None], self.Xs])
        sample = sample_gaussian(np.zeros(len(X_all)), kernel(X_all), rng, epsilon=cfg.sample_epsilon)[0]

        f_true = sample[:nm]
        y_noisy = f_true + cfg.output_noise_std * rng.standard_normal(nm)
        return ComparisonData(X_true=X_true, X_noisy=X_noisy, f_true=f_true, y_noisy=y_noisy, f_trial=sample[nm:])

    # =========================================================================
    # Methods
    # =========================================================================

    def _train_nigp(self, data: ComparisonData, n_points: int, rng: np.random.Generator):
        cfg = self.config
        return train_nigp(
            data.X_noisy[:n_points, None],
            data.y_noisy[:n_points],
            lengthscales=cfg.lengthscale,
            signal_std=cfg.signal_std,
            noise_std=cfg.output_noise_std,
            input_noise_std=cfg.input_noise_std,
            config=cfg.nigp,
            rng=rng,
        )

    def run_iteration(self, data: ComparisonData, rng: np.random.Generator) -> ComparisonSample:
        """
        Apply all methods to one data set.

        Raises:
            DegenerateUpdateError: If one of the SONIG runs degenerates
        """
        cfg = self.config
        nmu = cfg.n_subset
        nmn = cfg.n_nigp_init
        X_true = data.X_true[:, None]
        X_noisy = data.X_noisy[:, None]
        y = data.y_noisy

        predictions: List[GPPrediction] = []
        inducing: List[Optional[GaussianDistribution]] = []
        hyperparameters: Dict[str, Dict[str, float]] = {}
        timings = Profiler()

        # 1. Exact GP, true inputs and hyperparameters
        with timings.time(METHOD_NAMES[0]):
            gp = ExactGP(create_se_kernel(cfg.lengthscale, cfg.signal_std), noise_variance=cfg.output_noise_std**2)
            predictions.append(gp.fit(X_true[:nmu], y[:nmu]).predict(self.Xs, return_cov=True))
        inducing.append(None)

        # 2. Exact GP, noisy inputs, tuned hyperparameters
        with timings.time(METHOD_NAMES[1]):
            tuned = tune_gp_hyperparameters(
                X_noisy[:nmu],
                y[:nmu],
                lengthscales=cfg.lengthscale,
                signal_std=cfg.signal_std,
                noise_std=cfg.output_noise_std,
                config=cfg.tuning,
                rng=rng,
            )
            gp = ExactGP(tuned.kernel(), noise_variance=tuned.noise_std**2)
            predictions.append(gp.fit(X_noisy[:nmu], y[:nmu]).predict(self.Xs, return_cov=True))
        inducing.append(None)
        hyperparameters["tuned"] = {
            "lx": float(tuned.lengthscales[0]),
            "ly": tuned.signal_std,
            "sy": tuned.noise_std,
        }
        if cfg.verbose:
            print(
                f"  GP tuning: lx {tuned.lengthscales[0]:.4g}, ly {tuned.signal_std:.4g}, sy {tuned.noise_std:.4g}"
            )

        # 3. FITC on all measurements
        with timings.time(METHOD_NAMES[2]):
            fitc = SparseGP(tuned.kernel(), self.Xu, noise_variance=tuned.noise_std**2).fit(X_noisy, y)
            predictions.append(fitc.predict(self.Xs, return_cov=True))
        inducing.append(fitc.inducing_distribution)

        # 4. NIGP
        with timings.time(METHOD_NAMES[3]):
            nigp = self._train_nigp(data, nmu, rng)
            predictions.append(nigp.gp().predict(self.Xs, return_cov=True))
        inducing.append(None)
        hyp = nigp.to_sonig_hyperparameters()
        hyperparameters["nigp"] = {"lx": float(hyp.lx[0]), "ly": hyp.ly, "sx": float(hyp.sx[0]), "sy": hyp.sy}
        if cfg.verbose:
            print(f"  NIGP: lx {hyp.lx[0]:.4g}, sx {hyp.sx[0]:.4g}, ly {hyp.ly:.4g}, sy {hyp.sy:.4g}")

        # 5, 6. SONIG with the NIGP hyperparameters
        for name, n_points in ((METHOD_NAMES[4], nmu), (METHOD_NAMES[5], cfg.n_measurements)):
            with timings.time(name):
                sonig = SONIG(hyp, inducing_points=self.Xu)
                sonig.implement_measurements(X_noisy[:n_points], y[:n_points])
                predictions.append(sonig.predict(self.Xs))
            inducing.append(sonig.fu)

        # 7. NIGP on the first points, SONIG on the rest
        with timings.time(METHOD_NAMES[6]):
            nigp_init = self._train_nigp(data, nmn, rng)
            sonig = SONIG(nigp_init.to_sonig_hyperparameters(), inducing_points=self.Xu)
            sonig.set_inducing_distribution(nigp_init.gp().predict(self.Xu, return_cov=True).as_distribution())
            sonig.implement_measurements(X_noisy[nmn:], y[nmn:])
            predictions.append(sonig.predict(self.Xs))
        inducing.append(sonig.fu)

        return ComparisonSample(
            data=data,
            predictions=predictions,
            inducing=inducing,
            hyperparameters=hyperparameters,
            timing_ms=timings.mean_ms(),
        )

    # =========================================================================
    # Main loop
    # =========================================================================

    def run(self) -> ComparisonResults:
        """
        Run all iterations, re-drawing iterations with a degenerate SONIG run.

        Raises:
            RuntimeError: If more than max_redraws iterations are discarded
        """
        cfg = self.config
        rng = make_rng(cfg.seed)
        self.profiler.reset()

        metrics = []
        samples: List[ComparisonSample] = []
        n_discarded = 0

        while len(metrics) < cfg.n_iterations:
            if cfg.verbose:
                print(f"Starting iteration {len(metrics) + 1}/{cfg.n_iterations}")

            data = self.generate_data(rng)
            try:
                sample = self.run_iteration(data, rng)
            except DegenerateUpdateError as e:
                n_discarded += 1
                if cfg.verbose:
                    print(f"  Problems occurred ({e}). Re-drawing iteration {len(metrics) + 1}.")
                if n_discarded > cfg.max_redraws:
                    raise RuntimeError(f"More than {cfg.max_redraws} iterations discarded") from e
                continue

            metrics.append(
                [RegressionMetrics.from_prediction(p.mean, p.std, data.f_trial).as_array() for p in sample.predictions]
            )
            samples.append(sample)
            for name, ms in sample.timing_ms.items():
                self.profiler.record(name, ms)

        timing = self.profiler.mean_ms()
        results = ComparisonResults(
            config=cfg,
            metrics=np.array(metrics),
            samples=samples,
            n_discarded=n_discarded,
            timing=timing,
        )
        if cfg.verbose:
            print(results.summary())
        return results

    # =========================================================================
    # Plotting
    # =========================================================================

    def plot_sample(self, sample: ComparisonSample) -> List[plt.Figure]:
        """
        One figure per method: prediction bands, measurements used, true
        function and inducing points.

        Figures are saved as ComparisonSampleCase<k>.png when an output
        directory is configured (k the case number of the thesis).
        """
        cfg = self.config
        fig_config = FigureConfig(use_color=cfg.use_color)
        visualizer = GPVisualizer(fig_config)
        data = sample.data

        points_used = (
            cfg.n_subset,
            cfg.n_subset,
            cfg.n_measurements,
            cfg.n_subset,
            cfg.n_subset,
            cfg.n_measurements,
            cfg.n_measurements,
        )
        ylim = (np.floor(np.min(data.y_noisy) * 2) / 2, np.ceil(np.max(data.y_noisy) * 2) / 2)

        figures = []
        for i, (prediction, belief) in enumerate(zip(sample.predictions, sample.inducing)):
            fig, ax = plt.subplots(figsize=fig_config.figsize)
            n = points_used[i]
            x_measured = data.X_true[:n] if i == 0 else data.X_noisy[:n]
            inducing = None if belief is None else (self.Xu[:, 0], belief.mean, belief.std)
            visualizer.plot_prediction_1d(
                self.Xs[:, 0],
                prediction.mean,
                prediction.std,
                x_train=x_measured,
                y_train=data.y_noisy[:n],
                truth=data.f_trial,
                inducing=inducing,
                ylim=ylim,
                ax=ax,
            )
            ax.set_title(METHOD_NAMES[i])
            if cfg.output_dir is not None:
                save_figure(fig, cfg.output_dir, f"ComparisonSampleCase{THESIS_CASES[i]}", fig_config)
            figures.append(fig)
        return figures


def run_comparison(config: Optional[ComparisonConfig] = None) -> ComparisonResults:
    """Run the comparison and plot the configured sample."""
    experiment = ComparisonExperiment(config)
    results = experiment.run()
    if experiment.config.make_plots and results.samples:
        index = min(experiment.config.plot_sample, len(results.samples) - 1)
        experiment.plot_sample(results.samples[index])
    return results
