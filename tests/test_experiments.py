import matplotlib.pyplot as plt
import numpy as np
import pytest

from pitchplunge_gp.experiments import (
    ComparisonConfig,
    ComparisonExperiment,
    CostApproximationConfig,
    CostApproximationExperiment,
    StatePredictionConfig,
    StatePredictionExperiment,
    run_comparison,
    run_cost_approximation,
    run_state_prediction,
)
from pitchplunge_gp.experiments.comparison import METHOD_NAMES
from pitchplunge_gp.experiments.cost_approximation import summarize
from pitchplunge_gp.gp.distributions import DegenerateUpdateError
from pitchplunge_gp.gp.kernels import quadratic_features


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


def small_comparison(**kwargs) -> ComparisonConfig:
    settings = dict(
        n_iterations=2,
        n_measurements=60,
        n_subset=30,
        n_nigp_init=20,
        n_trial=31,
        n_inducing=11,
        verbose=False,
        make_plots=False,
    )
    settings.update(kwargs)
    return ComparisonConfig(**settings)


def small_cost(**kwargs) -> CostApproximationConfig:
    settings = dict(n_measurements=20, n_controllers=30, dt=0.01, n_grid=7, verbose=False, make_plots=False)
    settings.update(kwargs)
    return CostApproximationConfig(**settings)


def small_state(**kwargs) -> StatePredictionConfig:
    settings = dict(n_measurements=15, dt=0.005, n_grid=5, verbose=False, make_plots=False)
    settings.update(kwargs)
    return StatePredictionConfig(**settings)


# =============================================================================
# Comparison
# =============================================================================


def test_comparison_point_counts_are_checked() -> None:
    with pytest.raises(ValueError):
        ComparisonExperiment(small_comparison(n_nigp_init=60))
    with pytest.raises(ValueError):
        ComparisonExperiment(small_comparison(n_subset=80))


def test_comparison_data_shapes(rng) -> None:
    experiment = ComparisonExperiment(small_comparison())
    data = experiment.generate_data(rng)
    assert data.X_true.shape == data.X_noisy.shape == data.y_noisy.shape == (60,)
    assert data.f_trial.shape == (31,)
    assert not np.allclose(data.X_true, data.X_noisy)


def test_comparison_run() -> None:
    results = run_comparison(small_comparison())
    assert results.metrics.shape == (2, len(METHOD_NAMES), 3)
    assert np.all(np.isfinite(results.metrics[:, :, :2]))
    assert np.all(results.metrics[:, :, 1] > 0)
    assert results.summary_table().shape == (len(METHOD_NAMES), 3)
    assert "FITC" in results.summary()
    assert set(results.timing) == set(METHOD_NAMES)


def test_comparison_is_reproducible() -> None:
    first = ComparisonExperiment(small_comparison(n_iterations=1)).run()
    second = ComparisonExperiment(small_comparison(n_iterations=1)).run()
    np.testing.assert_allclose(first.metrics, second.metrics)


def test_discarded_iterations_are_not_timed(monkeypatch) -> None:
    experiment = ComparisonExperiment(small_comparison(n_iterations=1))
    run_iteration = experiment.run_iteration
    calls = []

    def degenerate_first(data, rng):
        sample = run_iteration(data, rng)
        calls.append(sample)
        if len(calls) == 1:
            raise DegenerateUpdateError("posterior covariance is not positive semidefinite")
        return sample

    monkeypatch.setattr(experiment, "run_iteration", degenerate_first)
    results = experiment.run()

    assert results.n_discarded == 1
    assert len(calls) == 2
    for name in METHOD_NAMES:
        assert experiment.profiler.get_stats(name).n_calls == 1
        assert results.timing[name] == pytest.approx(calls[1].timing_ms[name])


def test_comparison_sample_plots(tmp_path) -> None:
    experiment = ComparisonExperiment(small_comparison(n_iterations=1, output_dir=str(tmp_path)))
    results = experiment.run()
    figures = experiment.plot_sample(results.samples[0])
    assert len(figures) == len(METHOD_NAMES)
    assert (tmp_path / "ComparisonSampleCase1.png").exists()
    assert (tmp_path / "ComparisonSampleCase7.png").exists()


# =============================================================================
# Cost approximation
# =============================================================================


def test_noise_free_weights_are_recovered() -> None:
    result = CostApproximationExperiment(small_cost()).noise_free_regression()
    error = result.weights.mean - result.true_weights
    assert np.linalg.norm(error) < 1e-2 * np.linalg.norm(result.true_weights)
    assert result.surface.mean.shape == (7, 7)


def test_noise_free_data_follow_value_difference() -> None:
    experiment = CostApproximationExperiment(small_cost())
    data = experiment.noise_free_data()
    w = experiment.problem.value_weights(experiment.gain)
    V = quadratic_features(data.X) @ w
    np.testing.assert_allclose(data.c, V[::2] - experiment.gamma_T * V[1::2], rtol=1e-8)
    np.testing.assert_allclose(experiment.observation_matrix(2), [[1, -experiment.gamma_T, 0, 0], [0, 0, 1, -experiment.gamma_T]])


def test_process_noise_parts() -> None:
    experiment = CostApproximationExperiment(small_cost())
    data, W = experiment.process_noise_data()
    assert data.n_experiments == 20
    assert np.any(W != 0)

    part2 = experiment.process_noise_regression(data, W)
    assert part2.sigma_c > 0
    assert part2.weights.dim == 11
    assert part2.surface.reference is not None
    assert experiment.physical_sigma_c(data, W) > 0

    part3 = experiment.tuned_prior_regression(data, W, part2)
    assert part3.prior_variances.shape == (11,)
    assert np.all(part3.prior_variances > 0)
    assert part3.log_likelihood >= part2.log_likelihood - 1e-6 * abs(part2.log_likelihood)


def test_varying_controllers() -> None:
    cfg = small_cost()
    result = CostApproximationExperiment(cfg).varying_controller_regression()
    assert result.optimal_gain.shape == (1, 4)
    assert result.two_gain_value <= result.optimal_value + 1e-9 * abs(result.optimal_value)
    assert cfg.gain_min[0] - 1e-9 <= result.predicted_gain[0] <= cfg.gain_max[0] + 1e-9
    assert cfg.gain_min[1] - 1e-9 <= result.predicted_gain[1] <= cfg.gain_max[1] + 1e-9
    assert result.surface.mean.shape == result.surface.reference.shape == (7, 7)
    assert np.all(result.surface.std >= 0)


def test_cost_figures_are_saved(tmp_path) -> None:
    results = run_cost_approximation(small_cost(make_plots=True, output_dir=str(tmp_path)), parts=(1,))
    assert len(results.figures) == 1
    assert (tmp_path / "ValueFunctionSingleController.png").exists()
    assert results.process_noise is None
    assert "noise_free_max_error_pct" in summarize(results)


# =============================================================================
# State prediction
# =============================================================================


def test_linear_data_recover_system_matrix() -> None:
    experiment = StatePredictionExperiment(small_state())
    data = experiment.generate_data()
    run = experiment.linear_regression("Linear data", data.inputs, data.linear_outputs)
    error = np.abs(run.system_matrix - experiment.true_system_matrix)
    assert np.all(error <= 3 * run.system_matrix_std + 1e-12)
    assert len(run.surfaces) == 4
    assert run.surfaces[0].mean.shape == (5, 5)


def test_state_prediction_run() -> None:
    results = run_state_prediction(small_state())
    assert set(results.runs) == {"linear", "nonlinear", "se_plus_linear"}
    assert results.true_system_matrix.shape == (4, 5)
    for run in results.runs.values():
        assert len(run.log_likelihoods) == 4
        assert all(np.isfinite(run.log_likelihoods))
    assert results.runs["se_plus_linear"].system_matrix is None
    assert results.figures == []


def test_state_prediction_figures_are_saved(tmp_path) -> None:
    experiment = StatePredictionExperiment(small_state(output_dir=str(tmp_path)))
    data = experiment.generate_data()
    figures = experiment.plot_run("se_plus_linear", experiment.se_plus_linear_regression(data))
    assert len(figures) == 2
    assert (tmp_path / "NextStatePredictionSEPlusLinear1.png").exists()
    assert (tmp_path / "NextStatePredictionSEPlusLinear2.png").exists()


def test_default_nonlinear_data_are_finite() -> None:
    experiment = StatePredictionExperiment(StatePredictionConfig(verbose=False, make_plots=False))
    data = experiment.generate_data()
    assert data.inputs.shape == (30, 5)
    assert np.all(np.isfinite(data.outputs))
    assert data.n_discarded == 0


def test_diverged_rollouts_are_redrawn(monkeypatch) -> None:
    experiment = StatePredictionExperiment(small_state())
    simulate = experiment.system.simulate
    calls = []

    def diverge_first(*args, **kwargs):
        t, x, u = simulate(*args, **kwargs)
        calls.append(np.array(args[0]))
        if len(calls) == 1:
            x = x.copy()
            x[-1] = np.nan
        return t, x, u

    monkeypatch.setattr(experiment.system, "simulate", diverge_first)
    data = experiment.generate_data()

    assert data.n_discarded == 1
    assert len(calls) == 16
    assert np.all(np.isfinite(data.outputs))
    np.testing.assert_allclose(data.inputs[0, :4], calls[1])


def test_too_many_diverged_rollouts_raise(monkeypatch) -> None:
    experiment = StatePredictionExperiment(small_state(max_redraws=2))

    def diverge(x0, *args, **kwargs):
        return np.zeros(2), np.full((2, 4), np.inf), np.zeros((2, 1))

    monkeypatch.setattr(experiment.system, "simulate", diverge)
    with pytest.raises(RuntimeError, match="diverged"):
        experiment.generate_data()
