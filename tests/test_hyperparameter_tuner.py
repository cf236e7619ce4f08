import numpy as np
import pytest

from pitchplunge_gp.learning.hyperparameter_tuner import (
    HyperparameterConfig,
    HyperparameterTuner,
    se_negative_log_likelihood,
    tune_gp_hyperparameters,
)


def quadratic(x):
    return float(np.sum((x - np.array([1.0, -2.0])) ** 2))


def test_minimize_quadratic() -> None:
    tuner = HyperparameterTuner()
    result = tuner.minimize(quadratic, np.zeros(2), label="quadratic")
    np.testing.assert_allclose(result.x, [1.0, -2.0], atol=1e-4)
    assert result.fun == pytest.approx(0.0, abs=1e-8)
    assert tuner.history[0]["label"] == "quadratic"
    assert tuner.get_statistics()["n_tunings"] == 1


def test_bounds_are_respected() -> None:
    result = HyperparameterTuner().minimize(quadratic, np.full(2, 0.5), bounds=[(0.0, 0.5), (0.0, None)])
    np.testing.assert_allclose(result.x, [0.5, 0.0], atol=1e-6)


def test_failing_evaluations_become_infinite() -> None:
    def objective(x):
        if x[0] < 0:
            raise np.linalg.LinAlgError("not positive definite")
        return float((x[0] - 1.0) ** 2)

    result = HyperparameterTuner().minimize(objective, np.array([2.0]))
    assert result.x[0] == pytest.approx(1.0, abs=1e-4)


def test_non_finite_start_raises() -> None:
    with pytest.raises(ValueError):
        HyperparameterTuner().minimize(lambda x: np.nan, np.zeros(1))


def test_restarts_need_a_generator(rng) -> None:
    tuner = HyperparameterTuner(HyperparameterConfig(n_restarts=2))
    with pytest.raises(ValueError):
        tuner.minimize(quadratic, np.zeros(2))
    result = tuner.minimize(quadratic, np.zeros(2), rng=rng)
    np.testing.assert_allclose(result.x, [1.0, -2.0], atol=1e-4)


def test_minimize_normalized_handles_disparate_scales() -> None:
    target = np.array([1e-6, 1e3])

    def objective(p):
        return float(np.sum(np.log(p / target) ** 2))

    result = HyperparameterTuner().minimize_normalized(objective, np.array([3e-6, 2e2]))
    np.testing.assert_allclose(result.x, target, rtol=1e-3)


def test_tune_se_hyperparameters(rng) -> None:
    X = rng.uniform(-5, 5, (120, 1))
    y = np.sin(X[:, 0]) + 0.1 * rng.standard_normal(120)
    hyp = tune_gp_hyperparameters(X, y, lengthscales=2.0, signal_std=0.5, noise_std=0.5)

    start = se_negative_log_likelihood(np.log([2.0, 0.5, 0.5]), X, y)
    assert hyp.negative_log_likelihood < start
    assert 0.03 < hyp.noise_std < 0.3
    assert hyp.kernel().lengthscales.shape == (1,)
