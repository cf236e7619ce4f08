import numpy as np
import pytest

from pitchplunge_gp.gp.exact_gp import ExactGP
from pitchplunge_gp.gp.kernels import LinearKernel, quadratic_features, upper_triangular
from pitchplunge_gp.gp.weight_space import WeightSpaceRegression


def test_posterior_matches_function_space(rng) -> None:
    X = rng.standard_normal((30, 3))
    w = np.array([1.0, -2.0, 0.5])
    y = X @ w + 0.1 * rng.standard_normal(30)
    Kw = np.array([2.0, 2.0, 2.0])
    Xs = rng.standard_normal((5, 3))

    weights = WeightSpaceRegression(Kw, noise_covariance=0.01).fit(X, y)
    function = ExactGP(LinearKernel(Kw), noise_variance=0.01).fit(X, y)

    np.testing.assert_allclose(weights.predict(Xs).mean, function.predict(Xs).mean, atol=1e-8)
    np.testing.assert_allclose(weights.predict(Xs).variance, function.predict(Xs).variance, atol=1e-8)
    assert weights.log_marginal_likelihood == pytest.approx(function.log_marginal_likelihood)


def test_closed_form_weights(rng) -> None:
    Phi = rng.standard_normal((10, 2))
    c = rng.standard_normal(10)
    Kw = np.diag([1.0, 3.0])
    model = WeightSpaceRegression(Kw, noise_covariance=0.5).fit(Phi, c)

    Sigma_w = np.linalg.inv(Phi.T @ Phi / 0.5 + np.linalg.inv(Kw))
    np.testing.assert_allclose(model.weight_distribution.cov, Sigma_w, atol=1e-10)
    np.testing.assert_allclose(model.weight_distribution.mean, Sigma_w @ Phi.T @ c / 0.5, atol=1e-10)


@pytest.mark.parametrize("noise", [0.04, np.full(12, 0.04), 0.04 * np.eye(12)])
def test_noise_covariance_forms_agree(rng, noise) -> None:
    Phi = rng.standard_normal((12, 2))
    c = rng.standard_normal(12)
    reference = WeightSpaceRegression(np.ones(2), noise_covariance=0.04).fit(Phi, c)
    model = WeightSpaceRegression(np.ones(2), noise_covariance=noise).fit(Phi, c)
    np.testing.assert_allclose(model.weight_distribution.mean, reference.weight_distribution.mean)


def test_weights_converge_to_quadratic_form(rng) -> None:
    # Value-like targets with start/end differences, as in discounted rewards
    P = np.array([[2.0, 0.3], [0.3, 1.0]])
    w_true = upper_triangular(P)
    gamma_T = 0.5
    errors = []
    for n in (2, 20, 500):
        X = rng.uniform(-1, 1, (2 * n, 2))
        Phi = quadratic_features(X)
        M = np.kron(np.eye(n), [1.0, -gamma_T])
        c = M @ (Phi @ w_true) + 1e-3 * rng.standard_normal(n)
        model = WeightSpaceRegression(np.full(3, 10.0), noise_covariance=1e-6, observation_matrix=M).fit(Phi, c)
        errors.append(np.max(np.abs(model.weight_distribution.mean - w_true)))
        assert np.all(model.weight_distribution.std > 0)
    assert errors[-1] < errors[0]
    assert errors[-1] < 1e-3


def test_feature_count_is_checked(rng) -> None:
    with pytest.raises(ValueError):
        WeightSpaceRegression(np.ones(3)).fit(rng.standard_normal((4, 2)), np.zeros(4))


def test_use_before_fit_raises() -> None:
    model = WeightSpaceRegression(np.ones(2))
    with pytest.raises(RuntimeError):
        _ = model.weight_distribution
    with pytest.raises(RuntimeError):
        model.predict(np.zeros((1, 2)))
