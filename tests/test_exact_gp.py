import numpy as np
import pytest

from pitchplunge_gp.gp.exact_gp import ExactGP, GPPrediction, negative_log_marginal_likelihood
from pitchplunge_gp.gp.kernels import LinearKernel, create_se_kernel


@pytest.fixture
def data(rng):
    X = rng.uniform(-3, 3, (25, 1))
    y = np.sin(X[:, 0]) + 0.05 * rng.standard_normal(25)
    return X, y


def test_posterior_matches_direct_formulas(data) -> None:
    X, y = data
    Xs = np.linspace(-3, 3, 11)[:, None]
    kernel = create_se_kernel(1.0, signal_std=1.0)
    noise = 0.05**2
    gp = ExactGP(kernel, noise_variance=noise, prior_mean=0.2).fit(X, y)
    pred = gp.predict(Xs, return_cov=True)

    K = kernel(X) + noise * np.eye(len(X))
    Ks = kernel(Xs, X)
    mean = 0.2 + Ks @ np.linalg.solve(K, y - 0.2)
    cov = kernel(Xs) - Ks @ np.linalg.solve(K, Ks.T)
    np.testing.assert_allclose(pred.mean, mean, atol=1e-8)
    np.testing.assert_allclose(pred.cov, cov, atol=1e-8)
    np.testing.assert_allclose(pred.variance, np.diag(cov), atol=1e-8)

    diag_only = gp.predict(Xs)
    assert diag_only.cov is None
    np.testing.assert_allclose(diag_only.std, pred.std, atol=1e-8)


def test_log_marginal_likelihood(data) -> None:
    X, y = data
    kernel = create_se_kernel(1.0)
    gp = ExactGP(kernel, noise_variance=0.01).fit(X, y)
    K = kernel(X) + 0.01 * np.eye(len(X))
    _, logdet = np.linalg.slogdet(K)
    expected = -0.5 * y @ np.linalg.solve(K, y) - 0.5 * logdet - 0.5 * len(y) * np.log(2 * np.pi)
    assert gp.log_marginal_likelihood == pytest.approx(expected)
    assert negative_log_marginal_likelihood(K, y) == pytest.approx(-expected)


def test_extra_noise_widens_posterior(data) -> None:
    X, y = data
    kernel = create_se_kernel(1.0)
    plain = ExactGP(kernel, noise_variance=0.01).fit(X, y)
    noisy = ExactGP(kernel, noise_variance=0.01).fit(X, y, extra_noise=np.full(len(y), 0.5))
    Xs = np.linspace(-2, 2, 5)[:, None]
    assert np.all(noisy.predict(Xs).variance > plain.predict(Xs).variance)


def test_observation_matrix_with_identity_is_plain_regression(data) -> None:
    X, y = data
    kernel = create_se_kernel(1.0)
    plain = ExactGP(kernel, noise_variance=0.01).fit(X, y)
    with_M = ExactGP(kernel, noise_variance=0.01, observation_matrix=np.eye(len(y))).fit(X, y)
    Xs = np.linspace(-3, 3, 7)[:, None]
    np.testing.assert_allclose(with_M.predict(Xs).mean, plain.predict(Xs).mean, atol=1e-10)
    assert with_M.log_marginal_likelihood == pytest.approx(plain.log_marginal_likelihood)


def test_differences_recover_linear_function(rng) -> None:
    # Observations f(x₁) - f(x₂) of a linear function f(x) = 2x
    X = rng.uniform(-1, 1, (40, 1))
    M = np.kron(np.eye(20), [1.0, -1.0])
    c = M @ (2 * X[:, 0])
    gp = ExactGP(LinearKernel([10.0]), noise_variance=1e-8, observation_matrix=M).fit(X, c)
    np.testing.assert_allclose(gp.predict(np.array([[0.5]])).mean, [1.0], atol=1e-4)


def test_observation_matrix_shape_is_checked(data) -> None:
    X, y = data
    gp = ExactGP(create_se_kernel(1.0), observation_matrix=np.eye(3, len(y)))
    with pytest.raises(ValueError):
        gp.fit(X, y)


def test_mean_gradient(data) -> None:
    X, y = data
    gp = ExactGP(create_se_kernel(1.0), noise_variance=0.01).fit(X, y)
    x = np.array([[0.3]])
    eps = 1e-6
    numeric = (gp.predict(x + eps).mean - gp.predict(x - eps).mean) / (2 * eps)
    np.testing.assert_allclose(gp.mean_gradient(x)[0], numeric, rtol=1e-5)


def test_predict_before_fit_raises() -> None:
    gp = ExactGP(create_se_kernel(1.0))
    with pytest.raises(RuntimeError):
        gp.predict(np.zeros((1, 1)))
    with pytest.raises(RuntimeError):
        _ = gp.log_marginal_likelihood


def test_sampling_shapes(data, rng) -> None:
    X, y = data
    gp = ExactGP(create_se_kernel(1.0), noise_variance=0.01).fit(X, y)
    Xs = np.linspace(-3, 3, 9)[:, None]
    assert gp.sample_prior(Xs, rng, n_samples=4).shape == (4, 9)
    assert gp.sample_posterior(Xs, rng, n_samples=3).shape == (3, 9)


def test_prediction_distribution() -> None:
    pred = GPPrediction.from_mean_cov(np.zeros(2), np.array([[1.0, 0.2], [0.2, 4.0]]))
    dist = pred.as_distribution()
    np.testing.assert_allclose(dist.std, [1.0, 2.0])
    lower, upper = pred.confidence_bounds
    assert np.all(upper > lower)
