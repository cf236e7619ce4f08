import numpy as np
import pytest

from pitchplunge_gp.gp.kernels import (
    LinearKernel,
    ProductKernel,
    SquaredExponentialARD,
    SumKernel,
    create_se_kernel,
    moment_features,
    n_quadratic_features,
    quadratic_features,
    upper_triangular,
)


def test_upper_triangular_column_order() -> None:
    A = np.arange(16.0).reshape(4, 4)
    expected = [A[0, 0], A[0, 1], A[1, 1], A[0, 2], A[1, 2], A[2, 2], A[0, 3], A[1, 3], A[2, 3], A[3, 3]]
    np.testing.assert_array_equal(upper_triangular(A), expected)


@pytest.mark.parametrize("n", [1, 2, 4])
def test_quadratic_features_reproduce_quadratic_form(rng, n: int) -> None:
    X = rng.standard_normal((7, n))
    P = rng.standard_normal((n, n))
    P = P + P.T
    Phi = quadratic_features(X)
    assert Phi.shape == (7, n_quadratic_features(n))
    np.testing.assert_allclose(Phi @ upper_triangular(P), np.einsum("ij,jk,ik->i", X, P, X))


def test_quadratic_features_bias_column(rng) -> None:
    Phi = quadratic_features(rng.standard_normal((3, 4)), bias=True)
    assert Phi.shape == (3, n_quadratic_features(4, bias=True)) == (3, 11)
    np.testing.assert_array_equal(Phi[:, -1], 1.0)


def test_moment_features_are_expected_features(rng) -> None:
    X = rng.standard_normal((50, 3))
    Psi = X.T @ X / len(X)
    np.testing.assert_allclose(moment_features(Psi), quadratic_features(X).mean(axis=0))
    assert moment_features(Psi, bias=True)[-1] == 1.0


def test_se_kernel_values() -> None:
    kernel = create_se_kernel([1.0, 2.0], signal_std=2.0)
    X1 = np.array([[0.0, 0.0]])
    X2 = np.array([[1.0, 2.0]])
    np.testing.assert_allclose(kernel(X1, X2), [[4.0 * np.exp(-1.0)]])
    np.testing.assert_allclose(kernel.diagonal(np.zeros((3, 2))), 4.0)


def test_se_kernel_is_symmetric_psd(rng) -> None:
    kernel = create_se_kernel(0.7)
    K = kernel(rng.uniform(-3, 3, (30, 1)))
    np.testing.assert_allclose(K, K.T)
    assert np.linalg.eigvalsh(K).min() > -1e-10


def test_se_params_round_trip() -> None:
    kernel = SquaredExponentialARD(input_dim=2, signal_variance=3.0, lengthscales=[0.5, 2.0])
    params = kernel.get_params()
    assert kernel.param_names == ["log_signal_variance", "log_lengthscale_0", "log_lengthscale_1"]
    kernel.set_params(params + np.log(2.0))
    assert kernel.signal_variance == pytest.approx(6.0)
    np.testing.assert_allclose(kernel.lengthscales, [1.0, 4.0])


def test_se_rejects_bad_hyperparameters() -> None:
    with pytest.raises(ValueError):
        create_se_kernel([1.0, -1.0])
    with pytest.raises(ValueError):
        SquaredExponentialARD(input_dim=1, signal_variance=0.0)


def test_input_gradient_matches_finite_differences(rng) -> None:
    kernel = create_se_kernel([0.8, 1.5], signal_std=1.3)
    x = rng.standard_normal(2)
    X = rng.standard_normal((5, 2))
    eps = 1e-6
    numeric = np.column_stack(
        [(kernel(x[None] + e, X)[0] - kernel(x[None] - e, X)[0]) / (2 * eps) for e in eps * np.eye(2)]
    )
    np.testing.assert_allclose(kernel.input_gradient(x, X), numeric, rtol=1e-5, atol=1e-8)


def test_linear_kernel_with_feature_map(rng) -> None:
    Kw = np.array([1.0, 2.0, 3.0])
    kernel = LinearKernel(Kw, feature_map=quadratic_features)
    X = rng.standard_normal((4, 2))
    Phi = quadratic_features(X)
    np.testing.assert_allclose(kernel(X), Phi @ np.diag(Kw) @ Phi.T)
    np.testing.assert_allclose(kernel.diagonal(X), np.diag(kernel(X)))


def test_active_dims_product_kernel(rng) -> None:
    linear = LinearKernel(np.ones(2), active_dims=[0, 1])
    se = create_se_kernel([1.0], active_dims=[2])
    kernel = linear * se
    assert isinstance(kernel, ProductKernel)

    X = rng.standard_normal((6, 3))
    expected = (X[:, :2] @ X[:, :2].T) * np.exp(-0.5 * (X[:, 2:3] - X[:, 2:3].T) ** 2)
    np.testing.assert_allclose(kernel(X), expected)
    np.testing.assert_allclose(kernel.diagonal(X), np.diag(kernel(X)))
    assert kernel.n_params == 4


def test_sum_kernel_params(rng) -> None:
    kernel = LinearKernel(np.ones(2)) + create_se_kernel([1.0, 1.0])
    assert isinstance(kernel, SumKernel)
    params = kernel.get_params()
    kernel.set_params(params)
    X = rng.standard_normal((3, 2))
    np.testing.assert_allclose(kernel(X), X @ X.T + create_se_kernel([1.0, 1.0])(X))
