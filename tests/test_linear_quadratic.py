import numpy as np
import pytest
from scipy.linalg import expm

from pitchplunge_gp.dynamics import (
    DiscountedLQProblem,
    PitchPlungeDynamics,
    PitchPlungeConfig,
    discretize_process_noise,
    lyap,
    simulate_discounted_reward,
)
from pitchplunge_gp.experiments.config import make_rng
from pitchplunge_gp.gp.kernels import quadratic_features

RANGES = np.array([5e-3, 6e-2, 5e-2, 1.0])


@pytest.fixture
def problem() -> DiscountedLQProblem:
    A, B = PitchPlungeDynamics(PitchPlungeConfig(wind_speed=10.0)).state_matrices()
    Q = np.diag([0.0, 0.0, 1 / RANGES[2] ** 2, 1 / RANGES[3] ** 2])
    return DiscountedLQProblem(A, B, Q, R=4 / 0.5**2, gamma=0.5)


@pytest.fixture
def x0() -> np.ndarray:
    return RANGES * np.array([0.5, -0.5, 0.3, 0.2])


def noise_intensity(A_cl: np.ndarray) -> np.ndarray:
    e_alpha = np.array([[0.0], [1.0], [0.0], [0.0]])
    return (RANGES[1] / 10) ** 2 * A_cl @ e_alpha @ e_alpha.T @ A_cl.T


def test_lyap_sign_convention(rng) -> None:
    A = rng.standard_normal((3, 3)) - 3 * np.eye(3)
    Q = np.eye(3)
    X = lyap(A, Q)
    np.testing.assert_allclose(A @ X + X @ A.T + Q, 0.0, atol=1e-10)


def test_discount_must_lie_in_unit_interval() -> None:
    with pytest.raises(ValueError):
        DiscountedLQProblem(np.eye(1), np.eye(1), np.eye(1), 1.0, gamma=1.0)
    with pytest.raises(ValueError):
        DiscountedLQProblem(np.eye(1), np.eye(1), np.eye(1), 1.0, gamma=0.0)


def test_value_matrix_solves_shifted_lyapunov_equation(problem) -> None:
    gain = np.zeros((1, 4))
    A_cl, Q_cl = problem.closed_loop(gain)
    X_bar = problem.value_matrix(gain)
    A_shift = A_cl + problem.alpha * np.eye(4)
    np.testing.assert_allclose(A_shift.T @ X_bar + X_bar @ A_shift, Q_cl, atol=1e-8 * np.abs(Q_cl).max())
    np.testing.assert_allclose(X_bar, X_bar.T, atol=1e-10 * np.abs(X_bar).max())


def test_value_weights(problem, x0) -> None:
    gain = np.zeros((1, 4))
    X_bar = problem.value_matrix(gain)
    w = problem.value_weights(gain)
    assert w.shape == (10,)
    assert quadratic_features(x0) @ w == pytest.approx(-problem.log_gamma * x0 @ X_bar @ x0)

    A_cl, _ = problem.closed_loop(gain)
    W = noise_intensity(A_cl)
    w_noise = problem.value_weights(gain, W)
    assert w_noise.shape == (11,)
    assert w_noise[-1] == pytest.approx(np.trace(W @ X_bar))


def test_noise_free_reward_matches_value_difference(problem, x0) -> None:
    gain = np.zeros((1, 4))
    A_cl, Q_cl = problem.closed_loop(gain)
    noise = discretize_process_noise(A_cl, np.zeros((4, 4)), 1e-3)
    np.testing.assert_array_equal(noise.noise_factor, 0.0)

    t = 1e-3 * np.arange(1001)
    x, value = simulate_discounted_reward(noise, Q_cl, x0, problem.gamma, t, make_rng(1))
    X_bar = problem.value_matrix(gain)
    expected = x0 @ X_bar @ x0 - problem.gamma * x[-1] @ X_bar @ x[-1]

    np.testing.assert_allclose(x[-1], expm(A_cl) @ x0, rtol=1e-8, atol=1e-12)
    assert value < 0
    assert value == pytest.approx(expected, rel=1e-4)


def test_process_noise_factor(problem) -> None:
    A_cl, _ = problem.closed_loop(np.zeros((1, 4)))
    noise = discretize_process_noise(A_cl, noise_intensity(A_cl), 1e-3)
    L = noise.noise_factor
    np.testing.assert_allclose(L, np.tril(L))
    scale = np.abs(noise.X_V_dt).max()
    np.testing.assert_allclose(L @ L.T, noise.X_V_dt, atol=1e-6 * scale)


def test_optimal_gain_beats_perturbed_gains(problem, rng) -> None:
    Psi0 = 0.25 * np.outer(RANGES, RANGES)
    F = problem.optimal_gain()
    assert F.shape == (1, 4)
    best = problem.expected_value(F, Psi0)
    for _ in range(10):
        perturbed = F + 0.05 * np.abs(F) * rng.standard_normal(F.shape)
        assert problem.expected_value(perturbed, Psi0) <= best + 1e-9 * abs(best)


def test_cost_moments_without_noise(problem, x0) -> None:
    gain = np.zeros((1, 4))
    A_cl, _ = problem.closed_loop(gain)
    w = problem.value_weights(gain)
    T = 1.0
    xT = expm(A_cl * T) @ x0

    moments = problem.cost_moments(gain, x0, np.zeros((4, 4)), T)
    V0 = float(quadratic_features(x0)[0] @ w)
    VT = float(quadratic_features(xT)[0] @ w)
    # Rewards are negative costs
    assert V0 < 0
    assert moments.EJ == pytest.approx(V0, rel=1e-6)
    assert moments.EJT == pytest.approx(V0 - problem.gamma**T * VT, rel=1e-6)
    assert moments.VJ == pytest.approx(0.0, abs=1e-9 * V0**2)
    assert moments.VJT == pytest.approx(0.0, abs=1e-9 * V0**2)


def test_cost_moments_match_monte_carlo(problem, x0) -> None:
    gain = np.zeros((1, 4))
    A_cl, Q_cl = problem.closed_loop(gain)
    W = noise_intensity(A_cl)
    T = 1.0
    dt = 5e-3
    t = dt * np.arange(201)
    noise = discretize_process_noise(A_cl, W, dt)

    rng = make_rng(3)
    samples = np.array(
        [-problem.log_gamma * simulate_discounted_reward(noise, Q_cl, x0, problem.gamma, t, rng)[1] for _ in range(400)]
    )
    moments = problem.cost_moments(gain, x0, W, T)

    assert moments.VJT > 0
    assert abs(samples.mean() - moments.EJT) < 4 * np.sqrt(moments.VJT / len(samples)) + 1e-3 * abs(moments.EJT)
    assert samples.var() == pytest.approx(moments.VJT, rel=0.35)
