import numpy as np
import pytest

from pitchplunge_gp.dynamics import (
    Integrator,
    PitchPlungeConfig,
    PitchPlungeDynamics,
    constant_controller,
    create_pitch_plunge,
    numerical_jacobians,
    state_feedback_controller,
    zero_order_hold,
)


@pytest.fixture
def system() -> PitchPlungeDynamics:
    return PitchPlungeDynamics(PitchPlungeConfig(wind_speed=15.0))


def test_state_matrix_structure(system) -> None:
    A, B = system.state_matrices()
    assert A.shape == (4, 4)
    assert B.shape == (4, 1)
    np.testing.assert_array_equal(A[:2, :2], 0.0)
    np.testing.assert_array_equal(A[:2, 2:], np.eye(2))
    np.testing.assert_array_equal(B[:2], 0.0)


def test_wind_speed_changes_aerodynamics(system) -> None:
    A_15, _ = system.state_matrices()
    A_10, _ = system.state_matrices(U=10.0)
    np.testing.assert_allclose(A_10, create_pitch_plunge(10.0).state_matrices()[0])
    assert not np.allclose(A_10, A_15)


def test_nonlinear_model_linearizes_to_state_matrices(system) -> None:
    A, B = system.state_matrices()
    A_num, B_num = numerical_jacobians(system.nonlinear_dynamics, np.zeros(4), np.zeros(1))
    np.testing.assert_allclose(A_num, A, rtol=1e-5, atol=1e-6)
    np.testing.assert_allclose(B_num, B, rtol=1e-5, atol=1e-6)


def test_pitch_stiffness_polynomial(system) -> None:
    coefficients = system.config.k_alpha_coefficients
    assert system.pitch_stiffness(0.0) == pytest.approx(coefficients[0])
    assert system.pitch_stiffness(0.1) == pytest.approx(sum(c * 0.1**i for i, c in enumerate(coefficients)))


def test_pitch_stiffness_restores_over_experiment_range(system) -> None:
    alphas = np.linspace(-0.3, 0.3, 61)
    stiffness = np.array([system.pitch_stiffness(a) for a in alphas])
    assert np.all(stiffness > 0)


def test_nonlinear_rollout_stays_bounded(system) -> None:
    # Largest initial pitch rate and flap deflection of the state experiment
    x0 = np.array([1e-3, -5.3e-2, -3.1e-2, -1.0])
    _, x, _ = system.simulate(x0, constant_controller(0.5), T=0.1, dt=1e-3, nonlinear=True)
    assert np.all(np.isfinite(x))
    assert np.abs(x[:, 1]).max() < 0.3


def test_system_matrix_matches_linear_simulation(system) -> None:
    x0 = np.array([3e-3, -4e-2, 2e-2, 0.5])
    beta = 0.2
    T = 0.1
    t, x, u = system.simulate(x0, constant_controller(beta), T=T, dt=1e-3, nonlinear=False)

    assert len(t) == 101
    assert t[-1] == pytest.approx(T)
    np.testing.assert_array_equal(u, beta)
    np.testing.assert_allclose(x[-1], system.system_matrix(T) @ np.append(x0, beta), rtol=1e-6, atol=1e-10)


def test_small_states_behave_linearly(system) -> None:
    x0 = np.array([1e-5, 1e-4, 0.0, 0.0])
    _, x_lin, _ = system.simulate(x0, constant_controller(0.0), T=0.05, dt=1e-3, nonlinear=False)
    _, x_non, _ = system.simulate(x0, constant_controller(0.0), T=0.05, dt=1e-3, nonlinear=True)
    assert np.abs(x_non - x_lin).max() < 1e-3 * np.abs(x_lin).max()


def test_zero_order_hold_matches_closed_form(system) -> None:
    A, B = system.state_matrices()
    A_d, B_d = zero_order_hold(A, B, 0.05)
    np.testing.assert_allclose(B_d, np.linalg.solve(A, (A_d - np.eye(4)) @ B), rtol=1e-8, atol=1e-12)


def test_zero_order_hold_singular_state_matrix() -> None:
    A = np.array([[0.0, 1.0], [0.0, 0.0]])
    B = np.array([[0.0], [1.0]])
    A_d, B_d = zero_order_hold(A, B, 0.5)
    np.testing.assert_allclose(A_d, [[1.0, 0.5], [0.0, 1.0]])
    np.testing.assert_allclose(B_d, [[0.125], [0.5]])


@pytest.mark.parametrize("method, tol", [("euler", 1e-2), ("midpoint", 1e-4), ("heun", 1e-4), ("rk4", 1e-9)])
def test_integrator_accuracy(method: str, tol: float) -> None:
    t, x, _ = Integrator(method).integrate(lambda x, u: -x + u, np.array([1.0]), lambda t, x: 0.0, (0.0, 1.0), 0.01)
    assert abs(x[-1, 0] - np.exp(-1.0)) < tol


def test_unknown_integrator_raises() -> None:
    with pytest.raises(ValueError):
        Integrator("leapfrog")


def test_state_feedback(system) -> None:
    gain = np.array([[-20.0, 2.0, 0.0, 0.0]])
    controller = state_feedback_controller(gain)
    x = np.array([1e-3, 1e-2, 0.0, 0.0])
    np.testing.assert_allclose(controller(0.0, x), -gain @ x)

    A, B = system.state_matrices()
    np.testing.assert_allclose(system.closed_loop_matrix(gain), A - B @ gain)
