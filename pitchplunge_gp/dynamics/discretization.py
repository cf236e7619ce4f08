"""
Discretization and Integration Utilities

Provides:
- Fixed-step explicit integrators (Euler, RK4, midpoint, Heun) for
  closed-loop simulation ẋ = f(x, u) with u = controller(t, x)
- Exact zero-order-hold discretization of linear systems
- Central-difference Jacobians, used to check analytic linearizations
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import expm

Dynamics = Callable[[NDArray, NDArray], NDArray]
Controller = Callable[[float, NDArray], NDArray]


class IntegratorType(Enum):
    EULER = "euler"
    RK4 = "rk4"
    MIDPOINT = "midpoint"
    HEUN = "heun"


# =============================================================================
# Single Steps
# =============================================================================


def euler_step(f: Dynamics, x: NDArray, u: NDArray, dt: float) -> NDArray:
    """Forward Euler: x_{k+1} = x_k + dt f(x_k, u_k)"""
    return x + dt * f(x, u)


def rk4_step(f: Dynamics, x: NDArray, u: NDArray, dt: float) -> NDArray:
    """
    Classic 4th-order Runge-Kutta, input held constant over the step.

    x_{k+1} = x_k + dt/6 (k1 + 2 k2 + 2 k3 + k4)
    """
    k1 = f(x, u)
    k2 = f(x + dt * k1 / 2, u)
    k3 = f(x + dt * k2 / 2, u)
    k4 = f(x + dt * k3, u)
    return x + (dt / 6) * (k1 + 2 * k2 + 2 * k3 + k4)


def midpoint_step(f: Dynamics, x: NDArray, u: NDArray, dt: float) -> NDArray:
    """Explicit midpoint (2nd-order): x_{k+1} = x_k + dt f(x_k + dt/2 k1, u_k)"""
    return x + dt * f(x + dt * f(x, u) / 2, u)


def heun_step(f: Dynamics, x: NDArray, u: NDArray, dt: float) -> NDArray:
    """Heun's method (2nd-order): x_{k+1} = x_k + dt/2 (k1 + k2)"""
    k1 = f(x, u)
    k2 = f(x + dt * k1, u)
    return x + (dt / 2) * (k1 + k2)


_STEPS = {
    IntegratorType.EULER: euler_step,
    IntegratorType.RK4: rk4_step,
    IntegratorType.MIDPOINT: midpoint_step,
    IntegratorType.HEUN: heun_step,
}


class Integrator:
    """
    Fixed-step closed-loop simulation of ẋ = f(x, u).

    The controller is queried once per step, at the start of it, and its
    output is held over the step. The method name is one of "euler",
    "midpoint", "heun" or "rk4"; anything else raises ValueError.

    Example:
        >>> t, x, u = Integrator("rk4").integrate(model.dynamics, x0, controller, (0.0, 1.0), dt=1e-3)
    """

    def __init__(self, method: str = "rk4"):
        self.method = IntegratorType(method.lower())
        self._step = _STEPS[self.method]

    def step(self, f: Dynamics, x: NDArray, u: NDArray, dt: float) -> NDArray:
        return self._step(f, x, u, dt)

    def integrate(
        self,
        f: Dynamics,
        x0: NDArray,
        controller: Controller,
        t_span: Tuple[float, float],
        dt: float,
    ) -> Tuple[NDArray, NDArray, NDArray]:
        """
        Simulate from x0 over t_span with step dt.

        Returns the sample times (N,), the states (N, n_x) and the inputs
        (N, n_u) the controller chose at those times. The last sample lands
        on t_span[1] when the span is a whole number of steps.
        """
        t0, t1 = t_span
        n_steps = int(np.ceil((t1 - t0) / dt - 1e-9))
        t = t0 + dt * np.arange(n_steps + 1)

        states = [np.asarray(x0, dtype=float)]
        inputs = [np.atleast_1d(controller(t[0], states[0]))]
        for k in range(n_steps):
            states.append(self._step(f, states[k], inputs[k], dt))
            inputs.append(np.atleast_1d(controller(t[k + 1], states[k + 1])))

        return t, np.array(states), np.array(inputs)


# =============================================================================
# Linear Systems
# =============================================================================


def zero_order_hold(A: NDArray, B: NDArray, dt: float) -> Tuple[NDArray, NDArray]:
    """
    Exact discretization of ẋ = A x + B u with u held over the step.

        A_d = e^{A dt}
        B_d = ∫₀^dt e^{A s} ds B  (= (A_d - I) A⁻¹ B for invertible A)

    Both follow from one matrix exponential of [[A, B], [0, 0]] dt, which
    also covers singular A.

    Returns:
        A_d: (n_x, n_x)
        B_d: (n_x, n_u)
    """
    n_x = A.shape[0]
    n_u = B.shape[1]
    augmented = np.zeros((n_x + n_u, n_x + n_u))
    augmented[:n_x, :n_x] = A
    augmented[:n_x, n_x:] = B
    Phi = expm(augmented * dt)
    return Phi[:n_x, :n_x], Phi[:n_x, n_x:]


def numerical_jacobians(
    f: Dynamics,
    x: NDArray,
    u: NDArray,
    eps: float = 1e-6,
) -> Tuple[NDArray, NDArray]:
    """
    Central-difference Jacobians (∂f/∂x, ∂f/∂u) at the point (x, u), each
    column perturbed by ±eps.
    """
    x = np.asarray(x, dtype=float)
    u = np.atleast_1d(np.asarray(u, dtype=float))

    A = np.column_stack([(f(x + e, u) - f(x - e, u)) / (2 * eps) for e in eps * np.eye(len(x))])
    B = np.column_stack([(f(x, u + e) - f(x, u - e)) / (2 * eps) for e in eps * np.eye(len(u))])
    return A, B
