"""
Dynamics Module for the Pitch-Plunge Experiments

This module provides the aeroelastic wing model and its linear-quadratic
analysis:

- PitchPlungeDynamics: Two-DoF wing section (4 states, flap input)
- DiscountedLQProblem: Analytic value functions and cost moments

Usage:
    >>> from pitchplunge_gp.dynamics import PitchPlungeDynamics, DiscountedLQProblem
    >>>
    >>> system = PitchPlungeDynamics()
    >>> A, B = system.state_matrices()
    >>>
    >>> problem = DiscountedLQProblem(A, B, Q, R, gamma=0.5)
    >>> gain = problem.optimal_gain()
    >>> w = problem.value_weights(gain)

Key Components:
    - pitch_plunge: Linear and nonlinear wing section model
    - linear_quadratic: Lyapunov/Riccati value analysis, process noise
    - discretization: Integration methods (Euler, RK4, etc.)

References:
    Platanitis, G., & Strganac, T. W. (2004). Control of a nonlinear wing
    section using leading- and trailing-edge surfaces.
"""

from .discretization import (
    Integrator,
    IntegratorType,
    euler_step,
    heun_step,
    midpoint_step,
    numerical_jacobians,
    rk4_step,
    zero_order_hold,
)
from .linear_quadratic import (
    CostMoments,
    DiscountedLQProblem,
    NoiseDiscretization,
    discretize_process_noise,
    lyap,
    simulate_discounted_reward,
)
from .pitch_plunge import (
    PitchPlungeConfig,
    PitchPlungeDynamics,
    PitchPlungeMatrices,
    constant_controller,
    create_pitch_plunge,
    state_feedback_controller,
)

__all__ = [
    # Linear-quadratic analysis
    "CostMoments",
    "DiscountedLQProblem",
    # Discretization
    "Integrator",
    "IntegratorType",
    "NoiseDiscretization",
    # Pitch-plunge
    "PitchPlungeConfig",
    "PitchPlungeDynamics",
    "PitchPlungeMatrices",
    "constant_controller",
    "create_pitch_plunge",
    "discretize_process_noise",
    "euler_step",
    "heun_step",
    "lyap",
    "midpoint_step",
    "numerical_jacobians",
    "rk4_step",
    "simulate_discounted_reward",
    "state_feedback_controller",
    "zero_order_hold",
]
