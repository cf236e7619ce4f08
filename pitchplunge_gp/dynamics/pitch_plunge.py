"""
Pitch-Plunge Aeroelastic Wing Section

Two-degree-of-freedom wing section in a steady flow: plunge h (vertical
displacement, positive down) and pitch α (angle of attack), actuated by a
trailing-edge flap deflection β. The equations of motion are

    M q̈ + (C + U E) q̇ + (K + U² D) q = U² F β,   q = [h, α]

with structural mass M, damping C and stiffness K, and quasi-steady
aerodynamic terms D, E, F scaled by the wind speed U.

State vector (n=4):
    x = [h, α, ḣ, α̇]

Control vector (m=1):
    u = [β]

The nonlinear model replaces the linear pitch stiffness k_α by a polynomial
k_α(α) = k₀ + k₁α + k₂α² + ..., giving the restoring moment k_α(α) α. The
default hardening polynomial is the one identified for the Texas A&M wing
section; it stays positive well beyond the pitch angles reached in the
experiments.

Reference:
    Platanitis, G., & Strganac, T. W. (2004). Control of a nonlinear wing
    section using leading- and trailing-edge surfaces. Journal of Guidance,
    Control, and Dynamics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from .discretization import Controller, Integrator, zero_order_hold


@dataclass
class PitchPlungeConfig:
    """Configuration for the pitch-plunge system."""

    # Flow
    rho: float = 1.225  # Air density [kg/m³]
    wind_speed: float = 10.0  # Free stream velocity U [m/s]

    # Geometry
    b: float = 0.135  # Semi-chord [m]
    s: float = 0.6  # Span [m]
    a: float = -0.6847  # Elastic axis position relative to mid-chord [semi-chords]
    x_cg: float = 0.0873  # Wing centre of gravity behind the leading edge [m]

    # Mass properties
    m_W: float = 2.049  # Wing mass [kg]
    m_T: float = 12.387  # Total plunging mass [kg]
    I_cam: float = 0.04342  # Cam inertia [kg m²]
    I_cg_W: float = 0.0517  # Wing inertia about its centre of gravity [kg m²]

    # Structure
    c_h: float = 27.43  # Plunge damping [kg/s]
    c_alpha: float = 0.036  # Pitch damping [kg m²/s]
    k_h: float = 2844.4  # Plunge stiffness [N/m]
    # k_α(α) = Σ kᵢ αⁱ [N m], positive (restoring) for |α| < 0.36
    k_alpha_coefficients: Tuple[float, ...] = (6.833, 9.967, 667.685, 26.569, -5087.931)

    # Aerodynamics
    c_l_alpha: float = 6.28
    c_l_beta: float = 3.358
    c_m_alpha: float = -0.628
    c_m_beta: float = -0.635

    @property
    def x_alpha(self) -> float:
        """Distance from elastic axis to centre of gravity [semi-chords]."""
        return (self.x_cg - (self.b + self.a * self.b)) / self.b

    @property
    def I_alpha(self) -> float:
        """Pitch inertia about the elastic axis [kg m²]."""
        return self.I_cam + self.I_cg_W + self.m_W * (self.x_alpha * self.b) ** 2


@dataclass
class PitchPlungeMatrices:
    """Structural and aerodynamic matrices of the equations of motion."""

    M: NDArray = field(repr=False)
    C: NDArray = field(repr=False)
    K: NDArray = field(repr=False)
    D: NDArray = field(repr=False)
    E: NDArray = field(repr=False)
    F: NDArray = field(repr=False)


class PitchPlungeDynamics:
    """
    Linear and nonlinear pitch-plunge dynamics.

    Example:
        >>> system = PitchPlungeDynamics(PitchPlungeConfig(wind_speed=10.0))
        >>> A, B = system.state_matrices()
        >>> Phi = system.system_matrix(T=0.1)  # x_T = Phi @ [x_0; β]
        >>> t, x, u = system.simulate(x0, constant_controller(0.1), T=0.1, dt=1e-3)
    """

    # State indices
    IDX_H = 0
    IDX_ALPHA = 1
    IDX_H_DOT = 2
    IDX_ALPHA_DOT = 3

    # State dimensions
    N_STATE = 4
    N_CONTROL = 1

    def __init__(self, config: Optional[PitchPlungeConfig] = None):
        """
        Initialize pitch-plunge dynamics.

        Args:
            config: Configuration parameters. Uses defaults if None.
        """
        self.config = config or PitchPlungeConfig()
        self.matrices = self._build_matrices()
        self._M_inv = np.linalg.inv(self.matrices.M)

    @property
    def n_state(self) -> int:
        return self.N_STATE

    @property
    def n_control(self) -> int:
        return self.N_CONTROL

    def _build_matrices(self) -> PitchPlungeMatrices:
        cfg = self.config
        b, a = cfg.b, cfg.a
        coupling = cfg.m_W * cfg.x_alpha * b
        aero = cfg.rho * b * cfg.s

        M = np.array([[cfg.m_T, coupling], [coupling, cfg.I_alpha]])
        C = np.diag([cfg.c_h, cfg.c_alpha])
        K = np.diag([cfg.k_h, cfg.k_alpha_coefficients[0]])
        D = aero * np.array([[0.0, cfg.c_l_alpha], [0.0, -b * cfg.c_m_alpha]])
        E = aero * np.array(
            [
                [cfg.c_l_alpha, cfg.c_l_alpha * b * (0.5 - a)],
                [-b * cfg.c_m_alpha, -(b**2) * cfg.c_m_alpha * (0.5 - a)],
            ]
        )
        F = aero * np.array([[-cfg.c_l_beta], [b * cfg.c_m_beta]])
        return PitchPlungeMatrices(M=M, C=C, K=K, D=D, E=E, F=F)

    def _speed(self, U: Optional[float]) -> float:
        return self.config.wind_speed if U is None else U

    # =========================================================================
    # Linear Model
    # =========================================================================

    def state_matrices(self, U: Optional[float] = None) -> Tuple[NDArray, NDArray]:
        """
        Continuous-time state matrices of the linear model.

            A = [[0, I], [-M⁻¹(K + U²D), -M⁻¹(C + U E)]]
            B = [[0], [M⁻¹ U² F]]

        Args:
            U: Wind speed (config value if None)

        Returns:
            A: (4, 4)
            B: (4, 1)
        """
        U = self._speed(U)
        mats = self.matrices

        A = np.zeros((4, 4))
        A[:2, 2:] = np.eye(2)
        A[2:, :2] = -self._M_inv @ (mats.K + U**2 * mats.D)
        A[2:, 2:] = -self._M_inv @ (mats.C + U * mats.E)

        B = np.zeros((4, 1))
        B[2:] = self._M_inv @ (U**2 * mats.F)
        return A, B

    def closed_loop_matrix(self, gain: NDArray, U: Optional[float] = None) -> NDArray:
        """Ã = A - B F̃ for the state feedback β = -F̃ x."""
        A, B = self.state_matrices(U)
        return A - B @ np.atleast_2d(gain)

    def system_matrix(self, T: float, U: Optional[float] = None) -> NDArray:
        """
        Exact discrete-time map over a horizon T with constant input.

            x_T = [e^{AT}, (e^{AT} - I) A⁻¹ B] [x_0; β]

        Returns:
            System matrix (4, 5)
        """
        A, B = self.state_matrices(U)
        A_d, B_d = zero_order_hold(A, B, T)
        return np.hstack([A_d, B_d])

    def linear_dynamics(self, x: NDArray, u: NDArray) -> NDArray:
        """ẋ = A x + B u."""
        A, B = self.state_matrices()
        return A @ x + B @ np.atleast_1d(u)

    # =========================================================================
    # Nonlinear Model
    # =========================================================================

    def pitch_stiffness(self, alpha: float) -> float:
        """Polynomial pitch stiffness k_α(α)."""
        return float(np.polynomial.polynomial.polyval(alpha, self.config.k_alpha_coefficients))

    def nonlinear_dynamics(self, x: NDArray, u: NDArray) -> NDArray:
        """
        ẋ with the polynomial pitch stiffness.

        Args:
            x: State [h, α, ḣ, α̇]
            u: Flap deflection [β]

        Returns:
            State derivative (4,)
        """
        U = self.config.wind_speed
        mats = self.matrices
        q = x[:2]
        q_dot = x[2:]
        beta = np.atleast_1d(u)

        restoring = np.array([self.config.k_h * q[0], self.pitch_stiffness(q[1]) * q[1]])
        forces = U**2 * mats.F @ beta - (mats.C + U * mats.E) @ q_dot - restoring - U**2 * mats.D @ q

        return np.concatenate([q_dot, self._M_inv @ forces])

    # =========================================================================
    # Simulation
    # =========================================================================

    def simulate(
        self,
        x0: NDArray,
        controller: Controller,
        T: float,
        dt: float,
        nonlinear: bool = True,
        method: str = "rk4",
    ) -> Tuple[NDArray, NDArray, NDArray]:
        """
        Simulate the closed loop from x0 over [0, T].

        Args:
            x0: Initial state (4,)
            controller: Input function β = controller(t, x)
            T: Simulation length [s]
            dt: Integration step [s]
            nonlinear: Use the polynomial pitch stiffness
            method: Integration method

        Returns:
            t: Time vector (N,)
            x: State trajectory (N, 4)
            u: Input trajectory (N, 1)
        """
        f = self.nonlinear_dynamics if nonlinear else self.linear_dynamics
        return Integrator(method).integrate(f, np.asarray(x0, dtype=float), controller, (0.0, T), dt)


# =============================================================================
# Controllers
# =============================================================================


def constant_controller(beta: float) -> Controller:
    """Controller holding the flap at a fixed deflection."""
    value = np.array([beta], dtype=float)

    def controller(t: float, x: NDArray) -> NDArray:  # noqa: ARG001
        return value

    return controller


def state_feedback_controller(gain: NDArray) -> Controller:
    """Controller β = -F̃ x."""
    gain = np.atleast_2d(np.asarray(gain, dtype=float))

    def controller(t: float, x: NDArray) -> NDArray:  # noqa: ARG001
        return -gain @ x

    return controller


def create_pitch_plunge(wind_speed: float = 10.0, **kwargs) -> PitchPlungeDynamics:
    """Create a pitch-plunge system with the given wind speed."""
    return PitchPlungeDynamics(PitchPlungeConfig(wind_speed=wind_speed, **kwargs))
