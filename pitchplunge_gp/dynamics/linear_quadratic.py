"""
Discounted Linear-Quadratic Analysis

Analytic value functions, cost moments and noise discretization for a linear
system ẋ = A x + B u + v under state feedback u = -F̃ x, with white process
noise v of intensity W and discounted quadratic rewards

    J = -∫₀^∞ γᵗ xᵀ Q̃ x dt,   Q̃ = Q + F̃ᵀ R F̃,   γᵗ = e^{2αt}

Rewards are negative costs, so values are negative.

Matrix conventions:
    lyap(A, Q) solves A X + X Aᵀ + Q = 0
    X̄ = lyap((Ã + αI)ᵀ, -Q̃) gives the value V(x₀) = -ln(γ) x₀ᵀ X̄ x₀ per
    unit of discount weight, with Ã = A - B F̃

Reference:
    Bijl, H. (2018). Gaussian process regression techniques with
    applications to wind turbines. PhD thesis, Delft University of
    Technology. Chapter 3 and Appendix C.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import expm, solve_continuous_are, solve_continuous_lyapunov

from ..gp.distributions import DegenerateCovarianceError
from ..gp.kernels import upper_triangular


def lyap(A: NDArray, Q: NDArray) -> NDArray:
    """Solve the continuous Lyapunov equation A X + X Aᵀ + Q = 0."""
    return solve_continuous_lyapunov(A, -Q)


# =============================================================================
# Process Noise
# =============================================================================


@dataclass
class NoiseDiscretization:
    """Discrete-time transition and noise over one step dt."""

    A_d: NDArray  # e^{Ã dt}
    X_V: NDArray  # Stationary state covariance lyap(Ã, W)
    X_V_dt: NDArray  # Noise covariance over one step
    noise_factor: NDArray  # Lower factor L with L Lᵀ ≈ X_V_dt
    epsilon: float  # Regularization used for the factorization


def discretize_process_noise(
    A_cl: NDArray,
    W: NDArray,
    dt: float,
    initial_epsilon: float = 1e-20,
    growth: float = 10.0,
) -> NoiseDiscretization:
    """
    Discretize process noise for a closed-loop matrix Ã.

        X^V = lyap(Ã, W)
        X^V(dt) = X^V - e^{Ã dt} X^V e^{Ãᵀ dt}

    X^V(dt) is usually only positive semi-definite numerically. The factor is
    found by adding the smallest ε = initial_epsilon·growthᵏ to the diagonal
    that lets the Cholesky factorization succeed; identically zero noise gives
    a zero factor.

    Returns:
        NoiseDiscretization
    """
    n = A_cl.shape[0]
    A_d = expm(A_cl * dt)
    X_V = lyap(A_cl, W)
    X_V_dt = X_V - A_d @ X_V @ A_d.T

    if not np.any(X_V_dt != 0):
        return NoiseDiscretization(A_d, X_V, X_V_dt, np.zeros((n, n)), 0.0)

    scale = np.max(np.abs(X_V_dt))
    epsilon = initial_epsilon
    while True:
        try:
            L = np.linalg.cholesky(0.5 * (X_V_dt + X_V_dt.T) + epsilon * np.eye(n))
            return NoiseDiscretization(A_d, X_V, X_V_dt, L, epsilon)
        except np.linalg.LinAlgError:
            epsilon *= growth
            if epsilon > scale:
                raise DegenerateCovarianceError("Process noise covariance cannot be factorized") from None


# =============================================================================
# Discounted LQ Problem
# =============================================================================


@dataclass
class CostMoments:
    """Mean and variance of the discounted reward from one initial state."""

    EJ: float  # Infinite-horizon mean
    VJ: float  # Infinite-horizon variance
    EJT: float  # Finite-horizon mean
    VJT: float  # Finite-horizon variance


class DiscountedLQProblem:
    """
    Discounted quadratic reward for a linear system.

    Example:
        >>> A, B = system.state_matrices()
        >>> problem = DiscountedLQProblem(A, B, Q, R, gamma=0.5)
        >>> X_bar = problem.value_matrix(gain)
        >>> w = problem.value_weights(gain)  # V(x) = quadratic_features(x) @ w
    """

    def __init__(self, A: NDArray, B: NDArray, Q: NDArray, R, gamma: float = 0.5):
        """
        Args:
            A: State matrix (n, n)
            B: Input matrix (n, m)
            Q: State weight (n, n)
            R: Input weight (m, m) or scalar
            gamma: Discount per unit time, 0 < γ < 1
        """
        if not 0.0 < gamma < 1.0:
            raise ValueError("Discount factor must lie in (0, 1)")
        self.A = np.asarray(A, dtype=float)
        self.B = np.asarray(B, dtype=float)
        self.Q = np.asarray(Q, dtype=float)
        self.R = np.atleast_2d(np.asarray(R, dtype=float))
        self.gamma = gamma
        self.n = self.A.shape[0]

    @property
    def alpha(self) -> float:
        """α = ½ ln γ, so that γᵗ = e^{2αt}."""
        return 0.5 * np.log(self.gamma)

    @property
    def log_gamma(self) -> float:
        return float(np.log(self.gamma))

    def closed_loop(self, gain: NDArray) -> Tuple[NDArray, NDArray]:
        """
        Closed-loop matrices for β = -F̃ x.

        Returns:
            A_cl: Ã = A - B F̃
            Q_cl: Q̃ = Q + F̃ᵀ R F̃
        """
        gain = np.atleast_2d(np.asarray(gain, dtype=float))
        return self.A - self.B @ gain, self.Q + gain.T @ self.R @ gain

    def value_matrix(self, gain: NDArray) -> NDArray:
        """X̄ = lyap((Ã + αI)ᵀ, -Q̃)."""
        A_cl, Q_cl = self.closed_loop(gain)
        return lyap((A_cl + self.alpha * np.eye(self.n)).T, -Q_cl)

    def value_weights(self, gain: NDArray, W: Optional[NDArray] = None) -> NDArray:
        """
        Weights w with V(x) = quadratic_features(x) @ w.

        With process noise intensity W, a bias weight tr(W X̄) is appended to
        match quadratic_features(x, bias=True).
        """
        X_bar = self.value_matrix(gain)
        w = -self.log_gamma * upper_triangular(X_bar)
        if W is not None:
            w = np.append(w, np.trace(W @ X_bar))
        return w

    def expected_value(self, gain: NDArray, Psi0: NDArray, W: Optional[NDArray] = None) -> float:
        """
        Expected value tr((W - 2αΨ₀) X̄) for initial states with second moment Ψ₀.
        """
        W = np.zeros((self.n, self.n)) if W is None else W
        return float(np.trace((W - 2 * self.alpha * Psi0) @ self.value_matrix(gain)))

    def optimal_gain(self) -> NDArray:
        """
        Optimal discounted LQ gain F = R⁻¹ Bᵀ X, X from the Riccati equation
        of the shifted system A + αI.
        """
        X = solve_continuous_are(self.A + self.alpha * np.eye(self.n), self.B, self.Q, self.R)
        return np.linalg.solve(self.R, self.B.T @ X)

    def cost_moments(self, gain: NDArray, mu0: NDArray, W: NDArray, T: float) -> CostMoments:
        """
        Mean and variance of the discounted reward from the initial state μ₀.

        Infinite horizon (EJ, VJ) and horizon T (EJT, VJT) moments follow from
        Lyapunov solutions of the shifted closed-loop matrices Ã ± αI and
        Ã + 2αI.

        Args:
            gain: Feedback gain F̃ (1, n)
            mu0: Initial state (n,)
            W: Process noise intensity (n, n)
            T: Horizon

        Returns:
            CostMoments
        """
        a = self.alpha
        lg = self.log_gamma
        n = self.n
        I = np.eye(n)
        Z = np.zeros((n, n))
        A_cl, Q_cl = self.closed_loop(gain)

        mu0 = np.asarray(mu0, dtype=float)
        Psi0 = np.outer(mu0, mu0)
        X_V = lyap(A_cl, W)
        Delta = Psi0 - X_V
        Psi_T = expm(A_cl * T) @ Delta @ expm(A_cl.T * T) + X_V

        A_a = A_cl + a * I
        A_2a = A_cl + 2 * a * I
        A_ma = A_cl - a * I

        Xb_aQ = lyap(A_a.T, Q_cl)
        Xb_aQ_T = Xb_aQ - expm(A_a.T * T) @ Xb_aQ @ expm(A_a * T)
        Xb_maQ = lyap(A_ma.T, Q_cl)
        Xb_maQ_T = Xb_maQ - expm(A_ma.T * T) @ Xb_maQ @ expm(A_ma * T)
        X_2aD = lyap(A_2a, Delta)
        block = np.block([[A_2a, X_2aD @ expm(A_2a.T * T) @ Q_cl], [Z, A_cl]])
        X_2at_T = expm(block * T)[:n, n:]
        X_2aPsi0 = lyap(A_2a, Psi0)
        X_2aV = lyap(A_2a, W)

        e2aT = np.exp(2 * a * T)
        EJ = lg * np.trace((Psi0 - W / (2 * a)) @ Xb_aQ)
        VJ = lg**2 * (
            2 * np.trace(np.linalg.matrix_power(Psi0 @ Xb_aQ, 2))
            - 2 * (mu0 @ Xb_aQ @ mu0) ** 2
            + 4 * np.trace((X_2aPsi0 - X_2aV / (4 * a)) @ Xb_aQ @ W @ Xb_aQ)
        )
        EJT = lg * np.trace((Psi0 - e2aT * Psi_T + (1 - e2aT) * (-W / (2 * a))) @ Xb_aQ)
        VJT = lg**2 * (
            2 * np.trace(np.linalg.matrix_power(Delta @ Xb_aQ_T, 2))
            - 2 * (mu0 @ Xb_aQ_T @ mu0) ** 2
            + 4
            * np.trace(
                X_V
                @ Q_cl
                @ (X_V @ (np.exp(4 * a * T) * Xb_maQ_T - Xb_aQ_T) / (4 * a) + 2 * X_2aD @ Xb_aQ_T - 2 * X_2at_T)
            )
        )
        return CostMoments(EJ=float(EJ), VJ=float(VJ), EJT=float(EJT), VJT=float(VJT))


# =============================================================================
# Simulated Rewards
# =============================================================================


def simulate_discounted_reward(
    noise: NoiseDiscretization,
    Q_cl: NDArray,
    x0: NDArray,
    gamma: float,
    t: NDArray,
    rng: np.random.Generator,
) -> Tuple[NDArray, float]:
    """
    Roll out x_{k+1} = A_d x_k + L z_k and integrate the discounted reward.

    The reward -γᵗ xᵀ Q̃ x is integrated with the trapezoidal rule on the
    time grid t (uniform step).

    Args:
        noise: Discretization for the grid step
        Q_cl: Closed-loop state weight Q̃
        x0: Initial state (n,)
        gamma: Discount factor
        t: Time grid (N,), starting at 0
        rng: Random generator for the process noise

    Returns:
        x: Trajectory (N, n)
        value: Accumulated discounted reward (negative)
    """
    N = len(t)
    n = len(x0)
    dt = t[1] - t[0]

    x = np.zeros((N, n))
    x[0] = x0
    z = rng.standard_normal((N - 1, n))
    for k in range(N - 1):
        x[k + 1] = noise.A_d @ x[k] + noise.noise_factor @ z[k]

    rewards = gamma**t * np.einsum("ij,jk,ik->i", x, Q_cl, x)
    value = -float(np.sum(rewards[:-1] + rewards[1:]) * dt / 2)
    return x, value
