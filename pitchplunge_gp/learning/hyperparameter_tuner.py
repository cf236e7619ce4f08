"""
GP Hyperparameter Tuning

Maximum likelihood (ML-II) tuning of GP hyperparameters: minimize the
negative log marginal likelihood

    -log p(y | X, θ) = ½ yᵀ K_θ⁻¹ y + ½ log|K_θ| + n/2 log(2π)

with a bounded quasi-Newton method (scipy L-BFGS-B). Evaluations that hit a
singular covariance return inf so the line search backs off instead of
aborting the whole run.

Two parameterizations are used by the experiments:
1. Log space for kernel hyperparameters (length scales, signal std, noise std)
2. Normalized multipliers of a reference vector, for parameters that differ
   by many orders of magnitude (all prior weight variances at once)

Reference:
    Rasmussen, C. E., & Williams, C. K. I. (2006). Gaussian Processes
    for Machine Learning. MIT Press. Chapter 5.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import minimize

from ..gp.exact_gp import negative_log_marginal_likelihood
from ..gp.kernels import create_se_kernel

Bounds = Sequence[Tuple[Optional[float], Optional[float]]]


@dataclass
class HyperparameterConfig:
    """Configuration for hyperparameter tuning."""

    # Optimization settings
    method: str = "L-BFGS-B"
    max_iter: int = 500
    tol: Optional[float] = None

    # Random restarts (perturbations of the initial point)
    n_restarts: int = 0
    restart_scale: float = 0.5

    # Bounds for SE hyperparameters
    lengthscale_bounds: Tuple[float, float] = (1e-3, 1e2)
    signal_std_bounds: Tuple[float, float] = (1e-3, 1e2)
    noise_std_bounds: Tuple[float, float] = (1e-6, 1e1)

    verbose: bool = False


@dataclass
class TuningResult:
    """Outcome of one tuning run."""

    x: NDArray  # Optimal parameters
    fun: float  # Objective value at x
    success: bool
    n_evaluations: int
    time: float


@dataclass
class GPHyperparameters:
    """Tuned SE-kernel hyperparameters."""

    lengthscales: NDArray
    signal_std: float
    noise_std: float
    negative_log_likelihood: float

    def kernel(self):
        return create_se_kernel(self.lengthscales, signal_std=self.signal_std)


class HyperparameterTuner:
    """
    Bounded minimization of likelihood-type objectives.

    Example:
        >>> tuner = HyperparameterTuner(HyperparameterConfig(n_restarts=3))
        >>> result = tuner.minimize(objective, x0, bounds=[(1e-6, None)] * 2, rng=rng)
        >>> result.x
    """

    def __init__(self, config: Optional[HyperparameterConfig] = None):
        """
        Initialize hyperparameter tuner.

        Args:
            config: Configuration parameters
        """
        self.config = config or HyperparameterConfig()

        # Tracking
        self._tuning_history: List[Dict] = []

    @staticmethod
    def _safe(objective: Callable[[NDArray], float]) -> Callable[[NDArray], float]:
        """Wrap an objective so numerical failures evaluate to inf."""

        def wrapped(x):
            try:
                value = float(objective(x))
            except (np.linalg.LinAlgError, ValueError, FloatingPointError):
                return np.inf
            return value if np.isfinite(value) else np.inf

        return wrapped

    def _restart_point(self, x0: NDArray, bounds: Optional[Bounds], rng: np.random.Generator) -> NDArray:
        x = x0 + self.config.restart_scale * np.maximum(np.abs(x0), 1.0) * rng.standard_normal(len(x0))
        if bounds is not None:
            lower = np.array([-np.inf if b[0] is None else b[0] for b in bounds])
            upper = np.array([np.inf if b[1] is None else b[1] for b in bounds])
            x = np.clip(x, lower, upper)
        return x

    def minimize(
        self,
        objective: Callable[[NDArray], float],
        x0: NDArray,
        bounds: Optional[Bounds] = None,
        rng: Optional[np.random.Generator] = None,
        label: str = "",
    ) -> TuningResult:
        """
        Minimize an objective from x0, with optional random restarts.

        Args:
            objective: Function of the parameter vector
            x0: Initial parameters
            bounds: (lower, upper) per parameter, None for unbounded sides
            rng: Random generator, required when restarts are configured
            label: Name recorded in the tuning history

        Returns:
            Best TuningResult over all starts
        """
        x0 = np.atleast_1d(np.asarray(x0, dtype=float))
        if self.config.n_restarts > 0 and rng is None:
            raise ValueError("A random generator is required for random restarts")

        safe_objective = self._safe(objective)
        start_time = time.time()

        best = None
        n_evaluations = 0
        for restart in range(self.config.n_restarts + 1):
            start = x0 if restart == 0 else self._restart_point(x0, bounds, rng)
            if not np.isfinite(safe_objective(start)):
                if self.config.verbose:
                    print(f"  Restart {restart} skipped: objective not finite at start")
                continue

            result = minimize(
                safe_objective,
                start,
                method=self.config.method,
                bounds=bounds,
                tol=self.config.tol,
                options={"maxiter": self.config.max_iter},
            )
            n_evaluations += result.nfev

            if best is None or result.fun < best.fun:
                best = result

        if best is None:
            raise ValueError("Objective is not finite at any starting point")

        tuning = TuningResult(
            x=best.x,
            fun=float(best.fun),
            success=bool(best.success),
            n_evaluations=n_evaluations,
            time=time.time() - start_time,
        )

        # Record history
        self._tuning_history.append(
            {
                "label": label,
                "x": tuning.x.copy(),
                "fun": tuning.fun,
                "time": tuning.time,
                "method": self.config.method,
            }
        )
        if self.config.verbose:
            print(f"  Tuned {label or 'parameters'} in {tuning.time:.2f} s: objective {tuning.fun:.4f}")

        return tuning

    def minimize_normalized(
        self,
        objective: Callable[[NDArray], float],
        reference: NDArray,
        lower: float = 1e-8,
        rng: Optional[np.random.Generator] = None,
        label: str = "",
    ) -> TuningResult:
        """
        Minimize over positive multipliers of a reference parameter vector.

        The optimizer works on p with parameters = p * reference, starting
        from p = 1, which keeps every coordinate of order one.

        Args:
            objective: Function of the (unnormalized) parameters
            reference: Reference parameter vector, all nonzero
            lower: Lower bound on every multiplier

        Returns:
            TuningResult with x in unnormalized units
        """
        reference = np.atleast_1d(np.asarray(reference, dtype=float))
        result = self.minimize(
            lambda p: objective(p * reference),
            np.ones_like(reference),
            bounds=[(lower, None)] * len(reference),
            rng=rng,
            label=label,
        )
        result.x = result.x * reference
        return result

    @property
    def history(self) -> List[Dict]:
        """Tuning history."""
        return self._tuning_history

    def get_statistics(self) -> Dict:
        """Get tuning statistics."""
        if not self._tuning_history:
            return {"n_tunings": 0}

        times = [h["time"] for h in self._tuning_history]
        return {
            "n_tunings": len(self._tuning_history),
            "avg_time": float(np.mean(times)),
            "total_time": float(np.sum(times)),
        }


def se_negative_log_likelihood(params: NDArray, X: NDArray, y: NDArray) -> float:
    """
    Negative log marginal likelihood of an SE-kernel GP.

    Args:
        params: [log l (D), log σf, log σn]
        X: Inputs (N, D)
        y: Outputs (N,)
    """
    D = X.shape[1]
    kernel = create_se_kernel(np.exp(params[:D]), signal_std=float(np.exp(params[D])))
    K = kernel(X) + np.exp(2 * params[D + 1]) * np.eye(X.shape[0])
    return negative_log_marginal_likelihood(K, y)


def tune_gp_hyperparameters(
    X: NDArray,
    y: NDArray,
    lengthscales=1.0,
    signal_std: float = 1.0,
    noise_std: float = 0.1,
    config: Optional[HyperparameterConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> GPHyperparameters:
    """
    ML-II tuning of SE length scales, signal std and noise std.

    Args:
        X: Training inputs (N, D) or (N,)
        y: Training outputs (N,)
        lengthscales: Initial length scale(s)
        signal_std: Initial signal std
        noise_std: Initial noise std
        config: Tuner configuration
        rng: Random generator for restarts

    Returns:
        Tuned GPHyperparameters
    """
    config = config or HyperparameterConfig()
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X[:, None]
    y = np.atleast_1d(y).astype(float).flatten()
    D = X.shape[1]

    lengthscales = np.broadcast_to(np.atleast_1d(np.asarray(lengthscales, dtype=float)), (D,))
    x0 = np.log(np.concatenate([lengthscales, [signal_std, noise_std]]))
    bounds = [tuple(np.log(config.lengthscale_bounds))] * D + [
        tuple(np.log(config.signal_std_bounds)),
        tuple(np.log(config.noise_std_bounds)),
    ]

    tuner = HyperparameterTuner(config)
    result = tuner.minimize(
        lambda p: se_negative_log_likelihood(p, X, y),
        x0,
        bounds=bounds,
        rng=rng,
        label="SE hyperparameters",
    )

    return GPHyperparameters(
        lengthscales=np.exp(result.x[:D]),
        signal_std=float(np.exp(result.x[D])),
        noise_std=float(np.exp(result.x[D + 1])),
        negative_log_likelihood=result.fun,
    )
