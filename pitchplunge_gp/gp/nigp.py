"""
Noisy Input Gaussian Process (NIGP) Training

GP regression where the training inputs are corrupted by Gaussian noise
x̃ = x + εx, εx ~ N(0, Σx). A first-order Taylor expansion of the posterior
mean around each measured input turns input noise into extra output noise:

    y ≈ f(x̃) - ∂f̄/∂x εx + εy
    var(y | x̃) ≈ σ²y + ∂f̄ Σx ∂f̄ᵀ

so the GP is trained with a per-point corrected noise term
    dipK_i = ∂f̄(x̃ᵢ) Σx ∂f̄(x̃ᵢ)ᵀ

Training alternates between
    (a) computing the slopes ∂f̄ of the posterior mean at the training inputs
        with the current hyperparameters, and
    (b) maximizing the marginal likelihood over
        (length scales, signal std, output noise std, input noise std)
        with those slopes held fixed.

Reference:
    McHutchon, A., & Rasmussen, C. E. (2011). Gaussian process training
    with input noise. NIPS.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from .exact_gp import ExactGP, negative_log_marginal_likelihood
from .kernels import SquaredExponentialARD, create_se_kernel
from .sonig import SONIGHyperparameters


@dataclass
class NIGPConfig:
    """Configuration for NIGP training."""

    n_slope_iterations: int = 2  # Alternations of slope computation and optimization
    max_iterations: int = 500  # Optimizer iterations per alternation
    log_bounds: tuple = (-12.0, 8.0)  # Bounds on every log hyperparameter
    n_restarts: int = 0  # Random restarts per alternation
    verbose: bool = False


@dataclass
class NIGPModel:
    """Trained NIGP model: hyperparameters, training data and corrected noise."""

    lengthscales: NDArray  # (D,)
    signal_std: float
    noise_std: float
    input_noise_std: NDArray  # (D,)
    X: NDArray  # Training inputs (N, D)
    y: NDArray  # Training outputs (N,)
    slopes: NDArray  # Posterior mean slopes at the training inputs (N, D)
    log_marginal_likelihood: float = 0.0
    history: list = field(default_factory=list)

    @property
    def dipK(self) -> NDArray:
        """Extra per-point noise variance caused by input noise (N,)."""
        return np.sum(self.slopes**2 * self.input_noise_std**2, axis=1)

    def kernel(self) -> SquaredExponentialARD:
        return create_se_kernel(self.lengthscales, signal_std=self.signal_std)

    def gp(self) -> ExactGP:
        """Exact GP on the training data with the corrected noise."""
        gp = ExactGP(self.kernel(), noise_variance=self.noise_std**2)
        return gp.fit(self.X, self.y, extra_noise=self.dipK)

    def to_sonig_hyperparameters(self) -> SONIGHyperparameters:
        return SONIGHyperparameters(
            lx=self.lengthscales.copy(),
            ly=self.signal_std,
            sx=self.input_noise_std.copy(),
            sy=self.noise_std,
        )

    def __repr__(self) -> str:
        return (
            f"NIGPModel(lx={self.lengthscales}, ly={self.signal_std:.4g}, "
            f"sx={self.input_noise_std}, sy={self.noise_std:.4g}, n_train={len(self.y)})"
        )


def _unpack(params: NDArray, D: int):
    lengthscales = np.exp(params[:D])
    signal_std = float(np.exp(params[D]))
    noise_std = float(np.exp(params[D + 1]))
    input_noise_std = np.exp(params[D + 2 : 2 * D + 2])
    return lengthscales, signal_std, noise_std, input_noise_std


def _posterior_slopes(X: NDArray, y: NDArray, params: NDArray, slopes: NDArray) -> NDArray:
    """Slopes of the posterior mean at the training inputs."""
    D = X.shape[1]
    lengthscales, signal_std, noise_std, input_noise_std = _unpack(params, D)
    extra_noise = np.sum(slopes**2 * input_noise_std**2, axis=1)
    gp = ExactGP(create_se_kernel(lengthscales, signal_std), noise_variance=noise_std**2)
    gp.fit(X, y, extra_noise=extra_noise)
    return gp.mean_gradient(X)


def nigp_negative_log_likelihood(params: NDArray, X: NDArray, y: NDArray, slopes: NDArray) -> float:
    """
    Negative log marginal likelihood with slope-corrected noise.

    With zero slopes this is the plain SE likelihood of [log lx, log σf, log σy].

    Args:
        params: [log lx (D), log σf, log σy, log σx (D)]
        X: Training inputs (N, D)
        y: Training outputs (N,)
        slopes: Fixed posterior mean slopes (N, D)

    Raises:
        numpy.linalg.LinAlgError: If the covariance is not positive definite
    """
    D = X.shape[1]
    lengthscales, signal_std, noise_std, input_noise_std = _unpack(params, D)
    kernel = create_se_kernel(lengthscales, signal_std)
    extra_noise = np.sum(slopes**2 * input_noise_std**2, axis=1)
    K = kernel(X) + np.diag(noise_std**2 + extra_noise)
    return negative_log_marginal_likelihood(K, y)


def train_nigp(
    X: NDArray,
    y: NDArray,
    lengthscales,
    signal_std: float,
    noise_std: float,
    input_noise_std,
    config: Optional[NIGPConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> NIGPModel:
    """
    Train an NIGP model starting from the given hyperparameters.

    Every alternation hands the likelihood with fixed slopes to a
    ``HyperparameterTuner``, bounded by ``config.log_bounds`` in log space.

    Args:
        X: Noisy training inputs (N, D)
        y: Noisy training outputs (N,)
        lengthscales: Initial length scale(s)
        signal_std: Initial signal std
        noise_std: Initial output noise std
        input_noise_std: Initial input noise std (scalar or (D,))
        config: Alternations, optimizer iterations, bounds and restarts
        rng: Random generator, required when restarts are configured

    Returns:
        Trained NIGPModel
    """
    from ..learning.hyperparameter_tuner import HyperparameterConfig, HyperparameterTuner  # noqa: PLC0415

    config = config or NIGPConfig()

    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X[:, None]
    y = np.atleast_1d(y).astype(float).flatten()
    N, D = X.shape

    lengthscales = np.broadcast_to(np.atleast_1d(np.asarray(lengthscales, dtype=float)), (D,))
    input_noise_std = np.broadcast_to(np.atleast_1d(np.asarray(input_noise_std, dtype=float)), (D,))
    params = np.log(np.concatenate([lengthscales, [signal_std, noise_std], input_noise_std]))
    bounds = [config.log_bounds] * len(params)

    tuner = HyperparameterTuner(
        HyperparameterConfig(max_iter=config.max_iterations, n_restarts=config.n_restarts, verbose=config.verbose)
    )
    slopes = np.zeros((N, D))

    for iteration in range(config.n_slope_iterations):
        slopes = _posterior_slopes(X, y, params, slopes)
        fixed_slopes = slopes
        result = tuner.minimize(
            lambda p: nigp_negative_log_likelihood(p, X, y, fixed_slopes),
            params,
            bounds=bounds,
            rng=rng,
            label=f"NIGP alternation {iteration}",
        )
        params = result.x

    # Slopes for the final hyperparameters
    slopes = _posterior_slopes(X, y, params, slopes)
    lengthscales, signal_std, noise_std, input_noise_std = _unpack(params, D)

    return NIGPModel(
        lengthscales=lengthscales,
        signal_std=signal_std,
        noise_std=noise_std,
        input_noise_std=input_noise_std,
        X=X,
        y=y,
        slopes=slopes,
        log_marginal_likelihood=-nigp_negative_log_likelihood(params, X, y, slopes),
        history=[{"iteration": i, "nll": h["fun"], "params": np.exp(h["x"])} for i, h in enumerate(tuner.history)],
    )
