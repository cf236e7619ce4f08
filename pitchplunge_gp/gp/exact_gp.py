"""
GP Regression on Linear Combinations of Function Values

Measurements are modelled as

    c = M f(X) + ε,    f ~ GP(m, k),    ε ~ N(0, σ²_n I + diag(extra_noise))

where M is a fixed observation matrix (identity when omitted). In the cost
experiments each measured discounted reward is V(x0) - γᵀ V(xT), so M has one
row [1, -γᵀ] per experiment. The per-measurement extra noise is how the NIGP
slope correction enters.

With K_c = M K(X, X) Mᵀ + Σ_ε the posterior at trial points X* is

    μ* = m + K(X*, X) Mᵀ K_c⁻¹ (c - M m)
    Σ* = K(X*, X*) - K(X*, X) Mᵀ K_c⁻¹ M K(X, X*)

Everything goes through one Cholesky factor of K_c, so fitting costs O(n³)
and every prediction O(n²) per trial point.

See Rasmussen and Williams, "Gaussian Processes for Machine Learning" (2006),
chapter 2.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import cho_solve, solve_triangular

from .distributions import GaussianDistribution, log_det_from_cholesky, robust_cholesky, sample_gaussian
from .kernels import Kernel


def _gaussian_log_density(L: NDArray, residual: NDArray, weights: NDArray) -> float:
    # log N(r | 0, L Lᵀ) with weights = (L Lᵀ)⁻¹ r
    return float(-0.5 * (residual @ weights + log_det_from_cholesky(L) + len(residual) * np.log(2 * np.pi)))


def negative_log_marginal_likelihood(K_obs: NDArray, residual: NDArray) -> float:
    """
    -log N(residual | 0, K_obs).

    Raises numpy.linalg.LinAlgError when K_obs is not positive definite, which
    optimizers use to reject a step.
    """
    residual = np.atleast_1d(residual)
    L = np.linalg.cholesky(K_obs)
    return -_gaussian_log_density(L, residual, cho_solve((L, True), residual))


@dataclass
class GPPrediction:
    """Posterior mean, variance and standard deviation at the trial points."""

    mean: NDArray
    variance: NDArray
    std: NDArray
    cov: Optional[NDArray] = None

    @classmethod
    def from_mean_cov(cls, mean: NDArray, cov: NDArray, keep_cov: bool = True) -> GPPrediction:
        variance = np.clip(np.diag(cov), 0.0, None)
        return cls(mean, variance, np.sqrt(variance), cov if keep_cov else None)

    @property
    def confidence_bounds(self) -> Tuple[NDArray, NDArray]:
        """mean ± 1.96 std."""
        half_width = 1.96 * self.std
        return self.mean - half_width, self.mean + half_width

    def as_distribution(self) -> GaussianDistribution:
        cov = np.diag(self.variance) if self.cov is None else self.cov
        return GaussianDistribution(self.mean, cov)


class ExactGP:
    """
    Exact GP whose measurements may be linear combinations of function values.

    Example:
        >>> gp = ExactGP(create_se_kernel(1.0, signal_std=1.0), noise_variance=0.1**2)
        >>> gp.fit(X, y).predict(X_trial).std

        >>> M = np.kron(np.eye(n), [1.0, -gamma_T])   # rows [1, -γᵀ]
        >>> ExactGP(kernel, noise_variance=sigma_c**2, observation_matrix=M).fit(Z, c)
    """

    def __init__(
        self,
        kernel: Kernel,
        noise_variance: float = 1e-4,
        prior_mean: float = 0.0,
        observation_matrix: Optional[NDArray] = None,
        jitter: float = 0.0,
    ):
        if noise_variance < 0:
            raise ValueError("Noise variance must be non-negative")
        self.kernel = kernel
        self.noise_variance = noise_variance
        self.prior_mean = prior_mean
        self.observation_matrix = observation_matrix
        self.jitter = jitter

        self.X_train: Optional[NDArray] = None
        self.extra_noise: Optional[NDArray] = None
        self._chol: Optional[NDArray] = None
        self._weights: Optional[NDArray] = None
        self._log_likelihood: Optional[float] = None

    @property
    def n_train(self) -> int:
        return 0 if self.X_train is None else len(self.X_train)

    @property
    def is_fitted(self) -> bool:
        return self._chol is not None

    def _require_fit(self, what: str) -> None:
        if self._chol is None:
            raise RuntimeError(f"ExactGP.fit() must be called before {what}")

    def _observe(self, A: NDArray) -> NDArray:
        """M A, where the rows of A belong to the training inputs."""
        if self.observation_matrix is None:
            return A
        return self.observation_matrix @ A

    def observation_covariance(self) -> NDArray:
        """K_c = M K Mᵀ + (σ²_n + jitter) I + diag(extra_noise)."""
        if self.X_train is None:
            raise RuntimeError("ExactGP.fit() must be called before observation_covariance()")
        K_c = self._observe(self._observe(self.kernel(self.X_train)).T).T
        noise = np.full(len(K_c), self.noise_variance + self.jitter)
        if self.extra_noise is not None:
            noise = noise + self.extra_noise
        return K_c + np.diag(noise)

    def fit(self, X: NDArray, y: NDArray, extra_noise: Optional[NDArray] = None) -> ExactGP:
        """
        Condition on the measurements y = M f(X) + ε.

        Args:
            X: Inputs of the function values (N, D)
            y: Measurements, one per row of M (or per input when M is None)
            extra_noise: Additional noise variance per measurement
        """
        X = np.atleast_2d(X)
        y = np.asarray(y, dtype=float).ravel()

        M = self.observation_matrix
        n_obs = len(X) if M is None else M.shape[0]
        if len(y) != n_obs:
            raise ValueError(f"Expected {n_obs} observations, got {len(y)}")
        if M is not None and M.shape[1] != len(X):
            raise ValueError("Observation matrix columns must match the number of training inputs")

        self.X_train = X
        self.extra_noise = None if extra_noise is None else np.asarray(extra_noise, dtype=float).ravel()
        self._chol, _ = robust_cholesky(self.observation_covariance(), initial_jitter=1e-12)

        residual = y - self._observe(np.full(len(X), self.prior_mean))
        self._weights = cho_solve((self._chol, True), residual)
        self._log_likelihood = _gaussian_log_density(self._chol, residual, self._weights)
        return self

    @property
    def log_marginal_likelihood(self) -> float:
        """log p(c | X) of the fitted measurements."""
        self._require_fit("log_marginal_likelihood")
        return self._log_likelihood

    def predict(self, X: NDArray, return_cov: bool = False) -> GPPrediction:
        """Posterior of f at the trial points X (P, D); full covariance only on request."""
        self._require_fit("predict()")
        X = np.atleast_2d(X)

        K_cross = self._observe(self.kernel(self.X_train, X))  # (n_obs, P)
        mean = self.prior_mean + K_cross.T @ self._weights
        V = solve_triangular(self._chol, K_cross, lower=True)

        if return_cov:
            return GPPrediction.from_mean_cov(mean, self.kernel(X) - V.T @ V)
        variance = np.clip(self.kernel.diagonal(X) - np.einsum("ij,ij->j", V, V), 0.0, None)
        return GPPrediction(mean, variance, np.sqrt(variance))

    def mean_gradient(self, X: NDArray) -> NDArray:
        """
        Slope ∂μ/∂x of the posterior mean at each row of X, shape (P, D).

        Only kernels with an ``input_gradient`` method support this.
        """
        self._require_fit("mean_gradient()")
        if not hasattr(self.kernel, "input_gradient"):
            raise TypeError(f"{type(self.kernel).__name__} does not provide input gradients")

        M = self.observation_matrix
        weights = self._weights if M is None else M.T @ self._weights
        return np.array([self.kernel.input_gradient(x, self.X_train).T @ weights for x in np.atleast_2d(X)])

    def sample_prior(self, X: NDArray, rng: np.random.Generator, n_samples: int = 1, epsilon: float = 1e-7) -> NDArray:
        """Draws (n_samples, P) of f at X from the prior."""
        X = np.atleast_2d(X)
        return sample_gaussian(np.full(len(X), self.prior_mean), self.kernel(X), rng, n_samples, epsilon=epsilon)

    def sample_posterior(
        self, X: NDArray, rng: np.random.Generator, n_samples: int = 1, epsilon: float = 1e-10
    ) -> NDArray:
        """Draws (n_samples, P) of f at X from the posterior."""
        pred = self.predict(X, return_cov=True)
        return sample_gaussian(pred.mean, pred.cov, rng, n_samples, epsilon=epsilon)

    def __repr__(self) -> str:
        return f"ExactGP(kernel={self.kernel}, noise_variance={self.noise_variance:.6g}, n_train={self.n_train})"
