"""
Gaussian Beliefs and Robust Factorization

Small building blocks shared by every regression method in the package:
- GaussianDistribution: mean vector and covariance matrix over a finite set
  of variables (inducing function values, weights, an input location)
- robust_cholesky: Cholesky factorization with escalating diagonal jitter
- sample_gaussian: Cholesky-based sampling with an explicit random generator

A covariance matrix should always be symmetric positive semi-definite. When
numerical error breaks that, the routines here raise DegenerateCovarianceError
instead of returning a corrupted result.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from numpy.typing import NDArray


class DegenerateCovarianceError(np.linalg.LinAlgError):
    """A covariance matrix lost positive (semi-)definiteness."""


class DegenerateUpdateError(DegenerateCovarianceError):
    """A sequential update produced an invalid belief."""


@dataclass
class GaussianDistribution:
    """
    Gaussian belief N(mean, cov).

    Scalars are promoted to a length-1 mean and a 1x1 covariance, so
    ``GaussianDistribution(0.3, 0.4**2)`` describes a single noisy input.
    """

    mean: NDArray
    cov: NDArray

    def __post_init__(self):
        self.mean = np.atleast_1d(np.asarray(self.mean, dtype=float)).flatten()
        cov = np.asarray(self.cov, dtype=float)
        if cov.ndim == 0:
            cov = cov * np.eye(len(self.mean))
        elif cov.ndim == 1:
            cov = np.diag(cov)
        self.cov = cov

        n = len(self.mean)
        if self.cov.shape != (n, n):
            raise ValueError(f"Covariance shape {self.cov.shape} does not match mean length {n}")

    @property
    def dim(self) -> int:
        return len(self.mean)

    @property
    def variance(self) -> NDArray:
        """Marginal variances (diagonal of the covariance)."""
        return np.diag(self.cov).copy()

    @property
    def std(self) -> NDArray:
        """Marginal standard deviations."""
        return np.sqrt(np.maximum(self.variance, 0.0))

    def is_valid(self, tol: float = 1e-9) -> bool:
        """
        Check the belief is numerically sound.

        The covariance must be finite, symmetric and have no eigenvalue below
        ``-tol`` times its largest absolute entry.

        Args:
            tol: Relative tolerance

        Returns:
            True if the belief is usable
        """
        if not (np.all(np.isfinite(self.mean)) and np.all(np.isfinite(self.cov))):
            return False
        if self.dim == 0:
            return True

        scale = max(np.max(np.abs(self.cov)), 1e-300)
        if np.max(np.abs(self.cov - self.cov.T)) > tol * scale:
            return False

        eigenvalues = np.linalg.eigvalsh(0.5 * (self.cov + self.cov.T))
        return bool(eigenvalues.min() >= -tol * scale)

    def marginal(self, indices) -> "GaussianDistribution":
        """Marginal belief over a subset of the variables."""
        idx = np.atleast_1d(indices)
        return GaussianDistribution(self.mean[idx], self.cov[np.ix_(idx, idx)])

    def sample(self, rng: np.random.Generator, n_samples: int = 1) -> NDArray:
        """Draw samples, shape (n_samples, dim)."""
        return sample_gaussian(self.mean, self.cov, rng, n_samples)

    def __repr__(self) -> str:
        return f"GaussianDistribution(dim={self.dim}, mean={self.mean}, std={self.std})"


def symmetrize(A: NDArray) -> NDArray:
    """Return (A + Aᵀ)/2."""
    return 0.5 * (A + A.T)


def robust_cholesky(
    K: NDArray,
    epsilon: float = 0.0,
    max_epsilon: float = 1.0,
    growth: float = 10.0,
    initial_jitter: float = 1e-20,
) -> Tuple[NDArray, float]:
    """
    Lower Cholesky factor of K, adding diagonal jitter only when needed.

    The factorization is first attempted with ``epsilon`` on the diagonal. On
    failure the jitter starts at ``initial_jitter`` (or ``epsilon`` when that
    is larger) and grows by ``growth`` until the factorization succeeds.

    Args:
        K: Symmetric matrix (N, N)
        epsilon: Diagonal term always added
        max_epsilon: Largest jitter tried before giving up
        growth: Multiplicative jitter growth
        initial_jitter: First jitter tried after a failure

    Returns:
        L: Lower-triangular factor with L Lᵀ = K + jitter I
        jitter: Diagonal term actually used

    Raises:
        DegenerateCovarianceError: If no jitter up to max_epsilon works
    """
    K = np.atleast_2d(K)
    n = K.shape[0]
    identity = np.eye(n)

    try:
        return np.linalg.cholesky(K + epsilon * identity), epsilon
    except np.linalg.LinAlgError:
        pass

    jitter = max(epsilon, initial_jitter)
    while jitter <= max_epsilon:
        try:
            return np.linalg.cholesky(K + jitter * identity), jitter
        except np.linalg.LinAlgError:
            jitter *= growth

    raise DegenerateCovarianceError(f"Matrix is not positive definite even with jitter {max_epsilon:g}")


def sample_gaussian(
    mean: NDArray,
    cov: NDArray,
    rng: np.random.Generator,
    n_samples: int = 1,
    epsilon: float = 1e-7,
) -> NDArray:
    """
    Sample N(mean, cov) through a Cholesky factor.

    Args:
        mean: Mean vector (N,)
        cov: Covariance (N, N)
        rng: Random generator
        n_samples: Number of samples
        epsilon: Diagonal term keeping cov factorizable

    Returns:
        Samples (n_samples, N)
    """
    mean = np.atleast_1d(mean)
    L, _ = robust_cholesky(np.atleast_2d(cov), epsilon=epsilon)
    z = rng.standard_normal((len(mean), n_samples))
    return (mean[:, None] + L @ z).T


def condition_gaussian(
    mean: NDArray,
    cov: NDArray,
    observed: NDArray,
    observed_mean: NDArray,
    observed_cov: NDArray,
    cross_cov: NDArray,
) -> Tuple[NDArray, NDArray]:
    """
    Condition a Gaussian vector a on a jointly Gaussian observation y.

    With a ~ N(mean, cov), y ~ N(observed_mean, observed_cov) and
    cov(a, y) = cross_cov of shape (len(a), len(y)):

        mean' = mean + cross_cov observed_cov⁻¹ (observed - observed_mean)
        cov'  = cov - cross_cov observed_cov⁻¹ cross_covᵀ

    Raises:
        DegenerateCovarianceError: If observed_cov is not positive definite
    """
    observed_cov = np.atleast_2d(observed_cov)
    try:
        L = np.linalg.cholesky(symmetrize(observed_cov))
    except np.linalg.LinAlgError as e:
        raise DegenerateCovarianceError("Observation covariance is not positive definite") from e

    cross_cov = np.reshape(cross_cov, (len(mean), observed_cov.shape[0]))

    # G = cross_cov observed_cov⁻¹
    G = np.linalg.solve(L.T, np.linalg.solve(L, cross_cov.T)).T
    innovation = np.atleast_1d(observed) - np.atleast_1d(observed_mean)

    new_mean = mean + G @ innovation
    new_cov = symmetrize(cov - G @ cross_cov.T)
    return new_mean, new_cov


def log_det_from_cholesky(L: NDArray) -> float:
    """log|K| from its Cholesky factor."""
    return 2.0 * float(np.sum(np.log(np.diag(L))))
