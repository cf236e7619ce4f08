"""
FITC Regression with Fixed Inducing Inputs

Batch counterpart of the sequential SONIG update: for noise-free inputs, a
SONIG object that has processed the same measurements ends up with exactly
the inducing belief computed here. The cost per fit is O(N M²) for N
measurements and M inducing inputs.

With Q = K_fu K_uu⁻¹ K_uf the Nyström approximation of the prior covariance,
every measurement keeps its own prior variance through the diagonal

    Λ = diag(K_ff - Q) + σ²

and the inducing function values fu get the belief

    Σ_u = K_uu (K_uu + K_uf Λ⁻¹ K_fu)⁻¹ K_uu
    μ_u = Σ_u K_uu⁻¹ K_uf Λ⁻¹ y

Predictions only pass through fu:

    μ* = K_*u K_uu⁻¹ μ_u
    Σ* = K_** - K_*u K_uu⁻¹ (K_uu - Σ_u) K_uu⁻¹ K_u*

Internally everything is whitened with the Cholesky factor L_uu of K_uu, so
only the M x M matrix I + V Λ⁻¹ Vᵀ (V = L_uu⁻¹ K_uf) is ever factorized.

Snelson and Ghahramani, "Sparse Gaussian processes using pseudo-inputs",
NIPS 2006.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import cho_solve, solve_triangular

from .distributions import GaussianDistribution, robust_cholesky, symmetrize
from .exact_gp import GPPrediction
from .kernels import Kernel


@dataclass(frozen=True)
class _FITCFactors:
    L_uu: NDArray  # chol(K_uu)
    L_B: NDArray  # chol(I + V Λ⁻¹ Vᵀ)
    beta: NDArray  # whitened inducing mean, μ_u = L_uu β
    lam: NDArray  # diagonal of Λ
    log_likelihood: float


class SparseGP:
    """
    FITC sparse GP whose inducing inputs are chosen by the caller.

    Example:
        >>> Xu = np.linspace(-5, 5, 21)[:, None]
        >>> gp = SparseGP(create_se_kernel(1.0), Xu, noise_variance=0.1**2).fit(X, y)
        >>> gp.inducing_distribution.std
        >>> gp.predict(X_test).mean
    """

    def __init__(self, kernel: Kernel, inducing_points: NDArray, noise_variance: float = 1e-4, jitter: float = 1e-10):
        Xu = np.asarray(inducing_points, dtype=float)
        if Xu.ndim == 1:
            Xu = Xu[:, None]
        self.kernel = kernel
        self.inducing_points = Xu
        self.noise_variance = noise_variance
        self.jitter = jitter
        self.n_measurements = 0
        self._factors: Optional[_FITCFactors] = None

    @property
    def n_inducing(self) -> int:
        return self.inducing_points.shape[0]

    def _fitted(self) -> _FITCFactors:
        if self._factors is None:
            raise RuntimeError("SparseGP has no measurements yet; call fit() first")
        return self._factors

    def fit(self, X: NDArray, y: NDArray) -> SparseGP:
        """
        Condition the inducing belief on the measurements (X, y).

        Raises ValueError when the sizes disagree, or when the noise variance
        is too small to keep Λ positive.
        """
        X = np.atleast_2d(X)
        y = np.asarray(y, dtype=float).ravel()
        if len(X) != len(y):
            raise ValueError(f"Got {len(X)} inputs but {len(y)} targets")

        L_uu, _ = robust_cholesky(self.kernel(self.inducing_points), epsilon=self.jitter)
        V = solve_triangular(L_uu, self.kernel(self.inducing_points, X), lower=True)

        lam = self.kernel.diagonal(X) - np.einsum("ij,ij->j", V, V) + self.noise_variance
        if np.any(lam <= 0):
            raise ValueError("FITC diagonal correction is not positive; increase the noise variance")

        V_white = V / np.sqrt(lam)
        L_B = np.linalg.cholesky(np.eye(self.n_inducing) + V_white @ V_white.T)
        r = V @ (y / lam)
        beta = cho_solve((L_B, True), r)

        # log N(y | 0, Q + Λ) through the matrix determinant lemma and Woodbury
        quad = y @ (y / lam) - r @ beta
        logdet = 2.0 * np.log(np.diag(L_B)).sum() + np.log(lam).sum()
        log_likelihood = -0.5 * (quad + logdet + len(y) * np.log(2 * np.pi))

        self.n_measurements = len(y)
        self._factors = _FITCFactors(L_uu, L_B, beta, lam, float(log_likelihood))
        return self

    @property
    def inducing_distribution(self) -> GaussianDistribution:
        """Posterior belief over the inducing function values."""
        f = self._fitted()
        C = solve_triangular(f.L_B, f.L_uu.T, lower=True)
        return GaussianDistribution(f.L_uu @ f.beta, symmetrize(C.T @ C))

    def predict(self, X: NDArray, return_cov: bool = False) -> GPPrediction:
        """Posterior of the latent function at the test inputs X (P, D)."""
        f = self._fitted()
        X = np.atleast_2d(X)

        V = solve_triangular(f.L_uu, self.kernel(self.inducing_points, X), lower=True)
        U = solve_triangular(f.L_B, V, lower=True)
        mean = V.T @ f.beta

        if return_cov:
            return GPPrediction.from_mean_cov(mean, symmetrize(self.kernel(X) - V.T @ V + U.T @ U))

        variance = self.kernel.diagonal(X) - np.einsum("ij,ij->j", V, V) + np.einsum("ij,ij->j", U, U)
        variance = np.maximum(variance, 0.0)
        return GPPrediction(mean=mean, variance=variance, std=np.sqrt(variance))

    @property
    def log_marginal_likelihood(self) -> float:
        """FITC approximation of log p(y)."""
        return self._fitted().log_likelihood

    def __repr__(self) -> str:
        return f"SparseGP(kernel={self.kernel}, n_inducing={self.n_inducing}, n_measurements={self.n_measurements})"
