"""
Bayesian Weight-Space Regression

Linear-in-the-weights regression f(x) = φ(x)ᵀ w with a Gaussian weight prior.
This is the weight-space view of GP regression with the linear kernel
k(x, x') = φ(x)ᵀ K_w φ(x'), and unlike the function-space view it returns a
belief over the weights themselves: the entries of a system matrix, or the
upper-triangular entries of a quadratic value matrix.

Model:
    w ~ N(0, K_w)
    c = M Φ w + ε,  ε ~ N(0, Σ_c)

where the rows of Φ are the feature vectors of the training inputs and M is an
optional observation operator (identity by default).

Posterior:
    Σ_w = (Φᵀ Mᵀ Σ_c⁻¹ M Φ + K_w⁻¹)⁻¹
    μ_w = Σ_w Φᵀ Mᵀ Σ_c⁻¹ c

Prediction at trial features Φ*:
    μ* = Φ* μ_w
    Σ* = Φ* Σ_w Φ*ᵀ

Reference:
    Rasmussen, C. E., & Williams, C. K. I. (2006). Gaussian Processes
    for Machine Learning. MIT Press. Section 2.1.
"""

from __future__ import annotations

from typing import Optional, Union

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import cho_solve

from .distributions import GaussianDistribution, robust_cholesky, symmetrize
from .exact_gp import GPPrediction, negative_log_marginal_likelihood


class WeightSpaceRegression:
    """
    Bayesian linear regression over a fixed feature map.

    Example:
        >>> Phi = quadratic_features(X0)  # (N, 10)
        >>> model = WeightSpaceRegression(K_w, noise_covariance=1e-8)
        >>> model.fit(Phi, c)
        >>> model.weight_distribution.mean  # estimated weights
    """

    def __init__(
        self,
        weight_covariance: NDArray,
        noise_covariance: Union[float, NDArray] = 1e-8,
        observation_matrix: Optional[NDArray] = None,
    ):
        """
        Initialize weight-space regression.

        Args:
            weight_covariance: Prior covariance K_w, (F, F) or its diagonal (F,)
            noise_covariance: Σ_c as a variance (scalar), per-observation
                variances (n_obs,) or a full matrix (n_obs, n_obs)
            observation_matrix: Operator M (n_obs, N). Identity if None.
        """
        K_w = np.asarray(weight_covariance, dtype=float)
        self.weight_covariance = np.diag(K_w) if K_w.ndim == 1 else K_w
        self.noise_covariance = noise_covariance
        self.observation_matrix = observation_matrix

        self._mu_w: Optional[NDArray] = None
        self._Sigma_w: Optional[NDArray] = None
        self._log_marginal_likelihood: Optional[float] = None
        self.n_train: int = 0

    @property
    def n_features(self) -> int:
        return self.weight_covariance.shape[0]

    def _noise_matrix(self, n_obs: int) -> NDArray:
        Sc = np.asarray(self.noise_covariance, dtype=float)
        if Sc.ndim == 0:
            return float(Sc) * np.eye(n_obs)
        if Sc.ndim == 1:
            return np.diag(Sc)
        return Sc

    def fit(self, features: NDArray, targets: NDArray) -> "WeightSpaceRegression":
        """
        Compute the weight posterior.

        Args:
            features: Feature matrix Φ of the training inputs (N, F)
            targets: Observations c (n_obs,)

        Returns:
            self
        """
        Phi = np.atleast_2d(features)
        c = np.atleast_1d(targets).astype(float).flatten()
        if Phi.shape[1] != self.n_features:
            raise ValueError(f"Expected {self.n_features} features, got {Phi.shape[1]}")

        G = Phi if self.observation_matrix is None else self.observation_matrix @ Phi  # M Φ
        if G.shape[0] != len(c):
            raise ValueError(f"Expected {G.shape[0]} observations, got {len(c)}")

        Sc = self._noise_matrix(len(c))
        Sc_inv_G = np.linalg.solve(Sc, G)  # Σ_c⁻¹ M Φ

        precision = G.T @ Sc_inv_G + np.linalg.inv(self.weight_covariance)
        L, _ = robust_cholesky(symmetrize(precision))

        self._Sigma_w = symmetrize(cho_solve((L, True), np.eye(self.n_features)))
        self._mu_w = cho_solve((L, True), Sc_inv_G.T @ c)
        self.n_train = Phi.shape[0]

        K_c = G @ self.weight_covariance @ G.T + Sc
        self._log_marginal_likelihood = -negative_log_marginal_likelihood(symmetrize(K_c), c)

        return self

    @property
    def weight_distribution(self) -> GaussianDistribution:
        """Posterior belief N(μ_w, Σ_w) over the weights."""
        if self._mu_w is None:
            raise RuntimeError("Must call fit() first")
        return GaussianDistribution(self._mu_w, self._Sigma_w)

    @property
    def log_marginal_likelihood(self) -> float:
        """log p(c) under the weight prior."""
        if self._log_marginal_likelihood is None:
            raise RuntimeError("Must call fit() first")
        return self._log_marginal_likelihood

    def predict(self, features: NDArray, return_cov: bool = False) -> GPPrediction:
        """
        Predict at trial points given their features Φ* (P, F).
        """
        if self._mu_w is None:
            raise RuntimeError("Must call fit() before predict()")

        Phi_s = np.atleast_2d(features)
        mean = Phi_s @ self._mu_w
        if return_cov:
            return GPPrediction.from_mean_cov(mean, symmetrize(Phi_s @ self._Sigma_w @ Phi_s.T))

        variance = np.maximum(np.einsum("ij,jk,ik->i", Phi_s, self._Sigma_w, Phi_s), 0.0)
        return GPPrediction(mean=mean, variance=variance, std=np.sqrt(variance))

    def __repr__(self) -> str:
        return f"WeightSpaceRegression(n_features={self.n_features}, n_train={self.n_train})"
