"""
Sparse Online Noisy-Input Gaussian Process (SONIG)

Sequential GP regression in which every measurement has an uncertain input.
The model state is a Gaussian belief over the function values fu at a fixed
set of inducing inputs Xu. Each measurement (x, y) with x ~ N(x̄, Σx) and
y ~ N(ȳ, Σy) is folded into that belief with one Gaussian conditioning step:

1. Predict the function value f₊ at the input mean through the inducing
   points (FITC conditional):
       μ₊ = k₊ᵤ Kᵤᵤ⁻¹ μᵤ
       σ²₊ = k₊₊ - k₊ᵤ Kᵤᵤ⁻¹ (Kᵤᵤ - Σᵤ) Kᵤᵤ⁻¹ kᵤ₊
2. Linearize the posterior mean around x̄ (first-order Taylor expansion of
   the kernel):
       f₊ ≈ μ₊ + ∂μ/∂x (x - x̄) + k₊ᵤ Kᵤᵤ⁻¹ (fᵤ - μᵤ),  ∂μ/∂x = (∂k₊ᵤ/∂x) Kᵤᵤ⁻¹ μᵤ
   which gives the joint Gaussian of [x; fᵤ; f₊] with
       cov(x, f₊) = Σx ∂μᵀ,  cov(fᵤ, f₊) = Σᵤ Kᵤᵤ⁻¹ kᵤ₊,
       var(f₊) = σ²₊ + ∂μ Σx ∂μᵀ
3. Add the output noise and condition the joint on the observed output.

The updated inducing belief replaces the old one; the input and output
marginals of the conditioned joint are returned as the measurement posterior.
With zero input noise the update is exact Gaussian conditioning, and after N
measurements the inducing belief equals the batch FITC posterior.

If the observation variance is not positive or the updated inducing
covariance is not positive semi-definite, the object is marked invalid and
DegenerateUpdateError is raised. The belief from before the failed update is
kept, but an invalid object refuses further updates and predictions.

Reference:
    Bijl, H., Schön, T. B., van Wingerden, J.-W., & Verhaegen, M. (2017).
    System identification through online sparse Gaussian process regression
    with input noise. IFAC Journal of Systems and Control.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import cho_solve

from .distributions import (
    DegenerateCovarianceError,
    DegenerateUpdateError,
    GaussianDistribution,
    condition_gaussian,
    robust_cholesky,
    symmetrize,
)
from .exact_gp import GPPrediction
from .kernels import SquaredExponentialARD, create_se_kernel


@dataclass
class SONIGHyperparameters:
    """Hyperparameters of a single-output SONIG model."""

    lx: NDArray  # Input length scales (D,)
    ly: float = 1.0  # Output length scale (signal std)
    sx: NDArray = 0.0  # Input noise std (D,) or scalar
    sy: float = 0.1  # Output noise std

    def __post_init__(self):
        self.lx = np.atleast_1d(np.asarray(self.lx, dtype=float)).flatten()
        sx = np.atleast_1d(np.asarray(self.sx, dtype=float)).flatten()
        self.sx = np.broadcast_to(sx, self.lx.shape).copy()

        if np.any(self.lx <= 0) or self.ly <= 0:
            raise ValueError("Length scales must be positive")
        if np.any(self.sx < 0) or self.sy < 0:
            raise ValueError("Noise levels must be non-negative")

    @property
    def input_dim(self) -> int:
        return len(self.lx)

    def kernel(self) -> SquaredExponentialARD:
        return create_se_kernel(self.lx, signal_std=self.ly)

    def input_distribution(self, x: NDArray) -> GaussianDistribution:
        """Prior belief of a measured input: N(x, diag(sx²))."""
        return GaussianDistribution(x, np.diag(self.sx**2))

    def output_distribution(self, y: float) -> GaussianDistribution:
        """Prior belief of a measured output: N(y, sy²)."""
        return GaussianDistribution(y, self.sy**2)


class SONIG:
    """
    Sequential noisy-input GP regression with inducing points.

    Example:
        >>> hyp = SONIGHyperparameters(lx=1.0, ly=1.0, sx=0.4, sy=0.1)
        >>> sonig = SONIG(hyp, inducing_points=np.linspace(-5, 5, 21))
        >>> for x, y in zip(X_noisy, y_noisy):
        ...     input_post, output_post = sonig.implement_measurement(
        ...         hyp.input_distribution(x), hyp.output_distribution(y))
        >>> pred = sonig.predict(Xs)
    """

    def __init__(
        self,
        hyperparameters: SONIGHyperparameters,
        inducing_points: Optional[NDArray] = None,
        jitter: float = 1e-10,
    ):
        """
        Initialize SONIG.

        Args:
            hyperparameters: Kernel and noise hyperparameters
            inducing_points: Initial inducing inputs (nu, D). More can be
                added later with add_inducing_points().
            jitter: Diagonal term used when factorizing Kᵤᵤ
        """
        self.hyperparameters = hyperparameters
        self.kernel = hyperparameters.kernel()
        self.jitter = jitter

        self.Xu = np.zeros((0, hyperparameters.input_dim))
        self.fu = GaussianDistribution(np.zeros(0), np.zeros((0, 0)))
        self.valid = True
        self.n_measurements = 0

        self._L_uu: Optional[NDArray] = None  # Cholesky of Kᵤᵤ

        if inducing_points is not None:
            self.add_inducing_points(inducing_points)

    @property
    def input_dim(self) -> int:
        return self.hyperparameters.input_dim

    @property
    def n_inducing(self) -> int:
        return self.Xu.shape[0]

    def _as_points(self, X: NDArray) -> NDArray:
        X = np.asarray(X, dtype=float)
        if X.ndim <= 1:
            X = X.reshape(-1, self.input_dim)
        if X.shape[1] != self.input_dim:
            raise ValueError(f"Expected inputs of dimension {self.input_dim}, got {X.shape[1]}")
        return X

    def _factorize(self) -> None:
        self._L_uu, _ = robust_cholesky(self.kernel(self.Xu), epsilon=self.jitter)

    def _solve_uu(self, B: NDArray) -> NDArray:
        """Kᵤᵤ⁻¹ B."""
        return cho_solve((self._L_uu, True), B)

    def _mark_invalid(self, message: str) -> DegenerateUpdateError:
        self.valid = False
        return DegenerateUpdateError(message)

    # =========================================================================
    # Inducing points
    # =========================================================================

    def add_inducing_points(self, X_new: NDArray) -> "SONIG":
        """
        Add inducing inputs, extending the belief with their conditional.

        Given the current belief fᵤ ~ N(μᵤ, Σᵤ), the function values at new
        inducing inputs Xn follow from the GP prior conditioned on fᵤ:
            μₙ = Kₙᵤ Kᵤᵤ⁻¹ μᵤ
            Σₙᵤ = Kₙᵤ Kᵤᵤ⁻¹ Σᵤ
            Σₙₙ = Kₙₙ - Kₙᵤ Kᵤᵤ⁻¹ (Kᵤᵤ - Σᵤ) Kᵤᵤ⁻¹ Kᵤₙ
        Without existing inducing points this is the prior N(0, Kₙₙ).

        Args:
            X_new: New inducing inputs (n, D)

        Returns:
            self
        """
        X_new = self._as_points(X_new)
        K_nn = self.kernel(X_new)

        if self.n_inducing == 0:
            mean = np.zeros(X_new.shape[0])
            cov = K_nn
        else:
            K_nu = self.kernel(X_new, self.Xu)
            A = self._solve_uu(K_nu.T).T  # Kₙᵤ Kᵤᵤ⁻¹
            mu_n = A @ self.fu.mean
            S_nu = A @ self.fu.cov
            S_nn = K_nn - A @ K_nu.T + S_nu @ A.T
            mean = np.concatenate([self.fu.mean, mu_n])
            cov = np.block([[self.fu.cov, S_nu.T], [S_nu, S_nn]])

        self.Xu = np.vstack([self.Xu, X_new])
        self.fu = GaussianDistribution(mean, symmetrize(cov))
        self._factorize()
        return self

    def set_inducing_distribution(self, distribution: GaussianDistribution) -> None:
        """Replace the inducing belief, e.g. by a batch posterior computed elsewhere."""
        if distribution.dim != self.n_inducing:
            raise ValueError(f"Expected a belief over {self.n_inducing} inducing points, got {distribution.dim}")
        self.fu = GaussianDistribution(distribution.mean.copy(), symmetrize(distribution.cov))
        self.valid = self.fu.is_valid()

    # =========================================================================
    # Sequential update
    # =========================================================================

    def implement_measurement(
        self,
        input_dist: GaussianDistribution,
        output_dist: GaussianDistribution,
    ) -> Tuple[GaussianDistribution, GaussianDistribution]:
        """
        Fold one noisy measurement into the inducing belief.

        Args:
            input_dist: Prior belief of the measured input (D,)
            output_dist: Prior belief of the measured output (1,)

        Returns:
            input_posterior: Posterior belief of the input location
            output_posterior: Posterior belief of the function value there

        Raises:
            DegenerateUpdateError: If the update breaks positive definiteness,
                or the object was already invalid
        """
        if not self.valid:
            raise DegenerateUpdateError("SONIG object is invalid; cannot implement further measurements")
        if self.n_inducing == 0:
            raise RuntimeError("Add inducing points before implementing measurements")
        if input_dist.dim != self.input_dim:
            raise ValueError(f"Expected an input of dimension {self.input_dim}, got {input_dist.dim}")
        if output_dist.dim != 1:
            raise ValueError("Only single-output measurements are supported")

        D = self.input_dim
        nu = self.n_inducing
        x_mean = input_dist.mean
        S_x = input_dist.cov
        mu_u = self.fu.mean
        S_u = self.fu.cov

        # Prediction at the input mean
        k_pu = self.kernel(x_mean[None, :], self.Xu)[0]  # (nu,)
        b = self._solve_uu(k_pu)  # Kᵤᵤ⁻¹ kᵤ₊
        a = self._solve_uu(mu_u)  # Kᵤᵤ⁻¹ μᵤ
        mu_p = float(k_pu @ a)
        S_u_b = S_u @ b
        var_p = float(self.kernel.diagonal(x_mean[None, :])[0] - k_pu @ b + b @ S_u_b)

        # Linearization of the posterior mean around the input mean
        dmu = self.kernel.input_gradient(x_mean, self.Xu).T @ a  # (D,)
        S_x_dmu = S_x @ dmu
        var_f = var_p + float(dmu @ S_x_dmu)

        # Joint belief of [x; fᵤ; f₊]
        n = D + nu + 1
        joint_mean = np.concatenate([x_mean, mu_u, [mu_p]])
        cross_cov = np.concatenate([S_x_dmu, S_u_b, [var_f]])  # cov([x; fᵤ; f₊], f₊)
        joint_cov = np.zeros((n, n))
        joint_cov[:D, :D] = S_x
        joint_cov[D : D + nu, D : D + nu] = S_u
        joint_cov[:, -1] = cross_cov
        joint_cov[-1, :] = cross_cov

        observed_var = var_f + float(output_dist.cov[0, 0])
        if not np.isfinite(observed_var) or observed_var <= 0:
            raise self._mark_invalid(f"Observation variance {observed_var:.3g} is not positive")

        try:
            post_mean, post_cov = condition_gaussian(
                joint_mean,
                joint_cov,
                output_dist.mean,
                [mu_p],
                [[observed_var]],
                cross_cov,
            )
        except DegenerateCovarianceError as e:
            raise self._mark_invalid(str(e)) from e

        fu_post = GaussianDistribution(post_mean[D : D + nu], post_cov[D : D + nu, D : D + nu])
        if not fu_post.is_valid():
            raise self._mark_invalid("Inducing point covariance lost positive semi-definiteness")

        self.fu = fu_post
        self.n_measurements += 1

        input_post = GaussianDistribution(post_mean[:D], post_cov[:D, :D])
        output_post = GaussianDistribution(post_mean[-1:], post_cov[-1:, -1:])
        return input_post, output_post

    def implement_measurements(self, X: NDArray, y: NDArray) -> "SONIG":
        """
        Implement a sequence of measurements with the noise levels of the
        hyperparameters.

        Args:
            X: Measured inputs (N, D)
            y: Measured outputs (N,)

        Returns:
            self
        """
        X = self._as_points(X)
        y = np.atleast_1d(y).flatten()
        for x_i, y_i in zip(X, y):
            self.implement_measurement(
                self.hyperparameters.input_distribution(x_i),
                self.hyperparameters.output_distribution(y_i),
            )
        return self

    # =========================================================================
    # Prediction
    # =========================================================================

    def predict(self, Xs: NDArray, return_cov: bool = True) -> GPPrediction:
        """
        Predict function values at trial points.

            μₛ = Kₛᵤ Kᵤᵤ⁻¹ μᵤ
            Σₛ = Kₛₛ - Kₛᵤ Kᵤᵤ⁻¹ (Kᵤᵤ - Σᵤ) Kᵤᵤ⁻¹ Kᵤₛ

        Args:
            Xs: Trial inputs (P, D)
            return_cov: Whether to keep the full covariance

        Returns:
            GPPrediction with mean, variance, std (and cov)

        Raises:
            DegenerateUpdateError: If the object is invalid
        """
        if not self.valid:
            raise DegenerateUpdateError("Cannot predict from an invalid SONIG object")
        if self.n_inducing == 0:
            raise RuntimeError("Add inducing points before predicting")

        Xs = self._as_points(Xs)
        K_su = self.kernel(Xs, self.Xu)
        A = self._solve_uu(K_su.T).T  # Kₛᵤ Kᵤᵤ⁻¹

        mean = A @ self.fu.mean
        cov = symmetrize(self.kernel(Xs) - A @ K_su.T + A @ self.fu.cov @ A.T)
        return GPPrediction.from_mean_cov(mean, cov, keep_cov=return_cov)

    def __repr__(self) -> str:
        return (
            f"SONIG(n_inducing={self.n_inducing}, "
            f"n_measurements={self.n_measurements}, "
            f"valid={self.valid})"
        )
