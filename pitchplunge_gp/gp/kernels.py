"""
Kernel Functions for Gaussian Processes

Implements the covariance functions used in the pitch-plunge experiments:
- Squared Exponential with Automatic Relevance Determination (ARD)
- Linear (weight-space) kernel k(x, x') = φ(x)ᵀ K_w φ(x')
- Kernel composition (sum, product) and restriction to input dimensions
- Feature maps turning a state into its quadratic monomials

The SE-ARD kernel is the workhorse for function regression:
    k(x, x') = σ² exp(-0.5 Σᵢ (xᵢ - x'ᵢ)² / lᵢ²)

The linear kernel with quadratic features represents value functions of the
form V(x) = xᵀ P x exactly: with weights w = upper-triangular entries of P,
V(x) = φ(x)ᵀ w where φ(x) = [x₁², 2x₁x₂, x₂², 2x₁x₃, 2x₂x₃, x₃², ...].

Reference:
    Rasmussen, C. E., & Williams, C. K. I. (2006). Gaussian Processes
    for Machine Learning. MIT Press.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

# =============================================================================
# Feature Maps
# =============================================================================


def _upper_indices(n: int):
    """Upper-triangular index pairs in column order: (0,0), (0,1), (1,1), (0,2), ..."""
    rows, cols = np.tril_indices(n)
    return cols, rows


def upper_triangular(A: NDArray) -> NDArray:
    """
    Upper-triangular entries of a square matrix, column by column.

    For a 4x4 matrix this is [A₁₁, A₁₂, A₂₂, A₁₃, A₂₃, A₃₃, A₁₄, A₂₄, A₃₄, A₄₄].
    """
    A = np.atleast_2d(A)
    i, j = _upper_indices(A.shape[0])
    return A[i, j]


def moment_features(Psi: NDArray, bias: bool = False) -> NDArray:
    """
    Quadratic features of a second-moment matrix Ψ = E[x xᵀ].

    Diagonal entries are taken once, off-diagonal entries twice, so that
    E[φ(x)] = moment_features(E[x xᵀ]).

    Args:
        Psi: Symmetric matrix (n, n)
        bias: Append a constant 1

    Returns:
        Feature vector (n(n+1)/2,) or (n(n+1)/2 + 1,)
    """
    Psi = np.atleast_2d(Psi)
    i, j = _upper_indices(Psi.shape[0])
    features = np.where(i == j, 1.0, 2.0) * Psi[i, j]
    if bias:
        features = np.append(features, 1.0)
    return features


def quadratic_features(X: NDArray, bias: bool = False) -> NDArray:
    """
    Quadratic monomials of each row of X.

    Args:
        X: States (N, n)
        bias: Append a constant column of ones

    Returns:
        Features (N, n(n+1)/2) or (N, n(n+1)/2 + 1)
    """
    X = np.atleast_2d(X)
    i, j = _upper_indices(X.shape[1])
    features = np.where(i == j, 1.0, 2.0) * X[:, i] * X[:, j]
    if bias:
        features = np.hstack([features, np.ones((X.shape[0], 1))])
    return features


def n_quadratic_features(n: int, bias: bool = False) -> int:
    """Number of quadratic features of an n-dimensional state."""
    return n * (n + 1) // 2 + int(bias)


# =============================================================================
# Covariance Functions
# =============================================================================


class Kernel(ABC):
    """
    Covariance function k(x, x') between the rows of two input matrices.

    Positive hyperparameters are exchanged as logarithms through
    ``get_params``/``set_params`` so that optimizers can work unconstrained.
    ``active_dims`` restricts a kernel to some input columns; the controller
    experiment uses it to combine a kernel on state features with one on the
    feedback gains.
    """

    active_dims: Optional[Sequence[int]] = None

    def _slice(self, X: NDArray) -> NDArray:
        X = np.atleast_2d(X)
        if self.active_dims is None:
            return X
        return X[:, list(self.active_dims)]

    @abstractmethod
    def __call__(self, X1: NDArray, X2: Optional[NDArray] = None) -> NDArray:
        """Matrix K(X1, X2) of shape (N1, N2), or K(X1, X1) when X2 is None."""

    @abstractmethod
    def diagonal(self, X: NDArray) -> NDArray:
        """k(xᵢ, xᵢ) for every row, without forming the full matrix."""

    @property
    @abstractmethod
    def param_names(self) -> List[str]:
        pass

    @property
    def n_params(self) -> int:
        return len(self.param_names)

    @abstractmethod
    def get_params(self) -> NDArray:
        pass

    @abstractmethod
    def set_params(self, params: NDArray) -> None:
        pass

    def __add__(self, other: "Kernel") -> "SumKernel":
        return SumKernel(self, other)

    def __mul__(self, other: "Kernel") -> "ProductKernel":
        return ProductKernel(self, other)


# =============================================================================
# Squared Exponential
# =============================================================================


class SquaredExponentialARD(Kernel):
    """
    k(x, x') = σ² exp(-½ (x - x')ᵀ Λ⁻¹ (x - x')),  Λ = diag(l²)

    The length scales l are the ``lx`` of the noisy-input methods and σ is
    their output scale ``ly``. ``input_gradient`` returns ∂k/∂x, which NIGP and
    SONIG use to linearize the posterior mean around an uncertain input.

    Example:
        >>> kernel = SquaredExponentialARD(input_dim=1, signal_variance=1.0, lengthscales=[1.0])
        >>> K = kernel(np.linspace(-5, 5, 21)[:, None])
    """

    def __init__(
        self,
        input_dim: int,
        signal_variance: float = 1.0,
        lengthscales: Optional[NDArray] = None,
        active_dims: Optional[Sequence[int]] = None,
    ):
        """
        Args:
            input_dim: Number of input columns the kernel sees (after active_dims)
            signal_variance: σ²
            lengthscales: l, one per input column; a single value is broadcast.
                Ones if None.
            active_dims: Input columns this kernel acts on
        """
        self.input_dim = input_dim
        self.active_dims = active_dims
        self.signal_variance = signal_variance
        self.lengthscales = np.ones(input_dim) if lengthscales is None else lengthscales

    @property
    def signal_variance(self) -> float:
        return self._signal_variance

    @signal_variance.setter
    def signal_variance(self, value: float) -> None:
        if not value > 0:
            raise ValueError(f"Signal variance must be positive, got {value}")
        self._signal_variance = float(value)

    @property
    def lengthscales(self) -> NDArray:
        return self._lengthscales

    @lengthscales.setter
    def lengthscales(self, value: NDArray) -> None:
        value = np.ravel(np.asarray(value, dtype=float))
        if value.size == 1:
            value = np.repeat(value, self.input_dim)
        if value.size != self.input_dim:
            raise ValueError(f"{value.size} length scales given for {self.input_dim} input columns")
        if np.any(value <= 0):
            raise ValueError("Length scales must be positive")
        self._lengthscales = value

    def _scaled_differences(self, X1: NDArray, X2: Optional[NDArray]) -> NDArray:
        """(x1ᵢ - x2ⱼ) / l for all pairs, shape (N1, N2, D)."""
        X2 = X1 if X2 is None else X2
        return (X1[:, None, :] - X2[None, :, :]) / self._lengthscales

    def __call__(self, X1: NDArray, X2: Optional[NDArray] = None) -> NDArray:
        X1 = self._slice(X1)
        X2 = None if X2 is None else self._slice(X2)
        r2 = np.sum(self._scaled_differences(X1, X2) ** 2, axis=2)
        return self._signal_variance * np.exp(-0.5 * r2)

    def diagonal(self, X: NDArray) -> NDArray:
        return np.full(len(self._slice(X)), self._signal_variance)

    def input_gradient(self, x: NDArray, X: NDArray) -> NDArray:
        """
        ∂k(x, Xⱼ)/∂x = -k(x, Xⱼ) Λ⁻¹ (x - Xⱼ) for every row Xⱼ.

        Args:
            x: Single input (D,)
            X: Other inputs (N, D)

        Returns:
            Gradients (N, D)
        """
        if self.active_dims is not None:
            raise ValueError("input_gradient needs a kernel acting on all input columns")
        x = np.atleast_1d(x).reshape(1, -1)
        X = np.atleast_2d(X)
        k = self(x, X)[0]
        return -k[:, None] * (x - X) / self._lengthscales**2

    @property
    def param_names(self) -> List[str]:
        return ["log_signal_variance"] + [f"log_lengthscale_{i}" for i in range(self.input_dim)]

    def get_params(self) -> NDArray:
        """[log σ², log l₁, ..., log l_D]."""
        return np.log(np.concatenate([[self._signal_variance], self._lengthscales]))

    def set_params(self, params: NDArray) -> None:
        values = np.exp(np.ravel(params))
        self._signal_variance = float(values[0])
        self._lengthscales = values[1 : 1 + self.input_dim]

    def __repr__(self) -> str:
        return f"SquaredExponentialARD(lx={np.round(self._lengthscales, 4)}, ly={np.sqrt(self._signal_variance):.4g})"


# =============================================================================
# Linear (Weight-Space) Kernel
# =============================================================================


class LinearKernel(Kernel):
    """
    Linear kernel over a feature map: k(x, x') = φ(x)ᵀ K_w φ(x').

    This is the function-space view of Bayesian linear regression with
    weights w ~ N(0, K_w) and f(x) = φ(x)ᵀ w. With the identity feature map it
    models linear dynamics x_{k+1} = W x_k; with quadratic_features it models
    quadratic value functions.

    Hyperparameters are the diagonal of K_w (log space). An off-diagonal K_w
    is accepted but only its diagonal is exposed for tuning.
    """

    def __init__(
        self,
        weight_covariance: NDArray,
        feature_map: Optional[Callable[[NDArray], NDArray]] = None,
        active_dims: Optional[Sequence[int]] = None,
    ):
        """
        Initialize linear kernel.

        Args:
            weight_covariance: Prior covariance of the weights, (F, F) or
                its diagonal (F,)
            feature_map: Map from inputs (N, D) to features (N, F).
                Identity if None.
            active_dims: Input columns passed to the feature map
        """
        K_w = np.asarray(weight_covariance, dtype=float)
        self.weight_covariance = np.diag(K_w) if K_w.ndim == 1 else K_w
        self.feature_map = feature_map
        self.active_dims = active_dims

    def features(self, X: NDArray) -> NDArray:
        """Feature matrix Φ (N, F)."""
        X = self._slice(X)
        return X if self.feature_map is None else self.feature_map(X)

    def feature_covariance(self, F1: NDArray, F2: Optional[NDArray] = None) -> NDArray:
        """Kernel matrix from precomputed features: F1 K_w F2ᵀ."""
        F1 = np.atleast_2d(F1)
        F2 = F1 if F2 is None else np.atleast_2d(F2)
        return F1 @ self.weight_covariance @ F2.T

    def __call__(
        self,
        X1: NDArray,
        X2: Optional[NDArray] = None,
    ) -> NDArray:
        F1 = self.features(X1)
        F2 = None if X2 is None else self.features(X2)
        return self.feature_covariance(F1, F2)

    def diagonal(self, X: NDArray) -> NDArray:
        F = self.features(X)
        return np.einsum("ij,jk,ik->i", F, self.weight_covariance, F)

    @property
    def n_params(self) -> int:
        return self.weight_covariance.shape[0]

    @property
    def param_names(self) -> List[str]:
        return [f"log_weight_variance_{i}" for i in range(self.n_params)]

    def get_params(self) -> NDArray:
        return np.log(np.diag(self.weight_covariance))

    def set_params(self, params: NDArray) -> None:
        self.weight_covariance = np.diag(np.exp(np.asarray(params).flatten()))

    def __repr__(self) -> str:
        return f"LinearKernel(n_features={self.n_params})"


# =============================================================================
# Composite Kernels
# =============================================================================


class _CompositeKernel(Kernel):
    """Elementwise combination of two kernels; hyperparameters are concatenated."""

    _symbol = "?"

    def __init__(self, k1: Kernel, k2: Kernel):
        self.k1 = k1
        self.k2 = k2

    @abstractmethod
    def _combine(self, K1: NDArray, K2: NDArray) -> NDArray:
        pass

    def __call__(self, X1: NDArray, X2: Optional[NDArray] = None) -> NDArray:
        return self._combine(self.k1(X1, X2), self.k2(X1, X2))

    def diagonal(self, X: NDArray) -> NDArray:
        return self._combine(self.k1.diagonal(X), self.k2.diagonal(X))

    @property
    def param_names(self) -> List[str]:
        return [f"k1_{name}" for name in self.k1.param_names] + [f"k2_{name}" for name in self.k2.param_names]

    def get_params(self) -> NDArray:
        return np.concatenate([self.k1.get_params(), self.k2.get_params()])

    def set_params(self, params: NDArray) -> None:
        params = np.ravel(params)
        self.k1.set_params(params[: self.k1.n_params])
        self.k2.set_params(params[self.k1.n_params :])

    def __repr__(self) -> str:
        return f"({self.k1!r} {self._symbol} {self.k2!r})"


class SumKernel(_CompositeKernel):
    """
    k₁ + k₂. State prediction adds an SE kernel to the linear one to absorb
    the nonlinear pitch stiffness.
    """

    _symbol = "+"

    def _combine(self, K1: NDArray, K2: NDArray) -> NDArray:
        return K1 + K2


class ProductKernel(_CompositeKernel):
    """
    k₁ · k₂. Value functions of varying controllers use a quadratic kernel on
    the state times an SE kernel on the feedback gains.
    """

    _symbol = "*"

    def _combine(self, K1: NDArray, K2: NDArray) -> NDArray:
        return K1 * K2


# =============================================================================
# Factory Functions
# =============================================================================


def create_se_kernel(
    lengthscales,
    signal_std: float = 1.0,
    active_dims: Optional[Sequence[int]] = None,
) -> SquaredExponentialARD:
    """
    Create an SE kernel from a length scale (or scales) and an output scale.

    Args:
        lengthscales: Scalar or per-dimension lengthscales
        signal_std: Output standard deviation (σ, not σ²)
        active_dims: Input columns the kernel acts on

    Returns:
        SquaredExponentialARD kernel
    """
    lengthscales = np.atleast_1d(np.asarray(lengthscales, dtype=float))
    return SquaredExponentialARD(
        input_dim=len(lengthscales),
        signal_variance=signal_std**2,
        lengthscales=lengthscales,
        active_dims=active_dims,
    )
