from __future__ import annotations

"""Gaussian and truncated-Gaussian distributions driven by standard-normal draws."""

from dataclasses import dataclass

import numpy as np
from scipy.special import ndtr
from scipy.stats import truncnorm


def psd_square_root(covariance) -> np.ndarray:
    """Symmetric square root L of a PSD matrix, L @ L.T == covariance.

    Tolerates singular (including all-zero) covariances, unlike Cholesky.
    """
    matrix = np.asarray(covariance, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise ValueError("covariance must be a square matrix")
    symmetric = 0.5 * (matrix + matrix.T)
    eigenvalues, eigenvectors = np.linalg.eigh(symmetric)
    return (eigenvectors * np.sqrt(np.clip(eigenvalues, 0.0, None))) @ eigenvectors.T


@dataclass(frozen=True, eq=False)
class Gaussian:
    mean: np.ndarray
    square_root: np.ndarray

    @classmethod
    def from_moments(cls, mean, covariance) -> "Gaussian":
        mean_arr = np.array(mean, dtype=np.float64).reshape(-1)
        root = psd_square_root(covariance)
        if root.shape != (mean_arr.size, mean_arr.size):
            raise ValueError("covariance shape does not match mean")
        return cls(mean=mean_arr, square_root=root)

    @property
    def dimension(self) -> int:
        return int(self.mean.size)

    @property
    def covariance(self) -> np.ndarray:
        return self.square_root @ self.square_root.T

    def map_standard_normal(self, sample) -> np.ndarray:
        arr = np.asarray(sample, dtype=np.float64).reshape(-1)
        if arr.size != self.dimension:
            raise ValueError(f"sample must have {self.dimension} entries, got {arr.size}")
        return self.mean + self.square_root @ arr


@dataclass(frozen=True)
class TruncatedGaussian:
    """Normal(location, sigma) restricted to [low, high] and renormalized."""

    location: float
    sigma: float
    low: float = 0.0
    high: float = 1.0

    def __post_init__(self) -> None:
        if not self.high > self.low:
            raise ValueError("TruncatedGaussian requires high > low")
        if not np.isfinite(self.sigma) or self.sigma < 0.0:
            raise ValueError("sigma must be finite and >= 0")

    @property
    def _standardized_bounds(self) -> tuple[float, float]:
        return (
            (self.low - self.location) / self.sigma,
            (self.high - self.location) / self.sigma,
        )

    @property
    def mean(self) -> float:
        if self.sigma == 0.0:
            return float(np.clip(self.location, self.low, self.high))
        a, b = self._standardized_bounds
        return float(truncnorm.mean(a, b, loc=self.location, scale=self.sigma))

    def map_standard_normal(self, sample: float) -> float:
        """Inverse-CDF transform: z -> ppf(Phi(z))."""
        if self.sigma == 0.0:
            return float(np.clip(self.location, self.low, self.high))
        a, b = self._standardized_bounds
        uniform = float(ndtr(float(sample)))
        if uniform >= 1.0:
            return self.high
        if uniform <= 0.0:
            return self.low
        value = float(truncnorm.ppf(uniform, a, b, loc=self.location, scale=self.sigma))
        return float(np.clip(value, self.low, self.high))
