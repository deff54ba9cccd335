from __future__ import annotations

"""Damped Wiener velocity process and its time integral.

The integrated process drives one 3-dimensional position-like quantity
together with its velocity:

    dv = (u - damping * v) dt + dW,   dx = v dt,   Cov[dW] = Q dt

Both processes follow the two-phase protocol: ``condition`` fixes a Gaussian
conditional and ``map_standard_normal`` maps a standard-normal draw onto it.
"""

from dataclasses import dataclass

import numpy as np

from .gaussian import Gaussian
from .model import ConditionedDistribution, _as_psd

# below this damping * dt the closed forms lose precision; use series limits
_SMALL_DAMPING_TIME = 1e-6


def _validate_delta_time(delta_time: float) -> float:
    dt = float(delta_time)
    if not np.isfinite(dt) or dt < 0.0:
        raise ValueError(f"delta_time must be finite and >= 0, got {delta_time}")
    return dt


def _as_vector(value, size: int, name: str) -> np.ndarray:
    if value is None:
        return np.zeros(size, dtype=np.float64)
    arr = np.asarray(value, dtype=np.float64).reshape(-1)
    if arr.size != size:
        raise ValueError(f"{name} must have {size} entries, got {arr.size}")
    return arr


def velocity_mean_factors(damping: float, delta_time: float) -> tuple[float, float]:
    """(decay, input_gain) with E[v(t)] = decay * v0 + input_gain * u."""
    product = damping * delta_time
    if product < _SMALL_DAMPING_TIME:
        return (1.0 - product, delta_time * (1.0 - 0.5 * product))
    return (float(np.exp(-product)), float(-np.expm1(-product) / damping))


def velocity_variance_factor(damping: float, delta_time: float) -> float:
    product = damping * delta_time
    if product < _SMALL_DAMPING_TIME:
        return delta_time * (1.0 - product)
    return float(-np.expm1(-2.0 * product) / (2.0 * damping))


def position_mean_factors(damping: float, delta_time: float) -> tuple[float, float]:
    """(velocity_gain, input_gain) with E[x(t)] = x0 + velocity_gain * v0 + input_gain * u."""
    product = damping * delta_time
    if product < _SMALL_DAMPING_TIME:
        return (
            delta_time * (1.0 - 0.5 * product),
            0.5 * delta_time**2 * (1.0 - product / 3.0),
        )
    velocity_gain = float(-np.expm1(-product) / damping)
    return (velocity_gain, (delta_time - velocity_gain) / damping)


def position_variance_factor(damping: float, delta_time: float) -> float:
    """Variance of the integrated Ornstein-Uhlenbeck position per unit Q."""
    product = damping * delta_time
    if product < 1e-3:
        return delta_time**3 / 3.0 * (1.0 - 0.75 * product)
    one_minus_decay = -np.expm1(-product)
    one_minus_decay_sq = -np.expm1(-2.0 * product)
    factor = (
        delta_time
        - 2.0 * one_minus_decay / damping
        + one_minus_decay_sq / (2.0 * damping)
    ) / damping**2
    return float(max(0.0, factor))


class DampedWienerProcess:
    """First-order damped Wiener (Ornstein-Uhlenbeck) process with input drive."""

    def __init__(self, dimension: int = 3) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be > 0")
        self._dimension = dimension
        self._damping = 0.0
        self._noise_covariance = np.eye(dimension, dtype=np.float64)
        self._conditioned: Gaussian | None = None

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def damping(self) -> float:
        return self._damping

    @property
    def noise_covariance(self) -> np.ndarray:
        return self._noise_covariance.copy()

    def parameters(self, damping: float, noise_covariance) -> None:
        if not np.isfinite(damping) or damping < 0.0:
            raise ValueError("damping must be finite and >= 0")
        covariance = _as_psd(noise_covariance, "noise_covariance", self._dimension)
        self._damping = float(damping)
        self._noise_covariance = covariance.copy()

    def condition(self, delta_time: float, velocity, control=None) -> Gaussian:
        dt = _validate_delta_time(delta_time)
        v0 = _as_vector(velocity, self._dimension, "velocity")
        u = _as_vector(control, self._dimension, "control")

        decay, input_gain = velocity_mean_factors(self._damping, dt)
        self._conditioned = Gaussian.from_moments(
            decay * v0 + input_gain * u,
            velocity_variance_factor(self._damping, dt) * self._noise_covariance,
        )
        return self._conditioned

    def map_standard_normal(self, sample) -> np.ndarray:
        if self._conditioned is None:
            raise RuntimeError("condition() must be called before map_standard_normal()")
        return self._conditioned.map_standard_normal(sample)


@dataclass(frozen=True)
class ConditionedIntegrator(ConditionedDistribution):
    position: Gaussian
    velocity: Gaussian

    def map_standard_normal(self, noise) -> np.ndarray:
        # both halves share one draw
        return np.concatenate(
            [
                self.position.map_standard_normal(noise),
                self.velocity.map_standard_normal(noise),
            ]
        )


class IntegratedDampedWienerProcess:
    """Doubly-integrated damped process over (position, velocity) 6-vectors."""

    def __init__(self, dimension: int = 3) -> None:
        self._dimension = dimension
        self._velocity_process = DampedWienerProcess(dimension)
        self._conditioned: ConditionedIntegrator | None = None

    @property
    def state_dimension(self) -> int:
        return 2 * self._dimension

    @property
    def noise_dimension(self) -> int:
        return self._dimension

    @property
    def input_dimension(self) -> int:
        return self._dimension

    @property
    def damping(self) -> float:
        return self._velocity_process.damping

    def parameters(self, damping: float, acceleration_covariance) -> None:
        self._velocity_process.parameters(damping, acceleration_covariance)

    def condition(self, delta_time: float, state, control=None) -> ConditionedIntegrator:
        dt = _validate_delta_time(delta_time)
        full = _as_vector(state, self.state_dimension, "state")
        u = _as_vector(control, self._dimension, "control")
        x0 = full[: self._dimension]
        v0 = full[self._dimension:]

        damping = self._velocity_process.damping
        velocity_gain, input_gain = position_mean_factors(damping, dt)
        position = Gaussian.from_moments(
            x0 + velocity_gain * v0 + input_gain * u,
            position_variance_factor(damping, dt) * self._velocity_process.noise_covariance,
        )
        velocity = self._velocity_process.condition(dt, v0, u)

        self._conditioned = ConditionedIntegrator(position=position, velocity=velocity)
        return self._conditioned

    def map_standard_normal(self, sample) -> np.ndarray:
        if self._conditioned is None:
            raise RuntimeError("condition() must be called before map_standard_normal()")
        return self._conditioned.map_standard_normal(sample)
