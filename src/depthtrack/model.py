from __future__ import annotations

"""Shared data model and component interfaces for pose-tracking models."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import numpy as np

from .geometry import (
    quaternion_to_rotation_matrix,
    quaternion_to_rotation_vector,
    rotation_vector_to_quaternion,
)


class DegenerateStateError(ArithmeticError):
    """A model received or produced a NaN/Inf value.

    Recoverable at the level of a single particle: the caller may drop the
    affected sample and continue.
    """


class RenderingError(RuntimeError):
    """The rendering collaborator returned an unusable depth image."""


def _as_vec3(vector, name: str) -> np.ndarray:
    arr = np.asarray(vector, dtype=np.float64)
    if arr.shape != (3,):
        raise ValueError(f"{name} must be length 3")
    return arr


def _as_psd(matrix, name: str, dimension: int = 3) -> np.ndarray:
    arr = np.asarray(matrix, dtype=np.float64)
    if arr.shape != (dimension, dimension):
        raise ValueError(f"{name} must be {dimension}x{dimension}")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{name} must be finite")
    if not np.allclose(arr, arr.T, rtol=1e-9, atol=1e-12):
        raise ValueError(f"{name} must be symmetric")
    scale = max(1.0, float(np.max(np.abs(arr))))
    if float(np.min(np.linalg.eigvalsh(arr))) < -1e-12 * scale:
        raise ValueError(f"{name} must be positive semi-definite")
    return arr


class RigidBodiesState:
    """Pose and velocities of N free-floating rigid bodies.

    Stored as one flat vector with 12 entries per body: position,
    orientation (rotation vector), linear velocity, angular velocity.
    """

    DIMENSION_PER_BODY = 12
    POSE_DIMENSION = 6

    def __init__(self, vector) -> None:
        arr = np.array(vector, dtype=np.float64).reshape(-1)
        if arr.size % self.DIMENSION_PER_BODY != 0:
            raise ValueError(
                f"state length {arr.size} is not a multiple of {self.DIMENSION_PER_BODY}"
            )
        self._vector = arr

    @classmethod
    def zeros(cls, body_count: int) -> "RigidBodiesState":
        if body_count < 0:
            raise ValueError("body_count must be >= 0")
        return cls(np.zeros(body_count * cls.DIMENSION_PER_BODY, dtype=np.float64))

    @classmethod
    def coerce(cls, state) -> "RigidBodiesState":
        if isinstance(state, RigidBodiesState):
            return state
        return cls(state)

    @property
    def vector(self) -> np.ndarray:
        return self._vector

    @property
    def body_count(self) -> int:
        return self._vector.size // self.DIMENSION_PER_BODY

    def copy(self) -> "RigidBodiesState":
        return RigidBodiesState(self._vector.copy())

    def _slice(self, index: int, offset: int) -> slice:
        if not 0 <= index < self.body_count:
            raise IndexError(f"body index {index} out of range for {self.body_count} bodies")
        start = index * self.DIMENSION_PER_BODY + offset
        return slice(start, start + 3)

    def position(self, index: int) -> np.ndarray:
        return self._vector[self._slice(index, 0)].copy()

    def orientation(self, index: int) -> np.ndarray:
        return self._vector[self._slice(index, 3)].copy()

    def linear_velocity(self, index: int) -> np.ndarray:
        return self._vector[self._slice(index, 6)].copy()

    def angular_velocity(self, index: int) -> np.ndarray:
        return self._vector[self._slice(index, 9)].copy()

    def pose(self, index: int) -> np.ndarray:
        start = self._slice(index, 0).start
        return self._vector[start:start + self.POSE_DIMENSION].copy()

    def quaternion(self, index: int) -> np.ndarray:
        """Unit quaternion in (x, y, z, w) order."""
        return rotation_vector_to_quaternion(self.orientation(index))

    def rotation_matrix(self, index: int) -> np.ndarray:
        return quaternion_to_rotation_matrix(self.quaternion(index))

    def set_position(self, index: int, value) -> None:
        self._vector[self._slice(index, 0)] = _as_vec3(value, "position")

    def set_orientation(self, index: int, value) -> None:
        self._vector[self._slice(index, 3)] = _as_vec3(value, "orientation")

    def set_quaternion(self, index: int, value) -> None:
        # normalizes, so the stored orientation always has unit magnitude
        self._vector[self._slice(index, 3)] = quaternion_to_rotation_vector(value)

    def set_linear_velocity(self, index: int, value) -> None:
        self._vector[self._slice(index, 6)] = _as_vec3(value, "linear_velocity")

    def set_angular_velocity(self, index: int, value) -> None:
        self._vector[self._slice(index, 9)] = _as_vec3(value, "angular_velocity")

    def __len__(self) -> int:
        return self._vector.size

    def __repr__(self) -> str:
        return f"RigidBodiesState(body_count={self.body_count})"


@dataclass(frozen=True, eq=False)
class BodyMotionParameters:
    """Per-body parameters of the Brownian motion model."""

    pivot: tuple[float, float, float] = (0.0, 0.0, 0.0)
    damping: float = 0.0
    linear_acceleration_covariance: np.ndarray = field(
        default_factory=lambda: np.eye(3, dtype=np.float64)
    )
    angular_acceleration_covariance: np.ndarray = field(
        default_factory=lambda: np.eye(3, dtype=np.float64)
    )

    def __post_init__(self) -> None:
        pivot = _as_vec3(self.pivot, "pivot")
        if not np.all(np.isfinite(pivot)):
            raise ValueError("pivot must be finite")
        if not np.isfinite(self.damping) or self.damping < 0.0:
            raise ValueError("damping must be finite and >= 0")
        object.__setattr__(self, "pivot", tuple(float(value) for value in pivot))
        object.__setattr__(
            self,
            "linear_acceleration_covariance",
            _as_psd(self.linear_acceleration_covariance, "linear_acceleration_covariance"),
        )
        object.__setattr__(
            self,
            "angular_acceleration_covariance",
            _as_psd(self.angular_acceleration_covariance, "angular_acceleration_covariance"),
        )


@dataclass(frozen=True)
class OcclusionParameters:
    """Transition probabilities per second and diffusion sigma.

    p_occluded_visible: probability a visible source is occluded one second later.
    p_occluded_occluded: probability an occluded source is still occluded.
    """

    p_occluded_visible: float = 0.1
    p_occluded_occluded: float = 0.7
    sigma: float = 0.1

    def __post_init__(self) -> None:
        for name in ("p_occluded_visible", "p_occluded_occluded"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if not np.isfinite(self.sigma) or self.sigma <= 0.0:
            raise ValueError(f"sigma must be finite and > 0, got {self.sigma}")
        if self.p_occluded_occluded - self.p_occluded_visible <= 0.0:
            raise ValueError(
                "continuous-time occlusion mixing requires "
                "p_occluded_occluded > p_occluded_visible"
            )


class ConditionedDistribution(ABC):
    @abstractmethod
    def map_standard_normal(self, noise):
        """Map independent standard-normal draws to a sample of this distribution."""


class Conditionable(ABC):
    @abstractmethod
    def condition(self, delta_time: float, state, control=None) -> ConditionedDistribution:
        """Fix the next-step conditional distribution. Has no randomness."""


class StandardNormalMappable(ABC):
    @abstractmethod
    def map_standard_normal(self, noise):
        """Sample the distribution fixed by the last condition call."""


class ObservationPredictable(ABC):
    @abstractmethod
    def predict_observation(self, state, noise, delta_time: float) -> np.ndarray:
        """Observation generated from state under the given noise draw."""
