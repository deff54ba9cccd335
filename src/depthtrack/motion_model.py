from __future__ import annotations

"""Brownian motion model for N free-floating rigid bodies."""

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .geometry import normalize_quaternion, quaternion_rate_matrix
from .model import (
    BodyMotionParameters,
    Conditionable,
    ConditionedDistribution,
    RigidBodiesState,
    StandardNormalMappable,
)
from .wiener import ConditionedIntegrator, IntegratedDampedWienerProcess

logger = logging.getLogger("depthtrack.motion")

DIMENSION_PER_BODY = 6


@dataclass(frozen=True, eq=False)
class ConditionedBodyMotion:
    """Everything needed to sample one body's next state."""

    internal_position: np.ndarray
    quaternion: np.ndarray
    quaternion_map: np.ndarray
    pivot: np.ndarray
    linear: ConditionedIntegrator
    angular: ConditionedIntegrator


@dataclass(frozen=True)
class ConditionedMotion(ConditionedDistribution):
    bodies: tuple[ConditionedBodyMotion, ...]

    @property
    def noise_dimension(self) -> int:
        return DIMENSION_PER_BODY * len(self.bodies)

    def map_standard_normal(self, noise) -> RigidBodiesState:
        sample = np.asarray(noise, dtype=np.float64).reshape(-1)
        if sample.size != self.noise_dimension:
            raise ValueError(
                f"noise must have {self.noise_dimension} entries, got {sample.size}"
            )

        new_state = RigidBodiesState.zeros(len(self.bodies))
        for index, body in enumerate(self.bodies):
            offset = index * DIMENSION_PER_BODY
            linear_delta = body.linear.map_standard_normal(sample[offset:offset + 3])
            angular_delta = body.angular.map_standard_normal(sample[offset + 3:offset + 6])

            new_state.set_position(index, body.internal_position + linear_delta[:3])
            # first-order tangent-space update, then back onto the unit sphere
            new_state.set_quaternion(
                index,
                normalize_quaternion(body.quaternion + body.quaternion_map @ angular_delta[:3]),
            )
            angular_velocity = angular_delta[3:]
            new_state.set_angular_velocity(index, angular_velocity)

            # back to the external representation about the body origin
            new_state.set_linear_velocity(
                index,
                linear_delta[3:] - np.cross(angular_velocity, body.internal_position),
            )
            new_state.set_position(
                index,
                new_state.position(index) - new_state.rotation_matrix(index) @ body.pivot,
            )
        return new_state


class BrownianObjectMotionModel(Conditionable, StandardNormalMappable):
    """Damped Brownian motion of rigid bodies about per-body pivots.

    Each body is driven by two integrated damped Wiener processes, one for
    the pivot position and one for the orientation, both seeded with the
    body's 3-dimensional slice of the control vector.
    """

    def __init__(self, body_count: int) -> None:
        if body_count < 0:
            raise ValueError("body_count must be >= 0")
        self._body_count = int(body_count)
        self._parameters = [BodyMotionParameters() for _ in range(self._body_count)]
        self._linear_processes = [IntegratedDampedWienerProcess() for _ in range(self._body_count)]
        self._angular_processes = [IntegratedDampedWienerProcess() for _ in range(self._body_count)]
        for index in range(self._body_count):
            self._apply_parameters(index)
        self._conditioned: ConditionedMotion | None = None

    @property
    def body_count(self) -> int:
        return self._body_count

    @property
    def state_dimension(self) -> int:
        return RigidBodiesState.DIMENSION_PER_BODY * self._body_count

    @property
    def noise_dimension(self) -> int:
        return DIMENSION_PER_BODY * self._body_count

    @property
    def input_dimension(self) -> int:
        return DIMENSION_PER_BODY * self._body_count

    def parameters(
        self,
        body_index: int,
        pivot: Sequence[float],
        damping: float,
        linear_acceleration_covariance,
        angular_acceleration_covariance,
    ) -> None:
        self._check_index(body_index)
        self._parameters[body_index] = BodyMotionParameters(
            pivot=tuple(pivot),
            damping=damping,
            linear_acceleration_covariance=linear_acceleration_covariance,
            angular_acceleration_covariance=angular_acceleration_covariance,
        )
        self._apply_parameters(body_index)
        logger.debug(f"body {body_index}: pivot={tuple(pivot)} damping={damping}")

    def parameters_for(self, body_index: int) -> BodyMotionParameters:
        self._check_index(body_index)
        return self._parameters[body_index]

    def condition(self, delta_time: float, state, control=None) -> ConditionedMotion:
        dt = float(delta_time)
        if not np.isfinite(dt) or dt < 0.0:
            raise ValueError(f"delta_time must be finite and >= 0, got {delta_time}")

        rigid = RigidBodiesState.coerce(state)
        if rigid.body_count != self._body_count:
            raise ValueError(
                f"state has {rigid.body_count} bodies, model expects {self._body_count}"
            )
        if control is None:
            drive = np.zeros(self.input_dimension, dtype=np.float64)
        else:
            drive = np.asarray(control, dtype=np.float64).reshape(-1)
            if drive.size != self.input_dimension:
                raise ValueError(
                    f"control must have {self.input_dimension} entries, got {drive.size}"
                )

        bodies: list[ConditionedBodyMotion] = []
        for index in range(self._body_count):
            pivot = np.asarray(self._parameters[index].pivot, dtype=np.float64)
            quaternion = rigid.quaternion(index)
            angular_velocity = rigid.angular_velocity(index)

            # pose and velocity about the origin -> about the pivot
            internal_position = rigid.position(index) + rigid.rotation_matrix(index) @ pivot
            internal_velocity = rigid.linear_velocity(index) + np.cross(
                angular_velocity, internal_position
            )

            offset = index * DIMENSION_PER_BODY
            linear = self._linear_processes[index].condition(
                dt,
                np.concatenate([np.zeros(3), internal_velocity]),
                drive[offset:offset + 3],
            )
            angular = self._angular_processes[index].condition(
                dt,
                np.concatenate([np.zeros(3), angular_velocity]),
                drive[offset + 3:offset + 6],
            )
            bodies.append(
                ConditionedBodyMotion(
                    internal_position=internal_position,
                    quaternion=quaternion,
                    quaternion_map=quaternion_rate_matrix(quaternion),
                    pivot=pivot,
                    linear=linear,
                    angular=angular,
                )
            )

        self._conditioned = ConditionedMotion(bodies=tuple(bodies))
        return self._conditioned

    def map_standard_normal(self, noise) -> RigidBodiesState:
        if self._conditioned is None:
            raise RuntimeError("condition() must be called before map_standard_normal()")
        return self._conditioned.map_standard_normal(noise)

    def predict_state(self, delta_time: float, state, noise, control=None) -> RigidBodiesState:
        return self.condition(delta_time, state, control).map_standard_normal(noise)

    def _check_index(self, body_index: int) -> None:
        if not 0 <= body_index < self._body_count:
            raise IndexError(f"body index {body_index} out of range for {self._body_count} bodies")

    def _apply_parameters(self, body_index: int) -> None:
        params = self._parameters[body_index]
        self._linear_processes[body_index].parameters(
            params.damping, params.linear_acceleration_covariance
        )
        self._angular_processes[body_index].parameters(
            params.damping, params.angular_acceleration_covariance
        )
