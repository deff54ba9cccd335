from __future__ import annotations

"""Rendering collaborator interface and a ray-cast sphere renderer."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .geometry import rotation_vector_to_quaternion, quaternion_to_rotation_matrix
from .vision import CameraIntrinsics, CameraPose, pixel_rays, world_to_camera


class RigidBodyRenderer(ABC):
    """Turns a pose into a row-major per-pixel depth image.

    Implementations need not be reentrant; callers serialize
    ``set_pose``/``render`` pairs.
    """

    @property
    @abstractmethod
    def rows(self) -> int:
        """Image height in pixels."""

    @property
    @abstractmethod
    def cols(self) -> int:
        """Image width in pixels."""

    @abstractmethod
    def set_pose(self, pose: np.ndarray) -> None:
        """Set the pose (position, rotation vector) used by the next render."""

    @abstractmethod
    def render(self) -> np.ndarray:
        """Depth per pixel, length rows * cols; inf where nothing is hit."""


@dataclass(frozen=True)
class SceneSphere:
    """Sphere rigidly attached to the tracked body, centre in body frame."""

    center: tuple[float, float, float]
    radius: float

    def __post_init__(self) -> None:
        if self.radius <= 0.0:
            raise ValueError("SceneSphere requires radius > 0")


class SphereRenderer(RigidBodyRenderer):
    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        spheres: Sequence[SceneSphere],
        *,
        camera_pose: CameraPose | None = None,
    ) -> None:
        self._intrinsics = intrinsics
        self._camera_pose = camera_pose or CameraPose.identity()
        self._rays = pixel_rays(intrinsics)
        self._ray_norm_sq = np.einsum("ij,ij->i", self._rays, self._rays)
        self._spheres = tuple(spheres)
        self._pose = np.zeros(6, dtype=np.float64)
        self.render_count = 0

    @property
    def rows(self) -> int:
        return self._intrinsics.height_px

    @property
    def cols(self) -> int:
        return self._intrinsics.width_px

    @property
    def spheres(self) -> tuple[SceneSphere, ...]:
        return self._spheres

    def set_spheres(self, spheres: Sequence[SceneSphere]) -> None:
        self._spheres = tuple(spheres)

    def set_pose(self, pose: np.ndarray) -> None:
        arr = np.asarray(pose, dtype=np.float64).reshape(-1)
        if arr.size < 6:
            raise ValueError("pose must have at least 6 entries (position, rotation vector)")
        self._pose = arr[:6].copy()

    def render(self) -> np.ndarray:
        self.render_count += 1
        body_rotation = quaternion_to_rotation_matrix(rotation_vector_to_quaternion(self._pose[3:6]))
        body_position = self._pose[:3]

        depth = np.full(self._rays.shape[0], np.inf, dtype=np.float64)
        for sphere in self._spheres:
            center_world = body_rotation @ np.asarray(sphere.center, dtype=np.float64) + body_position
            center = world_to_camera(center_world, self._camera_pose)

            # |s * ray - center|^2 = r^2, s is the z-depth since ray_z == 1
            half_b = self._rays @ center
            c_term = float(center @ center) - sphere.radius**2
            discriminant = half_b**2 - self._ray_norm_sq * c_term
            hit = discriminant >= 0.0
            root = np.sqrt(np.where(hit, discriminant, 0.0))
            near = (half_b - root) / self._ray_norm_sq
            far = (half_b + root) / self._ray_norm_sq
            # camera inside the sphere sees the far wall
            s = np.where(near > 0.0, near, far)
            valid = hit & (s > 0.0)
            depth = np.where(valid, np.minimum(depth, s), depth)
        return depth
