from __future__ import annotations

"""Pinhole camera model and per-pixel viewing rays."""

import math
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class CameraIntrinsics:
    width_px: int
    height_px: int
    fx_px: float
    fy_px: float
    cx_px: float
    cy_px: float

    def __post_init__(self) -> None:
        if self.width_px <= 0 or self.height_px <= 0:
            raise ValueError("CameraIntrinsics requires a positive image size")
        if self.fx_px <= 0.0 or self.fy_px <= 0.0:
            raise ValueError("CameraIntrinsics requires positive focal lengths")


@dataclass(frozen=True)
class CameraPose:
    """World-to-camera extrinsics: x_cam = R * x_world + t."""

    rotation: tuple[tuple[float, float, float], tuple[float, float, float], tuple[float, float, float]]
    translation: tuple[float, float, float]

    @staticmethod
    def identity() -> "CameraPose":
        return CameraPose(
            rotation=((1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.0, 0.0, 1.0)),
            translation=(0.0, 0.0, 0.0),
        )


def _as_matrix3(rotation) -> np.ndarray:
    matrix = np.asarray(rotation, dtype=np.float64)
    if matrix.shape != (3, 3):
        raise ValueError("rotation must be 3x3")
    return matrix


def _as_vec3(vector) -> np.ndarray:
    arr = np.asarray(vector, dtype=np.float64)
    if arr.shape != (3,):
        raise ValueError("vector must be length 3")
    return arr


def world_to_camera(point_world, pose: CameraPose) -> np.ndarray:
    rotation = _as_matrix3(pose.rotation)
    translation = _as_vec3(pose.translation)
    return rotation @ _as_vec3(point_world) + translation


def pixel_rays(intrinsics: CameraIntrinsics) -> np.ndarray:
    """Camera-frame ray per pixel centre, row-major, scaled to unit z.

    Returns an (height * width, 3) array; a point at depth d along pixel k is
    d * rays[k].
    """
    us = np.arange(intrinsics.width_px, dtype=np.float64)
    vs = np.arange(intrinsics.height_px, dtype=np.float64)
    grid_u, grid_v = np.meshgrid(us, vs)
    x = (grid_u.reshape(-1) - intrinsics.cx_px) / intrinsics.fx_px
    y = (grid_v.reshape(-1) - intrinsics.cy_px) / intrinsics.fy_px
    return np.stack([x, y, np.ones_like(x)], axis=1)


def camera_pose_from_world_position(
    position_world,
    *,
    yaw_rad: float = 0.0,
) -> CameraPose:
    """Create world-to-camera pose for level camera (yaw only) at world position."""
    cy = math.cos(yaw_rad)
    sy = math.sin(yaw_rad)

    # camera-to-world rotation (yaw around world Y), then invert for world-to-camera
    r_cw = np.asarray(
        (
            (cy, 0.0, sy),
            (0.0, 1.0, 0.0),
            (-sy, 0.0, cy),
        ),
        dtype=np.float64,
    )
    r_wc = r_cw.T
    t_wc = -r_wc @ np.asarray(position_world, dtype=np.float64)
    return CameraPose(
        rotation=tuple(tuple(float(value) for value in row) for row in r_wc),
        translation=(float(t_wc[0]), float(t_wc[1]), float(t_wc[2])),
    )
