from __future__ import annotations

"""Rotation, quaternion and log-odds helpers shared by the models."""

import numpy as np
from scipy.spatial.transform import Rotation
from scipy.special import expit
from scipy.special import logit as _logit


def _as_quaternion(quaternion) -> np.ndarray:
    arr = np.asarray(quaternion, dtype=np.float64)
    if arr.shape != (4,):
        raise ValueError("quaternion must be length 4 (x, y, z, w)")
    return arr


def normalize_quaternion(quaternion) -> np.ndarray:
    arr = _as_quaternion(quaternion)
    norm = float(np.linalg.norm(arr))
    if not np.isfinite(norm) or norm <= 0.0:
        raise ValueError("quaternion must have finite non-zero norm")
    return arr / norm


def rotation_vector_to_quaternion(rotation_vector) -> np.ndarray:
    quaternion = Rotation.from_rotvec(np.asarray(rotation_vector, dtype=np.float64)).as_quat()
    return normalize_quaternion(quaternion)


def quaternion_to_rotation_vector(quaternion) -> np.ndarray:
    return Rotation.from_quat(normalize_quaternion(quaternion)).as_rotvec()


def quaternion_to_rotation_matrix(quaternion) -> np.ndarray:
    return Rotation.from_quat(normalize_quaternion(quaternion)).as_matrix()


def quaternion_rate_matrix(quaternion) -> np.ndarray:
    """4x3 map from a world-frame angular increment to a quaternion increment.

    For q = (x, y, z, w) returns Q with dq = Q @ dtheta, i.e. the first-order
    expansion of (dtheta / 2, 0) * q.
    """
    x, y, z, w = _as_quaternion(quaternion)
    return 0.5 * np.asarray(
        (
            (w, z, -y),
            (-z, w, x),
            (y, -x, w),
            (-x, -y, -z),
        ),
        dtype=np.float64,
    )


def sigmoid(value):
    return expit(value)


def logit(probability):
    return _logit(probability)
