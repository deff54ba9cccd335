from __future__ import annotations

"""Pixel and depth-image observation models with a pose -> rendering cache."""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass

import numpy as np

from .model import ObservationPredictable, RenderingError
from .rendering import RigidBodyRenderer

logger = logging.getLogger("depthtrack.observation")

# depth substituted for pixels where the renderer hit nothing
INVALID_DEPTH_M = 7.0


@dataclass(frozen=True)
class DepthObservationConfig:
    camera_sigma: float = 0.01
    model_sigma: float = 0.003
    rows: int = 60
    cols: int = 80
    pose_state_dimension: int = 6
    invalid_depth_m: float = INVALID_DEPTH_M
    cache_capacity: int | None = None

    def __post_init__(self) -> None:
        for name in ("rows", "cols", "pose_state_dimension"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
                raise ValueError(f"{name} must be an integer, got {value!r}")
        if self.rows <= 0 or self.cols <= 0:
            raise ValueError(f"pixel grid must be positive, got {self.rows}x{self.cols}")
        if self.pose_state_dimension <= 0:
            raise ValueError("pose_state_dimension must be > 0")
        for name in ("camera_sigma", "model_sigma"):
            value = getattr(self, name)
            if not np.isfinite(value) or value < 0.0:
                raise ValueError(f"{name} must be finite and >= 0, got {value}")
        if self.noise_variance <= 0.0:
            raise ValueError("camera_sigma and model_sigma must not both be zero")
        if not np.isfinite(self.invalid_depth_m):
            raise ValueError("invalid_depth_m must be finite")
        if self.cache_capacity is not None and self.cache_capacity <= 0:
            raise ValueError("cache_capacity must be > 0 or None")

    @property
    def pixel_count(self) -> int:
        return self.rows * self.cols

    @property
    def noise_variance(self) -> float:
        return self.camera_sigma**2 + self.model_sigma**2


class PixelObservationModel(ObservationPredictable):
    """One pixel: latent (depth, occlusion feature) -> observed (y, y**2)."""

    state_dimension = 2
    noise_dimension = 1
    observation_dimension = 2

    def __init__(self, noise_variance: float) -> None:
        if not np.isfinite(noise_variance) or noise_variance <= 0.0:
            raise ValueError(f"noise_variance must be finite and > 0, got {noise_variance}")
        self._covariance = np.asarray([[float(noise_variance)]], dtype=np.float64)

    @property
    def covariance(self) -> np.ndarray:
        return self._covariance.copy()

    def predict_observations(self, states: np.ndarray, noise: np.ndarray) -> np.ndarray:
        """Batch form: states (n, 2), noise (n,) -> observations (n, 2)."""
        states = np.asarray(states, dtype=np.float64)
        noise = np.asarray(noise, dtype=np.float64).reshape(-1)
        if states.ndim != 2 or states.shape[1] != 2:
            raise ValueError("states must be (n, 2)")
        if noise.shape[0] != states.shape[0]:
            raise ValueError("need one noise value per pixel")

        depth = states[:, 0] + np.exp(states[:, 1]) * self._covariance[0, 0] * noise
        return np.stack([depth, depth * depth], axis=1)

    def predict_observation(self, state, noise, delta_time: float = 0.0) -> np.ndarray:
        del delta_time
        return self.predict_observations(
            np.asarray(state, dtype=np.float64).reshape(1, 2),
            np.asarray(noise, dtype=np.float64).reshape(1),
        )[0]


class FactorizedIIDObservationModel(ObservationPredictable):
    """Independent copies of one local model, one per factor (pixel)."""

    def __init__(self, local_model: PixelObservationModel, factors: int) -> None:
        if factors <= 0:
            raise ValueError("factors must be > 0")
        self._local_model = local_model
        self._factors = int(factors)

    @property
    def local_model(self) -> PixelObservationModel:
        return self._local_model

    @property
    def factors(self) -> int:
        return self._factors

    @property
    def state_dimension(self) -> int:
        return self._local_model.state_dimension * self._factors

    @property
    def noise_dimension(self) -> int:
        return self._local_model.noise_dimension * self._factors

    @property
    def observation_dimension(self) -> int:
        return self._local_model.observation_dimension * self._factors

    def predict_observation(self, state, noise, delta_time: float = 0.0) -> np.ndarray:
        del delta_time
        latent = np.asarray(state, dtype=np.float64).reshape(-1)
        draws = np.asarray(noise, dtype=np.float64).reshape(-1)
        if latent.size != self.state_dimension:
            raise ValueError(f"state must have {self.state_dimension} entries, got {latent.size}")
        if draws.size != self.noise_dimension:
            raise ValueError(f"noise must have {self.noise_dimension} entries, got {draws.size}")
        local = self._local_model.predict_observations(latent.reshape(self._factors, 2), draws)
        return local.reshape(-1)


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    evictions: int
    size: int


class PredictionCache:
    """Pose -> latent-vector map keyed on the exact bytes of the pose.

    Bounded with least-recently-used eviction when ``capacity`` is set;
    unbounded otherwise, in which case the caller is expected to ``clear()``
    once per filter iteration.
    """

    def __init__(self, capacity: int | None = None) -> None:
        if capacity is not None and capacity <= 0:
            raise ValueError("capacity must be > 0 or None")
        self._capacity = capacity
        self._entries: OrderedDict[bytes, np.ndarray] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @staticmethod
    def key(pose: np.ndarray) -> bytes:
        # bitwise: 0.0 and -0.0 are distinct keys
        return np.ascontiguousarray(pose, dtype=np.float64).tobytes()

    @property
    def capacity(self) -> int | None:
        return self._capacity

    def get(self, pose: np.ndarray, *, record: bool = True) -> np.ndarray | None:
        key = self.key(pose)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                if record:
                    self._misses += 1
                return None
            self._entries.move_to_end(key)
            if record:
                self._hits += 1
            return entry

    def put(self, pose: np.ndarray, latent: np.ndarray) -> None:
        key = self.key(pose)
        frozen = np.array(latent, dtype=np.float64, copy=True)
        frozen.setflags(write=False)
        with self._lock:
            self._entries[key] = frozen
            self._entries.move_to_end(key)
            while self._capacity is not None and len(self._entries) > self._capacity:
                self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug(f"prediction cache evicted an entry (capacity={self._capacity})")

    def clear(self) -> None:
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
        logger.debug(f"prediction cache cleared ({dropped} entries)")

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=len(self._entries),
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, pose) -> bool:
        key = self.key(np.asarray(pose, dtype=np.float64))
        with self._lock:
            return key in self._entries


class DepthObservationModel(ObservationPredictable):
    """Depth image model: rendered depth per pixel plus per-pixel occlusion noise.

    State layout: pose (``pose_state_dimension`` entries) followed by one
    occlusion feature per pixel, row-major. Rendering happens only on a
    cache miss for the pose part of the state.
    """

    def __init__(
        self,
        renderer: RigidBodyRenderer,
        *,
        config: DepthObservationConfig | None = None,
        state_dimension: int | None = None,
    ) -> None:
        self._config = config or DepthObservationConfig()
        if renderer.rows != self._config.rows or renderer.cols != self._config.cols:
            raise ValueError(
                f"renderer resolution {renderer.rows}x{renderer.cols} does not match "
                f"config {self._config.rows}x{self._config.cols}"
            )
        expected_dimension = self._config.pose_state_dimension + self._config.pixel_count
        self._state_dimension = expected_dimension if state_dimension is None else int(state_dimension)
        if self._state_dimension < expected_dimension:
            raise ValueError(
                f"state_dimension must be >= {expected_dimension}, got {self._state_dimension}"
            )

        self._renderer = renderer
        self._camera_model = FactorizedIIDObservationModel(
            PixelObservationModel(self._config.noise_variance),
            self._config.pixel_count,
        )
        self._cache = PredictionCache(self._config.cache_capacity)
        self._render_lock = threading.Lock()
        logger.info(
            f"depth model: {self._config.rows}x{self._config.cols} pixels, "
            f"noise variance {self._config.noise_variance:.3g}, "
            f"cache capacity {self._config.cache_capacity}"
        )

    @property
    def config(self) -> DepthObservationConfig:
        return self._config

    @property
    def cache(self) -> PredictionCache:
        return self._cache

    @property
    def state_dimension(self) -> int:
        return self._state_dimension

    @property
    def noise_dimension(self) -> int:
        return self._camera_model.noise_dimension

    @property
    def observation_dimension(self) -> int:
        return self._camera_model.observation_dimension

    def predict_observation(self, state, noise, delta_time: float = 0.0) -> np.ndarray:
        full_state = np.asarray(state, dtype=np.float64).reshape(-1)
        if full_state.size != self._state_dimension:
            raise ValueError(
                f"state must have {self._state_dimension} entries, got {full_state.size}"
            )
        pose = full_state[: self._config.pose_state_dimension]

        latent = self._cache.get(pose)
        if latent is None:
            with self._render_lock:
                # another thread may have rendered this pose meanwhile
                latent = self._cache.get(pose, record=False)
                if latent is None:
                    latent = self._map(full_state)
                    self._cache.put(pose, latent)

        return self._camera_model.predict_observation(latent, noise, delta_time)

    def clear_cache(self) -> None:
        self._cache.clear()

    def _map(self, state: np.ndarray) -> np.ndarray:
        pose = state[: self._config.pose_state_dimension]
        self._renderer.set_pose(pose.copy())
        depth = self._renderer.render()
        logger.debug(f"rendered pose {np.array2string(pose, precision=4)}")
        return self.convert(depth, state)

    def convert(self, depth, state) -> np.ndarray:
        """Interleave rendered depth with the state's occlusion features."""
        depth_arr = np.asarray(depth, dtype=np.float64).reshape(-1)
        pixel_count = self._config.pixel_count
        if depth_arr.size != pixel_count:
            raise RenderingError(
                f"renderer returned {depth_arr.size} depth values, expected {pixel_count}"
            )
        start = self._config.pose_state_dimension
        occlusion = np.asarray(state, dtype=np.float64).reshape(-1)[start:start + pixel_count]

        latent = np.empty(2 * pixel_count, dtype=np.float64)
        latent[0::2] = np.where(np.isfinite(depth_arr), depth_arr, self._config.invalid_depth_m)
        latent[1::2] = occlusion
        return latent
