from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from depthtrack.model import RenderingError
from depthtrack.observation import (
    INVALID_DEPTH_M,
    DepthObservationConfig,
    DepthObservationModel,
    FactorizedIIDObservationModel,
    PixelObservationModel,
    PredictionCache,
)
from depthtrack.rendering import RigidBodyRenderer, SceneSphere, SphereRenderer
from depthtrack.vision import CameraIntrinsics


class StubRenderer(RigidBodyRenderer):
    """Returns a fixed depth image shifted by the pose's x coordinate."""

    def __init__(self, rows: int, cols: int, depth: np.ndarray | None = None) -> None:
        self._rows = rows
        self._cols = cols
        self.depth = (
            np.full(rows * cols, 2.0, dtype=np.float64) if depth is None else np.asarray(depth)
        )
        self.poses: list[np.ndarray] = []
        self.fail_with: Exception | None = None

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def cols(self) -> int:
        return self._cols

    def set_pose(self, pose: np.ndarray) -> None:
        self.poses.append(np.asarray(pose, dtype=np.float64))

    def render(self) -> np.ndarray:
        if self.fail_with is not None:
            raise self.fail_with
        return self.depth + self.poses[-1][0]


def _config(**overrides) -> DepthObservationConfig:
    values = dict(camera_sigma=0.3, model_sigma=0.4, rows=2, cols=3)
    values.update(overrides)
    return DepthObservationConfig(**values)


def _state(pose=(0.0, 0.0, 0.0, 0.0, 0.0, 0.0), occlusion=0.0, pixels: int = 6) -> np.ndarray:
    return np.concatenate([np.asarray(pose, dtype=np.float64), np.full(pixels, occlusion)])


def test_pixel_second_moment_is_exact_square() -> None:
    model = PixelObservationModel(0.25)
    rng = np.random.default_rng(1)
    states = np.column_stack([rng.uniform(0.1, 8.0, 200), rng.normal(size=200)])
    noise = rng.normal(size=200) * 4.0

    observations = model.predict_observations(states, noise)

    assert np.array_equal(observations[:, 1], observations[:, 0] * observations[:, 0])
    single = model.predict_observation(states[0], noise[0], 0.1)
    assert single[1] == single[0] * single[0]


def test_pixel_noise_scales_with_occlusion_feature() -> None:
    model = PixelObservationModel(0.25)
    assert model.predict_observation([2.0, 0.0], [1.0])[0] == pytest.approx(2.25)
    assert model.predict_observation([2.0, np.log(2.0)], [1.0])[0] == pytest.approx(2.5)
    assert model.predict_observation([2.0, 5.0], [0.0])[0] == 2.0
    assert (model.state_dimension, model.noise_dimension, model.observation_dimension) == (2, 1, 2)


def test_pixel_model_rejects_bad_variance() -> None:
    for variance in (0.0, -1.0, float("nan")):
        with pytest.raises(ValueError):
            PixelObservationModel(variance)


def test_factorized_model_applies_noise_per_pixel() -> None:
    model = FactorizedIIDObservationModel(PixelObservationModel(1.0), 3)
    latent = np.asarray([1.0, 0.0, 2.0, 0.0, 3.0, 0.0])

    observation = model.predict_observation(latent, [0.0, 1.0, -1.0])

    assert np.allclose(observation, [1.0, 1.0, 3.0, 9.0, 2.0, 4.0])
    assert model.observation_dimension == 6
    assert model.noise_dimension == 3
    assert model.state_dimension == 6
    with pytest.raises(ValueError):
        model.predict_observation(latent, [0.0, 1.0])


def test_depth_model_dimensions() -> None:
    model = DepthObservationModel(StubRenderer(2, 3), config=_config())
    assert model.state_dimension == 12
    assert model.noise_dimension == 6
    assert model.observation_dimension == 12
    assert model.config.noise_variance == pytest.approx(0.25)


def test_depth_model_interleaves_rendering_with_noise_free_pixels() -> None:
    renderer = StubRenderer(2, 3, depth=np.arange(1.0, 7.0))
    model = DepthObservationModel(renderer, config=_config())

    observation = model.predict_observation(_state(), np.zeros(6), 0.03)

    assert np.allclose(observation[0::2], np.arange(1.0, 7.0))
    assert np.array_equal(observation[1::2], observation[0::2] * observation[0::2])


def test_invalid_depth_maps_to_sentinel() -> None:
    depth = np.asarray([1.0, np.inf, 2.0, np.nan, -np.inf, 3.0])
    model = DepthObservationModel(StubRenderer(2, 3, depth=depth), config=_config())

    observation = model.predict_observation(_state(), np.zeros(6))

    assert np.allclose(observation[0::2], [1.0, INVALID_DEPTH_M, 2.0, INVALID_DEPTH_M, INVALID_DEPTH_M, 3.0])


def test_repeated_pose_hits_cache_until_cleared() -> None:
    renderer = StubRenderer(2, 3)
    model = DepthObservationModel(renderer, config=_config())
    state = _state(pose=(0.5, 0.1, 0.2, 0.0, 0.0, 0.0))

    first = model.predict_observation(state, np.zeros(6))
    renderer.depth = renderer.depth + 10.0
    second = model.predict_observation(state, np.zeros(6))

    assert np.array_equal(first, second)
    assert len(renderer.poses) == 1

    model.clear_cache()
    third = model.predict_observation(state, np.zeros(6))

    assert len(renderer.poses) == 2
    assert np.allclose(third[0::2], first[0::2] + 10.0)


def test_cache_hit_reuses_first_occlusion_features() -> None:
    renderer = StubRenderer(2, 3)
    model = DepthObservationModel(renderer, config=_config())

    model.predict_observation(_state(occlusion=0.0), np.zeros(6))
    observation = model.predict_observation(_state(occlusion=np.log(2.0)), np.ones(6))

    assert np.allclose(observation[0::2], 2.0 + 0.25)


def test_renderer_receives_pose_part_of_state() -> None:
    renderer = StubRenderer(2, 3)
    model = DepthObservationModel(renderer, config=_config())
    pose = (1.0, 2.0, 3.0, 0.1, 0.2, 0.3)

    model.predict_observation(_state(pose=pose, occlusion=4.0), np.zeros(6))

    assert np.allclose(renderer.poses[0], pose)


def test_nearby_poses_are_distinct_cache_entries() -> None:
    renderer = StubRenderer(2, 3)
    model = DepthObservationModel(renderer, config=_config())

    model.predict_observation(_state(pose=(0.1, 0.0, 0.0, 0.0, 0.0, 0.0)), np.zeros(6))
    model.predict_observation(_state(pose=(np.nextafter(0.1, 1.0), 0.0, 0.0, 0.0, 0.0, 0.0)), np.zeros(6))
    model.predict_observation(_state(pose=(0.0, -0.0, 0.0, 0.0, 0.0, 0.0)), np.zeros(6))
    model.predict_observation(_state(pose=(0.0, 0.0, 0.0, 0.0, 0.0, 0.0)), np.zeros(6))

    assert len(renderer.poses) == 4
    assert model.cache.stats().misses == 4


def test_failed_render_leaves_cache_empty() -> None:
    renderer = StubRenderer(2, 3)
    renderer.fail_with = RuntimeError("context lost")
    model = DepthObservationModel(renderer, config=_config())

    with pytest.raises(RuntimeError, match="context lost"):
        model.predict_observation(_state(), np.zeros(6))
    assert len(model.cache) == 0

    renderer.fail_with = None
    model.predict_observation(_state(), np.zeros(6))
    assert len(model.cache) == 1


def test_short_render_is_a_rendering_error() -> None:
    renderer = StubRenderer(2, 3, depth=np.ones(5))
    model = DepthObservationModel(renderer, config=_config())

    with pytest.raises(RenderingError):
        model.predict_observation(_state(), np.zeros(6))
    assert len(model.cache) == 0


def test_bounded_cache_evicts_least_recently_used_pose() -> None:
    renderer = StubRenderer(2, 3)
    model = DepthObservationModel(renderer, config=_config(cache_capacity=2))
    a, b, c = (_state(pose=(x, 0.0, 0.0, 0.0, 0.0, 0.0)) for x in (1.0, 2.0, 3.0))

    model.predict_observation(a, np.zeros(6))
    model.predict_observation(b, np.zeros(6))
    model.predict_observation(a, np.zeros(6))
    model.predict_observation(c, np.zeros(6))
    assert len(renderer.poses) == 3

    model.predict_observation(a, np.zeros(6))
    assert len(renderer.poses) == 3
    model.predict_observation(b, np.zeros(6))
    assert len(renderer.poses) == 4

    stats = model.cache.stats()
    assert stats.size == 2
    assert stats.evictions == 2
    assert stats.hits == 2


def test_concurrent_predictions_render_each_pose_once() -> None:
    renderer = StubRenderer(2, 3)
    model = DepthObservationModel(renderer, config=_config())
    poses = [(float(k % 3), 0.0, 0.0, 0.0, 0.0, 0.0) for k in range(60)]

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(
            executor.map(lambda pose: model.predict_observation(_state(pose=pose), np.zeros(6)), poses)
        )

    assert len(renderer.poses) == 3
    for pose, result in zip(poses, results):
        assert np.allclose(result[0::2], 2.0 + pose[0])


def test_state_and_config_validation() -> None:
    renderer = StubRenderer(2, 3)
    model = DepthObservationModel(renderer, config=_config())
    with pytest.raises(ValueError):
        model.predict_observation(np.zeros(11), np.zeros(6))
    with pytest.raises(ValueError):
        DepthObservationModel(renderer, config=_config(rows=3))
    with pytest.raises(ValueError):
        DepthObservationModel(renderer, config=_config(), state_dimension=10)
    with pytest.raises(ValueError):
        _config(rows=0)
    with pytest.raises(ValueError):
        _config(cols=-2)
    with pytest.raises(ValueError):
        _config(camera_sigma=0.0, model_sigma=0.0)
    with pytest.raises(ValueError):
        _config(camera_sigma=-0.1)
    with pytest.raises(ValueError):
        _config(cache_capacity=0)


@pytest.mark.parametrize(
    "overrides",
    [{"rows": 2.5}, {"cols": 3.0}, {"rows": True}, {"pose_state_dimension": 6.0}],
)
def test_config_rejects_non_integer_grid(overrides) -> None:
    with pytest.raises(ValueError, match="must be an integer"):
        _config(**overrides)
    assert _config(rows=np.int64(2)).pixel_count == 6


def test_extra_state_components_are_ignored() -> None:
    renderer = StubRenderer(2, 3)
    model = DepthObservationModel(renderer, config=_config(), state_dimension=14)
    state = np.concatenate([_state(), [9.0, 9.0]])
    observation = model.predict_observation(state, np.zeros(6))
    assert np.allclose(observation[0::2], 2.0)


def test_prediction_cache_contains_and_clear() -> None:
    cache = PredictionCache()
    pose = np.asarray([0.0, 1.0, 2.0, 0.0, 0.0, 0.0])
    cache.put(pose, np.ones(4))

    assert pose in cache
    assert np.allclose(cache.get(pose), 1.0)
    with pytest.raises(ValueError):
        cache.get(pose)[0] = 5.0

    cache.clear()
    assert pose not in cache
    assert cache.get(pose) is None
    with pytest.raises(ValueError):
        PredictionCache(capacity=0)


def test_depth_model_with_sphere_renderer() -> None:
    intrinsics = CameraIntrinsics(width_px=5, height_px=5, fx_px=5.0, fy_px=5.0, cx_px=2.0, cy_px=2.0)
    renderer = SphereRenderer(intrinsics, (SceneSphere(center=(0.0, 0.0, 0.0), radius=0.5),))
    model = DepthObservationModel(renderer, config=_config(rows=5, cols=5))

    observation = model.predict_observation(
        _state(pose=(0.0, 0.0, 2.0, 0.0, 0.0, 0.0), pixels=25),
        np.zeros(25),
    )

    depth = observation[0::2].reshape(5, 5)
    assert depth[2, 2] == pytest.approx(1.5)
    assert depth[0, 0] == INVALID_DEPTH_M
