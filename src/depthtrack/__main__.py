from __future__ import annotations

import numpy as np

from .model import OcclusionParameters, RigidBodiesState
from .motion_model import BrownianObjectMotionModel
from .observation import INVALID_DEPTH_M, DepthObservationConfig, DepthObservationModel
from .occlusion import ContinuousOcclusionProcessModel
from .rendering import SceneSphere, SphereRenderer
from .vision import CameraIntrinsics


def main() -> None:
    intr = CameraIntrinsics(width_px=32, height_px=24, fx_px=30.0, fy_px=30.0, cx_px=16.0, cy_px=12.0)
    renderer = SphereRenderer(intr, (SceneSphere(center=(0.0, 0.0, 0.0), radius=0.3),))
    rng = np.random.default_rng(7)
    dt = 1.0 / 30.0

    motion = BrownianObjectMotionModel(body_count=1)
    motion.parameters(
        0,
        pivot=(0.0, 0.0, 0.05),
        damping=1.0,
        linear_acceleration_covariance=np.eye(3) * 0.01,
        angular_acceleration_covariance=np.eye(3) * 0.1,
    )
    occlusion = ContinuousOcclusionProcessModel(OcclusionParameters(0.1, 0.7, 0.1))
    depth = DepthObservationModel(
        renderer,
        config=DepthObservationConfig(rows=intr.height_px, cols=intr.width_px),
    )

    state = RigidBodiesState.zeros(1)
    state.set_position(0, (0.0, 0.0, 1.5))
    occlusions = np.zeros(depth.config.pixel_count)

    for _ in range(5):
        state = motion.predict_state(dt, state, rng.standard_normal(motion.noise_dimension))
        occlusions = np.asarray(
            [occlusion.predict_state(dt, value, rng.standard_normal()) for value in occlusions]
        )
        observation = depth.predict_observation(
            np.concatenate([state.pose(0), occlusions]),
            rng.standard_normal(depth.noise_dimension),
            dt,
        )
        depth.clear_cache()
        on_object = int(np.sum(observation[0::2] < INVALID_DEPTH_M - 0.5))
        print(f"position={np.round(state.position(0), 4)} pixels_on_object={on_object}")


if __name__ == "__main__":
    main()
