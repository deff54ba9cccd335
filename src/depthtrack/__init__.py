"""depthtrack -- process and observation models for depth-camera pose tracking.

Core modules:
  - model:         Data model (RigidBodiesState, parameters, interfaces, errors)
  - wiener:        Damped / integrated damped Wiener processes
  - motion_model:  Brownian rigid-body motion about per-body pivots
  - occlusion:     Occlusion belief evolution in log-odds space
  - observation:   Pixel, factorized and depth-image observation models
  - rendering:     Renderer interface and ray-cast sphere renderer
  - vision:        Pinhole camera helpers
"""

from .gaussian import Gaussian, TruncatedGaussian, psd_square_root
from .geometry import (
    logit,
    normalize_quaternion,
    quaternion_rate_matrix,
    quaternion_to_rotation_matrix,
    quaternion_to_rotation_vector,
    rotation_vector_to_quaternion,
    sigmoid,
)
from .model import (
    BodyMotionParameters,
    Conditionable,
    ConditionedDistribution,
    DegenerateStateError,
    ObservationPredictable,
    OcclusionParameters,
    RenderingError,
    RigidBodiesState,
    StandardNormalMappable,
)
from .motion_model import BrownianObjectMotionModel, ConditionedMotion
from .observation import (
    INVALID_DEPTH_M,
    CacheStats,
    DepthObservationConfig,
    DepthObservationModel,
    FactorizedIIDObservationModel,
    PixelObservationModel,
    PredictionCache,
)
from .occlusion import (
    ConditionedOcclusion,
    ContinuousOcclusionProcessModel,
    OcclusionTransitionModel,
)
from .rendering import RigidBodyRenderer, SceneSphere, SphereRenderer
from .vision import (
    CameraIntrinsics,
    CameraPose,
    camera_pose_from_world_position,
    pixel_rays,
    world_to_camera,
)
from .wiener import ConditionedIntegrator, DampedWienerProcess, IntegratedDampedWienerProcess

__all__ = [
    # model
    "BodyMotionParameters",
    "BrownianObjectMotionModel",
    "CacheStats",
    "CameraIntrinsics",
    "CameraPose",
    "Conditionable",
    "ConditionedDistribution",
    "ConditionedIntegrator",
    "ConditionedMotion",
    "ConditionedOcclusion",
    "ContinuousOcclusionProcessModel",
    "DampedWienerProcess",
    "DegenerateStateError",
    "DepthObservationConfig",
    "DepthObservationModel",
    "FactorizedIIDObservationModel",
    "Gaussian",
    "INVALID_DEPTH_M",
    "IntegratedDampedWienerProcess",
    "ObservationPredictable",
    "OcclusionParameters",
    "OcclusionTransitionModel",
    "PixelObservationModel",
    "PredictionCache",
    "RenderingError",
    "RigidBodiesState",
    "RigidBodyRenderer",
    "SceneSphere",
    "SphereRenderer",
    "StandardNormalMappable",
    "TruncatedGaussian",
    # helpers
    "camera_pose_from_world_position",
    "logit",
    "normalize_quaternion",
    "pixel_rays",
    "psd_square_root",
    "quaternion_rate_matrix",
    "quaternion_to_rotation_matrix",
    "quaternion_to_rotation_vector",
    "rotation_vector_to_quaternion",
    "sigmoid",
    "world_to_camera",
]
