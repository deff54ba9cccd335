from __future__ import annotations

"""Occlusion belief evolution in log-odds space."""

import logging
import math
from dataclasses import dataclass

import numpy as np

from .gaussian import TruncatedGaussian
from .geometry import logit, sigmoid
from .model import (
    Conditionable,
    ConditionedDistribution,
    DegenerateStateError,
    OcclusionParameters,
    StandardNormalMappable,
)

logger = logging.getLogger("depthtrack.occlusion")

# open unit interval; sigmoid and the truncated draw can round onto 0 or 1
_PROBABILITY_FLOOR = float(np.nextafter(0.0, 1.0))
_PROBABILITY_CEILING = float(np.nextafter(1.0, 0.0))


def _scalar(value, name: str) -> float:
    arr = np.asarray(value, dtype=np.float64).reshape(-1)
    if arr.size != 1:
        raise ValueError(f"{name} must be a scalar or length-1 vector, got {arr.size} entries")
    return float(arr[0])


def _open_unit(probability: float) -> float:
    return min(max(probability, _PROBABILITY_FLOOR), _PROBABILITY_CEILING)


class OcclusionTransitionModel:
    """Two-state continuous-time Markov mixing of the occlusion probability.

    With c = p_occluded_occluded - p_occluded_visible, the per-second
    transition matrix has eigenvalue c, so after t seconds the probability
    of being occluded relaxes towards the stationary value as c**t.
    """

    def __init__(self, p_occluded_visible: float, p_occluded_occluded: float) -> None:
        self._p_occluded_visible = float(p_occluded_visible)
        self._p_occluded_occluded = float(p_occluded_occluded)
        self._c = self._p_occluded_occluded - self._p_occluded_visible
        if not 0.0 < self._c <= 1.0:
            raise ValueError(
                "p_occluded_occluded - p_occluded_visible must be in (0, 1], "
                f"got {self._c}"
            )
        self._log_c = math.log(self._c)

    @property
    def p_occluded_visible(self) -> float:
        return self._p_occluded_visible

    @property
    def p_occluded_occluded(self) -> float:
        return self._p_occluded_occluded

    @property
    def stationary_probability(self) -> float:
        if self._c == 1.0:
            return float("nan")
        return 1.0 - (1.0 - self._p_occluded_occluded) / (1.0 - self._c)

    def mean(self, delta_time: float, occlusion_probability: float) -> float:
        if self._c == 1.0:
            # absorbing chain: p_occluded_occluded == 1, p_occluded_visible == 0
            return occlusion_probability
        pow_c_time = math.exp(delta_time * self._log_c)
        visible = (
            pow_c_time * (1.0 - occlusion_probability)
            + (1.0 - self._p_occluded_occluded) * (1.0 - pow_c_time) / (1.0 - self._c)
        )
        return 1.0 - visible


@dataclass(frozen=True)
class ConditionedOcclusion(ConditionedDistribution):
    prior_probability: float
    distribution: TruncatedGaussian

    @property
    def location(self) -> float:
        return self.distribution.location

    @property
    def sigma(self) -> float:
        return self.distribution.sigma

    @property
    def mean(self) -> float:
        return self.distribution.mean

    def map_standard_normal(self, noise) -> float:
        probability = _open_unit(self.distribution.map_standard_normal(_scalar(noise, "noise")))
        log_odds = float(logit(probability))
        if not math.isfinite(log_odds):
            logger.warning(
                f"occlusion sample degenerated: probability={probability} log_odds={log_odds}"
            )
            raise DegenerateStateError(f"produced non-finite occlusion log-odds {log_odds}")
        return log_odds


class ContinuousOcclusionProcessModel(Conditionable, StandardNormalMappable):
    """Evolves one occlusion log-odds value per time step.

    The prior log-odds are squashed to a probability, relaxed by the two-state
    transition model, and diffused by a Gaussian truncated to [0, 1] with
    standard deviation sigma * sqrt(dt). Samples are returned in log-odds.
    """

    state_dimension = 1
    noise_dimension = 1
    input_dimension = 0

    def __init__(self, parameters: OcclusionParameters | None = None) -> None:
        self._parameters = parameters or OcclusionParameters()
        self._transition = OcclusionTransitionModel(
            self._parameters.p_occluded_visible,
            self._parameters.p_occluded_occluded,
        )
        self._conditioned: ConditionedOcclusion | None = None
        logger.info(
            "occlusion model: "
            f"p_ov={self._parameters.p_occluded_visible} "
            f"p_oo={self._parameters.p_occluded_occluded} sigma={self._parameters.sigma}"
        )

    @property
    def parameters(self) -> OcclusionParameters:
        return self._parameters

    @property
    def transition(self) -> OcclusionTransitionModel:
        return self._transition

    def condition(self, delta_time: float, state, control=None) -> ConditionedOcclusion:
        del control
        dt = float(delta_time)
        if not math.isfinite(dt) or dt < 0.0:
            raise ValueError(f"delta_time must be finite and >= 0, got {delta_time}")

        occlusion = _scalar(state, "occlusion")
        if not math.isfinite(occlusion):
            logger.warning(f"received non-finite occlusion log-odds {occlusion}")
            raise DegenerateStateError(f"received non-finite occlusion log-odds {occlusion}")

        prior_probability = _open_unit(float(sigmoid(occlusion)))
        mean = self._transition.mean(dt, prior_probability)
        if not math.isfinite(mean):
            logger.warning(
                f"produced non-finite occlusion mean: dt={dt} prior={prior_probability}"
            )
            raise DegenerateStateError(f"produced non-finite occlusion mean {mean}")
        mean = _open_unit(mean)

        self._conditioned = ConditionedOcclusion(
            prior_probability=prior_probability,
            distribution=TruncatedGaussian(
                location=mean,
                sigma=self._parameters.sigma * math.sqrt(dt),
                low=0.0,
                high=1.0,
            ),
        )
        return self._conditioned

    def map_standard_normal(self, noise) -> float:
        if self._conditioned is None:
            raise RuntimeError("condition() must be called before map_standard_normal()")
        return self._conditioned.map_standard_normal(noise)

    def predict_state(self, delta_time: float, state, noise, control=None) -> float:
        return self.condition(delta_time, state, control).map_standard_normal(noise)
