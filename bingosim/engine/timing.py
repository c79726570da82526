"""Attempt-duration sampling for task time models.

UNIFORM draws linearly in [min, max]. NORMAL_APPROX is a bell curve built from
the sum of twelve uniforms (Irwin-Hall), centred on the midpoint with
sigma = (max - min) / 6 and clamped to [min, max]. CUSTOM looks the sampler up
by key in a ``TimeSamplerRegistry``.
"""

from collections.abc import Callable, Iterable

from bingosim.engine.sampling import Rng
from bingosim.models.board import TaskSnapshot, TimeModel
from bingosim.models.common import TimeDistribution

TimeSampler = Callable[[TimeModel, Rng], float]

_IRWIN_HALL_TERMS = 12


def sample_uniform(model: TimeModel, rng: Rng) -> float:
    return rng.uniform(model.min_seconds, model.max_seconds)


def sample_normal_approx(model: TimeModel, rng: Rng) -> float:
    spread = model.max_seconds - model.min_seconds
    if spread <= 0:
        return model.min_seconds
    z = sum(rng.random() for _ in range(_IRWIN_HALL_TERMS)) - _IRWIN_HALL_TERMS / 2.0
    value = model.mean_seconds + z * spread / 6.0
    return min(model.max_seconds, max(model.min_seconds, value))


def _triangular(model: TimeModel, rng: Rng) -> float:
    # Symmetric triangle peaking at the midpoint: mean of two uniforms.
    return (sample_uniform(model, rng) + sample_uniform(model, rng)) / 2.0


def _minimum(model: TimeModel, rng: Rng) -> float:  # noqa: ARG001
    return model.min_seconds


def _maximum(model: TimeModel, rng: Rng) -> float:  # noqa: ARG001
    return model.max_seconds


class TimeSamplerRegistry:
    """Named samplers for CUSTOM time models. Built once, passed explicitly."""

    def __init__(self) -> None:
        self._samplers: dict[str, TimeSampler] = {}

    def register(self, key: str, sampler: TimeSampler) -> None:
        if key in self._samplers:
            msg = f"Time sampler {key!r} already registered"
            raise ValueError(msg)
        self._samplers[key] = sampler

    def get(self, key: str) -> TimeSampler:
        try:
            return self._samplers[key]
        except KeyError:
            msg = f"Unknown time sampler {key!r}"
            raise KeyError(msg) from None

    def keys(self) -> list[str]:
        return sorted(self._samplers)

    def validate(self, tasks: Iterable[TaskSnapshot]) -> None:
        """Fail fast on any CUSTOM time model whose key is not registered."""
        for task in tasks:
            model = task.time_model
            if model.distribution == TimeDistribution.CUSTOM:
                self.get(model.custom_key or "")

    def sample(self, model: TimeModel, rng: Rng) -> float:
        if model.distribution == TimeDistribution.UNIFORM:
            return sample_uniform(model, rng)
        if model.distribution == TimeDistribution.NORMAL_APPROX:
            return sample_normal_approx(model, rng)
        value = self.get(model.custom_key or "")(model, rng)
        return max(0.0, float(value))


def default_time_samplers() -> TimeSamplerRegistry:
    registry = TimeSamplerRegistry()
    registry.register("triangular", _triangular)
    registry.register("minimum", _minimum)
    registry.register("maximum", _maximum)
    return registry
