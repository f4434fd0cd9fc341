"""Session configuration: resource limits, pacing and declared input."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from .errors import InvalidConfigError
from . import constants


@dataclass(frozen=True)
class ResourceLimits:
    """Ceilings for one execution; checked by the governor before every step."""

    time_limit_s: float = constants.DEFAULT_TIME_LIMIT_S
    memory_limit_bytes: int = constants.DEFAULT_MEMORY_LIMIT_BYTES
    max_steps: int = constants.DEFAULT_STEP_LIMIT

    def __post_init__(self):
        if not (math.isfinite(self.time_limit_s) and self.time_limit_s > 0):
            raise InvalidConfigError(f"time_limit_s must be positive, got {self.time_limit_s}")
        if self.memory_limit_bytes <= 0:
            raise InvalidConfigError(
                f"memory_limit_bytes must be positive, got {self.memory_limit_bytes}"
            )
        if self.max_steps <= 0:
            raise InvalidConfigError(f"max_steps must be positive, got {self.max_steps}")


@dataclass(frozen=True)
class SessionConfig:
    """Groups per-session configuration."""

    limits: ResourceLimits = field(default_factory=ResourceLimits)
    speed: float = 1.0
    step_interval_s: float = 0.0
    seed: int = 0
    max_source_bytes: int = constants.DEFAULT_MAX_SOURCE_BYTES

    def __post_init__(self):
        validate_speed(self.speed)
        if self.step_interval_s < 0:
            raise InvalidConfigError(
                f"step_interval_s must not be negative, got {self.step_interval_s}"
            )
        if self.max_source_bytes <= 0:
            raise InvalidConfigError(
                f"max_source_bytes must be positive, got {self.max_source_bytes}"
            )


def validate_speed(speed: float) -> float:
    if not constants.MIN_SPEED <= speed <= constants.MAX_SPEED:
        raise InvalidConfigError(
            f"speed must be within [{constants.MIN_SPEED}, {constants.MAX_SPEED}], got {speed}"
        )
    return speed


class SessionRequest(BaseModel):
    """One request to execute one guest program, as received from intake."""

    source: str
    language: str = "python"
    entry_point: str | None = None
    arguments: list[Any] = []
    inputs: dict[str, Any] = {}
    time_limit_s: float = constants.DEFAULT_TIME_LIMIT_S
    memory_limit_bytes: int = constants.DEFAULT_MEMORY_LIMIT_BYTES
    max_steps: int = constants.DEFAULT_STEP_LIMIT
    speed: float = 1.0
    step_interval_s: float = 0.0
    seed: int = 0

    def to_config(self) -> SessionConfig:
        return SessionConfig(
            limits=ResourceLimits(
                time_limit_s=self.time_limit_s,
                memory_limit_bytes=self.memory_limit_bytes,
                max_steps=self.max_steps,
            ),
            speed=self.speed,
            step_interval_s=self.step_interval_s,
            seed=self.seed,
        )
