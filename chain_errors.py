"""Error types of chained simulations. Each error may name the 1-based day it belongs to."""

from __future__ import annotations
from typing import Optional


class ChainError(Exception):
    """Base class for every chained-simulation error.

    ``day`` is the 1-based day index the error belongs to, when known.
    """

    kind = "Error"
    is_failure = True

    def __init__(self, message: str, day: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.day = day

    def with_day(self, day: int) -> "ChainError":
        if self.day is None:
            self.day = day
        return self

    def __str__(self) -> str:
        if self.day is None:
            return self.message
        return f"Day {self.day}: {self.message}"


class ConfigError(ChainError, ValueError):
    kind = "ConfigError"


class NoModelForDay(ChainError):
    kind = "NoModelForDay"


class ModelFileMissing(ChainError):
    kind = "ModelFileMissing"


class ModelLoadError(ChainError):
    kind = "ModelLoadError"


class DayMismatch(ChainError):
    kind = "DayMismatch"


class EngineRejected(ChainError):
    kind = "EngineRejected"


class Canceled(ChainError):
    """Cooperative stop. Reported distinctly from failures."""

    kind = "Canceled"
    is_failure = False


class SaveFailed(ChainError):
    """Statistics could not be persisted; the chain keeps going."""

    kind = "SaveFailed"


__all__ = [
    "ChainError",
    "ConfigError",
    "NoModelForDay",
    "ModelFileMissing",
    "ModelLoadError",
    "DayMismatch",
    "EngineRejected",
    "Canceled",
    "SaveFailed",
]
