from __future__ import annotations
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from callcenter_model import CallerStatistics, PROFILE_LENGTHS, RunModel, Statistics

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Engine interface
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FinalizeResult:
    """Outcome of one engine run: statistics, a cancel, or an engine error."""

    statistics: Optional[Statistics] = None
    error: Optional[str] = None

    @property
    def produced(self) -> bool:
        return self.statistics is not None

    @property
    def canceled(self) -> bool:
        return self.statistics is None and self.error is None


class EngineHandle(ABC):
    @abstractmethod
    def is_running(self) -> bool:
        ...

    @abstractmethod
    def current_sub_day(self) -> int:
        ...

    @abstractmethod
    def total_sub_days(self) -> int:
        ...

    @abstractmethod
    def cancel(self) -> None:
        ...

    @abstractmethod
    def finalize(self) -> FinalizeResult:
        """Wait for the run to stop and collect its result."""


class SimulationEngine(ABC):
    @abstractmethod
    def check(self, run_model: RunModel) -> Optional[str]:
        """Return an error message if ``run_model`` cannot be simulated."""

    @abstractmethod
    def submit(self, run_model: RunModel) -> EngineHandle:
        ...


# ---------------------------------------------------------------------------
# Reference in-process engine
# ---------------------------------------------------------------------------
def check_run_model(run_model: RunModel) -> Optional[str]:
    model = run_model.model
    if model.sub_days <= 0:
        return "Model must simulate at least one sub-day"
    if not model.callers:
        return "Model has no customer types"
    if model.agents <= 0 or model.calls_per_agent <= 0:
        return "Model has no agent capacity"
    if not 0.0 <= model.queue_cutoff_share <= 1.0:
        return "queue_cutoff_share must be within [0, 1]"
    for caller in model.callers:
        if caller.arrival_profile is not None and len(caller.arrival_profile) not in PROFILE_LENGTHS:
            return f"Arrival profile of '{caller.name}' has an unsupported length"
        if not 0.0 <= caller.retry_share <= 1.0:
            return f"retry_share of '{caller.name}' must be within [0, 1]"
        ov = run_model.overrides.get(caller.name)
        if ov is None:
            return f"No carryover data for customer type '{caller.name}'"
        for label, vec in (("add", ov.add), ("retry", ov.retry), ("waiting", ov.waiting), ("tolerance", ov.tolerance)):
            if len(vec) != model.sub_days:
                return f"'{label}' carryover of '{caller.name}' has {len(vec)} sub-days, expected {model.sub_days}"
        if np.any(np.asarray(ov.add) < 0):
            return f"Negative additional arrivals for '{caller.name}'"
        for k in range(model.sub_days):
            if len(ov.waiting[k]) != len(ov.tolerance[k]):
                return f"Waiting and tolerance carryover of '{caller.name}' differ on sub-day {k + 1}"
    return None


def _draw_fresh(rng: np.random.Generator, mean: float, sd: float) -> int:
    if sd > 0:
        return max(0, int(round(rng.normal(mean, sd))))
    return int(rng.poisson(max(0.0, mean)))


def simulate_sub_day(run_model: RunModel, k: int, rng: np.random.Generator) -> List[dict]:
    """One sub-day of the stand-in call-center model, one row per customer type."""
    model = run_model.model
    demand = []
    for caller in model.callers:
        ov = run_model.overrides_for(caller.name)
        fresh = _draw_fresh(rng, caller.fresh_calls_mean, caller.fresh_calls_sd) + int(ov.add[k])
        demand.append(fresh + len(ov.retry[k]) + len(ov.waiting[k]))

    capacity = int(model.agents * model.calls_per_agent)
    total = sum(demand)
    rows = []
    for caller, d in zip(model.callers, demand):
        served = d if total <= capacity else min(d, int(math.floor(capacity * d / total)))
        unserved = d - served
        waiting = int(rng.binomial(unserved, model.queue_cutoff_share))
        gave_up = unserved - waiting
        retrying = int(rng.binomial(gave_up, caller.retry_share))
        tol = max(1.0, caller.waiting_tolerance_mean)
        rows.append({
            "arrivals": d,
            "served": served,
            "abandoned": gave_up - retrying,
            "retry": sorted(int(t) for t in rng.integers(0, 3600, size=retrying)),
            "waiting": [int(t) for t in rng.exponential(tol / 2, size=waiting)],
            "tolerance": [max(1, int(t)) for t in rng.exponential(tol, size=waiting)],
        })
    return rows


class LocalEngineHandle(EngineHandle):
    def __init__(self, run_model: RunModel, seed: Optional[int], sub_day_delay: float) -> None:
        self._run_model = run_model
        self._rng = np.random.default_rng(None if seed is None else int(seed))
        self._delay = sub_day_delay
        self._cancel = threading.Event()
        self._done = threading.Event()
        self._sub_day = 0
        self._statistics: Optional[Statistics] = None
        self._error: Optional[str] = None
        self._thread = threading.Thread(target=self._run, name="local-engine", daemon=True)

    def start(self) -> "LocalEngineHandle":
        self._thread.start()
        return self

    def _run(self) -> None:
        model = self._run_model.model
        per_type = {c.name: [] for c in model.callers}
        try:
            for k in range(model.sub_days):
                if self._cancel.is_set():
                    logger.debug("Run of '%s' canceled at sub-day %d", model.name, k + 1)
                    return
                rows = simulate_sub_day(self._run_model, k, self._rng)
                for caller, row in zip(model.callers, rows):
                    per_type[caller.name].append(row)
                self._sub_day = k + 1
                logger.debug("Sub-day %d/%d of '%s' done", k + 1, model.sub_days, model.name)
                if self._delay > 0:
                    time.sleep(self._delay)
            if self._cancel.is_set():
                return
            callers = []
            for name, rows in per_type.items():
                callers.append(CallerStatistics(
                    name=name,
                    arrivals=[r["arrivals"] for r in rows],
                    served=[r["served"] for r in rows],
                    abandoned=[r["abandoned"] for r in rows],
                    next_day_retry=[r["retry"] for r in rows],
                    next_day_waiting=[r["waiting"] for r in rows],
                    next_day_tolerance=[r["tolerance"] for r in rows],
                ))
            self._statistics = Statistics(model.name, model.sub_days, callers)
        except Exception as exc:  # surfaced through finalize()
            logger.exception("Simulation of '%s' failed", model.name)
            self._error = str(exc)
        finally:
            self._done.set()

    def is_running(self) -> bool:
        return not self._done.is_set()

    def current_sub_day(self) -> int:
        return self._sub_day

    def total_sub_days(self) -> int:
        return self._run_model.model.sub_days

    def cancel(self) -> None:
        self._cancel.set()

    def finalize(self) -> FinalizeResult:
        self._thread.join()
        if self._error is not None:
            return FinalizeResult(error=self._error)
        if self._cancel.is_set():
            return FinalizeResult()
        return FinalizeResult(statistics=self._statistics)


class LocalEngine(SimulationEngine):
    """Small stochastic stand-in engine running each day on a background thread.

    ``seed`` makes consecutive submissions reproducible: run ``i`` uses
    ``seed + i``.
    """

    def __init__(self, seed: Optional[int] = None, sub_day_delay: float = 0.0) -> None:
        self.seed = seed
        self.sub_day_delay = sub_day_delay
        self._runs = 0

    def check(self, run_model: RunModel) -> Optional[str]:
        return check_run_model(run_model)

    def submit(self, run_model: RunModel) -> EngineHandle:
        seed = None if self.seed is None else int(self.seed) + self._runs
        self._runs += 1
        return LocalEngineHandle(run_model, seed, self.sub_day_delay).start()


__all__ = [
    "FinalizeResult",
    "EngineHandle",
    "SimulationEngine",
    "check_run_model",
    "simulate_sub_day",
    "LocalEngineHandle",
    "LocalEngine",
]
