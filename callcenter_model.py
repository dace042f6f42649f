from __future__ import annotations
import copy
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

MODEL_FORMAT_VERSION = 1
PROFILE_LENGTHS = (24, 48, 96)


# ---------------------------------------------------------------------------
# Static model
# ---------------------------------------------------------------------------
@dataclass
class CallerType:
    name: str
    fresh_calls_mean: float
    fresh_calls_sd: float = 0.0
    arrival_profile: Optional[List[float]] = None  # 24, 48 or 96 time buckets
    retry_share: float = 0.0
    waiting_tolerance_mean: float = 180.0  # seconds

    @classmethod
    def from_dict(cls, data: Dict) -> "CallerType":
        name = str(data.get("name", ""))
        if not name:
            raise ValueError("Customer type without a name")
        profile = data.get("arrival_profile")
        if profile is not None:
            profile = [float(v) for v in profile]
            if len(profile) not in PROFILE_LENGTHS:
                raise ValueError(f"Arrival profile of '{name}' must have 24, 48 or 96 buckets, got {len(profile)}")
            if any(v < 0 for v in profile):
                raise ValueError(f"Arrival profile of '{name}' contains negative values")
        mean = float(data.get("fresh_calls_mean", 0.0))
        if mean < 0:
            raise ValueError(f"Mean arrival count of '{name}' must not be negative")
        return cls(
            name=name,
            fresh_calls_mean=mean,
            fresh_calls_sd=float(data.get("fresh_calls_sd", 0.0)),
            arrival_profile=profile,
            retry_share=float(data.get("retry_share", 0.0)),
            waiting_tolerance_mean=float(data.get("waiting_tolerance_mean", 180.0)),
        )

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "fresh_calls_mean": self.fresh_calls_mean,
            "fresh_calls_sd": self.fresh_calls_sd,
            "arrival_profile": self.arrival_profile,
            "retry_share": self.retry_share,
            "waiting_tolerance_mean": self.waiting_tolerance_mean,
        }


@dataclass
class CallcenterModel:
    name: str
    sub_days: int = 1
    callers: List[CallerType] = field(default_factory=list)
    agents: int = 10
    calls_per_agent: float = 40.0
    queue_cutoff_share: float = 0.05
    version: int = MODEL_FORMAT_VERSION

    def caller(self, name: str, ignore_case: bool = False) -> Optional[CallerType]:
        for c in self.callers:
            if c.name == name or (ignore_case and c.name.lower() == name.lower()):
                return c
        return None

    @property
    def caller_names(self) -> List[str]:
        return [c.name for c in self.callers]

    def copy(self) -> "CallcenterModel":
        return copy.deepcopy(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "CallcenterModel":
        sub_days = int(data.get("sub_days", 1))
        if sub_days <= 0:
            raise ValueError("sub_days must be positive")
        callers = [CallerType.from_dict(c) for c in data.get("callers", [])]
        names = [c.name for c in callers]
        if len(set(names)) != len(names):
            raise ValueError("Customer type names must be unique")
        return cls(
            name=str(data.get("name", "")),
            sub_days=sub_days,
            callers=callers,
            agents=int(data.get("agents", 10)),
            calls_per_agent=float(data.get("calls_per_agent", 40.0)),
            queue_cutoff_share=float(data.get("queue_cutoff_share", 0.05)),
            version=int(data.get("version", MODEL_FORMAT_VERSION)),
        )

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "version": self.version,
            "sub_days": self.sub_days,
            "agents": self.agents,
            "calls_per_agent": self.calls_per_agent,
            "queue_cutoff_share": self.queue_cutoff_share,
            "callers": [c.to_dict() for c in self.callers],
        }


# ---------------------------------------------------------------------------
# Statistics (engine output)
# ---------------------------------------------------------------------------
def _per_sub_day(values: Sequence, sub_days: int, what: str, name: str) -> List:
    values = list(values or [])
    if len(values) != sub_days:
        raise ValueError(f"'{what}' of '{name}' has {len(values)} entries, expected {sub_days}")
    return values


@dataclass
class CallerStatistics:
    """Per-sub-day counters of one customer type.

    The three ``next_day_*`` lists hold one entry per customer present at
    cutoff: scheduled retry time, waiting time so far and remaining waiting
    tolerance (all in seconds).
    """

    name: str
    arrivals: List[int]
    served: List[int]
    abandoned: List[int]
    next_day_retry: List[List[int]]
    next_day_waiting: List[List[int]]
    next_day_tolerance: List[List[int]]

    @classmethod
    def from_dict(cls, data: Dict, sub_days: int) -> "CallerStatistics":
        name = str(data.get("name", ""))

        def ints(key: str) -> List[int]:
            return [int(v) for v in _per_sub_day(data.get(key), sub_days, key, name)]

        def lists(key: str) -> List[List[int]]:
            return [[int(v) for v in day] for day in _per_sub_day(data.get(key), sub_days, key, name)]

        stats = cls(
            name=name,
            arrivals=ints("arrivals"),
            served=ints("served"),
            abandoned=ints("abandoned"),
            next_day_retry=lists("next_day_retry"),
            next_day_waiting=lists("next_day_waiting"),
            next_day_tolerance=lists("next_day_tolerance"),
        )
        for k in range(sub_days):
            if len(stats.next_day_waiting[k]) != len(stats.next_day_tolerance[k]):
                raise ValueError(f"Waiting and tolerance carryover of '{name}' differ in length on sub-day {k + 1}")
        return stats

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "arrivals": [int(v) for v in self.arrivals],
            "served": [int(v) for v in self.served],
            "abandoned": [int(v) for v in self.abandoned],
            "next_day_retry": [[int(v) for v in day] for day in self.next_day_retry],
            "next_day_waiting": [[int(v) for v in day] for day in self.next_day_waiting],
            "next_day_tolerance": [[int(v) for v in day] for day in self.next_day_tolerance],
        }


@dataclass
class Statistics:
    model_name: str
    sub_days: int
    callers: List[CallerStatistics] = field(default_factory=list)

    def caller(self, name: str) -> Optional[CallerStatistics]:
        # exact, case-sensitive match
        for c in self.callers:
            if c.name == name:
                return c
        return None

    @property
    def caller_names(self) -> List[str]:
        return [c.name for c in self.callers]

    @classmethod
    def from_dict(cls, data: Dict) -> "Statistics":
        sub_days = int(data.get("sub_days", 0))
        if sub_days <= 0:
            raise ValueError("Statistics must cover at least one sub-day")
        return cls(
            model_name=str(data.get("model_name", "")),
            sub_days=sub_days,
            callers=[CallerStatistics.from_dict(c, sub_days) for c in data.get("callers", [])],
        )

    def to_dict(self) -> Dict:
        return {
            "model_name": self.model_name,
            "sub_days": self.sub_days,
            "callers": [c.to_dict() for c in self.callers],
        }


# ---------------------------------------------------------------------------
# Run model (engine input)
# ---------------------------------------------------------------------------
PerCustomer = Tuple[Tuple[int, ...], ...]


def empty_per_customer(sub_days: int) -> PerCustomer:
    return tuple(() for _ in range(sub_days))


@dataclass(frozen=True)
class CallerOverrides:
    add: np.ndarray
    retry: PerCustomer
    waiting: PerCustomer
    tolerance: PerCustomer

    @classmethod
    def zeros(cls, sub_days: int) -> "CallerOverrides":
        return cls(
            add=np.zeros(sub_days, dtype=np.int64),
            retry=empty_per_customer(sub_days),
            waiting=empty_per_customer(sub_days),
            tolerance=empty_per_customer(sub_days),
        )


@dataclass(frozen=True)
class RunModel:
    model: CallcenterModel
    overrides: Dict[str, CallerOverrides]

    @classmethod
    def empty(cls, model: CallcenterModel) -> "RunModel":
        return cls(model, {c.name: CallerOverrides.zeros(model.sub_days) for c in model.callers})

    def overrides_for(self, name: str) -> CallerOverrides:
        return self.overrides.get(name) or CallerOverrides.zeros(self.model.sub_days)

    @property
    def sub_days(self) -> int:
        return self.model.sub_days
