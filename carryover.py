"""Run-model builder: turns the previous day's statistics into the next day's input.

Three carryover mechanisms are merged into a copy of the base model:

* manual extra arrivals (day 1 only, deterministic),
* physical carryover of customers still retrying or queued at cutoff,
* statistical carryover of abandoned customers who may return, possibly
  as a different customer type.
"""

from __future__ import annotations
import logging
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from callcenter_model import (
    CallcenterModel,
    CallerOverrides,
    PerCustomer,
    RunModel,
    Statistics,
    empty_per_customer,
)
from chain_errors import DayMismatch
from chain_spec import CarryoverRule, CarryoverShape, ExtraArrival, GlobalCarryover

logger = logging.getLogger(__name__)


def round_half_away(values: np.ndarray) -> np.ndarray:
    """Round to integers, halves away from zero (``np.round`` rounds halves to even)."""
    values = np.asarray(values, dtype=float)
    return (np.sign(values) * np.floor(np.abs(values) + 0.5)).astype(np.int64)


# ---------------------------------------------------------------------------
# Manual extra arrivals
# ---------------------------------------------------------------------------
def apply_extra_arrivals(model: CallcenterModel, extras: Iterable[ExtraArrival]) -> CallcenterModel:
    """Add fixed arrival volume to the first time bucket of matching types (in place)."""
    for extra in extras:
        caller = model.caller(extra.customer_type, ignore_case=True)
        if caller is None or caller.arrival_profile is None:
            logger.warning("Ignoring extra arrivals for customer type '%s'", extra.customer_type)
            continue
        profile = caller.arrival_profile
        total = sum(profile)
        if caller.fresh_calls_mean > 0 and total > 0:
            profile[0] += extra.count / caller.fresh_calls_mean * total
        elif extra.count > 0:
            # no previous volume: all arrivals fall into the first bucket
            caller.arrival_profile = [1.0] + [0.0] * (len(profile) - 1)
        caller.fresh_calls_mean += extra.count
    return model


# ---------------------------------------------------------------------------
# Physical carryover
# ---------------------------------------------------------------------------
def _copy_per_customer(values, sub_days: int) -> PerCustomer:
    out = [tuple(int(v) for v in day) for day in list(values)[:sub_days]]
    out += [()] * (sub_days - len(out))
    return tuple(out)


def physical_carryover(prev: Statistics, model: CallcenterModel) -> Dict[str, Tuple[PerCustomer, PerCustomer, PerCustomer]]:
    """Per type: (retry, waiting, tolerance) copied verbatim from ``prev``."""
    days = model.sub_days
    out = {}
    for caller in model.callers:
        stats = prev.caller(caller.name)
        if stats is None:
            empty = empty_per_customer(days)
            out[caller.name] = (empty, empty, empty)
            continue
        out[caller.name] = (
            _copy_per_customer(stats.next_day_retry, days),
            _copy_per_customer(stats.next_day_waiting, days),
            _copy_per_customer(stats.next_day_tolerance, days),
        )
    return out


# ---------------------------------------------------------------------------
# Statistical carryover of abandoned customers
# ---------------------------------------------------------------------------
def carryover_factor(source: str, rule: CarryoverRule, target: str) -> float:
    return rule.factor(source, target)


def _abandoned(prev: Statistics, name: str, sub_days: int) -> Optional[np.ndarray]:
    stats = prev.caller(name)
    if stats is None:
        return None
    return np.asarray(stats.abandoned[:sub_days], dtype=float)


def statistical_carryover(prev: Statistics, shape: CarryoverShape, model: CallcenterModel) -> Dict[str, np.ndarray]:
    """Extra fresh arrivals per type and sub-day from returning abandoners."""
    days = model.sub_days
    add: Dict[str, np.ndarray] = {}

    if isinstance(shape, GlobalCarryover):
        p = shape.rule.probability
        for caller in model.callers:
            abandoned = _abandoned(prev, caller.name, days)
            if abandoned is None or p <= 0:
                add[caller.name] = np.zeros(days, dtype=np.int64)
            else:
                add[caller.name] = round_half_away(p * abandoned)
        return add

    for caller in model.callers:
        total = np.zeros(days, dtype=float)
        for source, rule in shape.rules.items():
            factor = carryover_factor(source, rule, caller.name)
            if factor == 0:
                continue
            abandoned = _abandoned(prev, source, days)
            if abandoned is None:
                continue
            total += factor * abandoned
        # rounded once on the summed contribution
        add[caller.name] = round_half_away(total)
    return add


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------
def build_run_model(
    prev: Optional[Statistics],
    carryover: CarryoverShape,
    model: CallcenterModel,
    extras: Iterable[ExtraArrival] = (),
) -> RunModel:
    """Merge all carryover into a fresh copy of ``model``.

    Raises ``DayMismatch`` when ``prev`` covers a different number of
    sub-days than ``model``; nothing is returned in that case.
    """
    model = model.copy()
    extras = list(extras)
    if extras:
        apply_extra_arrivals(model, extras)

    if prev is None:
        return RunModel.empty(model)

    if prev.sub_days != model.sub_days:
        raise DayMismatch(
            f"Previous statistics cover {prev.sub_days} sub-days but the model is configured for {model.sub_days}"
        )

    physical = physical_carryover(prev, model)
    add = statistical_carryover(prev, carryover, model)

    overrides = {}
    for caller in model.callers:
        retry, waiting, tolerance = physical[caller.name]
        overrides[caller.name] = CallerOverrides(add=add[caller.name], retry=retry, waiting=waiting, tolerance=tolerance)
    return RunModel(model, overrides)


__all__ = [
    "round_half_away",
    "apply_extra_arrivals",
    "physical_carryover",
    "carryover_factor",
    "statistical_carryover",
    "build_run_model",
]
