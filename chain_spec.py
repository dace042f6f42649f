from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from chain_errors import ConfigError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Carryover rules
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class CarryoverRule:
    """Retry probability of one source type plus optional type-change rates.

    Rates are relative weights; they are normalised when the rule is used.
    """

    probability: float = 0.0
    type_change_rates: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        p = float(self.probability)
        if not 0.0 <= p <= 1.0:
            raise ConfigError(f"Carryover probability must be within [0, 1], got {self.probability!r}")
        rates = {}
        for target, rate in dict(self.type_change_rates).items():
            r = float(rate)
            if r < 0:
                raise ConfigError(f"Type change rate for '{target}' must not be negative")
            rates[str(target)] = r
        object.__setattr__(self, "probability", p)
        object.__setattr__(self, "type_change_rates", rates)

    def factor(self, source: str, target: str) -> float:
        """Share of ``source``'s abandoned volume that returns as ``target``."""
        if self.probability == 0:
            return 0.0
        if not self.type_change_rates:
            return self.probability if source == target else 0.0
        rate = self.type_change_rates.get(target, 0.0)
        if rate == 0:
            return 0.0
        return self.probability * rate / sum(self.type_change_rates.values())


@dataclass(frozen=True)
class GlobalCarryover:
    rule: CarryoverRule


@dataclass(frozen=True)
class PerTypeCarryover:
    rules: Mapping[str, CarryoverRule] = field(default_factory=dict)


CarryoverShape = Union[GlobalCarryover, PerTypeCarryover]
NO_CARRYOVER = PerTypeCarryover()


# ---------------------------------------------------------------------------
# Model references + chain
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ReuseModel:
    """Reuse the model resolved for the previous day."""


@dataclass(frozen=True)
class ModelPath:
    path: str


ModelRef = Union[ReuseModel, ModelPath]
REUSE = ReuseModel()


@dataclass(frozen=True)
class DayEntry:
    model: ModelRef = REUSE
    statistics_output: Optional[str] = None
    carryover: CarryoverShape = NO_CARRYOVER


@dataclass(frozen=True)
class ExtraArrival:
    customer_type: str
    count: int


@dataclass(frozen=True)
class ChainSpec:
    base_folder: str = "."
    days: Tuple[DayEntry, ...] = ()
    day0_statistics: Optional[str] = None
    initial_extra_arrivals: Tuple[ExtraArrival, ...] = ()

    def __len__(self) -> int:
        return len(self.days)

    def resolve(self, ref: str) -> Path:
        return resolve_reference(self.base_folder, ref)

    def add_day(self, entry: Optional[DayEntry] = None) -> "ChainSpec":
        return replace(self, days=self.days + (entry or DayEntry(),))

    def remove_day(self, index: int) -> "ChainSpec":
        if not 0 <= index < len(self.days):
            raise IndexError(f"No day at index {index}")
        return replace(self, days=self.days[:index] + self.days[index + 1:])

    def move_day(self, index: int, offset: int) -> "ChainSpec":
        target = index + offset
        if not (0 <= index < len(self.days) and 0 <= target < len(self.days)):
            raise IndexError(f"Cannot move day {index} by {offset}")
        days = list(self.days)
        days[index], days[target] = days[target], days[index]
        return replace(self, days=tuple(days))


def resolve_reference(base_folder: str, ref: str) -> Path:
    if "/" in ref or "\\" in ref:
        return Path(ref)
    return Path(base_folder) / ref


# ---------------------------------------------------------------------------
# JSON document <-> ChainSpec
# ---------------------------------------------------------------------------
def _as_list(value, what: str, day: Optional[int] = None) -> List:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"'{what}' must be a list", day)
    return value


def _parse_rule(data: Dict, day: int) -> CarryoverRule:
    if not isinstance(data, dict):
        raise ConfigError("Carryover rule must be an object", day)
    rates: Dict[str, float] = {}
    for item in _as_list(data.get("type_change"), "type_change", day):
        if not isinstance(item, dict):
            raise ConfigError("Type change entry must be an object", day)
        # each target is keyed by its own type attribute
        target = str(item.get("type", ""))
        if target in rates:
            raise ConfigError(f"Duplicate type change target '{target}'", day)
        rates[target] = item.get("rate", 0.0)
    try:
        return CarryoverRule(float(data.get("probability", 0.0)), rates)
    except (TypeError, ValueError) as exc:
        raise ConfigError(str(getattr(exc, "message", exc)), day) from exc


def _parse_carryover(data: Optional[Dict], day: int) -> CarryoverShape:
    if not data:
        return NO_CARRYOVER
    if not isinstance(data, dict):
        raise ConfigError("'carryover' must be an object", day)
    if "global" in data:
        if "per_type" in data:
            raise ConfigError("'carryover' holds both a global rule and a per-type table", day)
        return GlobalCarryover(_parse_rule(data["global"], day))

    rules: Dict[str, CarryoverRule] = {}
    for item in _as_list(data.get("per_type"), "per_type", day):
        if not isinstance(item, dict):
            raise ConfigError("Carryover entry must be an object", day)
        name = str(item.get("type", ""))
        if name in rules:
            raise ConfigError(f"Duplicate carryover entry for type '{name}'", day)
        rules[name] = _parse_rule(item, day)
    return normalize_carryover(rules, day)


def normalize_carryover(rules: Mapping[str, CarryoverRule], day: Optional[int] = None) -> CarryoverShape:
    """Map a raw ``type -> rule`` table to its explicit shape.

    A table holding only the empty key is a global rule.
    """
    if set(rules) == {""}:
        return GlobalCarryover(rules[""])
    if "" in rules:
        logger.warning("Day %s: ignoring unnamed carryover entry mixed with per-type entries", day)
        rules = {k: v for k, v in rules.items() if k}
    return PerTypeCarryover(dict(rules))


def _parse_model_ref(value) -> ModelRef:
    if value is None or str(value) == "":
        return REUSE
    return ModelPath(str(value))


def parse_chain(data: Dict) -> ChainSpec:
    if not isinstance(data, dict):
        raise ConfigError("Chain document must be an object")
    raw_days = _as_list(data.get("days"), "days")
    if not raw_days:
        raise ConfigError("Chain document contains no days")

    days = []
    for i, raw in enumerate(raw_days, start=1):
        if not isinstance(raw, dict):
            raise ConfigError("Day record must be an object", i)
        out = raw.get("statistics") or None
        days.append(DayEntry(
            model=_parse_model_ref(raw.get("model")),
            statistics_output=str(out) if out else None,
            carryover=_parse_carryover(raw.get("carryover"), i),
        ))

    extras = []
    for k, item in enumerate(_as_list(data.get("initial_extra_arrivals"), "initial_extra_arrivals"), start=1):
        name = str(item.get("type", "")) if isinstance(item, dict) else ""
        if not name:
            raise ConfigError(f"Extra arrival record {k} has no customer type name")
        count = item.get("count")
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ConfigError(f"Extra arrival record {k} needs a non-negative integer count")
        extras.append(ExtraArrival(name, count))

    day0 = data.get("day0_statistics") or None
    return ChainSpec(
        base_folder=str(data.get("base_folder") or "."),
        days=tuple(days),
        day0_statistics=str(day0) if day0 else None,
        initial_extra_arrivals=tuple(extras),
    )


def _rule_to_dict(rule: CarryoverRule) -> Dict:
    out: Dict = {"probability": rule.probability}
    if rule.type_change_rates:
        out["type_change"] = [{"type": t, "rate": r} for t, r in rule.type_change_rates.items()]
    return out


def chain_to_dict(chain: ChainSpec) -> Dict:
    days = []
    for entry in chain.days:
        if isinstance(entry.carryover, GlobalCarryover):
            carry = {"global": _rule_to_dict(entry.carryover.rule)}
        else:
            carry = {"per_type": [{"type": name, **_rule_to_dict(rule)} for name, rule in entry.carryover.rules.items()]}
        days.append({
            "model": entry.model.path if isinstance(entry.model, ModelPath) else "",
            "statistics": entry.statistics_output or "",
            "carryover": carry,
        })
    return {
        "base_folder": chain.base_folder,
        "day0_statistics": chain.day0_statistics or "",
        "days": days,
        "initial_extra_arrivals": [{"type": e.customer_type, "count": e.count} for e in chain.initial_extra_arrivals],
    }


def load_chain(path: Path) -> ChainSpec:
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except OSError as exc:
        raise ConfigError(f"Cannot read chain file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Chain file {path} is not valid JSON: {exc}") from exc
    return parse_chain(data)


def save_chain(chain: ChainSpec, path: Path) -> None:
    path = Path(path)
    path.write_text(json.dumps(chain_to_dict(chain), indent=2))


def chain_from_arguments(
    model: str,
    day0_statistics: str,
    output_statistics: str,
    pairs: Sequence[Tuple[str, float]] = (),
) -> ChainSpec:
    """Single-day chain seeded from a statistics file (quick command-line form)."""
    rules: Dict[str, CarryoverRule] = {}
    for idx, (name, probability) in enumerate(pairs, start=1):
        try:
            rules[name] = CarryoverRule(float(probability))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid probability in pair {idx}: {probability!r}") from exc
    entry = DayEntry(
        model=_parse_model_ref(model),
        statistics_output=output_statistics or None,
        carryover=normalize_carryover(rules, 1),
    )
    return ChainSpec(base_folder=os.getcwd(), days=(entry,), day0_statistics=day0_statistics or None)


__all__ = [
    "CarryoverRule",
    "GlobalCarryover",
    "PerTypeCarryover",
    "CarryoverShape",
    "NO_CARRYOVER",
    "ReuseModel",
    "ModelPath",
    "ModelRef",
    "REUSE",
    "DayEntry",
    "ExtraArrival",
    "ChainSpec",
    "resolve_reference",
    "normalize_carryover",
    "parse_chain",
    "chain_to_dict",
    "load_chain",
    "save_chain",
    "chain_from_arguments",
]
