"""Public entry point for chained multi-day simulations.

Re-exports the API spread over ``chain_spec``, ``carryover``, ``chain_core``
and friends so scripts only need ``import chain``.
"""

from __future__ import annotations
from callcenter_model import (
    CallcenterModel,
    CallerOverrides,
    CallerStatistics,
    CallerType,
    RunModel,
    Statistics,
)
from carryover import (
    apply_extra_arrivals,
    build_run_model,
    carryover_factor,
    physical_carryover,
    statistical_carryover,
)
from chain_core import (
    ChainOrchestrator,
    ChainSnapshot,
    ChainState,
    DayRunner,
    DayState,
    RunnerConfig,
    run_chain,
)
from chain_errors import (
    Canceled,
    ChainError,
    ConfigError,
    DayMismatch,
    EngineRejected,
    ModelFileMissing,
    ModelLoadError,
    NoModelForDay,
    SaveFailed,
)
from chain_spec import (
    REUSE,
    CarryoverRule,
    ChainSpec,
    DayEntry,
    ExtraArrival,
    GlobalCarryover,
    ModelPath,
    PerTypeCarryover,
    chain_from_arguments,
    load_chain,
    parse_chain,
    save_chain,
)
from persistence import ChainStore, JsonStore, load_chain_statistics
from report import chain_summary, daily_totals, save_carryover_plot
from sim_engine import EngineHandle, FinalizeResult, LocalEngine, SimulationEngine


def simulate_chain(path, seed=None, **config_kwargs):
    """Load a chain document and run it on the local engine."""
    chain_spec = load_chain(path)
    engine = LocalEngine(seed=seed)
    return run_chain(chain_spec, engine, JsonStore.for_chain(chain_spec), RunnerConfig(**config_kwargs))


__all__ = [
    "CallcenterModel",
    "CallerType",
    "CallerStatistics",
    "CallerOverrides",
    "Statistics",
    "RunModel",
    "apply_extra_arrivals",
    "build_run_model",
    "carryover_factor",
    "physical_carryover",
    "statistical_carryover",
    "ChainOrchestrator",
    "ChainSnapshot",
    "ChainState",
    "DayRunner",
    "DayState",
    "RunnerConfig",
    "run_chain",
    "simulate_chain",
    "ChainError",
    "ConfigError",
    "NoModelForDay",
    "ModelFileMissing",
    "ModelLoadError",
    "DayMismatch",
    "EngineRejected",
    "Canceled",
    "SaveFailed",
    "REUSE",
    "CarryoverRule",
    "ChainSpec",
    "DayEntry",
    "ExtraArrival",
    "GlobalCarryover",
    "ModelPath",
    "PerTypeCarryover",
    "chain_from_arguments",
    "load_chain",
    "parse_chain",
    "save_chain",
    "ChainStore",
    "JsonStore",
    "load_chain_statistics",
    "chain_summary",
    "daily_totals",
    "save_carryover_plot",
    "EngineHandle",
    "FinalizeResult",
    "LocalEngine",
    "SimulationEngine",
]
