from __future__ import annotations
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from callcenter_model import CallcenterModel, RunModel, Statistics
from carryover import build_run_model
from chain_errors import (
    Canceled,
    ChainError,
    ConfigError,
    EngineRejected,
    ModelFileMissing,
    NoModelForDay,
    SaveFailed,
)
from chain_spec import ChainSpec, ModelPath
from persistence import ChainStore, JsonStore
from sim_engine import EngineHandle, FinalizeResult, SimulationEngine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# State + config
# ---------------------------------------------------------------------------
class ChainState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    BUILDING = "building"
    SUBMITTED = "submitted"
    POLLING = "polling"
    FINALIZING = "finalizing"
    ADVANCING = "advancing"
    FAILED = "failed"
    COMPLETED = "completed"

    @property
    def terminal(self) -> bool:
        return self in (ChainState.FAILED, ChainState.COMPLETED)


@dataclass(frozen=True)
class DayState:
    """What one day hands to the next: its statistics and resolved model reference."""

    completed_days: int = 0
    statistics: Optional[Statistics] = None
    model_ref: Optional[str] = None


@dataclass
class RunnerConfig:
    poll_interval: float = 0.05
    log_file: Optional[Path] = None
    # forces a single sub-day per model while a day log is written
    single_sub_day_when_logging: bool = False


@dataclass(frozen=True)
class ChainSnapshot:
    state: ChainState
    day: int
    total_days: int
    fraction: float
    error: Optional[str] = None
    warnings: Tuple[str, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# One day
# ---------------------------------------------------------------------------
class DayRunner:
    """Load, build, submit and complete single days of a chain.

    Every step takes the previous :class:`DayState` and ``complete`` returns
    the next one; the runner itself keeps no chain memory.
    """

    def __init__(
        self,
        chain: ChainSpec,
        engine: SimulationEngine,
        store: ChainStore,
        config: Optional[RunnerConfig] = None,
    ) -> None:
        self.chain = chain
        self.engine = engine
        self.store = store
        self.config = config or RunnerConfig()
        self.warnings: List[SaveFailed] = []

    def resolve_model_ref(self, index: int, state: DayState) -> str:
        model = self.chain.days[index].model
        if isinstance(model, ModelPath):
            return model.path
        if state.model_ref is None:
            raise NoModelForDay("No model configured and no previous model to reuse", index + 1)
        return state.model_ref

    def _write_day_log(self, index: int, ref: str) -> None:
        path = self.config.log_file
        if path is None:
            return
        try:
            with open(path, "a", encoding="utf-8") as fh:
                if index > 0:
                    fh.write("\n")
                fh.write(f"Connected simulation day {index + 1} of {len(self.chain.days)}: {ref}\n")
        except OSError as exc:
            logger.warning("Cannot write day log %s: %s", path, exc)

    def load(self, index: int, state: DayState) -> Tuple[str, CallcenterModel]:
        ref = self.resolve_model_ref(index, state)
        try:
            model = self.store.load_model(ref)
        except ChainError as exc:
            raise exc.with_day(index + 1)
        logger.info("Day %d/%d: loaded model %s", index + 1, len(self.chain.days), self.store.describe(ref))
        self._write_day_log(index, ref)
        if self.config.log_file is not None and self.config.single_sub_day_when_logging:
            model.sub_days = 1
        return ref, model

    def build(self, index: int, state: DayState, model: CallcenterModel) -> RunModel:
        extras = self.chain.initial_extra_arrivals if index == 0 else ()
        try:
            run_model = build_run_model(state.statistics, self.chain.days[index].carryover, model, extras)
        except ChainError as exc:
            raise exc.with_day(index + 1)
        message = self.engine.check(run_model)
        if message:
            raise EngineRejected(message, index + 1)
        return run_model

    def prepare(self, index: int, state: DayState) -> Tuple[str, RunModel]:
        ref, model = self.load(index, state)
        return ref, self.build(index, state, model)

    def submit(self, run_model: RunModel) -> EngineHandle:
        return self.engine.submit(run_model)

    def complete(self, index: int, state: DayState, result: FinalizeResult, model_ref: str) -> DayState:
        if not result.produced:
            raise Canceled(result.error or "Simulation canceled", index + 1)
        stats = result.statistics
        out = self.chain.days[index].statistics_output
        if out:
            try:
                self.store.save_statistics(stats, out)
            except (OSError, ValueError, TypeError) as exc:
                warning = SaveFailed(f"Cannot save statistics to {self.store.describe(out)}: {exc}", index + 1)
                logger.warning("%s", warning)
                self.warnings.append(warning)
        logger.info("Day %d/%d: simulation done", index + 1, len(self.chain.days))
        return DayState(state.completed_days + 1, stats, model_ref)

    def run(self, index: int, state: DayState, cancel: Optional[threading.Event] = None) -> DayState:
        """Blocking version of one day: prepare, submit, poll, complete."""
        ref, run_model = self.prepare(index, state)
        handle = self.submit(run_model)
        while handle.is_running():
            if cancel is not None and cancel.is_set():
                handle.cancel()
                handle.finalize()
                raise Canceled("Simulation canceled", index + 1)
            time.sleep(self.config.poll_interval)
        return self.complete(index, state, handle.finalize(), ref)


# ---------------------------------------------------------------------------
# Whole chain
# ---------------------------------------------------------------------------
class ChainOrchestrator:
    """Tick-driven state machine running the days of a chain one after another.

    ``tick`` never blocks on the engine; call it from a timer or a loop.
    ``request_cancel`` may be called from another thread.
    """

    def __init__(
        self,
        engine: SimulationEngine,
        store: Optional[ChainStore] = None,
        config: Optional[RunnerConfig] = None,
    ) -> None:
        self.engine = engine
        self.store = store
        self.config = config or RunnerConfig()
        self._chain: Optional[ChainSpec] = None
        self._runner: Optional[DayRunner] = None
        self._state = ChainState.IDLE
        self._day_state = DayState()
        self._index = 0
        self._cancel = threading.Event()
        self._handle: Optional[EngineHandle] = None
        self._model: Optional[CallcenterModel] = None
        self._model_ref: Optional[str] = None
        self._run_model: Optional[RunModel] = None
        self._results: List[Statistics] = []
        self._error: Optional[ChainError] = None

    # -- public API --------------------------------------------------------
    def start(self, chain: ChainSpec) -> None:
        """Check every day's model reference and load the day-0 statistics.

        Raises a :class:`ChainError`; nothing is simulated in that case.
        """
        if self._state is not ChainState.IDLE and not self._state.terminal:
            raise RuntimeError("A chain is already running")
        if not chain.days:
            raise ConfigError("Chain contains no days")
        store = self.store or JsonStore.for_chain(chain)

        last: Optional[str] = None
        for i, entry in enumerate(chain.days, start=1):
            ref = entry.model.path if isinstance(entry.model, ModelPath) else last
            if ref is None:
                raise NoModelForDay("No model configured and no previous model to reuse", i)
            if not store.model_exists(ref):
                raise ModelFileMissing(f"Model file {store.describe(ref)} does not exist", i)
            last = ref

        day0 = None
        if chain.day0_statistics:
            try:
                day0 = store.load_statistics(chain.day0_statistics)
            except FileNotFoundError as exc:
                raise ConfigError(f"Day-0 statistics file {store.describe(chain.day0_statistics)} does not exist") from exc
            except (OSError, ValueError) as exc:
                raise ConfigError(f"Cannot load day-0 statistics: {exc}") from exc

        self._chain = chain
        self._runner = DayRunner(chain, self.engine, store, self.config)
        self._state = ChainState.IDLE
        self._day_state = DayState(statistics=day0)
        self._index = 0
        self._cancel.clear()
        self._results = []
        self._error = None
        logger.info("Starting chain of %d days", len(chain.days))

    def request_cancel(self) -> None:
        self._cancel.set()

    def tick(self) -> ChainState:
        if self._chain is None:
            return self._state
        while not self._state.terminal:
            if not self._step():
                break
        return self._state

    def progress(self) -> Tuple[int, int]:
        total = len(self._chain.days) if self._chain else 0
        if self._state is ChainState.COMPLETED:
            return total, total
        return (min(self._index + 1, total) if total else 0), total

    def progress_fraction(self) -> float:
        total = len(self._chain.days) if self._chain else 0
        if not total:
            return 0.0
        if self._state is ChainState.COMPLETED:
            return 1.0
        part = 0.0
        handle = self._handle
        if handle is not None and handle.total_sub_days() > 0:
            part = handle.current_sub_day() / handle.total_sub_days()
        return (self._day_state.completed_days + part) / total

    def snapshot(self) -> ChainSnapshot:
        day, total = self.progress()
        return ChainSnapshot(
            state=self._state,
            day=day,
            total_days=total,
            fraction=self.progress_fraction(),
            error=str(self._error) if self._error else None,
            warnings=tuple(str(w) for w in self.warnings),
        )

    @property
    def state(self) -> ChainState:
        return self._state

    @property
    def day_state(self) -> DayState:
        return self._day_state

    @property
    def error(self) -> Optional[ChainError]:
        return self._error

    @property
    def results(self) -> List[Statistics]:
        return list(self._results)

    @property
    def warnings(self) -> List[SaveFailed]:
        return list(self._runner.warnings) if self._runner else []

    # -- state machine -----------------------------------------------------
    def _step(self) -> bool:
        """Perform one transition. False means: wait for the next tick."""
        runner = self._runner
        state = self._state
        try:
            if state is ChainState.IDLE:
                self._state = ChainState.LOADING
            elif state is ChainState.LOADING:
                if self._cancel.is_set():
                    raise Canceled("Chain canceled", self._index + 1)
                self._model_ref, self._model = runner.load(self._index, self._day_state)
                self._state = ChainState.BUILDING
            elif state is ChainState.BUILDING:
                self._run_model = runner.build(self._index, self._day_state, self._model)
                self._model = None
                self._state = ChainState.SUBMITTED
            elif state is ChainState.SUBMITTED:
                self._handle = runner.submit(self._run_model)
                self._run_model = None
                logger.info("Day %d/%d: submitted", self._index + 1, len(self._chain.days))
                self._state = ChainState.POLLING
            elif state is ChainState.POLLING:
                if self._cancel.is_set():
                    handle, self._handle = self._handle, None
                    handle.cancel()
                    handle.finalize()
                    raise Canceled("Simulation canceled", self._index + 1)
                if self._handle.is_running():
                    return False
                self._state = ChainState.FINALIZING
            elif state is ChainState.FINALIZING:
                self._day_state = runner.complete(self._index, self._day_state, self._handle.finalize(), self._model_ref)
                self._handle = None
                self._results.append(self._day_state.statistics)
                self._state = ChainState.ADVANCING
            elif state is ChainState.ADVANCING:
                self._index += 1
                if self._index >= len(self._chain.days):
                    self._state = ChainState.COMPLETED
                    logger.info("Chain of %d days completed", len(self._chain.days))
                else:
                    self._state = ChainState.LOADING
        except ChainError as exc:
            self._error = exc.with_day(self._index + 1)
            self._handle = None
            self._state = ChainState.FAILED
            if exc.is_failure:
                logger.error("Chain failed: %s", exc)
            else:
                logger.info("Chain stopped: %s", exc)
        except Exception as exc:
            logger.exception("Unexpected error on day %d", self._index + 1)
            self._error = ChainError(f"Unexpected error: {exc}", self._index + 1)
            self._handle = None
            self._state = ChainState.FAILED
        return True


def run_chain(
    chain: ChainSpec,
    engine: SimulationEngine,
    store: Optional[ChainStore] = None,
    config: Optional[RunnerConfig] = None,
    progress_cb: Optional[Callable[[int, int], None]] = None,
) -> List[Statistics]:
    """Run ``chain`` to completion and return one Statistics per day.

    ``progress_cb(done, total)`` is called at start and after every day.
    Raises the chain's :class:`ChainError` when it fails or is canceled.
    """
    config = config or RunnerConfig()
    orch = ChainOrchestrator(engine, store, config)
    orch.start(chain)
    total = len(chain.days)
    reported = -1
    while True:
        state = orch.tick()
        done = orch.day_state.completed_days
        if progress_cb and done != reported:
            progress_cb(done, total)
            reported = done
        if state is ChainState.COMPLETED:
            return orch.results
        if state is ChainState.FAILED:
            raise orch.error
        time.sleep(config.poll_interval)


__all__ = [
    "ChainState",
    "DayState",
    "RunnerConfig",
    "ChainSnapshot",
    "DayRunner",
    "ChainOrchestrator",
    "run_chain",
]
