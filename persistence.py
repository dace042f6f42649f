from __future__ import annotations
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List

from callcenter_model import CallcenterModel, MODEL_FORMAT_VERSION, Statistics
from chain_errors import ConfigError, ModelFileMissing, ModelLoadError
from chain_spec import ChainSpec, resolve_reference

logger = logging.getLogger(__name__)


class ChainStore(ABC):
    """Where models and statistics live. References are resolved by the store."""

    @abstractmethod
    def model_exists(self, ref: str) -> bool:
        ...

    @abstractmethod
    def load_model(self, ref: str) -> CallcenterModel:
        ...

    @abstractmethod
    def load_statistics(self, ref: str) -> Statistics:
        ...

    @abstractmethod
    def save_statistics(self, stats: Statistics, ref: str) -> None:
        ...

    def describe(self, ref: str) -> str:
        return ref


def _read_json(path: Path) -> dict:
    return json.loads(path.read_text())


class JsonStore(ChainStore):
    """JSON documents on disk, relative references resolved against ``base_folder``."""

    def __init__(self, base_folder: str = ".") -> None:
        self.base_folder = str(base_folder)

    @classmethod
    def for_chain(cls, chain: ChainSpec) -> "JsonStore":
        return cls(chain.base_folder)

    def resolve(self, ref: str) -> Path:
        return resolve_reference(self.base_folder, ref)

    def describe(self, ref: str) -> str:
        return str(self.resolve(ref))

    def model_exists(self, ref: str) -> bool:
        return self.resolve(ref).is_file()

    def load_model(self, ref: str) -> CallcenterModel:
        path = self.resolve(ref)
        if not path.is_file():
            raise ModelFileMissing(f"Model file {path} does not exist")
        try:
            model = CallcenterModel.from_dict(_read_json(path))
        except (OSError, ValueError, TypeError) as exc:
            raise ModelLoadError(f"Cannot load model {path}: {exc}") from exc
        if model.version > MODEL_FORMAT_VERSION:
            raise ModelLoadError(f"Model {path} was written by a newer version (format {model.version})")
        return model

    def load_statistics(self, ref: str) -> Statistics:
        path = self.resolve(ref)
        if not path.is_file():
            raise FileNotFoundError(f"Statistics file {path} does not exist")
        try:
            return Statistics.from_dict(_read_json(path))
        except (ValueError, TypeError) as exc:
            raise ValueError(f"Cannot load statistics {path}: {exc}") from exc

    def save_statistics(self, stats: Statistics, ref: str) -> None:
        path = self.resolve(ref)
        try:
            text = json.dumps(stats.to_dict())
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Cannot serialize statistics for {path}: {exc}") from exc
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        logger.debug("Saved statistics to %s", path)


def load_chain_statistics(chain: ChainSpec, store: ChainStore) -> List[Statistics]:
    """Load the saved output of every day of ``chain``.

    Every day must have an output reference and report the same customer
    types as day 1.
    """
    if not chain.days:
        raise ConfigError("Chain contains no days")
    results: List[Statistics] = []
    for i, entry in enumerate(chain.days, start=1):
        if not entry.statistics_output:
            raise ConfigError("No statistics output configured", i)
        try:
            stats = store.load_statistics(entry.statistics_output)
        except FileNotFoundError as exc:
            raise ConfigError(str(exc), i) from exc
        except (OSError, ValueError) as exc:
            raise ConfigError(f"Cannot load {store.describe(entry.statistics_output)}: {exc}", i) from exc
        if results and stats.caller_names != results[0].caller_names:
            raise ConfigError("Customer types do not match those of day 1", i)
        results.append(stats)
    return results


__all__ = ["ChainStore", "JsonStore", "load_chain_statistics"]
