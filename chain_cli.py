#!/usr/bin/env python3
"""Command-line runner for chained multi-day call-center simulations."""

from __future__ import annotations
import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from chain_core import ChainOrchestrator, ChainState, RunnerConfig
from chain_errors import ChainError
from chain_spec import ChainSpec, chain_from_arguments, load_chain
from persistence import JsonStore, load_chain_statistics
from report import chain_summary, daily_totals, save_carryover_plot
from sim_engine import LocalEngine

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELED = 2


def _probability_pairs(values: Sequence[str]) -> List[Tuple[str, float]]:
    pairs = []
    for i in range(0, len(values), 2):
        name, raw = values[i], values[i + 1]
        try:
            p = float(raw)
        except ValueError:
            raise ValueError(f"Parameter {i + 5} is not a valid probability: {raw}") from None
        if not 0.0 <= p <= 1.0:
            raise ValueError(f"Parameter {i + 5} is not a valid probability: {raw}")
        pairs.append((name, p))
    return pairs


def run_with_progress(chain: ChainSpec, args: argparse.Namespace) -> int:
    config = RunnerConfig(
        poll_interval=args.poll_interval,
        log_file=args.log_file,
        single_sub_day_when_logging=args.single_sub_day_log,
    )
    orch = ChainOrchestrator(LocalEngine(seed=args.seed), JsonStore.for_chain(chain), config)
    try:
        orch.start(chain)
    except ChainError as exc:
        print(f"ERROR: Cannot initialize chain: {exc}")
        return EXIT_FAILED

    shown = 0
    state = orch.state
    while True:
        try:
            state = orch.tick()
            day, total = orch.progress()
            if state is ChainState.POLLING and day != shown:
                print(f"Day {day} of {total}")
                shown = day
            if state.terminal:
                break
            time.sleep(config.poll_interval)
        except KeyboardInterrupt:
            print("Canceling...")
            orch.request_cancel()

    for warning in orch.warnings:
        print(f"WARNING: {warning}")
    if state is ChainState.FAILED:
        err = orch.error
        print(f"{'CANCELED' if not err.is_failure else 'ERROR'}: {err}")
        return EXIT_CANCELED if not err.is_failure else EXIT_FAILED

    print("Chained simulation done.")
    df = chain_summary(orch.results)
    print(daily_totals(df).to_string(index=False))
    if args.summary_csv:
        args.summary_csv.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(args.summary_csv, index=False)
        print(f"Saved summary → {args.summary_csv}")
    if args.plot:
        save_carryover_plot(df, "Carryover per day", str(args.plot))
        print(f"Saved plot → {args.plot}")
    return EXIT_OK


def cmd_run(args: argparse.Namespace) -> int:
    try:
        chain = load_chain(args.chain)
    except ChainError as exc:
        print(f"ERROR: Cannot load chain {args.chain}: {exc}")
        return EXIT_FAILED
    return run_with_progress(chain, args)


def cmd_quick(args: argparse.Namespace) -> int:
    if len(args.pairs) % 2:
        print(f"ERROR: Expected customer type / probability pairs, got {len(args.pairs)} extra parameters")
        return EXIT_FAILED
    if not args.day0_statistics.is_file():
        print(f"ERROR: Input statistics file {args.day0_statistics} does not exist")
        return EXIT_FAILED
    try:
        pairs = _probability_pairs(args.pairs)
        chain = chain_from_arguments(str(args.model), str(args.day0_statistics), str(args.output_statistics), pairs)
    except (ChainError, ValueError) as exc:
        print(f"ERROR: {exc}")
        return EXIT_FAILED
    return run_with_progress(chain, args)


def cmd_summary(args: argparse.Namespace) -> int:
    try:
        chain = load_chain(args.chain)
        results = load_chain_statistics(chain, JsonStore.for_chain(chain))
    except ChainError as exc:
        print(f"ERROR: {exc}")
        return EXIT_FAILED
    df = chain_summary(results)
    print(df.to_string(index=False))
    if args.csv:
        args.csv.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(args.csv, index=False)
        print(f"Saved summary → {args.csv}")
    return EXIT_OK


def _add_run_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--seed", type=int, default=None, help="Base random seed of the local engine")
    p.add_argument("--poll-interval", type=float, default=0.05, help="Seconds between progress polls")
    p.add_argument("--log-file", type=Path, default=None, help="Append one line per simulated day to this file")
    p.add_argument("--single-sub-day-log", action="store_true", help="Simulate one sub-day per model while logging")
    p.add_argument("--summary-csv", type=Path, default=None, help="Write the per-day summary as CSV")
    p.add_argument("--plot", type=Path, default=None, help="Save a carryover plot (PNG)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chained multi-day call-center simulation")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("run", help="Run a chain document")
    p.add_argument("chain", type=Path, help="Path to JSON chain file")
    _add_run_options(p)
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("quick", help="Run one day seeded from a statistics file")
    p.add_argument("model", type=Path, help="Model file")
    p.add_argument("day0_statistics", type=Path, help="Statistics of the previous day")
    p.add_argument("output_statistics", type=Path, help="Where to save the new statistics")
    p.add_argument("pairs", nargs="*", help="Customer type and retry probability pairs")
    _add_run_options(p)
    p.set_defaults(func=cmd_quick)

    p = sub.add_parser("summary", help="Summarize the saved statistics of a chain")
    p.add_argument("chain", type=Path, help="Path to JSON chain file")
    p.add_argument("--csv", type=Path, default=None, help="Write the summary as CSV")
    p.set_defaults(func=cmd_summary)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format="%(levelname)s: %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
