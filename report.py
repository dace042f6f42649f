# report.py
from __future__ import annotations
import os
from typing import Sequence

import pandas as pd

from callcenter_model import Statistics

try:  # Matplotlib is optional for non-plotting contexts
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt  # type: ignore
except Exception:  # pragma: no cover
    plt = None  # type: ignore


SUMMARY_COLUMNS = [
    "Day",
    "CustomerType",
    "Arrivals",
    "Served",
    "Abandoned",
    "NextDayRetry",
    "NextDayWaiting",
]


def ensure_dir(path: str) -> None:
    if path:
        os.makedirs(path, exist_ok=True)


def chain_summary(results: Sequence[Statistics]) -> pd.DataFrame:
    """One row per (day, customer type), totals over all sub-days."""
    rows = []
    for day, stats in enumerate(results, start=1):
        for c in stats.callers:
            rows.append({
                "Day": day,
                "CustomerType": c.name,
                "Arrivals": int(sum(c.arrivals)),
                "Served": int(sum(c.served)),
                "Abandoned": int(sum(c.abandoned)),
                "NextDayRetry": int(sum(len(v) for v in c.next_day_retry)),
                "NextDayWaiting": int(sum(len(v) for v in c.next_day_waiting)),
            })
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)


def daily_totals(df: pd.DataFrame) -> pd.DataFrame:
    if df.empty:
        return pd.DataFrame(columns=[c for c in SUMMARY_COLUMNS if c != "CustomerType"])
    numeric = [c for c in SUMMARY_COLUMNS if c not in ("Day", "CustomerType")]
    return df.groupby("Day", as_index=False)[numeric].sum()


def _require_matplotlib() -> None:
    if plt is None:
        raise RuntimeError("matplotlib is required for plotting but is not available")


def save_carryover_plot(df: pd.DataFrame, title: str, out_png: str) -> None:
    """Per-day abandoned volume against what is carried into the next day."""
    _require_matplotlib()
    totals = daily_totals(df)
    ensure_dir(os.path.dirname(out_png))
    fig, ax = plt.subplots(figsize=(8, 4))
    ax.plot(totals["Day"], totals["Abandoned"], marker="o", label="Abandoned")
    ax.plot(totals["Day"], totals["NextDayRetry"], marker="^", label="Retrying next day")
    ax.plot(totals["Day"], totals["NextDayWaiting"], marker="D", label="Waiting at cutoff")
    ax.set_title(title)
    ax.set_xlabel("Day")
    ax.set_ylabel("Customers")
    ax.legend()
    fig.tight_layout()
    fig.savefig(out_png, dpi=150)
    plt.close(fig)


__all__ = ["SUMMARY_COLUMNS", "ensure_dir", "chain_summary", "daily_totals", "save_carryover_plot"]
