# -*- coding: utf-8 -*-
"""
Results IO helpers.

Write:
  * metrics.json        (run-level counters: accepted/rejected steps, final time)
  * <name>.npz          (solution snapshots, one file per process and step)
  * step_history.csv    (time, dt, accepted, nonlinear iterations per attempt)

This keeps on-disk layout stable for post-processing and plots.
"""
from __future__ import annotations
import json
from pathlib import Path
from typing import Any, Dict, Iterable

import numpy as np
import pandas as pd

__all__ = ["write_metrics", "save_fields_npz", "step_history_frame",
           "write_step_history", "load_step_history"]

_HISTORY_COLUMNS = ["step", "t", "dt", "accepted", "iterations"]


def write_metrics(run_dir: Path, metrics: Dict[str, Any]) -> Path:
    run_dir = Path(run_dir)
    run_dir.mkdir(parents=True, exist_ok=True)
    out = run_dir / "metrics.json"
    with open(out, "w") as f:
        json.dump(metrics, f, indent=2, sort_keys=True)
    return out


def save_fields_npz(run_dir: Path, name: str = "fields.npz", **arrays) -> Path:
    """
    Save arrays for viz (e.g., x, t, and any secondary variables of a process).
    """
    run_dir = Path(run_dir)
    run_dir.mkdir(parents=True, exist_ok=True)
    out = run_dir / name
    np.savez_compressed(out, **arrays)
    return out


def step_history_frame(history: Iterable) -> pd.DataFrame:
    """One row per attempted step; ``iterations`` is the max over processes."""
    rows = [
        {
            "step": rec.step,
            "t": rec.t,
            "dt": rec.dt,
            "accepted": bool(rec.accepted),
            "iterations": max(rec.iterations) if rec.iterations else 0,
        }
        for rec in history
    ]
    return pd.DataFrame(rows, columns=_HISTORY_COLUMNS)


def write_step_history(path: Path, history: Iterable) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    step_history_frame(history).to_csv(path, index=False)
    return path


def load_step_history(csv_path: Path) -> pd.DataFrame:
    df = pd.read_csv(csv_path)
    if not set(_HISTORY_COLUMNS).issubset(df.columns):
        raise ValueError(f"step history CSV must have columns {_HISTORY_COLUMNS}")
    return df
