# couplesim/viz/plots.py
"""
Lightweight plotting helpers for the step-size history of a run.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

__all__ = ["plot_step_history"]


def plot_step_history(
    history: pd.DataFrame,
    *,
    ax: plt.Axes | None = None,
    title: str | None = "Time-step history",
) -> Tuple[plt.Figure, plt.Axes]:
    """
    Plot dt over t; rejected attempts are drawn as red crosses.

    Parameters
    ----------
    history : DataFrame
        Columns ``t``, ``dt``, ``accepted`` (see ``io.results.step_history_frame``).
    ax : matplotlib Axes, optional
        If provided, plot into this axes; otherwise create a new figure.
    title : str, optional

    Returns
    -------
    fig, ax : matplotlib Figure and Axes
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=(6.0, 3.2), constrained_layout=True)
    else:
        fig = ax.figure

    acc = history[history["accepted"].astype(bool)]
    rej = history[~history["accepted"].astype(bool)]

    ax.step(acc["t"].to_numpy(), acc["dt"].to_numpy(), where="post",
            label="accepted", linewidth=1.6)
    if len(rej):
        ax.plot(rej["t"].to_numpy(), rej["dt"].to_numpy(), "x", color="tab:red",
                label="rejected", markersize=6)

    ax.set_xlabel("t")
    ax.set_ylabel("dt")
    dts = history["dt"].to_numpy(dtype=np.float64)
    if dts.size and np.all(dts > 0.0) and dts.max() / dts.min() > 100.0:
        ax.set_yscale("log")
    if title:
        ax.set_title(title)

    ax.grid(True, which="both", linestyle=":", linewidth=0.6)
    ax.legend(frameon=False, loc="best")
    return fig, ax
