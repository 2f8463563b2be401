# -*- coding: utf-8 -*-
"""
Single-run workflow wiring config → processes → time loop → results.
"""
from __future__ import annotations
from pathlib import Path
from typing import Optional

from couplesim.io.config import build_time_loop, load_config
from couplesim.io.results import write_metrics, write_step_history
from couplesim.timeloop.time_loop import RunSummary, run_time_loop
from couplesim.utils import logger


def run_from_config(cfg_path: Path, out_dir: Optional[Path] = None) -> RunSummary:
    cfg_path = Path(cfg_path)
    cfg = load_config(cfg_path)
    out_dir = Path(out_dir) if out_dir is not None else Path("runs") / cfg_path.stem

    loop = build_time_loop(cfg)
    summary = run_time_loop(loop)

    write_step_history(out_dir / "step_history.csv", summary.history)
    write_metrics(out_dir, {
        "accepted_steps": summary.accepted_steps,
        "rejected_steps": summary.rejected_steps,
        "final_time": summary.final_time,
        "successful": summary.successful,
        "nonlinear_divergences": summary.statistics.nonlinear_divergences,
        "coupling_not_converged": summary.statistics.coupling_not_converged,
    })
    logger.info(f"[run] wrote metrics and step history to: {out_dir}")
    return summary
