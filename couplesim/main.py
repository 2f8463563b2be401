# couplesim/main.py
"""
couplesim main entrypoint.

Usage examples:
    python -m couplesim run configs/decay_fixed.yaml
    python -m couplesim run configs/exchange_staggered.yaml --png dt.png --log-level debug
    python -m couplesim run --help
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import argparse
import sys

from .errors import ConfigError, TimeLoopError
from .io.results import step_history_frame
from .utils import logger
from .viz.plots import plot_step_history
from .workflows.run_transient import run_from_config

__all__ = ["main"]


# ------------------------------ run subcommand -------------------------------


@dataclass(slots=True)
class _RunArgs:
    config: Path
    out_dir: Path | None
    png_out: str | None
    log_level: str


def _add_run_subparser(
    subparsers: argparse._SubParsersAction,
) -> argparse.ArgumentParser:
    p = subparsers.add_parser("run", help="Run a time loop from a YAML configuration")
    p.add_argument("config", type=Path, help="YAML run configuration")
    p.add_argument("--out", type=Path, default=None,
                   help="Directory for metrics.json and step_history.csv (default runs/<config stem>)")
    p.add_argument("--png", default=None, help="PNG output path for the step-size history plot")
    p.add_argument("--log-level", choices=["debug", "info", "warn", "error", "quiet"],
                   default="info", help="Console verbosity")
    p.set_defaults(cmd="run")
    return p


def _run(args: _RunArgs) -> int:
    logger.set_level(args.log_level)
    try:
        summary = run_from_config(args.config, args.out_dir)
    except (ConfigError, TimeLoopError) as exc:
        logger.error(f"{type(exc).__name__}: {exc}")
        return 1

    if args.png_out:
        fig, _ax = plot_step_history(step_history_frame(summary.history),
                                     title=f"Time-step history ({args.config.stem})")
        fig.savefig(args.png_out, dpi=180)
        print(f"[ok] wrote {args.png_out}")

    print(
        f"[ok] t_end={summary.final_time:g}  accepted={summary.accepted_steps}  "
        f"rejected={summary.rejected_steps}"
    )
    return 0


# --------------------------------- main() ------------------------------------


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="couplesim — coupled time-stepping runs")
    sub = parser.add_subparsers(dest="cmd")
    _add_run_subparser(sub)

    ns = parser.parse_args(argv)
    if ns.cmd == "run":
        return _run(_RunArgs(
            config=ns.config,
            out_dir=ns.out,
            png_out=ns.png,
            log_level=str(ns.log_level),
        ))

    parser.error("Unknown command (try: run)")
    return 2


if __name__ == "__main__":
    sys.exit(main())
