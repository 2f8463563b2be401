# -*- coding: utf-8 -*-
"""
Minimal logger; timestamped prints, warnings and errors go to stderr.

Verbosity is module-wide: ``set_level("warn")`` silences info/debug lines,
``set_level("debug")`` enables the per-iteration chatter.
"""
import sys, time

_LEVELS = {"debug": 10, "info": 20, "warn": 30, "error": 40, "quiet": 100}
_level = _LEVELS["info"]


def set_level(name: str) -> None:
    global _level
    try:
        _level = _LEVELS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level {name!r} (use one of {sorted(_LEVELS)})") from None


def _stamp() -> str:
    return time.strftime('%H:%M:%S')


def debug(msg: str):
    if _level <= _LEVELS["debug"]: print(f"[{_stamp()}] DEBUG: {msg}", file=sys.stdout)
def info(msg: str):
    if _level <= _LEVELS["info"]:  print(f"[{_stamp()}] {msg}", file=sys.stdout)
def warn(msg: str):
    if _level <= _LEVELS["warn"]:  print(f"[{_stamp()}] WARNING: {msg}", file=sys.stderr)
def error(msg: str):
    if _level <= _LEVELS["error"]: print(f"[{_stamp()}] ERROR: {msg}", file=sys.stderr)
