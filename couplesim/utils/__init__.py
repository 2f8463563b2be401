# couplesim/utils/__init__.py
from __future__ import annotations
from .runtime import RunTime
from . import logger

__all__ = ["RunTime", "logger"]
