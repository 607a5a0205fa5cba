"""
HostFact — a single read-only observation of host state.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class HostFact(BaseModel):
    """One key/value observation produced by the probe."""

    key: str                 # e.g. "swap.active", "module.overlay"
    value: Any = None
    source: str = ""         # file or command the value was read from
    error: str | None = None
