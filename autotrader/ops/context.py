from __future__ import annotations
from contextvars import ContextVar
from typing import Optional

# Context-local (safe for async & threads)
_current_cycle_id: ContextVar[Optional[str]] = ContextVar(
    "current_cycle_id", default=None
)
_current_actor: ContextVar[str] = ContextVar("current_actor", default="engine")


def set_cycle_id(cycle_id: str) -> None:
    _current_cycle_id.set(cycle_id)


def get_cycle_id() -> Optional[str]:
    return _current_cycle_id.get()


def clear_cycle_id() -> None:
    _current_cycle_id.set(None)


def set_actor(actor: str) -> None:
    """Who is mutating engine state: "engine" for cycles, "manual" for admin calls."""
    _current_actor.set(actor)


def get_actor() -> str:
    return _current_actor.get()
