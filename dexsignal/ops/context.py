from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

# Correlation ids attached to audit events. ContextVars follow asyncio tasks
# and are copied into asyncio.to_thread workers.
_run_id: ContextVar[Optional[str]] = ContextVar("dexsignal_run_id", default=None)
_cycle_id: ContextVar[Optional[str]] = ContextVar("dexsignal_cycle_id", default=None)


def set_run_id(run_id: Optional[str]) -> None:
    _run_id.set(run_id)


def get_run_id() -> Optional[str]:
    return _run_id.get()


def get_cycle_id() -> Optional[str]:
    return _cycle_id.get()


@contextmanager
def cycle(kind: str) -> Iterator[str]:
    """Scope one unit of work (poll / scan / tick) under a fresh cycle id."""
    cycle_id = f"{kind}-{uuid.uuid4().hex[:12]}"
    token = _cycle_id.set(cycle_id)
    try:
        yield cycle_id
    finally:
        _cycle_id.reset(token)
