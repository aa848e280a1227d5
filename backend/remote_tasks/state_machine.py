"""
Pure transition functions for task status and backend health.

Nothing here touches timers or the network, so the rules can be exercised
directly:

    next_status(TaskStatus.RUNNING, StatusReported(TaskStatus.COMPLETED))
    next_health(HealthState(), probe_ok=False, max_consecutive_failures=3)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Tuple, Union

from remote_tasks.models import HealthState, TaskStatus, TERMINAL_STATUSES


@dataclass(frozen=True)
class StatusReported:
    """The remote system returned a status for the task."""
    status: TaskStatus


@dataclass(frozen=True)
class PollFailed:
    """A poll cycle failed at the transport level."""
    reason: str = ""


@dataclass(frozen=True)
class CancelConfirmed:
    """The remote cancellation endpoint accepted the cancel request."""


PollEvent = Union[StatusReported, PollFailed, CancelConfirmed]


def is_terminal(status: Optional[TaskStatus]) -> bool:
    return status in TERMINAL_STATUSES


def next_status(current: TaskStatus, event: PollEvent) -> TaskStatus:
    """
    Compute the status after an event.

    Terminal states absorb everything. Transport failures never move the task;
    the remote system is the only source of truth for status.
    """
    if is_terminal(current):
        return current
    if isinstance(event, StatusReported):
        return event.status
    if isinstance(event, CancelConfirmed):
        return TaskStatus.CANCELLED
    return current


def next_health(
    state: HealthState,
    *,
    probe_ok: bool,
    max_consecutive_failures: int,
) -> Tuple[HealthState, Optional[bool]]:
    """
    Apply one probe result.

    Returns the new state and the edge that was crossed: True for a recovery,
    False for going down, None when the healthy flag did not flip.
    """
    if probe_ok:
        recovered = not state.is_healthy
        return replace(state, is_healthy=True, consecutive_failures=0), (True if recovered else None)

    failures = state.consecutive_failures + 1
    if state.is_healthy and failures >= max(1, max_consecutive_failures):
        return replace(state, is_healthy=False, consecutive_failures=failures), False
    return replace(state, consecutive_failures=failures), None
