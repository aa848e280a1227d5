from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Awaitable, Callable, Optional, Union
from enum import Enum
from datetime import datetime, timezone
from dataclasses import dataclass


class TaskStatus(str, Enum):
    """Lifecycle status of a remote task."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.ERROR, TaskStatus.CANCELLED})


class TaskInfo(BaseModel):
    """Locally tracked state of one submitted command."""
    task_id: str
    status: TaskStatus = TaskStatus.QUEUED
    command: Optional[str] = None
    # Set by the remote server and kept as sent (timestamps may be strings or epoch numbers).
    output: Optional[Any] = None
    error: Optional[Any] = None
    start_time: Optional[Any] = None
    completed_time: Optional[Any] = None
    retry_count: int = Field(default=0, ge=0)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TaskStatusPayload(BaseModel):
    """Body returned by the remote task-status endpoint."""
    model_config = ConfigDict(extra="ignore")

    status: TaskStatus
    command: Optional[Any] = None
    output: Optional[Any] = None
    error: Optional[Any] = None
    start_time: Optional[Any] = None
    completed_time: Optional[Any] = None


class SubmitResponse(BaseModel):
    """Body returned by the remote run-command endpoint."""
    model_config = ConfigDict(extra="ignore")

    task_id: str = Field(min_length=1)
    status: Optional[str] = None


class AdminNotification(BaseModel):
    """Payload posted to the operator notification endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    issue: str
    details: Optional[str] = None
    user: Optional[str] = None
    project_id: Optional[str] = Field(default=None, alias="projectId")
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    admin_email: Optional[str] = None
    consecutive_failures: Optional[int] = Field(default=None, alias="consecutiveFailures")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class HealthState:
    """Liveness of the remote backend as seen by the health monitor."""
    is_healthy: bool = True
    consecutive_failures: int = 0
    last_checked: Optional[datetime] = None


class TaskEventType(str, Enum):
    STATUS_CHANGED = "status_changed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    RETRY_SUBMITTED = "retry_submitted"
    RETRY_REJECTED = "retry_rejected"
    RETRY_FAILED = "retry_failed"


@dataclass
class TaskEvent:
    """Domain event emitted by the task monitor."""
    type: TaskEventType
    task: Optional[TaskInfo]
    task_id: str
    previous_status: Optional[TaskStatus] = None
    new_task_id: Optional[str] = None
    detail: Optional[str] = None


class HealthEventType(str, Enum):
    BACKEND_DOWN = "backend_down"
    BACKEND_RECOVERED = "backend_recovered"


@dataclass
class HealthEvent:
    """Edge-triggered health transition."""
    type: HealthEventType
    state: HealthState


# Callbacks may be plain functions or coroutine functions.
TaskCallback = Callable[[TaskInfo], Union[None, Awaitable[None]]]
HealthCallback = Callable[[bool], Union[None, Awaitable[None]]]


@dataclass
class TaskMonitorOptions:
    """Per-task monitoring configuration."""
    polling_interval: Optional[float] = None
    max_retries: Optional[int] = None
    on_status_change: Optional[TaskCallback] = None
    on_complete: Optional[TaskCallback] = None
    on_error: Optional[TaskCallback] = None
    on_cancelled: Optional[TaskCallback] = None


@dataclass
class CommandOptions:
    """Options accepted by CommandService.send_command."""
    show_toasts: bool = True
    retry_on_failure: bool = False
    max_retries: int = 3
    polling_interval: Optional[float] = None
    on_start: Optional[Callable[[], Union[None, Awaitable[None]]]] = None
    on_complete: Optional[TaskCallback] = None
    on_error: Optional[TaskCallback] = None
    on_status_change: Optional[TaskCallback] = None
    # Called with the new task id when a retry was submitted.
    on_retry: Optional[Callable[[str], Union[None, Awaitable[None]]]] = None


@dataclass
class HealthMonitorOptions:
    """Health probe configuration. None fields fall back to settings."""
    check_interval: Optional[float] = None
    max_consecutive_failures: Optional[int] = None
    timeout: Optional[float] = None
    on_status_change: Optional[HealthCallback] = None
    on_backend_down: Optional[Callable[[], Union[None, Awaitable[None]]]] = None
