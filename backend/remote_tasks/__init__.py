"""Client-side orchestration of long-running remote commands."""

from .container import Services, build_services
from .models import (
    CommandOptions,
    HealthMonitorOptions,
    HealthState,
    TaskInfo,
    TaskMonitorOptions,
    TaskStatus,
)

__all__ = [
    "Services",
    "build_services",
    "CommandOptions",
    "HealthMonitorOptions",
    "HealthState",
    "TaskInfo",
    "TaskMonitorOptions",
    "TaskStatus",
]
