"""
Composition root.

Builds one explicitly wired set of services instead of module-level
singletons, so every test (or app instance) gets its own isolated copy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional

import httpx

from remote_tasks.config import Settings, get_settings
from remote_tasks.services.admin_notifier import AdminNotifier
from remote_tasks.services.backend_health import BackendHealthMonitor
from remote_tasks.services.command_service import CommandService
from remote_tasks.services.notifications import (
    NotificationCenter,
    health_event_toasts,
    task_event_toasts,
)
from remote_tasks.services.remote_client import RemoteCommandClient
from remote_tasks.services.scheduler import AsyncioScheduler
from remote_tasks.services.task_monitor import TaskMonitor


@dataclass
class Services:
    settings: Settings
    scheduler: AsyncioScheduler
    client: RemoteCommandClient
    notifications: NotificationCenter
    notifier: AdminNotifier
    monitor: TaskMonitor
    commands: CommandService
    health: BackendHealthMonitor
    _unsubscribe: List[Callable[[], None]] = field(default_factory=list, repr=False)

    async def aclose(self) -> None:
        """Stop every timer and wait for in-flight admin notifications."""
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        self.health.stop_monitoring()
        self.monitor.shutdown()
        await self.scheduler.drain()


def build_services(
    settings: Optional[Settings] = None,
    *,
    scheduler: Optional[AsyncioScheduler] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    admin_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Services:
    settings = settings or get_settings()
    scheduler = scheduler or AsyncioScheduler()

    client = RemoteCommandClient(settings, transport=transport)
    notifications = NotificationCenter(history_size=settings.notifications.history_size)
    notifier = AdminNotifier(
        settings,
        scheduler=scheduler,
        transport=admin_transport if admin_transport is not None else transport,
    )
    monitor = TaskMonitor(client, scheduler=scheduler, settings=settings)
    commands = CommandService(client, monitor, notifications=notifications, notifier=notifier)
    health = BackendHealthMonitor(client, notifier=notifier, scheduler=scheduler, settings=settings)

    services = Services(
        settings=settings,
        scheduler=scheduler,
        client=client,
        notifications=notifications,
        notifier=notifier,
        monitor=monitor,
        commands=commands,
        health=health,
    )
    services._unsubscribe.append(monitor.subscribe(task_event_toasts(notifications)))
    services._unsubscribe.append(
        health.subscribe(health_event_toasts(notifications, admin_email=settings.admin.email))
    )
    return services
