from datetime import datetime, timezone
from typing import Callable, List, Optional

from remote_tasks.models import HealthEvent, HealthEventType
from remote_tasks.services.backend_health import BackendHealthMonitor
from remote_tasks.services.events import invoke_callback


class BackendHealthBinding:
    """
    UI-facing view of the backend health monitor.

    start() begins monitoring and close() stops it, mirroring a component's
    mount/unmount.
    """

    def __init__(
        self,
        monitor: BackendHealthMonitor,
        on_status_change: Optional[Callable[[bool], object]] = None,
    ):
        self.monitor = monitor
        self.on_status_change = on_status_change
        self.is_healthy = True
        self.last_checked: Optional[datetime] = None
        self._unsubscribe: List[Callable[[], None]] = []

    async def _on_event(self, event: HealthEvent) -> None:
        self.is_healthy = event.type == HealthEventType.BACKEND_RECOVERED
        self.last_checked = datetime.now(timezone.utc)
        await invoke_callback(self.on_status_change, self.is_healthy)

    async def start(self, check_on_mount: bool = False) -> None:
        if not self._unsubscribe:
            self._unsubscribe.append(self.monitor.subscribe(self._on_event))
        self.is_healthy = self.monitor.get_status()
        self.monitor.start_monitoring()
        if check_on_mount:
            await self.check_health()

    async def check_health(self) -> bool:
        """Trigger a manual probe."""
        result = await self.monitor.check_health()
        self.last_checked = datetime.now(timezone.utc)
        self.is_healthy = self.monitor.get_status()
        return result

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        self.monitor.stop_monitoring()
