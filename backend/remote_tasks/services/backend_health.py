import logging
from dataclasses import fields, replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from remote_tasks.config import Settings
from remote_tasks.models import HealthEvent, HealthEventType, HealthMonitorOptions, HealthState
from remote_tasks.services.admin_notifier import AdminNotifier
from remote_tasks.services.events import Subscribers, invoke_callback
from remote_tasks.services.remote_client import RemoteCommandClient, RemoteServiceError
from remote_tasks.services.scheduler import AsyncioScheduler, Timer
from remote_tasks.state_machine import next_health

logger = logging.getLogger(__name__)


class BackendHealthMonitor:
    """
    Periodic liveness prober for the remote command server.

    Edge-triggered: going down fires once after `max_consecutive_failures`
    failures in a row, and recovery fires once on the next success.
    Health never fails an in-flight task.
    """

    def __init__(
        self,
        client: RemoteCommandClient,
        *,
        notifier: Optional[AdminNotifier] = None,
        scheduler: Optional[AsyncioScheduler] = None,
        settings: Optional[Settings] = None,
        options: Optional[HealthMonitorOptions] = None,
    ):
        self.client = client
        self.settings = settings or client.settings
        self.notifier = notifier
        self.scheduler = scheduler or AsyncioScheduler()
        self.options = HealthMonitorOptions(
            check_interval=self.settings.health.check_interval_seconds,
            max_consecutive_failures=self.settings.health.max_consecutive_failures,
            timeout=self.settings.health.timeout_seconds,
        )
        self.set_options(options)
        self.state = HealthState()
        self._timer: Optional[Timer] = None
        self._subscribers = Subscribers()

    def set_options(self, options: Optional[HealthMonitorOptions]) -> None:
        if options is None:
            return
        changes = {f.name: getattr(options, f.name) for f in fields(options) if getattr(options, f.name) is not None}
        self.options = replace(self.options, **changes)

    def subscribe(self, listener: Callable[[HealthEvent], Optional[Awaitable[None]]]) -> Callable[[], None]:
        return self._subscribers.subscribe(listener)

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    def get_status(self) -> bool:
        return self.state.is_healthy

    def start_monitoring(self, options: Optional[HealthMonitorOptions] = None) -> bool:
        """
        Start the periodic probe and run one probe right away.

        Returns:
            False if monitoring was already running (options are still merged)
        """
        self.set_options(options)
        if self._timer is not None:
            return False

        self.scheduler.spawn(self.check_health(), name="health:initial")
        self._timer = self.scheduler.call_every(self.options.check_interval, self.check_health, name="health")
        logger.info("Backend health monitoring started (every %.0fs)", self.options.check_interval)
        return True

    def stop_monitoring(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.info("Backend health monitoring stopped")
        self.state = HealthState()

    async def check_health(self) -> bool:
        """Run one probe and apply the result. Returns the probe outcome."""
        try:
            await self.client.check_health(timeout=self.options.timeout)
            probe_ok = True
        except RemoteServiceError as e:
            logger.warning("Backend health check failed: %s", e)
            probe_ok = False

        self.state, edge = next_health(
            self.state,
            probe_ok=probe_ok,
            max_consecutive_failures=self.options.max_consecutive_failures,
        )
        self.state.last_checked = datetime.now(timezone.utc)

        if edge is True:
            logger.info("Backend service is available again")
            await invoke_callback(self.options.on_status_change, True)
            await self._subscribers.publish(HealthEvent(HealthEventType.BACKEND_RECOVERED, replace(self.state)))
        elif edge is False:
            logger.error(
                "Backend service appears to be down (%d consecutive failures)",
                self.state.consecutive_failures,
            )
            await invoke_callback(self.options.on_status_change, False)
            await invoke_callback(self.options.on_backend_down)
            await self._subscribers.publish(HealthEvent(HealthEventType.BACKEND_DOWN, replace(self.state)))
            if self.notifier is not None:
                self.notifier.report(
                    self.notifier.notify_backend_down(consecutive_failures=self.state.consecutive_failures)
                )
        return probe_ok
