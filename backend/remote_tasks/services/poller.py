import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from remote_tasks.models import TaskInfo, TaskStatus
from remote_tasks.services.remote_client import RemoteCommandClient, RemoteServiceError
from remote_tasks.services.scheduler import AsyncioScheduler, Timer
from remote_tasks.services.status_store import StatusStore
from remote_tasks.state_machine import StatusReported, next_status

logger = logging.getLogger(__name__)


@dataclass
class PollOutcome:
    """Result of one successful poll cycle."""
    previous_status: TaskStatus
    task: TaskInfo

    @property
    def changed(self) -> bool:
        return self.previous_status != self.task.status


class TaskPoller:
    """
    Fixed-interval status poller for a single task.

    Each tick fetches the remote status, writes the updated record to the
    store and hands the outcome to `on_outcome`. Transport failures are
    logged and skipped; they never touch the stored status.
    """

    def __init__(
        self,
        task_id: str,
        *,
        client: RemoteCommandClient,
        store: StatusStore,
        scheduler: AsyncioScheduler,
        interval: float,
        on_outcome: Callable[["TaskPoller", PollOutcome], Awaitable[None]],
    ):
        self.task_id = task_id
        self.client = client
        self.store = store
        self.scheduler = scheduler
        self.interval = interval
        self.on_outcome = on_outcome
        self.polls = 0
        self._timer: Optional[Timer] = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        if self._active:
            return
        self._active = True
        self._timer = self.scheduler.call_every(self.interval, self._tick, name=f"poll:{self.task_id}")

    def stop(self) -> None:
        self._active = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _tick(self) -> None:
        outcome = await self.poll_once()
        if outcome is not None:
            await self.on_outcome(self, outcome)

    async def poll_once(self) -> Optional[PollOutcome]:
        if not self._active:
            return None
        self.polls += 1

        try:
            payload = await self.client.get_task_status(self.task_id)
        except RemoteServiceError as e:
            logger.warning("Error checking status for task %s: %s", self.task_id, e)
            return None

        current = self.store.get(self.task_id)
        if not self._active or current is None:
            logger.debug("Discarding late status for task %s", self.task_id)
            return None

        previous_status = current.status
        updated = TaskInfo(
            task_id=self.task_id,
            status=next_status(previous_status, StatusReported(payload.status)),
            command=str(payload.command) if payload.command else current.command,
            output=payload.output,
            error=payload.error,
            start_time=payload.start_time,
            completed_time=payload.completed_time,
            retry_count=current.retry_count,
        )
        self.store.put(updated)
        return PollOutcome(previous_status=previous_status, task=updated)
