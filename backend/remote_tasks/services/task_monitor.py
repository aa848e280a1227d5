import logging
from dataclasses import fields
from typing import Awaitable, Callable, Dict, List, Optional

from remote_tasks.config import Settings
from remote_tasks.models import (
    TaskEvent,
    TaskEventType,
    TaskInfo,
    TaskMonitorOptions,
    TaskStatus,
)
from remote_tasks.services.events import Subscribers, invoke_callback
from remote_tasks.services.poller import PollOutcome, TaskPoller
from remote_tasks.services.remote_client import RemoteCommandClient, RemoteServiceError
from remote_tasks.services.scheduler import AsyncioScheduler, Timer
from remote_tasks.services.status_store import StatusStore

logger = logging.getLogger(__name__)


class TaskMonitor:
    """
    Tracks remote tasks by polling their status.

    Guarantees:
    - at most one poller per task id (monitor_task is idempotent)
    - a terminal status stops the poller and drops the record BEFORE the
      terminal callback runs, so each task gets at most one terminal callback
    - retry_count only moves through retry_task
    """

    def __init__(
        self,
        client: RemoteCommandClient,
        *,
        store: Optional[StatusStore] = None,
        scheduler: Optional[AsyncioScheduler] = None,
        settings: Optional[Settings] = None,
        options: Optional[TaskMonitorOptions] = None,
    ):
        self.client = client
        self.settings = settings or client.settings
        self.store = store if store is not None else StatusStore()
        self.scheduler = scheduler or AsyncioScheduler()
        self.options = self._merge(
            TaskMonitorOptions(
                polling_interval=self.settings.polling.interval_seconds,
                max_retries=self.settings.polling.max_retries,
            ),
            options,
        )
        self._pollers: Dict[str, TaskPoller] = {}
        self._task_options: Dict[str, TaskMonitorOptions] = {}
        self._pending_retries: Dict[str, Timer] = {}
        self._subscribers = Subscribers()

    @staticmethod
    def _merge(base: TaskMonitorOptions, override: Optional[TaskMonitorOptions]) -> TaskMonitorOptions:
        if override is None:
            return TaskMonitorOptions(**{f.name: getattr(base, f.name) for f in fields(base)})
        merged = {}
        for f in fields(base):
            value = getattr(override, f.name)
            merged[f.name] = value if value is not None else getattr(base, f.name)
        return TaskMonitorOptions(**merged)

    def subscribe(self, listener: Callable[[TaskEvent], Optional[Awaitable[None]]]) -> Callable[[], None]:
        """Register a listener for TaskEvents. Returns an unsubscribe function."""
        return self._subscribers.subscribe(listener)

    async def _publish(self, event: TaskEvent) -> None:
        await self._subscribers.publish(event)

    def monitor_task(
        self,
        task_id: str,
        options: Optional[TaskMonitorOptions] = None,
        *,
        command: Optional[str] = None,
        retry_count: int = 0,
    ) -> bool:
        """
        Start polling a task.

        Args:
            task_id: Remote task id
            options: Per-task overrides (callbacks, polling interval)
            command: Command that produced the task, kept for retries
            retry_count: Carried over when this task is itself a retry

        Returns:
            True if a poller was started, False if the id was already monitored
        """
        if task_id in self._pollers:
            logger.debug("Task %s is already monitored", task_id)
            return False

        opts = self._merge(self.options, options)
        self.store.put(
            TaskInfo(
                task_id=task_id,
                status=TaskStatus.QUEUED,
                command=command,
                retry_count=retry_count,
            )
        )
        poller = TaskPoller(
            task_id,
            client=self.client,
            store=self.store,
            scheduler=self.scheduler,
            interval=opts.polling_interval,
            on_outcome=self._handle_outcome,
        )
        self._pollers[task_id] = poller
        self._task_options[task_id] = opts
        poller.start()
        logger.info("Monitoring task %s every %.1fs", task_id, opts.polling_interval)
        return True

    def is_monitoring(self, task_id: str) -> bool:
        return task_id in self._pollers

    def _teardown(self, task_id: str) -> Optional[TaskInfo]:
        poller = self._pollers.pop(task_id, None)
        if poller is not None:
            poller.stop()
        self._task_options.pop(task_id, None)
        return self.store.remove(task_id)

    def stop_monitoring(self, task_id: str) -> None:
        """Stop polling a task. Safe to call for unknown ids."""
        if self._teardown(task_id) is not None:
            logger.info("Stopped monitoring task %s", task_id)
        self.cancel_pending_retry(task_id)

    def get_task_info(self, task_id: str) -> Optional[TaskInfo]:
        return self.store.snapshot(task_id)

    def get_all_tasks(self) -> List[TaskInfo]:
        return self.store.snapshot_all()

    async def _handle_outcome(self, poller: TaskPoller, outcome: PollOutcome) -> None:
        task_id = poller.task_id
        if self._pollers.get(task_id) is not poller:
            return
        opts = self._task_options[task_id]
        task = outcome.task

        if task.is_terminal:
            removed = self._teardown(task_id)
            if removed is not None:
                task = removed

        if outcome.changed:
            logger.info("Task %s: %s -> %s", task_id, outcome.previous_status.value, task.status.value)
            await invoke_callback(opts.on_status_change, task.model_copy())
            await self._publish(
                TaskEvent(
                    type=TaskEventType.STATUS_CHANGED,
                    task=task.model_copy(),
                    task_id=task_id,
                    previous_status=outcome.previous_status,
                )
            )

        if not task.is_terminal:
            return

        if task.status == TaskStatus.COMPLETED:
            await invoke_callback(opts.on_complete, task)
            event_type = TaskEventType.COMPLETED
        elif task.status == TaskStatus.ERROR:
            logger.warning("Task %s failed: %s", task_id, task.error or "unknown error")
            await invoke_callback(opts.on_error, task)
            event_type = TaskEventType.FAILED
        else:
            await invoke_callback(opts.on_cancelled, task)
            event_type = TaskEventType.CANCELLED
        await self._publish(TaskEvent(type=event_type, task=task.model_copy(), task_id=task_id))

    async def retry_task(
        self,
        task_id: str,
        command: str,
        *,
        max_retries: Optional[int] = None,
        task_info: Optional[TaskInfo] = None,
    ) -> Optional[str]:
        """
        Submit `command` again on behalf of a failed task.

        The live record is used when the task is still tracked; otherwise a
        copy of the snapshot captured from the terminal callback (`task_info`).
        The caller's snapshot is never modified.

        Returns:
            The new task id, or None when the task is unknown, the retry limit
            is reached, or the new submission failed. Callers must start
            monitoring the returned id themselves.
        """
        limit = max_retries if max_retries is not None else self.options.max_retries
        record = self.store.get(task_id)
        if record is None and task_info is not None:
            record = task_info.model_copy()

        if record is None or record.retry_count >= limit:
            logger.warning(
                "Retry rejected for task %s (retries=%s, max=%s)",
                task_id,
                record.retry_count if record else "n/a",
                limit,
            )
            await self._publish(
                TaskEvent(
                    type=TaskEventType.RETRY_REJECTED,
                    task=record.model_copy() if record else None,
                    task_id=task_id,
                    detail="Maximum retry attempts reached",
                )
            )
            return None

        record.retry_count += 1

        try:
            new_task_id = await self.client.run_command(command)
        except RemoteServiceError as e:
            logger.error("Failed to retry task %s: %s", task_id, e)
            await self._publish(
                TaskEvent(
                    type=TaskEventType.RETRY_FAILED,
                    task=record.model_copy(),
                    task_id=task_id,
                    detail=str(e),
                )
            )
            return None

        logger.info("Task %s retried as %s (attempt %d/%d)", task_id, new_task_id, record.retry_count, limit)
        await self._publish(
            TaskEvent(
                type=TaskEventType.RETRY_SUBMITTED,
                task=record.model_copy(),
                task_id=task_id,
                new_task_id=new_task_id,
            )
        )
        return new_task_id

    def schedule_retry(self, task_id: str, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        """Run `callback` after `delay` seconds unless cancelled for this task id first."""
        self.cancel_pending_retry(task_id)

        async def _fire() -> None:
            self._pending_retries.pop(task_id, None)
            await callback()

        self._pending_retries[task_id] = self.scheduler.call_later(delay, _fire, name=f"retry:{task_id}")
        logger.info("Retry for task %s scheduled in %.0fs", task_id, delay)

    def has_pending_retry(self, task_id: str) -> bool:
        return task_id in self._pending_retries

    def cancel_pending_retry(self, task_id: str) -> bool:
        timer = self._pending_retries.pop(task_id, None)
        if timer is None:
            return False
        timer.cancel()
        logger.info("Pending retry for task %s cancelled", task_id)
        return True

    def shutdown(self) -> None:
        """Stop all pollers and pending retries."""
        for task_id in list(self._pollers):
            self._teardown(task_id)
        for task_id in list(self._pending_retries):
            self.cancel_pending_retry(task_id)
