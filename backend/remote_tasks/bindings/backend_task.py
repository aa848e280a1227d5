"""
Reactive adapter between presentation code and the task services.

The binding keeps its own copy of the current task's state and refreshes it
from the status store on a short interval, independent of how often the
monitor polls the network. Listeners get a TaskBindingState snapshot on
every change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, List, Optional, Union

from remote_tasks.models import CommandOptions, TaskInfo, TaskStatus
from remote_tasks.services.command_service import CommandService
from remote_tasks.services.events import invoke_callback
from remote_tasks.services.remote_client import CommandSubmissionError
from remote_tasks.services.scheduler import Timer

logger = logging.getLogger(__name__)


@dataclass
class TaskBindingState:
    task_id: Optional[str] = None
    task_info: Optional[TaskInfo] = None
    status: Optional[TaskStatus] = None
    is_loading: bool = False
    error: Optional[str] = None


StateListener = Callable[[TaskBindingState], Union[None, Awaitable[None]]]


@dataclass
class TaskBindingOptions:
    on_complete: Optional[Callable[[TaskInfo], Union[None, Awaitable[None]]]] = None
    on_error: Optional[Callable[[TaskInfo], Union[None, Awaitable[None]]]] = None
    automatic_retry: bool = False
    show_toasts: bool = True
    max_retries: Optional[int] = None


class BackendTaskBinding:
    def __init__(
        self,
        commands: CommandService,
        *,
        options: Optional[TaskBindingOptions] = None,
        refresh_interval: Optional[float] = None,
    ):
        self.commands = commands
        self.monitor = commands.monitor
        self.scheduler = commands.monitor.scheduler
        self.options = options or TaskBindingOptions()
        settings = commands.monitor.settings
        self.refresh_interval = (
            refresh_interval if refresh_interval is not None else settings.binding.refresh_interval_seconds
        )
        self._state = TaskBindingState()
        self._listeners: List[StateListener] = []
        self._refresh_timer: Optional[Timer] = None

    # -- state ---------------------------------------------------------------

    @property
    def state(self) -> TaskBindingState:
        return replace(self._state)

    @property
    def task_id(self) -> Optional[str]:
        return self._state.task_id

    @property
    def task_info(self) -> Optional[TaskInfo]:
        return self._state.task_info

    @property
    def status(self) -> Optional[TaskStatus]:
        return self._state.status

    @property
    def is_loading(self) -> bool:
        return self._state.is_loading

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _update(self, **changes) -> None:
        new_state = replace(self._state, **changes)
        if new_state == self._state:
            return
        self._state = new_state
        for listener in list(self._listeners):
            await invoke_callback(listener, replace(new_state))

    async def _set_task_id(self, task_id: Optional[str]) -> None:
        await self._update(task_id=task_id)
        self._stop_refresh()
        if task_id is None:
            return
        await self._refresh()
        self._refresh_timer = self.scheduler.call_every(
            self.refresh_interval, self._refresh, name=f"binding:{task_id}"
        )

    def _stop_refresh(self) -> None:
        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
            self._refresh_timer = None

    async def _refresh(self) -> None:
        task_id = self._state.task_id
        if task_id is None:
            return
        info = self.monitor.get_task_info(task_id)
        if info is not None:
            await self._update(task_info=info, status=info.status)

    # -- actions ---------------------------------------------------------------

    def _command_options(self) -> CommandOptions:
        async def on_start() -> None:
            await self._update(status=TaskStatus.QUEUED)

        async def on_complete(info: TaskInfo) -> None:
            self._stop_refresh()
            await self._update(task_info=info, status=TaskStatus.COMPLETED, is_loading=False)
            await invoke_callback(self.options.on_complete, info)

        async def on_error(info: TaskInfo) -> None:
            self._stop_refresh()
            await self._update(
                task_info=info,
                status=TaskStatus.ERROR,
                is_loading=False,
                error=str(info.error) if info.error else "Unknown error",
            )
            await invoke_callback(self.options.on_error, info)

        async def on_status_change(info: TaskInfo) -> None:
            # Also covers the backoff wait, when the failed task is no longer in the store.
            if info.task_id == self._state.task_id:
                await self._update(task_info=info, status=info.status)

        async def on_retry(new_task_id: str) -> None:
            await self._update(status=TaskStatus.QUEUED, is_loading=True, error=None)
            await self._set_task_id(new_task_id)

        opts = CommandOptions(
            show_toasts=self.options.show_toasts,
            retry_on_failure=self.options.automatic_retry,
            on_start=on_start,
            on_complete=on_complete,
            on_error=on_error,
            on_status_change=on_status_change,
            on_retry=on_retry,
        )
        if self.options.max_retries is not None:
            opts.max_retries = self.options.max_retries
        return opts

    async def execute_command(self, command: str) -> Optional[str]:
        """Submit a command and track it. Returns the task id or None on failure."""
        await self._update(is_loading=True, error=None)
        try:
            task_id = await self.commands.send_command(command, self._command_options())
        except (CommandSubmissionError, ValueError) as e:
            logger.info("Command was not submitted: %s", e)
            await self._update(is_loading=False, status=TaskStatus.ERROR, error=str(e) or "Unknown error")
            return None

        await self._set_task_id(task_id)
        return task_id

    async def retry(self) -> Optional[str]:
        """Resubmit the current task's command and track the new task."""
        info = self._state.task_info
        if self._state.task_id is None or info is None or not info.command:
            await self._update(error="No task to retry")
            return None

        await self._update(is_loading=True, error=None)
        new_task_id = await self.commands.retry_command(info, info.command, self._command_options())
        if new_task_id is None:
            await self._update(is_loading=False, status=TaskStatus.ERROR, error="Failed to retry task")
            return None

        return new_task_id

    async def cancel(self) -> bool:
        """Cancel the current task; on success the local status flips to cancelled immediately."""
        task_id = self._state.task_id
        if task_id is None:
            return False
        success = await self.commands.cancel_command(task_id)
        if success:
            self._stop_refresh()
            await self._update(status=TaskStatus.CANCELLED, is_loading=False)
        return success

    async def reset(self) -> None:
        self._stop_refresh()
        await self._update(task_id=None, task_info=None, status=None, is_loading=False, error=None)

    def close(self) -> None:
        """Stop the refresh loop (the component went away)."""
        self._stop_refresh()
        self._listeners.clear()
