import logging
from typing import Dict, Optional, Tuple

from remote_tasks.models import CommandOptions, TaskInfo, TaskMonitorOptions
from remote_tasks.services.admin_notifier import AdminNotifier
from remote_tasks.services.events import invoke_callback
from remote_tasks.services.notifications import NotificationCenter
from remote_tasks.services.remote_client import (
    CommandSubmissionError,
    RemoteCommandClient,
    RemoteServiceError,
)
from remote_tasks.services.task_monitor import TaskMonitor

logger = logging.getLogger(__name__)


class CommandService:
    """
    Submits commands to the remote server and wires them into the monitor.

    Owns the user-facing side of a command's life: progress toasts, the
    automatic retry cycle with exponential backoff, and escalation of final
    failures to the admin channel.
    """

    def __init__(
        self,
        client: RemoteCommandClient,
        monitor: TaskMonitor,
        *,
        notifications: Optional[NotificationCenter] = None,
        notifier: Optional[AdminNotifier] = None,
    ):
        self.client = client
        self.monitor = monitor
        self.notifications = notifications or NotificationCenter()
        self.notifier = notifier
        # Failed tasks waiting out a backoff delay, keyed by task id.
        self._backoff: Dict[str, Tuple[TaskInfo, str, CommandOptions]] = {}

    def _toast(self, options: CommandOptions, level: str, message: str, task_id: Optional[str] = None) -> None:
        if options.show_toasts:
            getattr(self.notifications, level)(message, task_id=task_id)

    async def send_command(self, command: str, options: Optional[CommandOptions] = None) -> str:
        """
        Submit a command and start monitoring the resulting task.

        Args:
            command: Non-empty command text
            options: Toast, retry and callback configuration

        Returns:
            Task id assigned by the remote server

        Raises:
            ValueError: if the command is empty
            CommandSubmissionError: if the submission failed (never retried here)
        """
        opts = options or CommandOptions()
        if not command or not command.strip():
            raise ValueError("Command is required")

        await invoke_callback(opts.on_start)
        self._toast(opts, "loading", "Processing command...")

        try:
            task_id = await self.client.run_command(command)
        except CommandSubmissionError as e:
            logger.error("Error sending command: %s", e)
            self._toast(opts, "error", "Failed to send command")
            raise

        self._toast(opts, "success", "Command submitted successfully", task_id)
        self._watch(task_id, command, opts, retry_count=0)
        return task_id

    def _watch(self, task_id: str, command: str, opts: CommandOptions, retry_count: int) -> None:
        async def on_complete(info: TaskInfo) -> None:
            self._toast(opts, "success", "Command completed successfully", info.task_id)
            await invoke_callback(opts.on_complete, info)

        async def on_error(info: TaskInfo) -> None:
            if opts.retry_on_failure:
                await self._handle_retry(info, command, opts)
            else:
                await self._fail(info, command, opts)

        self.monitor.monitor_task(
            task_id,
            TaskMonitorOptions(
                polling_interval=opts.polling_interval,
                max_retries=opts.max_retries,
                on_status_change=opts.on_status_change,
                on_complete=on_complete,
                on_error=on_error,
            ),
            command=command,
            retry_count=retry_count,
        )

    async def _fail(self, info: TaskInfo, command: str, opts: CommandOptions) -> None:
        """Final failure: toast, escalate, then hand over to the caller."""
        self._toast(opts, "error", "Command failed", info.task_id)
        if self.notifier is not None:
            self.notifier.report(self.notifier.notify_task_failure(info.task_id, command, info.error))
        await invoke_callback(opts.on_error, info)

    async def _handle_retry(self, info: TaskInfo, command: str, opts: CommandOptions) -> None:
        if info.retry_count >= opts.max_retries:
            logger.warning("Task %s exhausted %d retries", info.task_id, opts.max_retries)
            self._toast(opts, "error", "Maximum retry attempts reached", info.task_id)
            await self._fail(info, command, opts)
            return

        self._toast(
            opts,
            "loading",
            f"Retrying command (attempt {info.retry_count + 1}/{opts.max_retries})...",
            info.task_id,
        )
        delay = 2 ** info.retry_count

        async def run_retry() -> None:
            self._backoff.pop(info.task_id, None)
            new_task_id = await self.retry_command(info, command, opts)
            if new_task_id is None:
                await self._fail(info, command, opts)

        self._backoff[info.task_id] = (info, command, opts)
        self.monitor.schedule_retry(info.task_id, delay, run_retry)

    async def retry_command(
        self,
        info: TaskInfo,
        command: Optional[str] = None,
        options: Optional[CommandOptions] = None,
    ) -> Optional[str]:
        """
        Resubmit a task's command and monitor the new task with the same options.

        Returns:
            The new task id, or None if the retry was rejected or failed
        """
        opts = options or CommandOptions()
        command = command or info.command
        if not command:
            logger.warning("Task %s has no command to retry", info.task_id)
            return None

        new_task_id = await self.monitor.retry_task(
            info.task_id,
            command,
            max_retries=opts.max_retries,
            task_info=info,
        )
        if new_task_id is None:
            return None

        # retry_task bumped the live record if the old task is still tracked.
        live = self.monitor.get_task_info(info.task_id)
        retry_count = live.retry_count if live is not None else info.retry_count + 1
        self._watch(new_task_id, command, opts, retry_count=retry_count)
        await invoke_callback(opts.on_retry, new_task_id)
        return new_task_id

    async def cancel_command(self, task_id: str) -> bool:
        """
        Cancel a task on the remote server. Never raises.

        A pending backoff retry for the same id is dropped first. If the
        remote then rejects the cancel, the dropped retry's task is settled
        as a final failure (on_error plus escalation).
        """
        backoff = self._backoff.pop(task_id, None)
        if not self.monitor.cancel_pending_retry(task_id):
            backoff = None
        try:
            await self.client.cancel_task(task_id)
        except RemoteServiceError as e:
            logger.error("Error cancelling task %s: %s", task_id, e)
            self.notifications.error("Failed to cancel task", task_id=task_id)
            if backoff is not None:
                await self._fail(*backoff)
            return False

        self.notifications.success("Task cancelled successfully", task_id=task_id)
        return True
