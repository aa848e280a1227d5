import logging
from typing import Dict, Optional

import httpx
from pydantic import ValidationError

from remote_tasks.config import Settings, get_settings
from remote_tasks.models import SubmitResponse, TaskStatusPayload

logger = logging.getLogger(__name__)


class RemoteServiceError(Exception):
    """Base error for calls to the remote command server."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class CommandSubmissionError(RemoteServiceError):
    """The run-command endpoint rejected the command or was unreachable."""


class TaskStatusError(RemoteServiceError):
    """A task-status poll failed (transport, HTTP or payload problem)."""


class TaskCancelError(RemoteServiceError):
    """The cancel-task endpoint did not accept the request."""


class HealthCheckError(RemoteServiceError):
    """The liveness endpoint did not answer with a 2xx in time."""


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"Remote server returned {response.status_code}"


class RemoteCommandClient:
    """
    Client for the remote command server.

    Endpoints:
        POST /run-command          {"command": ...} -> {"task_id": ...}
        GET  /task-status/{id}     -> {"status": ..., "output": ..., ...}
        POST /cancel-task/{id}
        GET  /health
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.remote.base_url.rstrip("/")
        self.transport = transport

    @property
    def headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.settings.remote.api_key or ""}

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=self.headers,
            transport=self.transport,
        )

    async def run_command(self, command: str) -> str:
        """
        Submit a command for background execution.

        Args:
            command: Command text understood by the remote server

        Returns:
            The task id assigned by the remote server

        Raises:
            CommandSubmissionError: on transport failure, non-2xx or a body without task_id
        """
        try:
            async with self._client(self.settings.remote.submit_timeout_seconds) as client:
                response = await client.post("/run-command", json={"command": command})
        except httpx.HTTPError as e:
            raise CommandSubmissionError(f"Cannot connect to command server: {e}") from e

        if not response.is_success:
            raise CommandSubmissionError(_error_detail(response), status_code=response.status_code)

        try:
            submitted = SubmitResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise CommandSubmissionError(
                "Command server response did not include a task id",
                status_code=response.status_code,
            ) from e

        logger.info("Command submitted as task %s", submitted.task_id)
        return submitted.task_id

    async def get_task_status(self, task_id: str) -> TaskStatusPayload:
        """
        Fetch the current status of a task.

        Raises:
            TaskStatusError: on transport failure, timeout, non-2xx or malformed payload
        """
        try:
            async with self._client(self.settings.remote.status_timeout_seconds) as client:
                response = await client.get(f"/task-status/{task_id}")
        except httpx.HTTPError as e:
            raise TaskStatusError(f"Status request for {task_id} failed: {e}") from e

        if not response.is_success:
            raise TaskStatusError(_error_detail(response), status_code=response.status_code)

        try:
            return TaskStatusPayload.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TaskStatusError(f"Malformed status payload for {task_id}: {e}") from e

    async def cancel_task(self, task_id: str) -> None:
        """
        Ask the remote server to cancel a task.

        Raises:
            TaskCancelError: when the request fails or is rejected
        """
        try:
            async with self._client(self.settings.remote.cancel_timeout_seconds) as client:
                response = await client.post(f"/cancel-task/{task_id}")
        except httpx.HTTPError as e:
            raise TaskCancelError(f"Cannot connect to command server: {e}") from e

        if not response.is_success:
            raise TaskCancelError(_error_detail(response), status_code=response.status_code)

    async def check_health(self, timeout: Optional[float] = None) -> None:
        """
        Probe the liveness endpoint.

        Raises:
            HealthCheckError: on timeout, transport failure or non-2xx
        """
        timeout = timeout if timeout is not None else self.settings.health.timeout_seconds
        try:
            async with self._client(timeout) as client:
                response = await client.get("/health")
        except httpx.TimeoutException as e:
            raise HealthCheckError("Remote server timeout") from e
        except httpx.HTTPError as e:
            raise HealthCheckError(f"Cannot connect to remote server: {e}") from e

        if not response.is_success:
            raise HealthCheckError(
                f"Remote server returned {response.status_code}",
                status_code=response.status_code,
            )
