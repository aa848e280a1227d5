from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

import httpx

from remote_tasks.config import Settings, get_settings
from remote_tasks.models import AdminNotification
from remote_tasks.services.scheduler import AsyncioScheduler

logger = logging.getLogger(__name__)


class AdminNotifier:
    """
    Best-effort operator escalation channel.

    Must NEVER raise and never block caller logic: delivery problems are
    logged and reported as a False return value.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        scheduler: Optional[AsyncioScheduler] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self.scheduler = scheduler or AsyncioScheduler()
        self.transport = transport
        self.url = self.settings.admin_notify_url

    async def notify_admin(self, data: Union[AdminNotification, Dict[str, Any]]) -> bool:
        """
        POST a notification to the admin endpoint.

        Returns:
            True when the endpoint answered 2xx, False otherwise
        """
        try:
            notification = data if isinstance(data, AdminNotification) else AdminNotification.model_validate(data)
        except ValueError as e:
            logger.error("Invalid admin notification %r: %s", data, e)
            return False
        if not notification.admin_email and self.settings.admin.email:
            notification.admin_email = self.settings.admin.email
        payload = notification.to_payload()

        headers = {"Content-Type": "application/json"}
        if self.settings.remote.api_key:
            headers["X-API-Key"] = self.settings.remote.api_key

        attempt = 0
        last_err: Optional[Exception] = None
        retries = max(0, int(self.settings.admin.retries))

        while attempt <= retries:
            try:
                async with httpx.AsyncClient(
                    timeout=self.settings.admin.timeout_seconds,
                    transport=self.transport,
                ) as client:
                    res = await client.post(self.url, json=payload, headers=headers)
                if res.is_success:
                    logger.info("Admin notified: %s", notification.issue)
                    return True
                logger.warning("Admin notification endpoint responded %s for issue=%s", res.status_code, notification.issue)
                # 4xx will not get better on a second attempt.
                if 400 <= res.status_code < 500:
                    return False
            except httpx.HTTPError as e:
                last_err = e
            attempt += 1

        if last_err:
            logger.error("Failed to notify admin: %s", last_err)
        return False

    async def notify_backend_down(self, details: Optional[str] = None, consecutive_failures: Optional[int] = None) -> bool:
        return await self.notify_admin(
            AdminNotification(
                issue="Backend Down",
                details=details or "Backend health check failed",
                consecutive_failures=consecutive_failures,
            )
        )

    async def notify_task_failure(self, task_id: str, command: Optional[str], error: Optional[str]) -> bool:
        details = f"Task {task_id} failed with error: {error or 'unknown error'}"
        if command:
            details += f" (command: {command})"
        return await self.notify_admin(AdminNotification(issue="Task Failure", details=details))

    def report(self, coro) -> None:
        """Schedule one of the notify_* coroutines without waiting for it."""
        self.scheduler.spawn(coro, name="admin-notify")
