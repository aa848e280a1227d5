import unittest

from fakes import CallRecorder, FakeCommandServer, ManualScheduler, make_settings
from remote_tasks import CommandOptions, TaskStatus, build_services
from remote_tasks.services.remote_client import CommandSubmissionError


class CommandServiceTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.server = FakeCommandServer()
        self.scheduler = ManualScheduler()
        self.services = build_services(
            make_settings(),
            scheduler=self.scheduler,
            transport=self.server.transport(),
        )
        self.commands = self.services.commands

    async def asyncTearDown(self) -> None:
        await self.services.aclose()

    def submissions(self) -> int:
        return len(self.server.calls("/run-command"))

    def messages(self):
        return self.services.notifications.messages()


class TestSendCommand(CommandServiceTestCase):
    async def test_build_runs_to_completion(self) -> None:
        self.server.statuses["task-1"] = [
            {"status": "running"},
            {"status": "completed", "output": "built"},
        ]
        requests_at_start = []
        changed, complete, error = CallRecorder(), CallRecorder(), CallRecorder()

        task_id = await self.commands.send_command(
            "build",
            CommandOptions(
                on_start=lambda: requests_at_start.append(len(self.server.requests)),
                on_status_change=changed,
                on_complete=complete,
                on_error=error,
            ),
        )

        self.assertEqual(task_id, "task-1")
        self.assertEqual(requests_at_start, [0])
        self.assertEqual(self.server.calls("/run-command")[0].headers["X-API-Key"], "test-key")

        await self.scheduler.advance(10)

        self.assertEqual([i.status for i in changed.args], [TaskStatus.RUNNING, TaskStatus.COMPLETED])
        self.assertEqual(complete.count, 1)
        self.assertEqual(complete.args[0].task_id, "task-1")
        self.assertEqual(complete.args[0].output, "built")
        self.assertEqual(error.count, 0)
        self.assertEqual(
            self.messages(),
            ["Processing command...", "Command submitted successfully", "Command completed successfully"],
        )

    async def test_submission_failure_raises_and_is_not_retried(self) -> None:
        self.server.submit_status = 500
        error = CallRecorder()

        with self.assertRaises(CommandSubmissionError):
            await self.commands.send_command("build", CommandOptions(retry_on_failure=True, on_error=error))

        await self.scheduler.advance(60)
        self.assertEqual(self.submissions(), 1)
        self.assertEqual(error.count, 0)
        self.assertEqual(self.services.monitor.get_all_tasks(), [])
        self.assertEqual(self.messages(), ["Processing command...", "Failed to send command"])

    async def test_empty_command_is_rejected_locally(self) -> None:
        for command in ("", "   "):
            with self.assertRaises(ValueError):
                await self.commands.send_command(command)
        self.assertEqual(self.server.requests, [])

    async def test_toasts_can_be_disabled(self) -> None:
        self.server.statuses["task-1"] = [{"status": "completed"}]

        await self.commands.send_command("build", CommandOptions(show_toasts=False))
        await self.scheduler.advance(5)

        self.assertEqual(self.messages(), [])

    async def test_failure_without_retry_escalates_once(self) -> None:
        self.server.statuses["task-1"] = [{"status": "error", "error": "exit 2"}]
        error = CallRecorder()

        await self.commands.send_command("build", CommandOptions(on_error=error))
        await self.scheduler.advance(30)

        self.assertEqual(error.count, 1)
        self.assertEqual(self.submissions(), 1)
        self.assertIn("Command failed", self.messages())
        payloads = self.server.admin_payloads()
        self.assertEqual([p["issue"] for p in payloads], ["Task Failure"])
        self.assertIn("task-1", payloads[0]["details"])
        self.assertIn("exit 2", payloads[0]["details"])
        self.assertEqual(payloads[0]["admin_email"], "ops@example.com")


class TestAutomaticRetry(CommandServiceTestCase):
    async def test_retries_with_backoff_until_exhausted(self) -> None:
        self.server.next_ids = ["task-2", "task-3", "task-4"]
        for task_id in self.server.next_ids:
            self.server.statuses[task_id] = [{"status": "error", "error": "boom"}]
        error, retried = CallRecorder(), CallRecorder()

        await self.commands.send_command(
            "deploy",
            CommandOptions(retry_on_failure=True, max_retries=2, on_error=error, on_retry=retried),
        )

        # task-2 fails at t=5, first retry after 2**0 seconds
        await self.scheduler.advance(5)
        self.assertTrue(self.services.monitor.has_pending_retry("task-2"))
        await self.scheduler.advance(0.9)
        self.assertEqual(self.submissions(), 1)
        await self.scheduler.advance(0.1)
        self.assertEqual(self.submissions(), 2)

        # task-3 fails at t=11, second retry after 2**1 seconds
        await self.scheduler.advance(5)
        await self.scheduler.advance(1.9)
        self.assertEqual(self.submissions(), 2)
        await self.scheduler.advance(0.1)
        self.assertEqual(self.submissions(), 3)

        # task-4 fails at t=18 with the budget spent
        await self.scheduler.advance(5)
        await self.scheduler.advance(60)

        self.assertEqual(self.submissions(), 3)
        self.assertEqual(retried.args, ["task-3", "task-4"])
        self.assertEqual(error.count, 1)
        self.assertEqual(error.args[0].task_id, "task-4")
        self.assertEqual(error.args[0].retry_count, 2)
        messages = self.messages()
        self.assertIn("Retrying command (attempt 1/2)...", messages)
        self.assertIn("Retrying command (attempt 2/2)...", messages)
        self.assertIn("Maximum retry attempts reached", messages)
        self.assertEqual(messages.count("Command failed"), 1)
        self.assertEqual([p["issue"] for p in self.server.admin_payloads()], ["Task Failure"])

    async def test_retry_that_succeeds_completes_normally(self) -> None:
        self.server.next_ids = ["task-1", "task-2"]
        self.server.statuses["task-1"] = [{"status": "error"}]
        self.server.statuses["task-2"] = [{"status": "completed", "output": "ok"}]
        complete, error = CallRecorder(), CallRecorder()

        await self.commands.send_command(
            "build",
            CommandOptions(retry_on_failure=True, on_complete=complete, on_error=error),
        )
        await self.scheduler.advance(5)
        await self.scheduler.advance(1)
        await self.scheduler.advance(5)

        self.assertEqual(complete.count, 1)
        self.assertEqual(complete.args[0].task_id, "task-2")
        self.assertEqual(complete.args[0].retry_count, 1)
        self.assertEqual(error.count, 0)
        self.assertEqual(self.server.admin_payloads(), [])

    async def test_cancel_during_backoff_drops_the_retry(self) -> None:
        self.server.next_ids = ["task-2"]
        self.server.statuses["task-2"] = [{"status": "error"}]

        await self.commands.send_command("deploy", CommandOptions(retry_on_failure=True, max_retries=2))
        await self.scheduler.advance(5)
        self.assertTrue(self.services.monitor.has_pending_retry("task-2"))

        self.assertTrue(await self.commands.cancel_command("task-2"))
        await self.scheduler.advance(30)

        self.assertEqual(self.submissions(), 1)
        self.assertEqual(len(self.server.calls("/cancel-task/task-2")), 1)
        self.assertFalse(self.services.monitor.has_pending_retry("task-2"))

    async def test_rejected_cancel_during_backoff_settles_as_failure(self) -> None:
        self.server.next_ids = ["task-2"]
        self.server.statuses["task-2"] = [{"status": "error", "error": "exit 1"}]
        self.server.cancel_status = 409
        error = CallRecorder()

        await self.commands.send_command(
            "deploy",
            CommandOptions(retry_on_failure=True, max_retries=2, on_error=error),
        )
        await self.scheduler.advance(5)
        self.assertEqual(error.count, 0)

        self.assertFalse(await self.commands.cancel_command("task-2"))
        await self.scheduler.advance(120)

        self.assertEqual(self.submissions(), 1)
        self.assertEqual(error.count, 1)
        self.assertEqual(error.args[0].task_id, "task-2")
        self.assertIn("Failed to cancel task", self.messages())
        self.assertIn("Command failed", self.messages())
        self.assertEqual([p["issue"] for p in self.server.admin_payloads()], ["Task Failure"])

    async def test_rejected_cancel_without_backoff_does_not_fail_task(self) -> None:
        self.server.statuses["task-1"] = [{"status": "running"}]
        self.server.cancel_status = 409
        error = CallRecorder()

        await self.commands.send_command("build", CommandOptions(retry_on_failure=True, on_error=error))
        await self.scheduler.advance(5)

        self.assertFalse(await self.commands.cancel_command("task-1"))
        self.assertEqual(error.count, 0)
        self.assertTrue(self.services.monitor.is_monitoring("task-1"))


class TestManualRetryAndCancel(CommandServiceTestCase):
    async def test_manual_retry_monitors_new_task(self) -> None:
        self.server.next_ids = ["task-1", "task-2"]
        self.server.statuses["task-1"] = [{"status": "error"}]
        self.server.statuses["task-2"] = [{"status": "running"}]
        failed = CallRecorder()

        await self.commands.send_command("build", CommandOptions(on_error=failed))
        await self.scheduler.advance(5)
        self.assertEqual(failed.count, 1)

        new_id = await self.commands.retry_command(failed.args[0])

        self.assertEqual(new_id, "task-2")
        info = self.services.monitor.get_task_info("task-2")
        self.assertEqual(info.command, "build")
        self.assertEqual(info.retry_count, 1)

    async def test_manual_retry_rejected_at_limit(self) -> None:
        self.server.statuses["task-1"] = [{"status": "error"}]
        failed = CallRecorder()

        await self.commands.send_command("build", CommandOptions(on_error=failed))
        await self.scheduler.advance(5)
        info = failed.args[0]
        info.retry_count = 3

        self.assertIsNone(await self.commands.retry_command(info, options=CommandOptions(max_retries=3)))
        self.assertEqual(self.submissions(), 1)
        self.assertIn("Maximum retry attempts reached", self.messages())

    async def test_cancel_success_and_failure(self) -> None:
        self.assertTrue(await self.commands.cancel_command("task-7"))
        self.assertIn("Task cancelled successfully", self.messages())

        self.server.cancel_status = 500
        self.assertFalse(await self.commands.cancel_command("task-8"))
        self.assertIn("Failed to cancel task", self.messages())

    async def test_cancel_keeps_monitoring_until_remote_confirms(self) -> None:
        self.server.statuses["task-1"] = [{"status": "running"}, {"status": "cancelled"}]
        complete, error = CallRecorder(), CallRecorder()

        await self.commands.send_command("build", CommandOptions(on_complete=complete, on_error=error))
        await self.scheduler.advance(5)
        await self.commands.cancel_command("task-1")
        self.assertTrue(self.services.monitor.is_monitoring("task-1"))

        await self.scheduler.advance(5)
        self.assertFalse(self.services.monitor.is_monitoring("task-1"))
        self.assertEqual((complete.count, error.count), (0, 0))


if __name__ == "__main__":
    unittest.main()
