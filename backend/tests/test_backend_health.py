import unittest

import httpx

from fakes import CallRecorder, FakeCommandServer, ManualScheduler, make_settings
from remote_tasks import HealthMonitorOptions, build_services
from remote_tasks.models import HealthEventType


class BackendHealthTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.server = FakeCommandServer()
        self.scheduler = ManualScheduler()
        self.services = build_services(
            make_settings(),
            scheduler=self.scheduler,
            transport=self.server.transport(),
        )
        self.health = self.services.health
        self.events = []
        self.health.subscribe(lambda event: self.events.append(event.type))

    async def asyncTearDown(self) -> None:
        await self.services.aclose()

    def probes(self) -> int:
        return len(self.server.calls("/health"))


class TestCheckHealth(BackendHealthTestCase):
    async def test_goes_down_once_then_recovers_once(self) -> None:
        self.server.health = [503, 503, 503, 503, 200, 200]
        changed, down = CallRecorder(), CallRecorder()
        self.health.set_options(HealthMonitorOptions(on_status_change=changed, on_backend_down=down))

        results = [await self.health.check_health() for _ in range(2)]
        self.assertEqual(results, [False, False])
        self.assertTrue(self.health.get_status())

        await self.health.check_health()
        self.assertFalse(self.health.get_status())
        self.assertEqual(changed.args, [False])
        self.assertEqual(down.count, 1)

        await self.health.check_health()
        self.assertEqual(self.health.state.consecutive_failures, 4)
        self.assertEqual(changed.args, [False])
        self.assertEqual(down.count, 1)

        self.assertTrue(await self.health.check_health())
        self.assertTrue(self.health.get_status())
        self.assertEqual(self.health.state.consecutive_failures, 0)
        self.assertEqual(changed.args, [False, True])

        await self.health.check_health()
        self.assertEqual(changed.args, [False, True])
        self.assertEqual(self.events, [HealthEventType.BACKEND_DOWN, HealthEventType.BACKEND_RECOVERED])

    async def test_backend_down_notifies_admin_and_user(self) -> None:
        self.server.health = [httpx.ConnectError("refused")]

        for _ in range(3):
            await self.health.check_health()
        await self.scheduler.drain()

        payloads = self.server.admin_payloads()
        self.assertEqual(len(payloads), 1)
        self.assertEqual(payloads[0]["issue"], "Backend Down")
        self.assertEqual(payloads[0]["consecutiveFailures"], 3)
        self.assertEqual(payloads[0]["admin_email"], "ops@example.com")
        self.assertIn("timestamp", payloads[0])
        self.assertIn(
            "Backend service appears to be down. Admin (ops@example.com) has been notified.",
            self.services.notifications.messages(),
        )

    async def test_success_resets_failure_streak(self) -> None:
        self.server.health = [500, 500, 200, 500, 500, 200]

        for _ in range(6):
            await self.health.check_health()

        self.assertTrue(self.health.get_status())
        self.assertEqual(self.events, [])

    async def test_timeout_counts_as_failure(self) -> None:
        self.server.health = [httpx.ReadTimeout("slow")]

        self.assertFalse(await self.health.check_health())
        self.assertEqual(self.health.state.consecutive_failures, 1)
        self.assertIsNotNone(self.health.state.last_checked)

    async def test_single_failure_threshold(self) -> None:
        self.server.health = [500]
        self.health.set_options(HealthMonitorOptions(max_consecutive_failures=1))

        await self.health.check_health()
        self.assertFalse(self.health.get_status())


class TestHealthMonitoring(BackendHealthTestCase):
    async def test_start_probes_immediately_then_periodically(self) -> None:
        self.assertTrue(self.health.start_monitoring())
        self.assertFalse(self.health.start_monitoring())

        await self.scheduler.drain()
        self.assertEqual(self.probes(), 1)

        await self.scheduler.advance(60)
        self.assertEqual(self.probes(), 2)

        await self.scheduler.advance(120)
        self.assertEqual(self.probes(), 4)

    async def test_options_override_interval(self) -> None:
        self.health.start_monitoring(HealthMonitorOptions(check_interval=10))
        await self.scheduler.advance(30)
        self.assertEqual(self.probes(), 4)

    async def test_stop_resets_state_and_stops_probing(self) -> None:
        self.server.health = [500]
        self.health.start_monitoring(HealthMonitorOptions(check_interval=1, max_consecutive_failures=2))
        await self.scheduler.advance(2)
        self.assertFalse(self.health.get_status())

        self.health.stop_monitoring()
        probes = self.probes()
        await self.scheduler.advance(10)

        self.assertFalse(self.health.is_running)
        self.assertTrue(self.health.get_status())
        self.assertEqual(self.health.state.consecutive_failures, 0)
        self.assertEqual(self.probes(), probes)

    async def test_health_does_not_touch_running_tasks(self) -> None:
        self.server.health = [500]
        self.server.statuses["task-1"] = [{"status": "running"}]
        await self.services.commands.send_command("build")

        self.health.start_monitoring(HealthMonitorOptions(check_interval=1))
        await self.scheduler.advance(5)

        self.assertFalse(self.health.get_status())
        self.assertTrue(self.services.monitor.is_monitoring("task-1"))


if __name__ == "__main__":
    unittest.main()
