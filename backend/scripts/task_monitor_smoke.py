"""
Live smoke check against a running command server.

Submits one command, waits for it to reach a terminal status, and probes
the health endpoint once. Uses REMOTE_SERVER_URL / REMOTE_API_KEY.

Run from repo root:
  python backend/scripts/task_monitor_smoke.py "echo hello"
"""

from __future__ import annotations

import asyncio
import sys


async def run(command: str) -> int:
    from remote_tasks import CommandOptions, TaskInfo, build_services  # noqa: WPS433
    from remote_tasks.logging_setup import setup_logging  # noqa: WPS433

    services = build_services()
    setup_logging(services.settings.app.log_level)

    alive = await services.health.check_health()
    print("health", "ok" if alive else "FAILED")

    done: asyncio.Future = asyncio.get_running_loop().create_future()

    def finish(info: TaskInfo) -> None:
        if not done.done():
            done.set_result(info)

    task_id = await services.commands.send_command(
        command,
        CommandOptions(on_complete=finish, on_error=finish, polling_interval=1.0),
    )
    print("task", task_id)

    try:
        info = await asyncio.wait_for(done, timeout=300)
    finally:
        await services.aclose()

    print("status", info.status.value)
    if info.output:
        print("output", info.output)
    if info.error:
        print("error", info.error)
    return 0 if info.status.value == "completed" else 1


def main() -> int:
    # Allow `from remote_tasks...` imports when running directly from repo root.
    sys.path.insert(0, "backend")
    command = sys.argv[1] if len(sys.argv) > 1 else "echo smoke"
    return asyncio.run(run(command))


if __name__ == "__main__":
    raise SystemExit(main())
