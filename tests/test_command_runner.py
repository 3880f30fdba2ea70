import asyncio
import sys

import pytest

from command_runner import CommandRunner, shell_command

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="commands are bash snippets")


def record(runner: CommandRunner) -> list[tuple[str, object]]:
    events: list[tuple[str, object]] = []
    runner.subscribe(lambda event_type, data: events.append((event_type, data)))
    return events


async def wait_idle(runner: CommandRunner, timeout: float = 10.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while runner.is_running:
        if loop.time() > deadline:
            raise AssertionError("command did not finish")
        await asyncio.sleep(0.05)


def statuses(events):
    return [data for event_type, data in events if event_type == "processStatus"]


def test_shell_command_uses_bash():
    assert shell_command("ls -la") == ["/bin/bash", "-c", "ls -la"]


@pytest.mark.asyncio
async def test_runs_command_and_collects_output(tmp_path):
    runner = CommandRunner()
    events = record(runner)

    await runner.run("echo hello; echo oops 1>&2", str(tmp_path))
    await wait_idle(runner)

    logs = runner.get_logs()
    assert logs.startswith("$ echo hello; echo oops 1>&2\n")
    assert "hello\n" in logs
    assert "oops\n" in logs
    assert logs.endswith("\nProcess exited with code 0\n")
    assert statuses(events) == [{"running": True}, {"running": False, "exitCode": 0}]


@pytest.mark.asyncio
async def test_exit_code_is_reported(tmp_path):
    runner = CommandRunner()
    events = record(runner)

    await runner.run("exit 4", str(tmp_path))
    await wait_idle(runner)

    assert statuses(events)[-1] == {"running": False, "exitCode": 4}
    assert runner.last_status["exitCode"] == 4


@pytest.mark.asyncio
async def test_new_command_preempts_running_one(tmp_path):
    runner = CommandRunner()
    events = record(runner)

    await runner.run("sleep 30", str(tmp_path))
    assert runner.is_running
    await runner.run("echo second", str(tmp_path))
    await wait_idle(runner)

    seen = statuses(events)
    assert [s["running"] for s in seen] == [True, False, True, False]
    assert seen[1].get("stopped") is True
    assert "Process is already running. Stopping current process first.\n" in runner.get_logs()
    assert "second\n" in runner.get_logs()


@pytest.mark.asyncio
async def test_stop_kills_process_group(tmp_path):
    runner = CommandRunner()
    events = record(runner)
    marker = tmp_path / "survivor"

    # The background child would create the marker if it outlived the stop
    await runner.run(f"(sleep 1; touch {marker}) & sleep 30", str(tmp_path))
    await asyncio.sleep(0.2)
    await runner.stop()

    assert not runner.is_running
    assert statuses(events)[-1]["running"] is False
    assert statuses(events)[-1]["stopped"] is True
    await asyncio.sleep(1.5)
    assert not marker.exists()


@pytest.mark.asyncio
async def test_stop_without_process_is_noop():
    runner = CommandRunner()
    events = record(runner)
    await runner.stop()
    assert events == []


@pytest.mark.asyncio
async def test_launch_error_is_reported(tmp_path):
    runner = CommandRunner()
    events = record(runner)

    await runner.run("echo hi", str(tmp_path / "missing"))

    assert not runner.is_running
    status = statuses(events)[-1]
    assert status["running"] is False
    assert "error" in status
    assert "Error launching command" in runner.get_logs()


@pytest.mark.asyncio
async def test_clear_logs_notifies_viewers(tmp_path):
    runner = CommandRunner()
    runner.add_log("old output\n")
    events = record(runner)

    runner.clear_logs()

    assert runner.get_logs() == ""
    assert events == [("logs", "")]


@pytest.mark.asyncio
async def test_close_stops_and_clears(tmp_path):
    runner = CommandRunner()
    await runner.run("sleep 30", str(tmp_path))
    await runner.close()

    assert not runner.is_running
    assert runner.get_logs() == ""


def test_unsubscribe():
    runner = CommandRunner()
    events = []
    unsubscribe = runner.subscribe(lambda event_type, data: events.append(event_type))
    runner.add_log("a")
    unsubscribe()
    runner.add_log("b")
    assert events == ["log"]


@pytest.mark.asyncio
async def test_overlapping_runs_never_run_together(tmp_path):
    runner = CommandRunner()
    live = []
    peak = []

    def track(event_type, data):
        if event_type != "processStatus":
            return
        live.append(1 if data["running"] else -1)
        peak.append(sum(live))

    runner.subscribe(track)
    events = record(runner)

    await asyncio.gather(
        runner.run("sleep 5", str(tmp_path)),
        runner.run("sleep 5", str(tmp_path)),
    )

    assert max(peak) <= 1
    assert [s["running"] for s in statuses(events)] == [True, False, True]
    assert runner.is_running
    await runner.stop()
    assert not runner.is_running
