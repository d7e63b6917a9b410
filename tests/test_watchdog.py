from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from common.process import CommandResult, CommandRunner
from ops.compose import ComposeProject
from ops.health import HealthChecker
from ops.watchdog import Watchdog


@pytest_asyncio.fixture
async def flaky_suite():
    state = {"tracker_ok": False}

    async def health_check(_: web.Request) -> web.Response:
        if state["tracker_ok"]:
            return web.Response(text='{"status":"Ok"}')
        return web.Response(status=500, text="error")

    async def settings(_: web.Request) -> web.Response:
        return web.Response(text='{"tracker_url": "x"}')

    async def gui(_: web.Request) -> web.Response:
        return web.Response(text="<html></html>")

    app = web.Application()
    app.router.add_get("/api/health_check", health_check)
    app.router.add_get("/v1/settings/public", settings)
    app.router.add_get("/", gui)
    server = TestServer(app, host="127.0.0.1")
    await server.start_server()
    yield server, state
    await server.close()


def _watchdog(cfg, server, runner):
    for key in ("tracker_api", "index_api", "gui"):
        cfg["ports"][key] = server.port
    cfg["watchdog"].update({"interval": 0.01, "failure_threshold": 2})
    compose = ComposeProject(runner, cfg["project_root"], cfg["compose_file"])
    return Watchdog(cfg, compose, HealthChecker(cfg))


def _restarts(runner):
    return [argv[-1] for argv in runner.history if "restart" in argv]


@pytest.mark.asyncio
async def test_restart_after_threshold(cfg, flaky_suite):
    server, state = flaky_suite
    runner = CommandRunner(dry_run=True)
    wd = _watchdog(cfg, server, runner)

    status = await wd.tick()
    assert status == {"tracker": False, "index": True, "gui": True}
    assert _restarts(runner) == []
    await wd.tick()
    assert _restarts(runner) == ["tracker"]
    assert wd.failures["tracker"] == 0
    assert wd.restarts["tracker"] == 1

    state["tracker_ok"] = True
    await wd.tick()
    assert wd.failures["tracker"] == 0
    assert _restarts(runner) == ["tracker"]


@pytest.mark.asyncio
async def test_failed_restart_keeps_counting(cfg, flaky_suite):
    server, _ = flaky_suite
    runner = CommandRunner(
        dry_run=True,
        dry_run_responses={
            ("docker", "compose", "-f", "docker-compose-https.yml", "restart"): CommandResult([], 1, stderr="boom")
        },
    )
    wd = _watchdog(cfg, server, runner)
    await wd.tick()
    await wd.tick()
    assert wd.restarts["tracker"] == 0
    assert wd.failures["tracker"] == 2


@pytest.mark.asyncio
async def test_run_stops(cfg, flaky_suite):
    server, state = flaky_suite
    state["tracker_ok"] = True
    wd = _watchdog(cfg, server, CommandRunner(dry_run=True))
    task = asyncio.create_task(wd.run())
    await asyncio.sleep(0.05)
    wd.stop()
    await asyncio.wait_for(task, timeout=5)
    assert task.done()
