from __future__ import annotations

import logging

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from common.probe import HttpProber, Probe, ProbeResult, contains_any, display_url, probe_tcp, status_in
from ops.health import HealthChecker, ReadinessTimeout, report, tracker_stats_judge, upload_endpoint_judge

TOKEN = "AdminToken0123456789abcdefghijkl"


def make_suite_app(state: dict) -> web.Application:
    async def health_check(_: web.Request) -> web.Response:
        if not state.get("tracker_up", True):
            return web.Response(status=503, text="down")
        return web.json_response({"status": "Ok"})

    async def stats(request: web.Request) -> web.Response:
        if request.query.get("token") != TOKEN:
            return web.Response(status=500, text="Unhandled rejection: Err { reason: \"unauthorized\" }")
        return web.json_response({"torrents": 0, "seeders": 0, "completed": 0})

    async def settings(_: web.Request) -> web.Response:
        return web.json_response({"data": {"tracker_url": "udp://t:6969/announce", "api_url": "x"}})

    async def gui(_: web.Request) -> web.Response:
        return web.Response(text="<!DOCTYPE html><html><title>Torrust</title></html>", content_type="text/html")

    async def announce(_: web.Request) -> web.Response:
        return web.Response(text="d14:failure reason23:missing info_hash parame")

    app = web.Application()
    app.router.add_get("/api/health_check", health_check)
    app.router.add_get("/api/v1/stats", stats)
    app.router.add_get("/v1/settings/public", settings)
    app.router.add_get("/", gui)
    app.router.add_get("/announce", announce)
    return app


@pytest.fixture
def state() -> dict:
    return {"tracker_up": True}


@pytest_asyncio.fixture
async def suite(state):
    server = TestServer(make_suite_app(state), host="127.0.0.1")
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def suite_cfg(cfg, suite):
    for key in ("tracker_api", "index_api", "gui", "http_tracker"):
        cfg["ports"][key] = suite.port
    return cfg


@pytest.mark.asyncio
async def test_local_checks_pass(suite_cfg):
    results = await HealthChecker(suite_cfg, TOKEN).run()
    assert [r.name for r in results] == ["tracker_health", "tracker_stats", "index_settings", "gui", "http_tracker"]
    assert all(r.ok for r in results), [r.as_dict() for r in results]
    assert report(results) is True


@pytest.mark.asyncio
async def test_wrong_token_is_reported(suite_cfg):
    results = await HealthChecker(suite_cfg, "wrong").run()
    stats = next(r for r in results if r.name == "tracker_stats")
    assert not stats.ok
    assert "admin token" in stats.reason
    assert report(results) is False


@pytest.mark.asyncio
async def test_stats_probe_skipped_without_token(suite_cfg):
    results = await HealthChecker(suite_cfg).run()
    assert "tracker_stats" not in [r.name for r in results]


@pytest.mark.asyncio
async def test_wait_until_ready_times_out(suite_cfg, state):
    state["tracker_up"] = False
    checker = HealthChecker(suite_cfg)
    with pytest.raises(ReadinessTimeout) as info:
        await checker.wait_until_ready(checker.service_probe("tracker"), attempts=2, interval=0)
    assert info.value.result.status == 503


@pytest.mark.asyncio
async def test_wait_until_ready_succeeds(suite_cfg):
    checker = HealthChecker(suite_cfg)
    result = await checker.wait_until_ready(checker.service_probe("index"))
    assert result.ok


@pytest.mark.asyncio
async def test_unreachable_endpoint_does_not_raise():
    async with HttpProber(timeout=1.0) as prober:
        result = await prober.check(Probe("closed", "http://127.0.0.1:9/", status_in(200)))
    assert not result.ok
    assert result.status is None
    assert result.reason.startswith("request failed")


@pytest.mark.asyncio
async def test_probe_tcp(suite):
    ok, _ = await probe_tcp("127.0.0.1", suite.port)
    assert ok


def test_contains_any_case():
    assert contains_any("Ok")(200, '{"status":"Ok"}') == (True, "")
    assert contains_any("Ok", ignore_case=False)(200, "ok")[0] is False
    assert contains_any("tracker", statuses=(200,))(500, "tracker")[0] is False


def test_tracker_stats_judge_prefers_failure_words():
    judge = tracker_stats_judge()
    assert judge(200, '{"torrents": 1}') == (True, "")
    assert judge(500, "unauthorized tracker stats")[0] is False
    assert judge(401, "")[0] is False


@pytest.mark.parametrize(
    "status, ok",
    [(401, True), (405, True), (200, True), (404, False), (502, False), (503, False), (500, False)],
)
def test_upload_endpoint_judge(status, ok):
    assert upload_endpoint_judge()(status, "")[0] is ok


def test_public_probes(cfg):
    names = [p.name for p in HealthChecker(cfg, TOKEN).public_probes()]
    assert names == ["https_redirect", "https_root", "public_index_settings", "upload_endpoint", "public_tracker_api"]
    cfg["ssl"]["enabled"] = False
    probes = HealthChecker(cfg).public_probes()
    assert [p.name for p in probes] == ["public_index_settings", "upload_endpoint"]
    assert probes[0].url == "http://tracker.example.com/api/v1/settings/public"


def test_unknown_service_probe(cfg):
    with pytest.raises(ValueError):
        HealthChecker(cfg).service_probe("nginx")


def test_report_masks_admin_token(cfg, caplog):
    stats = HealthChecker(cfg, TOKEN).tracker_stats_probe()
    ok = ProbeResult(stats.name, stats.url, ok=True, status=200)
    failed = ProbeResult(stats.name, stats.url, ok=False, status=500, reason="unauthorized")
    with caplog.at_level(logging.INFO, logger="ops.health"):
        report([ok, failed])
    assert TOKEN not in caplog.text
    assert "token=AdminTok..." in caplog.text
    assert TOKEN not in ok.as_dict()["url"]
    assert ok.url.endswith(TOKEN)


def test_display_url_keeps_other_query_values():
    url = "http://127.0.0.1:1212/api/v1/stats?token=AdminToken0123456789&limit=5"
    assert display_url(url) == "http://127.0.0.1:1212/api/v1/stats?token=AdminTok...&limit=5"
    assert display_url("http://127.0.0.1:3000/") == "http://127.0.0.1:3000/"


@pytest.mark.asyncio
async def test_wait_until_ready_single_attempt(suite_cfg, state):
    state["tracker_up"] = False
    suite_cfg["health"]["ready_attempts"] = 0
    checker = HealthChecker(suite_cfg)
    with pytest.raises(ReadinessTimeout):
        await checker.wait_until_ready(checker.service_probe("tracker"), interval=0)
