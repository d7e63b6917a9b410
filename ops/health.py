from __future__ import annotations

import asyncio
import logging
from typing import Any

from common.log import success
from common.probe import HttpProber, Judge, Probe, ProbeResult, any_response, contains_any, status_in

logger = logging.getLogger("ops.health")

GATEWAY_ERRORS = (502, 503, 504)


class ReadinessTimeout(TimeoutError):
    def __init__(self, result: ProbeResult, attempts: int):
        self.result = result
        super().__init__(f"{result.name} not ready after {attempts} attempts: {result.reason}")


def tracker_stats_judge() -> Judge:
    def judge(status: int, body: str) -> tuple[bool, str]:
        lowered = body.lower()
        if status in (401, 403) or "unauthorized" in lowered:
            return False, "tracker API rejected the admin token"
        if status >= 500:
            return False, f"tracker API error status {status}"
        if any(w in lowered for w in ("torrents", "seeders", "stats", "tracker")):
            return True, ""
        return False, "stats response has no tracker counters"

    return judge


def upload_endpoint_judge() -> Judge:
    """HEAD on the upload route: any auth/method refusal proves the index answered."""

    def judge(status: int, _: str) -> tuple[bool, str]:
        if status in GATEWAY_ERRORS:
            return False, f"gateway error {status}: nginx cannot reach the index"
        if status == 404:
            return False, "upload route not found: check the /api/ proxy_pass"
        if status < 500:
            return True, ""
        return False, f"index error status {status}"

    return judge


class HealthChecker:
    def __init__(self, cfg: dict[str, Any], admin_token: str = "", host: str = "127.0.0.1"):
        self.cfg = cfg
        self.admin_token = admin_token
        self.host = host
        health = cfg["health"]
        self.timeout = float(health["timeout"])
        self.verify_tls = bool(health["verify_tls"])
        self.ready_attempts = int(health["ready_attempts"])
        self.ready_interval = float(health["ready_interval"])

    def _local(self, port_key: str, path: str) -> str:
        return f"http://{self.host}:{int(self.cfg['ports'][port_key])}{path}"

    def tracker_health_probe(self) -> Probe:
        return Probe(
            "tracker_health",
            self._local("tracker_api", "/api/health_check"),
            contains_any("Ok", ignore_case=False),
            suggestion="Inspect tracker logs; the container usually exits on a malformed tracker.toml.",
        )

    def tracker_stats_probe(self) -> Probe:
        return Probe(
            "tracker_stats",
            self._local("tracker_api", f"/api/v1/stats?token={self.admin_token}"),
            tracker_stats_judge(),
            suggestion="Regenerate configs so tracker.toml admin token and index.toml tracker token match.",
        )

    def index_settings_probe(self) -> Probe:
        return Probe(
            "index_settings",
            self._local("index_api", "/v1/settings/public"),
            contains_any("tracker", "api"),
            suggestion="Check index logs for auth secret/pepper errors and tracker connectivity.",
        )

    def gui_probe(self) -> Probe:
        return Probe(
            "gui",
            self._local("gui", "/"),
            contains_any("html", "torrust"),
            suggestion="Check NUXT_PUBLIC_API_BASE and the gui container logs.",
        )

    def http_tracker_probe(self) -> Probe:
        return Probe(
            "http_tracker",
            self._local("http_tracker", "/announce"),
            any_response(),
            suggestion="Verify [[http_trackers]] bind_address and the published port.",
        )

    def service_probe(self, service: str) -> Probe:
        probes = {
            "tracker": self.tracker_health_probe,
            "index": self.index_settings_probe,
            "gui": self.gui_probe,
        }
        if service not in probes:
            raise ValueError(f"no readiness probe for service {service!r}")
        return probes[service]()

    def local_probes(self) -> list[Probe]:
        probes = [self.tracker_health_probe()]
        if self.admin_token:
            probes.append(self.tracker_stats_probe())
        probes += [self.index_settings_probe(), self.gui_probe(), self.http_tracker_probe()]
        return probes

    def public_probes(self) -> list[Probe]:
        domain = self.cfg["domain"]
        probes: list[Probe] = []
        if self.cfg["ssl"]["enabled"]:
            base = f"https://{domain}"
            probes.append(
                Probe(
                    "https_redirect",
                    f"http://{domain}/",
                    status_in(301, 302, 307, 308),
                    method="HEAD",
                    level="warning",
                    suggestion="The port-80 server block should return 301 to https.",
                )
            )
            probes.append(
                Probe(
                    "https_root",
                    f"{base}/",
                    status_in(200),
                    method="HEAD",
                    level="warning",
                    suggestion="Certificate or DNS may not be ready yet; rerun after propagation.",
                )
            )
        else:
            base = f"http://{domain}"
        probes.append(
            Probe(
                "public_index_settings",
                f"{base}/api/v1/settings/public",
                contains_any("tracker", "api"),
                suggestion="Check the /api/ location proxy_pass in the nginx site.",
            )
        )
        probes.append(
            Probe(
                "upload_endpoint",
                f"{base}/api/v1/torrent/upload",
                upload_endpoint_judge(),
                method="HEAD",
                suggestion="502/503 means nginx cannot reach the index on its published port.",
            )
        )
        if self.admin_token:
            probes.append(
                Probe(
                    "public_tracker_api",
                    f"{base}/tracker-api/api/v1/stats?token={self.admin_token}",
                    tracker_stats_judge(),
                    level="warning",
                    suggestion="Check the /tracker-api/ location in the nginx site.",
                )
            )
        return probes

    async def check(self, probes: list[Probe]) -> list[ProbeResult]:
        async with HttpProber(timeout=self.timeout, verify_tls=self.verify_tls) as prober:
            return await prober.check_all(probes)

    async def run(self, public: bool = False) -> list[ProbeResult]:
        probes = self.local_probes()
        if public:
            probes += self.public_probes()
        return await self.check(probes)

    async def wait_until_ready(
        self,
        probe: Probe,
        attempts: int | None = None,
        interval: float | None = None,
    ) -> ProbeResult:
        attempts = attempts or self.ready_attempts
        interval = self.ready_interval if interval is None else interval
        attempt = 0
        async with HttpProber(timeout=self.timeout, verify_tls=self.verify_tls) as prober:
            while True:
                attempt += 1
                result = await prober.check(probe)
                if result.ok:
                    success(logger, "%s is ready (%s/%s)", probe.name, attempt, attempts)
                    return result
                logger.info("waiting for %s (%s/%s): %s", probe.name, attempt, attempts, result.reason)
                if attempt >= attempts:
                    raise ReadinessTimeout(result, attempt)
                await asyncio.sleep(interval)


def report(results: list[ProbeResult]) -> bool:
    """Log one line per result; True when no error-level check failed."""
    healthy = True
    for r in results:
        status = f" status={r.status}" if r.status is not None else ""
        if r.ok:
            success(logger, "%s ok%s (%s)", r.name, status, r.display_url)
            continue
        if r.level == "warning":
            logger.warning("%s failed%s: %s (%s)", r.name, status, r.reason, r.display_url)
        else:
            healthy = False
            logger.error("%s failed%s: %s (%s)", r.name, status, r.reason, r.display_url)
        if r.suggestion:
            logger.info("  hint: %s", r.suggestion)
    return healthy
