from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Any

from common.process import CommandError
from ops.compose import ComposeProject
from ops.health import HealthChecker


class Watchdog:
    """Restarts a compose service after N consecutive failed health probes."""

    def __init__(self, cfg: dict[str, Any], compose: ComposeProject, checker: HealthChecker):
        self.cfg = cfg
        self.compose = compose
        self.checker = checker
        wd = cfg["watchdog"]
        self.interval = float(wd["interval"])
        self.failure_threshold = int(wd["failure_threshold"])
        self.services = [str(s) for s in wd["services"]]
        self.failures: dict[str, int] = {s: 0 for s in self.services}
        self.restarts: dict[str, int] = {s: 0 for s in self.services}
        self.logger = logging.getLogger("ops.watchdog")
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    async def tick(self) -> dict[str, bool]:
        probes = [self.checker.service_probe(s) for s in self.services]
        results = await self.checker.check(probes)
        status: dict[str, bool] = {}
        for service, result in zip(self.services, results):
            status[service] = result.ok
            if result.ok:
                if self.failures[service]:
                    self.logger.info("%s recovered after %s failed checks", service, self.failures[service])
                self.failures[service] = 0
                continue
            self.failures[service] += 1
            self.logger.warning(
                "%s check failed (%s/%s): %s",
                service,
                self.failures[service],
                self.failure_threshold,
                result.reason,
            )
            if self.failures[service] >= self.failure_threshold:
                await self._restart(service)
        return status

    async def _restart(self, service: str) -> None:
        self.logger.error("restarting %s after %s consecutive failures", service, self.failures[service])
        try:
            await self.compose.restart(service)
        except CommandError as exc:
            self.logger.error("restart of %s failed: %s", service, exc)
            return
        self.restarts[service] += 1
        self.failures[service] = 0

    async def run(self) -> None:
        self.logger.info(
            "watching %s every %ss (threshold %s)",
            ", ".join(self.services),
            self.interval,
            self.failure_threshold,
        )
        while not self._stop.is_set():
            await self.tick()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
        self.logger.info("watchdog stopped")


def install_signal_handlers(watchdog: Watchdog) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, watchdog.stop)
        except NotImplementedError:
            signal.signal(sig, lambda *_: watchdog.stop())
