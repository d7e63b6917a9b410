from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import aiohttp

from common.tokens import mask


@dataclass
class ProbeResult:
    name: str
    url: str
    ok: bool
    status: int | None = None
    reason: str = ""
    latency_ms: int | None = None
    body: str = ""
    level: str = "error"
    suggestion: str = ""

    @property
    def display_url(self) -> str:
        return display_url(self.url)

    def as_dict(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            "name": self.name,
            "ok": self.ok,
            "level": "info" if self.ok else self.level,
            "url": display_url(self.url),
            "status": self.status,
            "reason": self.reason,
            "suggestion": self.suggestion,
        }
        if self.latency_ms is not None:
            item["latency_ms"] = self.latency_ms
        return item


SECRET_QUERY_KEYS = frozenset({"token"})


def display_url(url: str) -> str:
    """Return ``url`` with secret query values masked, safe for logs and reports."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [(k, mask(v) if k in SECRET_QUERY_KEYS else v) for k, v in parse_qsl(parts.query, keep_blank_values=True)]
    return urlunsplit(parts._replace(query=urlencode(query, safe=".")))


Judge = Callable[[int, str], tuple[bool, str]]


def contains_any(*needles: str, statuses: tuple[int, ...] = (), ignore_case: bool = True) -> Judge:
    """Body substring match, like ``curl -s | grep -q "a\\|b"``."""

    def judge(status: int, body: str) -> tuple[bool, str]:
        if statuses and status not in statuses:
            return False, f"unexpected status {status}"
        haystack = body.lower() if ignore_case else body
        if any((n.lower() if ignore_case else n) in haystack for n in needles):
            return True, ""
        return False, f"response does not contain any of {', '.join(needles)}"

    return judge


def status_in(*expected: int) -> Judge:
    def judge(status: int, _: str) -> tuple[bool, str]:
        if status in expected:
            return True, ""
        return False, f"status {status} not in {', '.join(str(s) for s in expected)}"

    return judge


def any_response() -> Judge:
    def judge(status: int, _: str) -> tuple[bool, str]:
        return True, ""

    return judge


@dataclass
class Probe:
    name: str
    url: str
    judge: Judge
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    level: str = "error"
    suggestion: str = ""


class HttpProber:
    def __init__(self, timeout: float = 5.0, verify_tls: bool = True):
        self.timeout = timeout
        self.verify_tls = verify_tls
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "HttpProber":
        connector = aiohttp.TCPConnector(ssl=None if self.verify_tls else False)
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            connector=connector,
        )
        return self

    async def __aexit__(self, *exc: object) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def check(self, probe: Probe) -> ProbeResult:
        if self._session is None:
            raise RuntimeError("HttpProber used outside of 'async with'")
        started = time.monotonic()
        try:
            async with self._session.request(
                probe.method,
                probe.url,
                headers=probe.headers,
                allow_redirects=False,
            ) as resp:
                body = "" if probe.method == "HEAD" else await resp.text(errors="replace")
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            detail = str(exc).replace(probe.url, display_url(probe.url))
            return ProbeResult(
                name=probe.name,
                url=probe.url,
                ok=False,
                reason=f"request failed: {exc.__class__.__name__} {detail}".strip(),
                level=probe.level,
                suggestion=probe.suggestion,
            )
        latency_ms = int((time.monotonic() - started) * 1000)
        ok, reason = probe.judge(status, body)
        return ProbeResult(
            name=probe.name,
            url=probe.url,
            ok=ok,
            status=status,
            reason=reason,
            latency_ms=latency_ms,
            body=body[:200],
            level=probe.level,
            suggestion=probe.suggestion,
        )

    async def check_all(self, probes: list[Probe]) -> list[ProbeResult]:
        return list(await asyncio.gather(*(self.check(p) for p in probes)))


async def probe_tcp(host: str, port: int, timeout: float = 3.0) -> tuple[bool, str]:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError) as exc:
        return False, str(exc) or exc.__class__.__name__
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True, ""
