from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from common.config import project_path
from common.log import success
from common.tokens import WELL_KNOWN_DEFAULTS
from render.index import INDEX_DB_URL, tracker_api_url
from render.tracker import TRACKER_DB_PATH

logger = logging.getLogger("ops.validate")

TRACKER_SECTIONS = ("metadata", "logging", "core", "http_trackers", "http_api", "health_check_api")
INDEX_SECTIONS = ("metadata", "logging", "net", "tracker", "database", "auth", "tracker_statistics_importer")


def database_files(cfg: dict[str, Any]) -> dict[str, Path]:
    """Host-side paths of the sqlite files the tracker and index open at startup."""
    if cfg["layout"] == "native":
        return {
            "tracker": Path(TRACKER_DB_PATH),
            "index": Path(INDEX_DB_URL.removeprefix("sqlite://")),
        }
    # Compose mounts ./storage/<svc> at /var/lib/torrust/<svc>.
    return {
        "tracker": project_path(cfg, "storage", "tracker", "database", "sqlite3.db"),
        "index": project_path(cfg, "storage", "index", "database", "sqlite3.db"),
    }


def _load_toml(path: Path) -> tuple[dict[str, Any] | None, str]:
    if not path.is_file():
        return None, f"{path} does not exist"
    try:
        with path.open("rb") as f:
            return tomllib.load(f), ""
    except tomllib.TOMLDecodeError as exc:
        return None, f"{path} is not valid TOML: {exc}"


def _dig(data: dict[str, Any], *keys: str) -> Any:
    cur: Any = data
    for key in keys:
        if not isinstance(cur, dict) or key not in cur:
            return None
        cur = cur[key]
    return cur


def validate_configs(
    cfg: dict[str, Any],
    tracker_path: str | Path | None = None,
    index_path: str | Path | None = None,
) -> list[dict[str, Any]]:
    ports = cfg["ports"]
    tracker_file = Path(tracker_path) if tracker_path else project_path(cfg, "config", "tracker.toml")
    index_file = Path(index_path) if index_path else project_path(cfg, "config", "index.toml")
    checks: list[dict[str, Any]] = []

    def add_check(name: str, ok: bool, *, reason: str = "", suggestion: str = "", level: str = "error") -> None:
        checks.append(
            {
                "name": name,
                "ok": ok,
                "level": "info" if ok else level,
                "reason": "" if ok else reason,
                "suggestion": "" if ok else suggestion,
            }
        )

    regen = "Run 'torrust-ops render' to regenerate the configuration."

    tracker, err = _load_toml(tracker_file)
    add_check("tracker_config", tracker is not None, reason=err, suggestion=regen)
    index, err = _load_toml(index_file)
    add_check("index_config", index is not None, reason=err, suggestion=regen)

    if tracker is not None:
        missing = [s for s in TRACKER_SECTIONS if s not in tracker]
        add_check(
            "tracker_sections",
            not missing,
            reason=f"missing sections: {', '.join(missing)}",
            suggestion=regen,
        )
        api_bind = _dig(tracker, "http_api", "bind_address")
        want = f"0.0.0.0:{int(ports['tracker_api'])}"
        add_check(
            "tracker_api_bind",
            api_bind == want,
            reason=f"http_api.bind_address is {api_bind!r}, expected {want!r}",
            suggestion="Keep ports.tracker_api and tracker.toml in sync.",
        )
        http_binds = [t.get("bind_address") for t in tracker.get("http_trackers", []) if isinstance(t, dict)]
        want = f"0.0.0.0:{int(ports['http_tracker'])}"
        add_check(
            "http_tracker_bind",
            want in http_binds,
            reason=f"no [[http_trackers]] bound to {want}",
            suggestion="Keep ports.http_tracker and tracker.toml in sync.",
        )
        if cfg["tracker"].get("udp_enabled", True):
            udp_binds = [t.get("bind_address") for t in tracker.get("udp_trackers", []) if isinstance(t, dict)]
            want = f"0.0.0.0:{int(ports['udp_tracker'])}"
            add_check(
                "udp_tracker_bind",
                want in udp_binds,
                reason=f"no [[udp_trackers]] bound to {want}",
                suggestion="Keep ports.udp_tracker and tracker.toml in sync.",
                level="warning",
            )
        admin = _dig(tracker, "http_api", "access_tokens", "admin")
        add_check(
            "tracker_admin_token",
            bool(admin) and admin not in WELL_KNOWN_DEFAULTS,
            reason="admin token is missing" if not admin else "admin token is a well-known sample value",
            suggestion="Run 'torrust-ops secrets --rotate' to generate a fresh token.",
        )

    if index is not None:
        missing = [s for s in INDEX_SECTIONS if s not in index]
        add_check(
            "index_sections",
            not missing,
            reason=f"missing sections: {', '.join(missing)}",
            suggestion=regen,
        )
        bind = _dig(index, "net", "bind_address")
        want = f"0.0.0.0:{int(ports['index_api'])}"
        add_check(
            "index_bind",
            bind == want,
            reason=f"net.bind_address is {bind!r}, expected {want!r}",
            suggestion="Keep ports.index_api and index.toml in sync.",
        )
        api_url = _dig(index, "tracker", "api_url")
        want = tracker_api_url(cfg)
        add_check(
            "index_tracker_api_url",
            api_url == want,
            reason=f"tracker.api_url is {api_url!r}, expected {want!r}",
            suggestion="The index must reach the tracker API by compose service name (docker) or loopback (native).",
        )
        for key in ("secret_key", "user_claim_token_pepper"):
            value = _dig(index, "auth", key)
            add_check(
                f"index_auth_{key}",
                bool(value) and value not in WELL_KNOWN_DEFAULTS,
                reason=f"auth.{key} is missing" if not value else f"auth.{key} is a well-known sample value",
                suggestion="Run 'torrust-ops secrets --rotate'; the index refuses to start without it.",
            )
        token = _dig(index, "tracker", "token")
        if tracker is not None:
            admin = _dig(tracker, "http_api", "access_tokens", "admin")
            add_check(
                "token_match",
                bool(token) and token == admin,
                reason="index tracker.token differs from tracker http_api admin token",
                suggestion="Regenerate both files from the same secrets with 'torrust-ops render'.",
            )

    for service, path in database_files(cfg).items():
        add_check(
            f"{service}_database",
            path.is_file(),
            reason=f"{path} does not exist",
            suggestion="Run 'torrust-ops render' to create the storage directories and database files.",
            level="warning",
        )
    return checks


def report_checks(checks: list[dict[str, Any]]) -> bool:
    healthy = True
    for item in checks:
        if item["ok"]:
            success(logger, "%s ok", item["name"])
            continue
        if item["level"] == "warning":
            logger.warning("%s: %s", item["name"], item["reason"])
        else:
            healthy = False
            logger.error("%s: %s", item["name"], item["reason"])
        if item.get("suggestion"):
            logger.info("  hint: %s", item["suggestion"])
    return healthy
