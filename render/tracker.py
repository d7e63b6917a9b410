from __future__ import annotations

from typing import Any

import tomli_w

from common.tokens import Secrets

TRACKER_DB_PATH = "/var/lib/torrust/tracker/database/sqlite3.db"
TRACKER_CONFIG_CONTAINER_PATH = "/etc/torrust/tracker.toml"


def build_tracker_config(cfg: dict[str, Any], creds: Secrets) -> dict[str, Any]:
    ports = cfg["ports"]
    tracker = cfg["tracker"]
    data: dict[str, Any] = {
        "metadata": {
            "app": "torrust-tracker",
            "purpose": "configuration",
            "schema_version": "2.0.0",
        },
        "logging": {"threshold": str(tracker["log_threshold"])},
        "core": {
            "inactive_peer_cleanup_interval": int(tracker["inactive_peer_cleanup_interval"]),
            "listed": bool(tracker["listed"]),
            "private": bool(tracker["private"]),
            "database": {
                "driver": "sqlite3",
                "path": TRACKER_DB_PATH,
            },
            "tracker_policy": {
                "max_peer_timeout": int(tracker["max_peer_timeout"]),
                "persistent_torrent_completed_stat": bool(tracker["persistent_torrent_completed_stat"]),
                "remove_peerless_torrents": bool(tracker["remove_peerless_torrents"]),
            },
        },
    }
    if tracker.get("udp_enabled", True):
        data["udp_trackers"] = [
            {
                "bind_address": f"0.0.0.0:{int(ports['udp_tracker'])}",
                "tracker_usage_statistics": True,
            }
        ]
    data["http_trackers"] = [
        {
            "bind_address": f"0.0.0.0:{int(ports['http_tracker'])}",
            "tracker_usage_statistics": True,
        }
    ]
    data["http_api"] = {
        "bind_address": f"0.0.0.0:{int(ports['tracker_api'])}",
        "access_tokens": {"admin": creds.tracker_admin_token},
    }
    data["health_check_api"] = {"bind_address": f"127.0.0.1:{int(ports['health_check_api'])}"}
    return data


def render_tracker_toml(cfg: dict[str, Any], creds: Secrets) -> str:
    return tomli_w.dumps(build_tracker_config(cfg, creds))
