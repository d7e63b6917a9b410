from __future__ import annotations

from typing import Any

import tomli_w

from common.tokens import Secrets

INDEX_DB_URL = "sqlite:///var/lib/torrust/index/database/sqlite3.db"
INDEX_CONFIG_CONTAINER_PATH = "/etc/torrust/index.toml"


def announce_urls(cfg: dict[str, Any]) -> list[str]:
    """Public announce URLs, UDP first, as embedded in uploaded torrents."""
    domain = cfg["domain"]
    ports = cfg["ports"]
    urls: list[str] = []
    if cfg["tracker"].get("udp_enabled", True):
        urls.append(f"udp://{domain}:{int(ports['udp_tracker'])}/announce")
    urls.append(f"http://{domain}:{int(ports['http_tracker'])}/announce")
    return urls


def tracker_api_url(cfg: dict[str, Any]) -> str:
    port = int(cfg["ports"]["tracker_api"])
    if cfg["layout"] == "native":
        return f"http://127.0.0.1:{port}"
    # Index reaches the tracker over the compose network.
    return f"http://tracker:{port}"


def build_index_config(cfg: dict[str, Any], creds: Secrets) -> dict[str, Any]:
    ports = cfg["ports"]
    index = cfg["index"]
    data: dict[str, Any] = {
        "metadata": {
            "app": "torrust-index",
            "purpose": "configuration",
            "schema_version": "2.0.0",
        },
        "logging": {"threshold": str(index["log_threshold"])},
        "net": {
            "bind_address": f"0.0.0.0:{int(ports['index_api'])}",
            "public_address": f"https://{cfg['domain']}:{int(ports['index_api'])}",
        },
        "tracker": {
            "api_url": tracker_api_url(cfg),
            "token": creds.tracker_admin_token,
            "url": announce_urls(cfg)[0],
            "private": bool(cfg["tracker"]["private"]),
        },
        "database": {"connect_url": INDEX_DB_URL},
        "auth": {
            "secret_key": creds.auth_secret_key,
            "user_claim_token_pepper": creds.user_claim_token_pepper,
        },
        "tracker_statistics_importer": {
            "port": int(ports["stats_importer"]),
            "torrent_info_update_interval": int(index["torrent_info_update_interval"]),
        },
    }
    if index.get("registration"):
        data["registration"] = {"email": {}}
    data["unstable"] = {}
    return data


def render_index_toml(cfg: dict[str, Any], creds: Secrets) -> str:
    return tomli_w.dumps(build_index_config(cfg, creds))
