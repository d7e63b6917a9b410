from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml


class ConfigError(ValueError):
    pass


# Services with an HTTP readiness check; the watchdog can only supervise these.
WATCHED_SERVICES = ("tracker", "index", "gui")


DEFAULTS: dict[str, Any] = {
    "project_root": "/opt/torrust",
    "log_level": "info",
    "email": "",
    "include_www": True,
    "compose_file": "docker-compose-https.yml",
    "layout": "docker",
    "images": {
        "tracker": "torrust/tracker:develop",
        "index": "torrust/index:develop",
        "gui": "torrust/index-gui:develop",
        "nginx": "nginx:alpine",
        "certbot": "certbot/certbot",
    },
    "ports": {
        "tracker_api": 1212,
        "http_tracker": 7070,
        "udp_tracker": 6969,
        "health_check_api": 1313,
        "index_api": 3001,
        "stats_importer": 3002,
        "gui": 3000,
    },
    "tracker": {
        "log_threshold": "info",
        "private": False,
        "listed": False,
        "inactive_peer_cleanup_interval": 120,
        "max_peer_timeout": 60,
        "persistent_torrent_completed_stat": True,
        "remove_peerless_torrents": True,
        "udp_enabled": True,
    },
    "index": {
        "log_threshold": "info",
        "torrent_info_update_interval": 3600,
        "registration": False,
    },
    "nginx": {
        "mode": "host",
        "site_name": "torrust",
        "sites_available": "/etc/nginx/sites-available",
        "sites_enabled": "/etc/nginx/sites-enabled",
        "remove_default_site": True,
        "cors": True,
        "http_port": 80,
        "https_port": 443,
        "inject_tracker_urls": False,
    },
    "ssl": {
        "enabled": True,
        "letsencrypt_dir": "/etc/letsencrypt",
        "webroot": "/var/www/certbot",
        "renew_cron": "/etc/cron.d/certbot-renew",
    },
    "firewall": {
        "enabled": False,
    },
    "native": {
        "service_user": "torrust",
        "unit_dir": "/etc/systemd/system",
        "node_bin": "/usr/bin/node",
    },
    "health": {
        "timeout": 5.0,
        "verify_tls": True,
        "ready_attempts": 30,
        "ready_interval": 2.0,
    },
    "watchdog": {
        "interval": 60,
        "failure_threshold": 3,
        "services": ["tracker", "index", "gui"],
    },
    "build": {
        "branch": "develop",
        "timeout": 3600,
        "repos": {
            "tracker": "https://github.com/torrust/torrust-tracker.git",
            "index": "https://github.com/torrust/torrust-index.git",
            "gui": "https://github.com/torrust/torrust-index-gui.git",
        },
    },
    "gui_patch": {
        "search_root": "/app",
        "source_file": "torrust-index-gui/pages/upload.vue",
        "container_names": ["torrust-gui", "torrust_index_gui", "torrust-index-gui", "gui"],
    },
}


def load_yaml(path: str) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"config file does not exist: {path}")
    with p.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")
    return data


def save_yaml(path: str, data: dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, allow_unicode=True, sort_keys=False)


def require_keys(cfg: dict[str, Any], keys: list[str], where: str = "config") -> None:
    missing = [k for k in keys if k not in cfg]
    if missing:
        raise ConfigError(f"{where} missing required keys: {', '.join(missing)}")


def merge_defaults(defaults: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_defaults(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(cfg: dict[str, Any]) -> None:
    domain = str(cfg.get("domain", "")).strip()
    if not domain or "/" in domain or " " in domain:
        raise ConfigError(f"invalid domain: {cfg.get('domain')!r}")
    for name, raw in cfg["ports"].items():
        try:
            port = int(raw)
        except (TypeError, ValueError):
            raise ConfigError(f"ports.{name} is not an integer: {raw!r}") from None
        if not 1 <= port <= 65535:
            raise ConfigError(f"ports.{name} out of range: {port}")
    if cfg["layout"] not in ("docker", "native"):
        raise ConfigError(f"layout must be 'docker' or 'native', got {cfg['layout']!r}")
    if cfg["nginx"]["mode"] not in ("host", "container", "none"):
        raise ConfigError(f"nginx.mode must be 'host', 'container' or 'none', got {cfg['nginx']['mode']!r}")
    if int(cfg["health"]["ready_attempts"]) < 1:
        raise ConfigError(f"health.ready_attempts must be at least 1, got {cfg['health']['ready_attempts']!r}")
    if int(cfg["watchdog"]["failure_threshold"]) < 1:
        threshold = cfg["watchdog"]["failure_threshold"]
        raise ConfigError(f"watchdog.failure_threshold must be at least 1, got {threshold!r}")
    unknown = [s for s in cfg["watchdog"]["services"] if s not in WATCHED_SERVICES]
    if unknown:
        raise ConfigError(
            f"watchdog.services has no readiness check for: {', '.join(map(str, unknown))}"
            f" (choose from {', '.join(WATCHED_SERVICES)})"
        )


def load_config(path: str) -> dict[str, Any]:
    raw = load_yaml(path)
    require_keys(raw, ["domain"], where="ops config")
    cfg = merge_defaults(DEFAULTS, raw)
    validate_config(cfg)
    cfg["config_path"] = str(Path(path).expanduser().resolve())
    return cfg


def project_path(cfg: dict[str, Any], *parts: str) -> Path:
    root = Path(str(cfg["project_root"])).expanduser()
    candidate = Path(*parts) if parts else Path()
    if candidate.is_absolute():
        return candidate
    return root / candidate
