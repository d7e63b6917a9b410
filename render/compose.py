from __future__ import annotations

from typing import Any

from common.config import save_yaml
from common.tokens import Secrets
from render.index import INDEX_CONFIG_CONTAINER_PATH
from render.tracker import TRACKER_CONFIG_CONTAINER_PATH

NETWORK = "torrust"

CONTAINER_NAMES = {
    "tracker": "torrust-tracker",
    "index": "torrust-index",
    "gui": "torrust-gui",
    "nginx": "torrust-nginx",
    "certbot": "torrust-certbot",
}


def _service(image: str, name: str, **extra: Any) -> dict[str, Any]:
    svc: dict[str, Any] = {"image": image, "container_name": CONTAINER_NAMES[name]}
    svc.update(extra)
    svc.setdefault("restart", "unless-stopped")
    svc["networks"] = [NETWORK]
    return svc


def build_compose(
    cfg: dict[str, Any],
    creds: Secrets,
    with_nginx: bool = False,
    with_certbot: bool = False,
) -> dict[str, Any]:
    images = cfg["images"]
    ports = cfg["ports"]
    domain = cfg["domain"]
    tracker_ports = [
        f"{int(ports['tracker_api'])}:{int(ports['tracker_api'])}",
        f"{int(ports['http_tracker'])}:{int(ports['http_tracker'])}",
    ]
    if cfg["tracker"].get("udp_enabled", True):
        tracker_ports.insert(1, f"{int(ports['udp_tracker'])}:{int(ports['udp_tracker'])}/udp")

    services: dict[str, Any] = {
        "tracker": _service(
            images["tracker"],
            "tracker",
            ports=tracker_ports,
            volumes=[
                "./storage/tracker:/var/lib/torrust/tracker",
                f"./config/tracker.toml:{TRACKER_CONFIG_CONTAINER_PATH}:ro",
            ],
            environment=[f"TORRUST_TRACKER_CONFIG_TOML_PATH={TRACKER_CONFIG_CONTAINER_PATH}"],
        ),
        "index": _service(
            images["index"],
            "index",
            ports=[
                f"{int(ports['index_api'])}:{int(ports['index_api'])}",
                f"{int(ports['stats_importer'])}:{int(ports['stats_importer'])}",
            ],
            volumes=[
                "./storage/index:/var/lib/torrust/index",
                f"./config/index.toml:{INDEX_CONFIG_CONTAINER_PATH}:ro",
            ],
            environment=[
                f"TORRUST_INDEX_CONFIG_TOML_PATH={INDEX_CONFIG_CONTAINER_PATH}",
                "TORRUST_INDEX_API_CORS_PERMISSIVE=1",
                f"TORRUST_INDEX_CONFIG_OVERRIDE_TRACKER__TOKEN={creds.tracker_admin_token}",
                f"TORRUST_INDEX_CONFIG_OVERRIDE_AUTH__SECRET_KEY={creds.auth_secret_key}",
                f"TORRUST_INDEX_CONFIG_OVERRIDE_AUTH__USER_CLAIM_TOKEN_PEPPER={creds.user_claim_token_pepper}",
            ],
            depends_on=["tracker"],
        ),
        "gui": _service(
            images["gui"],
            "gui",
            ports=[f"{int(ports['gui'])}:{int(ports['gui'])}"],
            environment=[
                f"NUXT_PUBLIC_API_BASE={public_api_base(cfg)}",
                "NITRO_HOST=0.0.0.0",
                f"NITRO_PORT={int(ports['gui'])}",
            ],
            depends_on=["index"],
        ),
    }

    if with_nginx:
        ssl = cfg["ssl"]
        nginx = cfg["nginx"]
        volumes = ["./config/nginx.conf:/etc/nginx/nginx.conf:ro"]
        if ssl["enabled"]:
            volumes.append(f"{ssl['letsencrypt_dir']}:/etc/letsencrypt:ro")
            volumes.append(f"{ssl['webroot']}:/var/www/certbot:ro")
        services["nginx"] = _service(
            images["nginx"],
            "nginx",
            ports=[
                f"{int(nginx['http_port'])}:80",
                f"{int(nginx['https_port'])}:443",
            ],
            volumes=volumes,
            depends_on=["gui", "index", "tracker"],
        )

    if with_certbot:
        ssl = cfg["ssl"]
        domains = ["-d", domain]
        if cfg.get("include_www", True):
            domains += ["-d", f"www.{domain}"]
        command = ["certonly", "--webroot", "-w", "/var/www/certbot", *domains]
        if cfg.get("email"):
            command += ["--email", str(cfg["email"]), "--agree-tos"]
        else:
            command += ["--register-unsafely-without-email", "--agree-tos"]
        command.append("--non-interactive")
        services["certbot"] = _service(
            images["certbot"],
            "certbot",
            volumes=[
                f"{ssl['letsencrypt_dir']}:/etc/letsencrypt",
                f"{ssl['webroot']}:/var/www/certbot",
            ],
            command=" ".join(command),
            restart="no",
        )

    return {
        "services": services,
        "networks": {NETWORK: {"driver": "bridge"}},
    }


def public_api_base(cfg: dict[str, Any]) -> str:
    scheme = "https" if cfg["ssl"]["enabled"] else "http"
    if cfg["nginx"]["mode"] == "none":
        # No reverse proxy: the browser talks to the index port directly.
        return f"{scheme}://{cfg['domain']}:{int(cfg['ports']['index_api'])}/v1"
    return f"{scheme}://{cfg['domain']}/api/v1"


def write_compose(path: str, data: dict[str, Any]) -> None:
    save_yaml(path, data)
