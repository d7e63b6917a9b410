from __future__ import annotations

from pathlib import Path
from typing import Any

UNIT_TEMPLATE = """[Unit]
Description={description}
After=network.target

[Service]
Type=simple
User={user}
Group={user}
WorkingDirectory={workdir}
ExecStart={exec_start}
{environment}Restart=always
RestartSec=5

[Install]
WantedBy=multi-user.target
"""


def _unit(description: str, user: str, workdir: Path, exec_start: str, env: dict[str, str]) -> str:
    environment = "".join(f"Environment={k}={v}\n" for k, v in env.items())
    return UNIT_TEMPLATE.format(
        description=description,
        user=user,
        workdir=workdir,
        exec_start=exec_start,
        environment=environment,
    )


def build_units(cfg: dict[str, Any]) -> dict[str, str]:
    """Unit files for running the suite from release builds under project_root."""
    root = Path(str(cfg["project_root"]))
    native = cfg["native"]
    user = str(native["service_user"])
    tracker_dir = root / "torrust-tracker"
    index_dir = root / "torrust-index"
    gui_dir = root / "torrust-index-gui"
    return {
        "torrust-tracker.service": _unit(
            "Torrust Tracker",
            user,
            tracker_dir,
            str(tracker_dir / "target" / "release" / "torrust-tracker"),
            {"TORRUST_TRACKER_CONFIG_TOML_PATH": str(root / "config" / "tracker.toml")},
        ),
        "torrust-index.service": _unit(
            "Torrust Index",
            user,
            index_dir,
            str(index_dir / "target" / "release" / "torrust-index"),
            {
                "TORRUST_INDEX_CONFIG_TOML_PATH": str(root / "config" / "index.toml"),
                "TORRUST_INDEX_API_CORS_PERMISSIVE": "1",
            },
        ),
        "torrust-gui.service": _unit(
            "Torrust Index GUI",
            user,
            gui_dir,
            f"{native['node_bin']} {gui_dir / '.output' / 'server' / 'index.mjs'}",
            {
                "NITRO_HOST": "0.0.0.0",
                "NITRO_PORT": str(int(cfg["ports"]["gui"])),
            },
        ),
    }


def render_renew_cron(cfg: dict[str, Any], compose_path: str | None = None) -> str:
    if compose_path:
        cmd = (
            f"docker compose -f {compose_path} run --rm certbot renew --quiet"
            f" && docker compose -f {compose_path} restart nginx"
        )
    else:
        cmd = "certbot renew --quiet --deploy-hook 'systemctl reload nginx'"
    return f"0 12 * * * root {cmd}\n"
