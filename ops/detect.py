from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from common.config import project_path
from common.log import success
from common.process import CommandRunner
from ops.local import LocalServices
from ops.system import Systemd, port_in_use

logger = logging.getLogger("ops.detect")

COMPOSE_FILES = ("docker-compose.yml", "docker-compose-https.yml")
SOURCE_DIRS = ("torrust-tracker", "torrust-index", "torrust-index-gui")
BINARIES = (
    "torrust-tracker/target/release/torrust-tracker",
    "torrust-index/target/release/torrust-index",
)
CONFIG_FILES = ("config/tracker.toml", "config/index.toml", ".env")
DATABASE_FILES = (
    "storage/tracker/database/sqlite3.db",
    "storage/index/database/sqlite3.db",
)


@dataclass
class DeploymentReport:
    kind: str = "none"
    compose_files: list[str] = field(default_factory=list)
    containers: list[str] = field(default_factory=list)
    systemd_units: list[str] = field(default_factory=list)
    local_pids: dict[str, int] = field(default_factory=dict)
    source_dirs: list[str] = field(default_factory=list)
    binaries: list[str] = field(default_factory=list)
    config_files: list[str] = field(default_factory=list)
    database_files: list[str] = field(default_factory=list)
    ports: dict[str, bool] = field(default_factory=dict)
    docker_installed: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "docker_installed": self.docker_installed,
            "compose_files": self.compose_files,
            "containers": self.containers,
            "systemd_units": self.systemd_units,
            "local_pids": self.local_pids,
            "source_dirs": self.source_dirs,
            "binaries": self.binaries,
            "config_files": self.config_files,
            "database_files": self.database_files,
            "ports": self.ports,
        }


def classify(report: DeploymentReport) -> str:
    """Running services decide the layout; installed artifacts are the fallback."""
    running = []
    if report.containers:
        running.append("docker")
    if report.systemd_units:
        running.append("systemd")
    if report.local_pids:
        running.append("local")
    if len(running) > 1:
        return "mixed"
    if running:
        return running[0]
    if report.compose_files and report.binaries:
        return "mixed"
    if report.compose_files:
        return "docker"
    if report.binaries:
        return "local"
    return "none"


async def detect(cfg: dict[str, Any], runner: CommandRunner) -> DeploymentReport:
    report = DeploymentReport()
    root = project_path(cfg)

    report.compose_files = [name for name in COMPOSE_FILES if (root / name).is_file()]
    report.source_dirs = [name for name in SOURCE_DIRS if (root / name).is_dir()]
    report.binaries = [name for name in BINARIES if (root / name).is_file()]
    report.config_files = [name for name in CONFIG_FILES if (root / name).is_file()]
    report.database_files = [name for name in DATABASE_FILES if (root / name).is_file()]

    report.docker_installed = await runner.which("docker")
    if report.docker_installed:
        result = await runner.run(
            "docker", "ps", "--filter", "name=torrust", "--format", "{{.Names}}", check=False
        )
        if result.ok:
            report.containers = [line.strip() for line in result.stdout.splitlines() if line.strip()]

    systemd = Systemd(runner, str(cfg["native"]["unit_dir"]))
    report.systemd_units = await systemd.list_units("torrust*")

    report.local_pids = LocalServices(cfg, dry_run=True).running()

    for name, port in cfg["ports"].items():
        udp = name == "udp_tracker"
        report.ports[f"{name}:{int(port)}"] = port_in_use(int(port), udp=udp)

    report.kind = classify(report)
    return report


def log_report(report: DeploymentReport) -> None:
    def found(label: str, items: list[str] | dict[str, int]) -> None:
        if items:
            success(logger, "%s: %s", label, ", ".join(str(i) for i in items))
        else:
            logger.warning("no %s found", label)

    found("compose files", report.compose_files)
    if not report.docker_installed:
        logger.warning("docker is not installed")
    found("torrust containers", report.containers)
    found("systemd units", report.systemd_units)
    found("local processes", [f"{k}={v}" for k, v in report.local_pids.items()])
    found("source directories", report.source_dirs)
    found("compiled binaries", report.binaries)
    found("config files", report.config_files)
    found("database files", report.database_files)
    busy = [key for key, used in report.ports.items() if used]
    logger.info("ports in use: %s", ", ".join(busy) if busy else "none")
    if report.kind == "none":
        logger.warning("deployment type: none detected")
    else:
        success(logger, "deployment type: %s", report.kind)
