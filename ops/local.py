from __future__ import annotations

import logging
import os
import signal
import subprocess
from pathlib import Path
from typing import Any

from common.config import project_path
from common.log import success


class LocalServiceError(RuntimeError):
    pass


SERVICES = ("tracker", "index", "gui")


def read_pid(path: Path) -> int | None:
    try:
        raw = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    try:
        pid = int(raw)
    except ValueError:
        return None
    return pid if pid > 0 else None


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user.
        return True
    return True


class LocalServices:
    """Runs the release binaries directly from the source checkouts under project_root."""

    def __init__(self, cfg: dict[str, Any], dry_run: bool = False):
        self.cfg = cfg
        self.dry_run = dry_run
        self.root = project_path(cfg)
        self.logger = logging.getLogger("ops.local")

    def pid_file(self, service: str) -> Path:
        return self.root / f".{service}.pid"

    def log_file(self, service: str) -> Path:
        return self.root / "logs" / f"{service}.log"

    def command(self, service: str) -> tuple[list[str], Path, dict[str, str]] | None:
        """argv, working directory and extra environment, or None when the service is not built."""
        if service == "tracker":
            workdir = self.root / "torrust-tracker"
            binary = workdir / "target" / "release" / "torrust-tracker"
            env = {"TORRUST_TRACKER_CONFIG_TOML_PATH": str(project_path(self.cfg, "config", "tracker.toml"))}
        elif service == "index":
            workdir = self.root / "torrust-index"
            binary = workdir / "target" / "release" / "torrust-index"
            env = {
                "TORRUST_INDEX_CONFIG_TOML_PATH": str(project_path(self.cfg, "config", "index.toml")),
                "TORRUST_INDEX_API_CORS_PERMISSIVE": "1",
            }
        elif service == "gui":
            workdir = self.root / "torrust-index-gui"
            if not (workdir / "dist").is_dir():
                return None
            return ["npm", "run", "preview"], workdir, {"NITRO_PORT": str(int(self.cfg["ports"]["gui"]))}
        else:
            raise ValueError(f"unknown service {service!r}")
        if not binary.is_file():
            return None
        return [str(binary)], workdir, env

    def running(self) -> dict[str, int]:
        out: dict[str, int] = {}
        for service in SERVICES:
            pid = read_pid(self.pid_file(service))
            if pid is not None and pid_alive(pid):
                out[service] = pid
        return out

    def start(self, service: str) -> int | None:
        pid_path = self.pid_file(service)
        pid = read_pid(pid_path)
        if pid is not None and pid_alive(pid):
            self.logger.warning("%s already running (pid %s)", service, pid)
            return pid
        launch = self.command(service)
        if launch is None:
            if service == "gui":
                self.logger.info("GUI is not built, skipping")
                return None
            raise LocalServiceError(f"{service} binary not found under {self.root}; run 'torrust-ops build' first")
        argv, workdir, env = launch
        if self.dry_run:
            self.logger.info("[dry-run] start %s: %s (cwd=%s)", service, " ".join(argv), workdir)
            return None
        full_env = dict(os.environ)
        full_env.update(env)
        log_path = self.log_file(service)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("ab") as log:
            proc = subprocess.Popen(
                argv,
                cwd=str(workdir),
                env=full_env,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        pid_path.write_text(f"{proc.pid}\n", encoding="utf-8")
        success(self.logger, "started %s (pid %s, log %s)", service, proc.pid, log_path)
        return proc.pid

    def stop(self, service: str) -> bool:
        pid_path = self.pid_file(service)
        pid = read_pid(pid_path)
        if pid is None:
            if pid_path.exists() and not self.dry_run:
                pid_path.unlink()
            return False
        stopped = False
        if pid_alive(pid):
            if self.dry_run:
                self.logger.info("[dry-run] kill %s (%s)", pid, service)
                return True
            try:
                os.kill(pid, signal.SIGTERM)
                stopped = True
                success(self.logger, "stopped %s (pid %s)", service, pid)
            except ProcessLookupError:
                pass
        else:
            self.logger.info("%s pid %s is stale", service, pid)
        if not self.dry_run:
            pid_path.unlink(missing_ok=True)
        return stopped

    def stop_all(self) -> list[str]:
        return [service for service in SERVICES if self.stop(service)]
