from __future__ import annotations

import argparse
import asyncio
import json
import logging
import re
import sys
from pathlib import Path
from typing import Any

from common.config import DEFAULTS, ConfigError, load_config, save_yaml
from common.log import setup_logging, success
from common.process import CommandError, CommandRunner
from ops import workflows
from ops.build import BuildError
from ops.detect import detect, log_report
from ops.health import HealthChecker, ReadinessTimeout
from ops.local import LocalServiceError
from ops.system import PrivilegeError
from ops.validate import report_checks, validate_configs
from ops.watchdog import Watchdog, install_signal_handlers
from render.gui import PatchError

logger = logging.getLogger("ops.main")

DEFAULT_CONFIG = "config/ops.yaml"
EXAMPLE_CONFIG = Path(__file__).resolve().parents[1] / "config" / "ops.example.yaml"


def write_initial_config(path: str, domain: str, email: str = "", example: Path = EXAMPLE_CONFIG) -> bool:
    """Copy the commented example config to ``path`` with domain and email filled in."""
    target = Path(path)
    if target.exists():
        logger.warning("%s already exists, leaving it untouched", target)
        return False
    if example.is_file():
        text = example.read_text(encoding="utf-8")
        text = re.sub(r"^domain:.*$", lambda _: f"domain: {json.dumps(domain)}", text, count=1, flags=re.M)
        text = re.sub(r"^email:.*$", lambda _: f"email: {json.dumps(email)}", text, count=1, flags=re.M)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    else:
        # Installed from a wheel: the example is not shipped, write the defaults instead.
        logger.warning("%s not found, writing defaults without comments", example)
        data: dict[str, Any] = {"domain": domain, "email": email}
        data.update({k: v for k, v in DEFAULTS.items() if k not in data})
        save_yaml(str(target), data)
    success(logger, "wrote %s; review it, then run 'torrust-ops deploy'", target)
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="torrust-ops", description="Torrust tracker/index/GUI deployment tool")
    parser.add_argument("--config", default=DEFAULT_CONFIG, help="path to ops yaml config")
    parser.add_argument("--log-level", default=None, help="debug, info, warning or error (overrides config)")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="log external commands (docker, systemctl, nginx, certbot, ufw) instead of running them",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="write a starting config file")
    p.add_argument("--domain", required=True)
    p.add_argument("--email", default="")

    sub.add_parser("render", help="generate secrets, TOML, compose and .env files")
    p = sub.add_parser("secrets", help="create missing secrets, or rotate all of them")
    p.add_argument("--rotate", action="store_true", help="replace every secret and recreate the services")

    sub.add_parser("deploy", help="full deployment with readiness checks")
    p = sub.add_parser("up", help="docker compose up")
    p.add_argument("services", nargs="*")
    sub.add_parser("down", help="docker compose down")
    p = sub.add_parser("restart", help="restart services and wait until ready")
    p.add_argument("services", nargs="*")
    sub.add_parser("status", help="container states")

    p = sub.add_parser("verify", help="probe service endpoints")
    p.add_argument("--public", action="store_true", help="also probe through the public domain")
    p.add_argument("--json", action="store_true", help="print results as JSON")
    sub.add_parser("validate", help="lint the generated tracker/index TOML")
    sub.add_parser("diagnose", help="detection, validation, probes and recent logs")
    p = sub.add_parser("detect", help="report which deployment layout is present")
    p.add_argument("--json", action="store_true", help="print the report as JSON")

    sub.add_parser("ssl", help="obtain a Let's Encrypt certificate and install renewal")
    p = sub.add_parser("native", help="install and start systemd units for a non-Docker layout")
    p.add_argument("--build", action="store_true", help="clone and compile the release builds first")
    p = sub.add_parser("build", help="clone missing checkouts and compile release builds")
    p.add_argument("services", nargs="*", help="tracker, index and/or gui (default: all)")

    p = sub.add_parser("patch-gui", help="add the tracker URLs block to the GUI upload page")
    p.add_argument("--source", default=None, help="patch this upload.vue instead of the running container")
    p.add_argument("--revert", action="store_true", help="remove a previously added block")

    sub.add_parser("start-local", help="run the release binaries in the background")
    sub.add_parser("stop-local", help="stop processes started by start-local")

    p = sub.add_parser("logs", help="show recent logs of a service")
    p.add_argument("service", choices=["tracker", "index", "gui", "nginx", "certbot"])
    p.add_argument("--tail", type=int, default=50)

    sub.add_parser("watchdog", help="restart services that keep failing health checks")
    return parser


async def _run_command(args: argparse.Namespace, cfg: dict[str, Any], runner: CommandRunner) -> bool:
    cmd = args.command
    if cmd == "render":
        workflows.generate_configs(cfg)
        return True
    if cmd == "secrets":
        if args.rotate:
            return await workflows.rotate_secrets(cfg, runner)
        workflows.generate_configs(cfg)
        return True
    if cmd == "deploy":
        return await workflows.deploy(cfg, runner)
    if cmd == "up":
        await workflows.compose_project(cfg, runner).up(*args.services)
        return True
    if cmd == "down":
        await workflows.compose_project(cfg, runner).down()
        return True
    if cmd == "restart":
        await workflows.restart(cfg, runner, args.services)
        return True
    if cmd == "status":
        rows = await workflows.status(cfg, runner)
        return all(str(r.get("State", "")).lower() == "running" for r in rows) and bool(rows)
    if cmd == "verify":
        if args.json:
            checker = HealthChecker(cfg, workflows.read_admin_token(cfg))
            results = await checker.run(public=args.public)
            print(json.dumps([r.as_dict() for r in results], indent=2))
            return all(r.ok or r.level == "warning" for r in results)
        return await workflows.verify(cfg, runner, public=args.public)
    if cmd == "validate":
        return report_checks(validate_configs(cfg))
    if cmd == "diagnose":
        return await workflows.diagnose(cfg, runner)
    if cmd == "detect":
        report = await detect(cfg, runner)
        if args.json:
            print(json.dumps(report.as_dict(), indent=2))
        else:
            log_report(report)
        return report.kind != "none"
    if cmd == "ssl":
        return await workflows.setup_ssl(cfg, runner)
    if cmd == "native":
        return await workflows.install_native(cfg, runner, build_first=args.build)
    if cmd == "build":
        await workflows.build(cfg, runner, args.services or None)
        return True
    if cmd == "patch-gui":
        # An already patched (or already clean) page is the desired state, not a failure.
        if not await workflows.patch_gui(cfg, runner, source=args.source, revert=args.revert):
            logger.info("upload page already in the requested state, nothing changed")
        return True
    if cmd == "start-local":
        await workflows.start_local(cfg, runner)
        return True
    if cmd == "stop-local":
        workflows.stop_local(cfg, runner)
        return True
    if cmd == "logs":
        compose = workflows.compose_project(cfg, runner)
        sys.stdout.write(await compose.logs(args.service, tail=args.tail))
        return True
    if cmd == "watchdog":
        watchdog = Watchdog(
            cfg,
            workflows.compose_project(cfg, runner),
            HealthChecker(cfg, workflows.read_admin_token(cfg)),
        )
        install_signal_handlers(watchdog)
        await watchdog.run()
        return True
    raise ValueError(f"unknown command {cmd!r}")


async def _amain(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    setup_logging(args.log_level or str(cfg.get("log_level", "info")))
    runner = CommandRunner(dry_run=args.dry_run)
    ok = await _run_command(args, cfg, runner)
    return 0 if ok else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level or "info")
    if args.command == "init":
        write_initial_config(args.config, args.domain, args.email)
        return 0
    try:
        return asyncio.run(_amain(args))
    except (
        BuildError,
        ConfigError,
        CommandError,
        PatchError,
        ReadinessTimeout,
        PrivilegeError,
        LocalServiceError,
    ) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
