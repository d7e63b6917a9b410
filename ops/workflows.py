from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from certs.generate_cert import generate_placeholder_cert
from common.config import project_path
from common.log import success
from common.process import CommandRunner
from common.tokens import ADMIN_TOKEN_FILE, Secrets, load_or_create_secrets, write_env_file
from ops.build import SuiteBuilder
from ops.compose import ComposeProject
from ops.detect import detect, log_report
from ops.gui_patch import ContainerGuiPatcher, patch_file
from ops.health import HealthChecker, report
from ops.local import LocalServices
from ops.system import Certbot, Firewall, Nginx, Systemd, require_root
from ops.validate import database_files, report_checks, validate_configs
from render.compose import build_compose, write_compose
from render.index import announce_urls, render_index_toml
from render.nginx import render_container_conf, render_site
from render.systemd import build_units, render_renew_cron
from render.tracker import render_tracker_toml

logger = logging.getLogger("ops.workflows")

SERVICES = ("tracker", "index", "gui")


def compose_project(cfg: dict[str, Any], runner: CommandRunner) -> ComposeProject:
    return ComposeProject(runner, project_path(cfg), str(cfg["compose_file"]))


def read_admin_token(cfg: dict[str, Any]) -> str:
    path = project_path(cfg, "secrets", ADMIN_TOKEN_FILE)
    if not path.is_file():
        return ""
    return path.read_text(encoding="utf-8").strip()


def _write(path: Path, text: str, mode: int | None = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    if mode is not None:
        os.chmod(path, mode)
    logger.info("wrote %s", path)


def generate_configs(cfg: dict[str, Any], rotate: bool = False) -> Secrets:
    """Write secrets, tracker/index TOML, the compose file, .env and storage under project_root."""
    creds = load_or_create_secrets(project_path(cfg, "secrets"), rotate=rotate)
    _write(project_path(cfg, "config", "tracker.toml"), render_tracker_toml(cfg, creds))
    _write(project_path(cfg, "config", "index.toml"), render_index_toml(cfg, creds))

    container_nginx = cfg["nginx"]["mode"] == "container"
    compose = build_compose(
        cfg,
        creds,
        with_nginx=container_nginx,
        with_certbot=container_nginx and bool(cfg["ssl"]["enabled"]),
    )
    compose_path = project_path(cfg, str(cfg["compose_file"]))
    write_compose(str(compose_path), compose)
    logger.info("wrote %s", compose_path)
    if container_nginx:
        _write(project_path(cfg, "config", "nginx.conf"), render_container_conf(cfg))

    write_env_file(project_path(cfg, ".env"), creds, str(cfg["domain"]))

    if cfg["layout"] == "docker":
        for db in database_files(cfg).values():
            db.parent.mkdir(parents=True, exist_ok=True)
            if not db.exists():
                db.touch()
                logger.info("created empty database %s", db)

    success(logger, "configuration generated for %s", cfg["domain"])
    for key, value in creds.masked().items():
        logger.info("  %s: %s", key, value)
    return creds


async def _wait_for(checker: HealthChecker, runner: CommandRunner, service: str) -> None:
    if runner.dry_run:
        logger.info("[dry-run] skip readiness wait for %s", service)
        return
    await checker.wait_until_ready(checker.service_probe(service))


async def _check_and_report(checker: HealthChecker, runner: CommandRunner, public: bool = False) -> bool:
    if runner.dry_run:
        logger.info("[dry-run] skip endpoint checks")
        return True
    return report(await checker.run(public=public))


def _ensure_certificate(cfg: dict[str, Any], certbot: Certbot, dry_run: bool) -> None:
    domain = str(cfg["domain"])
    if certbot.certificate_exists(domain):
        return
    if dry_run:
        logger.info("[dry-run] generate placeholder certificate in %s", certbot.live_dir(domain))
        return
    generate_placeholder_cert(domain, certbot.live_dir(domain), include_www=bool(cfg["include_www"]))
    logger.warning("installed a self-signed placeholder certificate for %s; run 'torrust-ops ssl'", domain)


def _ensure_webroot(cfg: dict[str, Any], dry_run: bool) -> None:
    if not dry_run:
        Path(str(cfg["ssl"]["webroot"])).mkdir(parents=True, exist_ok=True)


async def install_nginx_site(cfg: dict[str, Any], runner: CommandRunner) -> None:
    nginx = Nginx(runner, cfg)
    if cfg["ssl"]["enabled"]:
        _ensure_webroot(cfg, runner.dry_run)
        _ensure_certificate(cfg, Certbot(runner, str(cfg["ssl"]["letsencrypt_dir"])), runner.dry_run)
    nginx.install_site(render_site(cfg))
    await nginx.test()
    await nginx.reload()
    success(logger, "nginx site %s installed and reloaded", nginx.site_path)


async def deploy(cfg: dict[str, Any], runner: CommandRunner) -> bool:
    if cfg["layout"] == "native":
        return await install_native(cfg, runner)
    mode = cfg["nginx"]["mode"]
    if not runner.dry_run and (mode == "host" or cfg["firewall"]["enabled"]):
        require_root()

    creds = generate_configs(cfg)
    compose = compose_project(cfg, runner)
    checker = HealthChecker(cfg, creds.tracker_admin_token)

    await compose.down()
    for service in SERVICES:
        await compose.up(service)
        await _wait_for(checker, runner, service)

    if mode == "host":
        await install_nginx_site(cfg, runner)
    elif mode == "container":
        if cfg["ssl"]["enabled"]:
            _ensure_webroot(cfg, runner.dry_run)
            _ensure_certificate(cfg, Certbot(runner, str(cfg["ssl"]["letsencrypt_dir"])), runner.dry_run)
        await compose.up("nginx")

    if cfg["firewall"]["enabled"]:
        await Firewall(runner).apply(cfg)

    healthy = await _check_and_report(checker, runner)
    if healthy:
        success(logger, "deployment finished: https://%s", cfg["domain"])
        for url in announce_urls(cfg):
            logger.info("  announce: %s", url)
    else:
        logger.error("deployment finished with failing checks; run 'torrust-ops diagnose'")
    return healthy


async def rotate_secrets(cfg: dict[str, Any], runner: CommandRunner) -> bool:
    creds = generate_configs(cfg, rotate=True)
    checker = HealthChecker(cfg, creds.tracker_admin_token)
    if cfg["layout"] == "native":
        systemd = Systemd(runner, str(cfg["native"]["unit_dir"]))
        for service in SERVICES[:2]:
            await systemd.restart(f"torrust-{service}")
    else:
        # Containers read the override variables only at creation time.
        await compose_project(cfg, runner).up(*SERVICES[:2], force_recreate=True)
    for service in SERVICES[:2]:
        await _wait_for(checker, runner, service)
    success(logger, "secrets rotated")
    return await _check_and_report(checker, runner)


async def setup_ssl(cfg: dict[str, Any], runner: CommandRunner) -> bool:
    if not runner.dry_run:
        require_root()
    ssl = cfg["ssl"]
    domain = str(cfg["domain"])
    certbot = Certbot(runner, str(ssl["letsencrypt_dir"]))
    _ensure_webroot(cfg, runner.dry_run)
    mode = cfg["nginx"]["mode"]
    if mode == "host":
        await install_nginx_site(cfg, runner)
        await certbot.issue(domain, str(cfg["email"]), str(ssl["webroot"]), include_www=bool(cfg["include_www"]))
        nginx = Nginx(runner, cfg)
        await nginx.test()
        await nginx.reload()
        cron = render_renew_cron(cfg)
    elif mode == "container":
        compose = compose_project(cfg, runner)
        _ensure_certificate(cfg, certbot, runner.dry_run)
        await compose.up("nginx")
        certbot.remove_placeholder(domain)
        await compose.run("certbot")
        await compose.restart("nginx")
        cron = render_renew_cron(cfg, compose_path=str(project_path(cfg, str(cfg["compose_file"]))))
    else:
        logger.error("nginx.mode is 'none'; nothing can answer the ACME challenge")
        return False

    cron_path = Path(str(ssl["renew_cron"]))
    if runner.dry_run:
        logger.info("[dry-run] write %s", cron_path)
    else:
        _write(cron_path, cron, mode=0o644)
    success(logger, "certificate installed for %s", domain)

    checker = HealthChecker(cfg)
    probes = [p for p in checker.public_probes() if p.name in ("https_redirect", "https_root")]
    if runner.dry_run:
        return True
    return report(await checker.check(probes))


async def build(cfg: dict[str, Any], runner: CommandRunner, services: list[str] | None = None) -> dict[str, Path]:
    built = await SuiteBuilder(cfg, runner).build(services)
    success(logger, "release builds ready: %s", ", ".join(built))
    return built


async def install_native(cfg: dict[str, Any], runner: CommandRunner, build_first: bool = False) -> bool:
    if not runner.dry_run:
        require_root()
    if build_first:
        await build(cfg, runner)
    creds = generate_configs(cfg)
    native = cfg["native"]
    systemd = Systemd(runner, str(native["unit_dir"]))
    for name, text in build_units(cfg).items():
        systemd.install_unit(name, text)
    user = str(native["service_user"])
    for db in database_files(cfg).values():
        if runner.dry_run:
            logger.info("[dry-run] create %s", db)
            continue
        db.parent.mkdir(parents=True, exist_ok=True)
        db.touch(exist_ok=True)
        await runner.run("chown", "-R", f"{user}:{user}", str(db.parent))
    await systemd.daemon_reload()

    checker = HealthChecker(cfg, creds.tracker_admin_token)
    for service in SERVICES:
        unit = f"torrust-{service}"
        await systemd.enable(unit)
        await systemd.start(unit)
        await _wait_for(checker, runner, service)
    if cfg["nginx"]["mode"] == "host":
        await install_nginx_site(cfg, runner)
    if cfg["firewall"]["enabled"]:
        await Firewall(runner).apply(cfg)
    return await _check_and_report(checker, runner)


async def verify(cfg: dict[str, Any], runner: CommandRunner, public: bool = False) -> bool:
    token = read_admin_token(cfg)
    if not token:
        logger.warning("no tracker admin token in %s; skipping authenticated checks", project_path(cfg, "secrets"))
    checker = HealthChecker(cfg, token)
    results = await checker.run(public=public)
    healthy = report(results)
    passed = sum(1 for r in results if r.ok)
    if healthy:
        success(logger, "%s/%s checks passed", passed, len(results))
    else:
        logger.error("%s/%s checks passed", passed, len(results))
    return healthy


async def restart(cfg: dict[str, Any], runner: CommandRunner, services: list[str] | None = None) -> None:
    targets = list(services or SERVICES)
    checker = HealthChecker(cfg, read_admin_token(cfg))
    if cfg["layout"] == "native":
        systemd = Systemd(runner, str(cfg["native"]["unit_dir"]))
        for service in targets:
            await systemd.restart(f"torrust-{service}")
    else:
        await compose_project(cfg, runner).restart(*targets)
    for service in targets:
        if service in SERVICES:
            await _wait_for(checker, runner, service)


async def status(cfg: dict[str, Any], runner: CommandRunner) -> list[dict[str, Any]]:
    rows = await compose_project(cfg, runner).ps()
    if not rows:
        logger.warning("no containers for %s", cfg["compose_file"])
    for row in rows:
        state = str(row.get("State", "unknown")).lower()
        line = "%s %s %s"
        args = (row.get("Service", "?"), state, row.get("Status", ""))
        if state == "running":
            success(logger, line, *args)
        else:
            logger.warning(line, *args)
    return rows


async def diagnose(cfg: dict[str, Any], runner: CommandRunner) -> bool:
    logger.info("== deployment detection ==")
    log_report(await detect(cfg, runner))

    logger.info("== configuration ==")
    config_ok = report_checks(validate_configs(cfg))

    logger.info("== endpoints ==")
    results = await HealthChecker(cfg, read_admin_token(cfg)).run()
    endpoints_ok = report(results)

    if cfg["layout"] == "docker":
        logger.info("== containers ==")
        compose = compose_project(cfg, runner)
        rows = await status(cfg, runner)
        states = {str(r.get("Service")): str(r.get("State", "")).lower() for r in rows}
        failing = {r.name.split("_")[0] for r in results if not r.ok}
        for service in SERVICES:
            if states.get(service) != "running" or service in failing:
                logger.info("== last log lines of %s ==", service)
                for line in (await compose.logs(service, tail=20)).splitlines():
                    logger.info("  %s", line)
    return config_ok and endpoints_ok


async def patch_gui(
    cfg: dict[str, Any],
    runner: CommandRunner,
    source: str | None = None,
    revert: bool = False,
) -> bool:
    if source:
        return patch_file(source, announce_urls(cfg), revert=revert)
    return await ContainerGuiPatcher(cfg, compose_project(cfg, runner)).patch(revert=revert)


async def start_local(cfg: dict[str, Any], runner: CommandRunner) -> dict[str, int]:
    if cfg["layout"] != "native":
        logger.warning("layout is %r; the index will look for the tracker at http://tracker", cfg["layout"])
    local = LocalServices(cfg, dry_run=runner.dry_run)
    checker = HealthChecker(cfg, read_admin_token(cfg))
    for service in SERVICES:
        if local.start(service) is not None:
            await _wait_for(checker, runner, service)
    running = local.running()
    success(logger, "local services running: %s", ", ".join(f"{k}={v}" for k, v in running.items()) or "none")
    return running


def stop_local(cfg: dict[str, Any], runner: CommandRunner) -> list[str]:
    stopped = LocalServices(cfg, dry_run=runner.dry_run).stop_all()
    success(logger, "stopped: %s", ", ".join(stopped) if stopped else "nothing was running")
    return stopped
