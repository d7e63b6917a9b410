from __future__ import annotations

import logging
import os
import shutil
import socket
from pathlib import Path
from typing import Any

from certs.generate_cert import is_placeholder
from common.process import CommandRunner


class PrivilegeError(PermissionError):
    pass


def require_root() -> None:
    if hasattr(os, "geteuid") and os.geteuid() != 0:
        raise PrivilegeError("this command must be run as root (use sudo)")


def port_in_use(port: int, host: str = "0.0.0.0", udp: bool = False) -> bool:
    kind = socket.SOCK_DGRAM if udp else socket.SOCK_STREAM
    with socket.socket(socket.AF_INET, kind) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return True
    return False


class Systemd:
    def __init__(self, runner: CommandRunner, unit_dir: str = "/etc/systemd/system"):
        self.runner = runner
        self.unit_dir = Path(unit_dir)
        self.logger = logging.getLogger("ops.systemd")

    async def is_active(self, unit: str) -> bool:
        result = await self.runner.run("systemctl", "is-active", "--quiet", unit, check=False)
        return result.ok

    async def start(self, unit: str) -> None:
        await self.runner.run("systemctl", "start", unit)

    async def stop(self, unit: str) -> None:
        await self.runner.run("systemctl", "stop", unit)

    async def restart(self, unit: str) -> None:
        await self.runner.run("systemctl", "restart", unit)

    async def reload(self, unit: str) -> None:
        await self.runner.run("systemctl", "reload", unit)

    async def enable(self, unit: str) -> None:
        await self.runner.run("systemctl", "enable", unit)

    async def disable(self, unit: str) -> None:
        await self.runner.run("systemctl", "disable", unit)

    async def daemon_reload(self) -> None:
        await self.runner.run("systemctl", "daemon-reload")

    async def list_units(self, pattern: str) -> list[str]:
        result = await self.runner.run(
            "systemctl", "list-units", "--type=service", "--all", "--no-legend", "--plain", pattern, check=False
        )
        if not result.ok:
            return []
        return [line.split()[0] for line in result.stdout.splitlines() if line.strip()]

    def install_unit(self, name: str, text: str) -> Path:
        path = self.unit_dir / name
        if self.runner.dry_run:
            self.logger.info("[dry-run] write %s", path)
            return path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        self.logger.info("installed unit %s", path)
        return path


class Nginx:
    def __init__(self, runner: CommandRunner, cfg: dict[str, Any]):
        self.runner = runner
        nginx = cfg["nginx"]
        self.site_name = str(nginx["site_name"])
        self.sites_available = Path(str(nginx["sites_available"]))
        self.sites_enabled = Path(str(nginx["sites_enabled"]))
        self.remove_default_site = bool(nginx.get("remove_default_site", True))
        self.logger = logging.getLogger("ops.nginx")

    @property
    def site_path(self) -> Path:
        return self.sites_available / self.site_name

    def install_site(self, text: str) -> Path:
        target = self.site_path
        link = self.sites_enabled / self.site_name
        if self.runner.dry_run:
            self.logger.info("[dry-run] write %s and link %s", target, link)
            return target
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists():
            shutil.copy2(target, target.with_name(target.name + ".bak"))
        target.write_text(text, encoding="utf-8")
        link.parent.mkdir(parents=True, exist_ok=True)
        if link.is_symlink() or link.exists():
            link.unlink()
        link.symlink_to(target)
        if self.remove_default_site:
            default = self.sites_enabled / "default"
            if default.is_symlink() or default.exists():
                default.unlink()
                self.logger.info("disabled default nginx site")
        self.logger.info("installed nginx site %s", target)
        return target

    async def test(self) -> None:
        await self.runner.run("nginx", "-t")

    async def reload(self) -> None:
        await self.runner.run("systemctl", "reload", "nginx")

    async def restart(self) -> None:
        await self.runner.run("systemctl", "restart", "nginx")


class Certbot:
    def __init__(self, runner: CommandRunner, letsencrypt_dir: str = "/etc/letsencrypt"):
        self.runner = runner
        self.letsencrypt_dir = Path(letsencrypt_dir)
        self.logger = logging.getLogger("ops.certbot")

    def live_dir(self, domain: str) -> Path:
        return self.letsencrypt_dir / "live" / domain

    def certificate_exists(self, domain: str) -> bool:
        return (self.live_dir(domain) / "fullchain.pem").exists()

    def has_real_certificate(self, domain: str) -> bool:
        fullchain = self.live_dir(domain) / "fullchain.pem"
        return fullchain.exists() and not is_placeholder(fullchain)

    def remove_placeholder(self, domain: str) -> None:
        live = self.live_dir(domain)
        if (live / "fullchain.pem").exists() and is_placeholder(live / "fullchain.pem"):
            if self.runner.dry_run:
                self.logger.info("[dry-run] remove placeholder %s", live)
                return
            shutil.rmtree(live)
            self.logger.info("removed placeholder certificate %s", live)

    async def issue(self, domain: str, email: str, webroot: str, include_www: bool = True) -> None:
        self.remove_placeholder(domain)
        argv = ["certbot", "certonly", "--webroot", "-w", webroot, "-d", domain]
        if include_www:
            argv += ["-d", f"www.{domain}"]
        if email:
            argv += ["--email", email]
        else:
            argv.append("--register-unsafely-without-email")
        argv += ["--agree-tos", "--non-interactive", "--keep-until-expiring"]
        self.logger.info("requesting certificate for %s", domain)
        await self.runner.run(*argv)


class Firewall:
    def __init__(self, runner: CommandRunner):
        self.runner = runner
        self.logger = logging.getLogger("ops.firewall")

    def rules(self, cfg: dict[str, Any]) -> list[str]:
        ports = cfg["ports"]
        rules = ["ssh", "80/tcp", "443/tcp", f"{int(ports['http_tracker'])}/tcp"]
        if cfg["tracker"].get("udp_enabled", True):
            rules.append(f"{int(ports['udp_tracker'])}/udp")
        return rules

    async def apply(self, cfg: dict[str, Any]) -> None:
        # Allow ssh before enabling so the current session survives.
        for rule in self.rules(cfg):
            await self.runner.run("ufw", "allow", rule)
        await self.runner.run("ufw", "--force", "enable")
        self.logger.info("firewall enabled with rules: %s", ", ".join(self.rules(cfg)))
