from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from common.process import CommandResult, CommandRunner


class ComposeProject:
    def __init__(self, runner: CommandRunner, project_root: str | Path, compose_file: str):
        self.runner = runner
        self.project_root = Path(project_root)
        self.compose_file = compose_file
        self.logger = logging.getLogger("ops.compose")

    def _argv(self, *args: str) -> list[str]:
        return ["docker", "compose", "-f", self.compose_file, *args]

    async def _compose(self, *args: str, check: bool = True) -> CommandResult:
        return await self.runner.run(*self._argv(*args), check=check, cwd=str(self.project_root))

    async def up(self, *services: str, detach: bool = True, force_recreate: bool = False) -> None:
        args = ["up"]
        if detach:
            args.append("-d")
        if force_recreate:
            args.append("--force-recreate")
        self.logger.info("starting %s", ", ".join(services) if services else "all services")
        await self._compose(*args, *services)

    async def down(self, remove_orphans: bool = True) -> None:
        self.logger.info("stopping all services")
        args = ["down"]
        if remove_orphans:
            args.append("--remove-orphans")
        await self._compose(*args, check=False)

    async def stop(self, *services: str) -> None:
        await self._compose("stop", *services)

    async def restart(self, *services: str) -> None:
        self.logger.info("restarting %s", ", ".join(services) if services else "all services")
        await self._compose("restart", *services)

    async def pull(self, *services: str) -> None:
        await self._compose("pull", *services)

    async def ps(self) -> list[dict[str, Any]]:
        result = await self._compose("ps", "--all", "--format", "json", check=False)
        if not result.ok:
            return []
        return parse_ps_output(result.stdout)

    async def service_state(self, service: str) -> str:
        for row in await self.ps():
            if row.get("Service") == service:
                return str(row.get("State", "unknown")).lower()
        return "missing"

    async def logs(self, service: str, tail: int = 50) -> str:
        result = await self._compose("logs", "--no-color", f"--tail={tail}", service, check=False)
        return result.output

    async def run(self, service: str, *args: str, rm: bool = True) -> CommandResult:
        argv = ["run"]
        if rm:
            argv.append("--rm")
        return await self._compose(*argv, service, *args)

    async def exec(self, container: str, *argv: str, check: bool = True) -> CommandResult:
        return await self.runner.run("docker", "exec", container, *argv, check=check)

    async def cp(self, src: str, dst: str) -> None:
        await self.runner.run("docker", "cp", src, dst)

    async def running_containers(self, name_filter: str) -> list[str]:
        result = await self.runner.run(
            "docker", "ps", "--filter", f"name={name_filter}", "--format", "{{.Names}}", check=False
        )
        if not result.ok:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def parse_ps_output(text: str) -> list[dict[str, Any]]:
    """Parse ``docker compose ps --format json``.

    Compose v2.21+ prints one JSON object per line, older releases print one
    JSON array.
    """
    text = text.strip()
    if not text:
        return []
    if text.startswith("["):
        data = json.loads(text)
        return [row for row in data if isinstance(row, dict)]
    rows: list[dict[str, Any]] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            row = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(row, dict):
            rows.append(row)
    return rows
