from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from common.config import project_path
from common.log import success
from common.process import CommandRunner
from render.compose import public_api_base

logger = logging.getLogger("ops.build")

SOURCE_DIRS = {
    "tracker": "torrust-tracker",
    "index": "torrust-index",
    "gui": "torrust-index-gui",
}

# Tools each service needs on PATH before anything is cloned or compiled.
TOOLCHAINS = {
    "tracker": ("rustc", "cargo"),
    "index": ("rustc", "cargo"),
    "gui": ("node", "npm"),
}


class BuildError(RuntimeError):
    pass


class SuiteBuilder:
    """Clones and compiles the tracker, index and GUI checkouts under project_root."""

    def __init__(self, cfg: dict[str, Any], runner: CommandRunner):
        self.cfg = cfg
        self.runner = runner
        build = cfg["build"]
        self.repos: dict[str, str] = {k: str(v) for k, v in build["repos"].items()}
        self.branch = str(build["branch"])
        self.timeout = float(build["timeout"])
        self.root = project_path(cfg)

    def source_dir(self, service: str) -> Path:
        return self.root / SOURCE_DIRS[service]

    def artifact(self, service: str) -> Path:
        src = self.source_dir(service)
        if service == "gui":
            return src / ".output" / "server" / "index.mjs"
        return src / "target" / "release" / SOURCE_DIRS[service]

    async def check_prerequisites(self, services: list[str]) -> None:
        needed: list[str] = []
        if any(not self.source_dir(s).is_dir() for s in services):
            needed.append("git")
        for service in services:
            needed += [tool for tool in TOOLCHAINS[service] if tool not in needed]
        missing = [tool for tool in needed if not await self.runner.which(tool)]
        if missing:
            raise BuildError(f"missing build tools: {', '.join(missing)}")
        success(logger, "build tools present: %s", ", ".join(needed))

    async def checkout(self, service: str) -> Path:
        src = self.source_dir(service)
        if src.is_dir():
            logger.info("using existing checkout %s", src)
            return src
        if service not in self.repos:
            raise BuildError(f"{src} does not exist and build.repos has no URL for {service}")
        logger.info("cloning %s (%s) into %s", self.repos[service], self.branch, src)
        self.root.mkdir(parents=True, exist_ok=True)
        await self.runner.run(
            "git",
            "clone",
            "--depth",
            "1",
            "--branch",
            self.branch,
            self.repos[service],
            str(src),
            cwd=str(self.root),
            timeout=self.timeout,
        )
        return src

    async def compile(self, service: str) -> Path:
        src = self.source_dir(service)
        if service == "gui":
            env = {"NUXT_PUBLIC_API_BASE": public_api_base(self.cfg)}
            await self.runner.run("npm", "install", cwd=str(src), timeout=self.timeout)
            await self.runner.run("npm", "run", "build", cwd=str(src), env=env, timeout=self.timeout)
        else:
            await self.runner.run("cargo", "build", "--release", cwd=str(src), timeout=self.timeout)
        artifact = self.artifact(service)
        if not self.runner.dry_run and not artifact.is_file():
            raise BuildError(f"{service} build finished but {artifact} is missing")
        success(logger, "built %s: %s", service, artifact)
        return artifact

    async def build(self, services: list[str] | None = None) -> dict[str, Path]:
        selected = list(services or SOURCE_DIRS)
        unknown = [s for s in selected if s not in SOURCE_DIRS]
        if unknown:
            raise BuildError(f"unknown services: {', '.join(unknown)}")
        await self.check_prerequisites(selected)
        built: dict[str, Path] = {}
        for service in selected:
            await self.checkout(service)
            built[service] = await self.compile(service)
        return built
