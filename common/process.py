from __future__ import annotations

import asyncio
import logging
import os
import shlex
from dataclasses import dataclass, field
from typing import Any


@dataclass
class CommandResult:
    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


class CommandError(RuntimeError):
    def __init__(self, result: CommandResult):
        self.result = result
        detail = (result.stderr or result.stdout).strip().splitlines()
        tail = detail[-1] if detail else ""
        super().__init__(f"command failed rc={result.returncode}: {shlex.join(result.argv)} {tail}".rstrip())


@dataclass
class CommandRunner:
    """Runs external tools (docker, systemctl, nginx, ...) as subprocesses.

    In dry-run mode nothing is executed: every argv is appended to ``history``
    and answered with ``dry_run_responses`` when a prefix matches, otherwise
    with an empty successful result.
    """

    dry_run: bool = False
    timeout: float = 600.0
    history: list[list[str]] = field(default_factory=list)
    dry_run_responses: dict[tuple[str, ...], CommandResult] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.logger = logging.getLogger("common.process")

    def _dry_response(self, argv: list[str]) -> CommandResult:
        best: CommandResult | None = None
        best_len = -1
        for prefix, result in self.dry_run_responses.items():
            n = len(prefix)
            if n > best_len and tuple(argv[:n]) == prefix:
                best, best_len = result, n
        if best is None:
            return CommandResult(argv=list(argv), returncode=0)
        return CommandResult(argv=list(argv), returncode=best.returncode, stdout=best.stdout, stderr=best.stderr)

    async def run(
        self,
        *argv: str,
        check: bool = True,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        input_text: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        args = [str(a) for a in argv]
        self.history.append(args)
        if self.dry_run:
            self.logger.info("[dry-run] %s", shlex.join(args))
            result = self._dry_response(args)
        else:
            self.logger.debug("exec %s cwd=%s", shlex.join(args), cwd or ".")
            result = await self._exec(args, cwd=cwd, env=env, input_text=input_text, timeout=timeout)
        if check and not result.ok:
            raise CommandError(result)
        return result

    async def _exec(
        self,
        args: list[str],
        *,
        cwd: str | None,
        env: dict[str, str] | None,
        input_text: str | None,
        timeout: float | None,
    ) -> CommandResult:
        full_env: dict[str, str] | None = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=full_env,
            )
        except FileNotFoundError:
            return CommandResult(argv=args, returncode=127, stderr=f"{args[0]}: command not found\n")
        data = input_text.encode("utf-8") if input_text is not None else None
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(data), timeout=timeout or self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return CommandResult(argv=args, returncode=124, stderr=f"timed out after {timeout or self.timeout}s\n")
        return CommandResult(
            argv=args,
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    async def which(self, name: str) -> bool:
        result = await self.run("sh", "-c", f"command -v {shlex.quote(name)}", check=False)
        return result.ok

    def spawn_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if os.name != "nt":
            # Detach children so stopping the CLI does not take the services with it.
            kwargs["start_new_session"] = True
        return kwargs
