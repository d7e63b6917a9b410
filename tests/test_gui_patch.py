from __future__ import annotations

import json
from pathlib import Path

import pytest

from common.process import CommandResult, CommandRunner
from ops.compose import ComposeProject
from ops.gui_patch import ASSET_DIR, ContainerGuiPatcher, patch_file
from render.gui import (
    BEGIN_MARKER,
    END_MARKER,
    PatchError,
    apply_snippet,
    is_patched,
    render_injection_assets,
    render_tracker_urls_snippet,
    strip_snippet,
)

UPLOAD_VUE = """<template>
  <div class="upload">
    <form @submit.prevent="submit">
      <UploadFile sub-title="Only .torrent files allowed." accept=".torrent" @on-change="setFile" />
      <input name="agree-to-terms" type="checkbox">
    </form>
  </div>
</template>
"""

URLS = ["udp://tracker.example.com:6969/announce", "http://tracker.example.com:7070/announce"]


def test_snippet_lists_every_url():
    snippet = render_tracker_urls_snippet(URLS)
    assert snippet.strip().startswith(BEGIN_MARKER)
    assert snippet.strip().endswith(END_MARKER)
    assert "Tracker URLs" in snippet
    assert "UDP:" in snippet and "HTTP:" in snippet
    for url in URLS:
        assert url in snippet


def test_apply_inserts_after_upload_file():
    patched = apply_snippet(UPLOAD_VUE, render_tracker_urls_snippet(URLS))
    lines = patched.splitlines()
    anchor = next(i for i, line in enumerate(lines) if "<UploadFile" in line)
    assert lines[anchor + 1] == ""
    assert BEGIN_MARKER in lines[anchor + 2]
    assert patched.index(END_MARKER) < patched.index("agree-to-terms")


def test_strip_restores_original():
    patched = apply_snippet(UPLOAD_VUE, render_tracker_urls_snippet(URLS))
    assert is_patched(patched)
    assert strip_snippet(patched) == UPLOAD_VUE


def test_apply_without_anchor():
    with pytest.raises(PatchError):
        apply_snippet("<template><div /></template>", "x")


def test_injection_assets_embed_urls():
    assets = render_injection_assets(URLS)
    assert ".tracker-urls-info" in assets["tracker-urls.css"]
    assert json.dumps(URLS) in assets["tracker-urls.js"]
    assert "__URLS__" not in assets["tracker-urls.js"]


def test_patch_file_is_idempotent(tmp_path):
    page = tmp_path / "upload.vue"
    page.write_text(UPLOAD_VUE, encoding="utf-8")
    assert patch_file(page, URLS) is True
    once = page.read_text(encoding="utf-8")
    assert patch_file(page, URLS) is False
    assert page.read_text(encoding="utf-8") == once
    assert once.count(BEGIN_MARKER) == 1
    backups = list(tmp_path.glob("upload.vue.backup.*"))
    assert len(backups) == 1
    assert backups[0].read_text(encoding="utf-8") == UPLOAD_VUE


def test_patch_file_revert(tmp_path):
    page = tmp_path / "upload.vue"
    page.write_text(UPLOAD_VUE, encoding="utf-8")
    patch_file(page, URLS)
    assert patch_file(page, URLS, revert=True) is True
    assert page.read_text(encoding="utf-8") == UPLOAD_VUE
    assert patch_file(page, URLS, revert=True) is False


def test_patch_file_missing(tmp_path):
    with pytest.raises(PatchError, match="not found"):
        patch_file(tmp_path / "upload.vue", URLS)


def _patcher(cfg, responses):
    runner = CommandRunner(dry_run=True, dry_run_responses=responses)
    compose = ComposeProject(runner, cfg["project_root"], cfg["compose_file"])
    return ContainerGuiPatcher(cfg, compose), runner


@pytest.mark.asyncio
async def test_container_patch_falls_back_to_assets(cfg):
    patcher, runner = _patcher(
        cfg,
        {
            ("docker", "ps", "--filter", "name=torrust-gui"): CommandResult([], 0, stdout="torrust-gui\n"),
            ("docker", "exec", "torrust-gui", "find"): CommandResult([], 0, stdout=""),
        },
    )
    assert await patcher.patch() is True
    copies = [argv for argv in runner.history if argv[:2] == ["docker", "cp"]]
    assert [argv[3] for argv in copies] == [
        f"torrust-gui:{ASSET_DIR}/tracker-urls.css",
        f"torrust-gui:{ASSET_DIR}/tracker-urls.js",
    ]
    assert runner.history[-1][-2:] == ["restart", "gui"]


@pytest.mark.asyncio
async def test_container_lookup_tries_alternative_names(cfg):
    patcher, runner = _patcher(
        cfg,
        {
            ("docker", "ps", "--filter", "name=torrust-gui"): CommandResult([], 0, stdout=""),
            ("docker", "ps", "--filter", "name=torrust_index_gui"): CommandResult([], 0, stdout="torrust_index_gui\n"),
        },
    )
    assert await patcher.find_container() == "torrust_index_gui"


@pytest.mark.asyncio
async def test_container_not_found(cfg):
    patcher, _ = _patcher(cfg, {("docker", "ps"): CommandResult([], 0, stdout="")})
    with pytest.raises(PatchError, match="no running GUI container"):
        await patcher.find_container()


class FakeContainerFiles(CommandRunner):
    """Dry-run runner that keeps the files ``docker cp`` moves in and out of containers."""

    def __post_init__(self) -> None:
        super().__post_init__()
        self.files: dict[str, str] = {}

    async def run(self, *argv: str, **kwargs) -> CommandResult:
        result = await super().run(*argv, **kwargs)
        args = [str(a) for a in argv]
        if args[:2] == ["docker", "cp"]:
            src, dst = args[2], args[3]
            if src in self.files:
                Path(dst).write_text(self.files[src], encoding="utf-8")
            else:
                self.files[dst] = Path(src).read_text(encoding="utf-8")
        elif args[:2] == ["docker", "exec"] and args[3] == "cp":
            container = args[2]
            self.files[f"{container}:{args[5]}"] = self.files[f"{container}:{args[4]}"]
        return result


PAGE = "/app/pages/upload.vue"


def _source_patcher(cfg):
    runner = FakeContainerFiles(
        dry_run=True,
        dry_run_responses={
            ("docker", "ps", "--filter", "name=torrust-gui"): CommandResult([], 0, stdout="torrust-gui\n"),
            ("docker", "exec", "torrust-gui", "find"): CommandResult([], 0, stdout=PAGE + "\n"),
        },
    )
    runner.files[f"torrust-gui:{PAGE}"] = UPLOAD_VUE
    compose = ComposeProject(runner, cfg["project_root"], cfg["compose_file"])
    return ContainerGuiPatcher(cfg, compose), runner


def _position(history, predicate):
    return next(i for i, argv in enumerate(history) if predicate(argv))


@pytest.mark.asyncio
async def test_container_source_patch_round_trip(cfg):
    patcher, runner = _source_patcher(cfg)
    remote = f"torrust-gui:{PAGE}"

    assert await patcher.patch() is True
    patched = runner.files[remote]
    assert is_patched(patched)
    assert "udp://tracker.example.com:6969/announce" in patched
    assert runner.files[f"{remote}.backup"] == UPLOAD_VUE

    history = runner.history
    copy_out = _position(history, lambda a: a[:3] == ["docker", "cp", remote])
    backup = _position(history, lambda a: a == ["docker", "exec", "torrust-gui", "cp", PAGE, f"{PAGE}.backup"])
    copy_in = _position(history, lambda a: a[:2] == ["docker", "cp"] and a[3] == remote)
    restart = _position(history, lambda a: a[-2:] == ["restart", "gui"])
    assert copy_out < backup < copy_in < restart == len(history) - 1

    # already patched: nothing copied back, no restart
    calls = len(runner.history)
    assert await patcher.patch() is False
    assert not any(a[-2:] == ["restart", "gui"] for a in runner.history[calls:])

    assert await patcher.patch(revert=True) is True
    assert runner.files[remote] == UPLOAD_VUE
    assert runner.files[f"{remote}.backup"] == patched
    assert runner.history[-1][-2:] == ["restart", "gui"]
