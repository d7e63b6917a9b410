from __future__ import annotations

import datetime
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any

from common.log import success
from ops.compose import ComposeProject
from render.gui import (
    PatchError,
    apply_snippet,
    is_patched,
    render_injection_assets,
    render_tracker_urls_snippet,
    strip_snippet,
)
from render.index import announce_urls

logger = logging.getLogger("ops.gui_patch")

ASSET_DIR = "/app/.output/public/_nuxt"


def _backup(path: Path) -> Path:
    stamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    backup = path.with_name(f"{path.name}.backup.{stamp}")
    shutil.copy2(path, backup)
    return backup


def patch_file(path: str | Path, urls: list[str], revert: bool = False) -> bool:
    """Insert (or remove) the tracker URL block in an upload.vue file.

    Returns True when the file changed.
    """
    p = Path(path)
    if not p.is_file():
        raise PatchError(f"upload page not found at {p}")
    text = p.read_text(encoding="utf-8")
    if revert:
        if not is_patched(text):
            logger.info("%s has no tracker URLs block", p)
            return False
        _backup(p)
        p.write_text(strip_snippet(text), encoding="utf-8")
        success(logger, "removed tracker URLs block from %s", p)
        return True
    if is_patched(text):
        logger.warning("tracker URLs block already present in %s, skipping", p)
        return False
    patched = apply_snippet(text, render_tracker_urls_snippet(urls))
    backup = _backup(p)
    p.write_text(patched, encoding="utf-8")
    if not is_patched(p.read_text(encoding="utf-8")):
        raise PatchError(f"verification failed after writing {p}")
    success(logger, "added tracker URLs to %s (backup %s)", p, backup.name)
    return True


class ContainerGuiPatcher:
    def __init__(self, cfg: dict[str, Any], compose: ComposeProject):
        self.cfg = cfg
        self.compose = compose
        patch_cfg = cfg["gui_patch"]
        self.search_root = str(patch_cfg["search_root"])
        self.container_names = [str(n) for n in patch_cfg["container_names"]]

    async def find_container(self) -> str:
        for name in self.container_names:
            running = await self.compose.running_containers(name)
            if name in running:
                logger.info("found GUI container %s", name)
                return name
        raise PatchError(f"no running GUI container among: {', '.join(self.container_names)}")

    async def find_upload_page(self, container: str) -> str | None:
        result = await self.compose.exec(
            container,
            "find",
            self.search_root,
            "-name",
            "upload.vue",
            "-path",
            "*/pages/*",
            "-not",
            "-path",
            "*/node_modules/*",
            check=False,
        )
        for line in result.stdout.splitlines():
            if line.strip():
                return line.strip()
        return None

    async def patch(self, revert: bool = False) -> bool:
        container = await self.find_container()
        urls = announce_urls(self.cfg)
        upload_page = await self.find_upload_page(container)
        if upload_page is None:
            if revert:
                await self.compose.exec(
                    container, "rm", "-f", f"{ASSET_DIR}/tracker-urls.css", f"{ASSET_DIR}/tracker-urls.js"
                )
                changed = True
            else:
                logger.warning("no upload.vue in %s; falling back to compiled asset injection", container)
                changed = await self._inject_assets(container, urls)
        else:
            changed = await self._patch_source(container, upload_page, urls, revert)
        if changed:
            await self.compose.restart("gui")
        return changed

    async def _patch_source(self, container: str, upload_page: str, urls: list[str], revert: bool) -> bool:
        logger.info("upload page in container: %s", upload_page)
        with tempfile.TemporaryDirectory(prefix="torrust-gui-") as tmp:
            local = Path(tmp) / "upload.vue"
            await self.compose.cp(f"{container}:{upload_page}", str(local))
            if self.compose.runner.dry_run and not local.exists():
                return True
            changed = patch_file(local, urls, revert=revert)
            if changed:
                await self.compose.exec(container, "cp", upload_page, f"{upload_page}.backup")
                await self.compose.cp(str(local), f"{container}:{upload_page}")
            return changed

    async def _inject_assets(self, container: str, urls: list[str]) -> bool:
        with tempfile.TemporaryDirectory(prefix="torrust-gui-") as tmp:
            for name, text in render_injection_assets(urls).items():
                local = Path(tmp) / name
                local.write_text(text, encoding="utf-8")
                await self.compose.cp(str(local), f"{container}:{ASSET_DIR}/{name}")
        success(logger, "copied tracker-urls.css/js into %s:%s", container, ASSET_DIR)
        if not self.cfg["nginx"].get("inject_tracker_urls", False):
            logger.warning("set nginx.inject_tracker_urls: true and rerun deploy so pages load the assets")
        return True
