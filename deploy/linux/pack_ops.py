#!/usr/bin/env python3
"""
Pack torrust-ops for a Linux server → torrust-ops.tar.bz2.
Run from project root: python deploy/linux/pack_ops.py
"""
from __future__ import annotations

import io
import tarfile
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
OUTPUT_NAME = "torrust-ops"
ARCHIVE = ROOT / "torrust-ops.tar.bz2"
FILES = [
    ("common", True),
    ("render", True),
    ("ops", True),
    ("certs", True),
    ("pyproject.toml", False),
]
CONFIG = [
    ("config/ops.example.yaml", "config/ops.yaml"),
    ("config/ops.example.yaml", "config/ops.example.yaml"),
]
DEPLOY = ["deploy/systemd/torrust-ops-watchdog.service"]

README_OPS = """# torrust-ops Linux deploy

## Unpack and install

  tar -xjf torrust-ops.tar.bz2 -C /opt
  cd /opt/torrust-ops
  python3 -m venv .venv
  .venv/bin/pip install .

## Configure

Edit config/ops.yaml: at least `domain` and `email`. Point the domain's A record
at this server before requesting a certificate.

Secrets are generated on the first run under <project_root>/secrets/ and are
never shipped in this tarball. Back them up together with <project_root>/.env.

## Run

  sudo .venv/bin/torrust-ops --config config/ops.yaml deploy
  sudo .venv/bin/torrust-ops --config config/ops.yaml ssl
  .venv/bin/torrust-ops --config config/ops.yaml verify --public

Add --dry-run to any command to see the docker/systemctl/nginx/certbot/ufw
calls without running them.

Watchdog under systemd: copy deploy/systemd/torrust-ops-watchdog.service to
/etc/systemd/system/ and `systemctl enable --now torrust-ops-watchdog`.
"""


def _skip(f: Path) -> bool:
    return "__pycache__" in f.parts or f.suffix in (".pyc", ".pem")


def _add_tree(tf: tarfile.TarFile, src: Path, arc_prefix: str) -> None:
    for f in sorted(src.rglob("*")):
        if f.is_file() and not _skip(f):
            rel = f.relative_to(src)
            tf.add(f, arcname=arc_prefix + str(rel))


def _require_exists(path: Path, kind: str) -> None:
    if not path.exists():
        raise FileNotFoundError(f"required {kind} not found: {path}")


def build_archive(archive: Path = ARCHIVE) -> Path:
    prefix = OUTPUT_NAME + "/"
    with tarfile.open(archive, "w:bz2") as tf:
        for item, is_dir in FILES:
            src = ROOT / item
            _require_exists(src, "directory" if is_dir else "file")
            if is_dir:
                _add_tree(tf, src, prefix + item + "/")
            else:
                tf.add(src, arcname=prefix + item)

        for src_rel, dst_rel in CONFIG:
            src = ROOT / src_rel
            _require_exists(src, "config file")
            tf.add(src, arcname=prefix + dst_rel)

        for p in DEPLOY:
            src = ROOT / p
            _require_exists(src, "deploy file")
            tf.add(src, arcname=prefix + p)

        data = README_OPS.encode("utf-8")
        info = tarfile.TarInfo(name=prefix + "README.ops")
        info.size = len(data)
        info.mtime = 0
        tf.addfile(info, io.BytesIO(data))
    return archive


def main() -> None:
    print("== torrust-ops pack (from", ROOT, ")")
    print("  creating", ARCHIVE.name)
    build_archive()
    print("== Done:", ARCHIVE)


if __name__ == "__main__":
    main()
