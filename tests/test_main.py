from __future__ import annotations

import pytest

from common.config import load_config, save_yaml
from ops.main import build_parser, main, write_initial_config


def test_parser_globals_and_subcommands():
    args = build_parser().parse_args(["--config", "x.yaml", "--dry-run", "verify", "--public"])
    assert args.config == "x.yaml"
    assert args.dry_run is True
    assert args.command == "verify"
    assert args.public is True

    args = build_parser().parse_args(["patch-gui", "--source", "upload.vue", "--revert"])
    assert args.source == "upload.vue"
    assert args.revert is True

    args = build_parser().parse_args(["restart", "index", "gui"])
    assert args.services == ["index", "gui"]


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_init_writes_loadable_config(tmp_path):
    path = tmp_path / "config" / "ops.yaml"
    assert main(["--config", str(path), "init", "--domain", "t.example.org"]) == 0
    cfg = load_config(str(path))
    assert cfg["domain"] == "t.example.org"
    assert cfg["ports"]["udp_tracker"] == 6969
    text = path.read_text()
    assert text.startswith("# torrust-ops configuration")
    assert 'domain: "t.example.org"' in text
    assert cfg["email"] == ""
    # a second init leaves the file alone
    path.write_text(path.read_text() + "# edited\n")
    assert main(["--config", str(path), "init", "--domain", "other.example.org"]) == 0
    assert path.read_text().endswith("# edited\n")


def test_missing_config_exits_1(tmp_path):
    assert main(["--config", str(tmp_path / "missing.yaml"), "validate"]) == 1


def test_render_and_validate(tmp_path):
    path = tmp_path / "ops.yaml"
    save_yaml(str(path), {"domain": "t.example.org", "project_root": str(tmp_path / "root")})
    assert main(["--config", str(path), "render"]) == 0
    assert (tmp_path / "root" / "config" / "tracker.toml").is_file()
    assert main(["--config", str(path), "validate"]) == 0


def test_dry_run_compose_commands(tmp_path):
    path = tmp_path / "ops.yaml"
    save_yaml(str(path), {"domain": "t.example.org", "project_root": str(tmp_path / "root")})
    assert main(["--config", str(path), "--dry-run", "up", "tracker"]) == 0
    assert main(["--config", str(path), "--dry-run", "down"]) == 0


def test_init_fills_email(tmp_path):
    path = tmp_path / "ops.yaml"
    assert main(["--config", str(path), "init", "--domain", "t.example.org", "--email", "ops@t.example.org"]) == 0
    assert load_config(str(path))["email"] == "ops@t.example.org"


def test_init_without_example_writes_defaults(tmp_path):
    path = tmp_path / "ops.yaml"
    assert write_initial_config(str(path), "t.example.org", example=tmp_path / "missing.yaml") is True
    assert load_config(str(path))["watchdog"]["services"] == ["tracker", "index", "gui"]


def test_patch_gui_exit_codes(tmp_path):
    path = tmp_path / "ops.yaml"
    save_yaml(str(path), {"domain": "t.example.org", "project_root": str(tmp_path / "root")})
    page = tmp_path / "upload.vue"
    page.write_text('<template>\n  <UploadFile accept=".torrent" />\n</template>\n')
    argv = ["--config", str(path), "patch-gui", "--source", str(page)]
    assert main(argv) == 0
    assert "udp://t.example.org:6969/announce" in page.read_text()
    # already patched is the requested state
    assert main(argv) == 0
    assert main(["--config", str(path), "patch-gui", "--source", str(tmp_path / "missing.vue")]) == 1


def test_build_command_dry_run(tmp_path):
    path = tmp_path / "ops.yaml"
    save_yaml(str(path), {"domain": "t.example.org", "project_root": str(tmp_path / "root")})
    assert main(["--config", str(path), "--dry-run", "build", "tracker"]) == 0
    assert main(["--config", str(path), "--dry-run", "build", "nginx"]) == 1
