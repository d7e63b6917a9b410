from __future__ import annotations

import tomli_w

from ops.validate import database_files, report_checks, validate_configs
from ops.workflows import generate_configs
from render.index import build_index_config
from render.tracker import build_tracker_config


def _by_name(checks):
    return {c["name"]: c for c in checks}


def test_generated_configs_validate(cfg):
    generate_configs(cfg)
    checks = validate_configs(cfg)
    failed = [c for c in checks if not c["ok"]]
    assert failed == []
    assert report_checks(checks) is True
    assert {"token_match", "index_tracker_api_url", "tracker_database"} <= set(_by_name(checks))


def test_missing_files(cfg):
    checks = _by_name(validate_configs(cfg))
    assert checks["tracker_config"]["ok"] is False
    assert checks["index_config"]["ok"] is False
    assert checks["tracker_database"]["level"] == "warning"
    assert "token_match" not in checks


def test_detects_mismatch_and_sample_secrets(cfg, creds, tmp_path):
    tracker = build_tracker_config(cfg, creds)
    tracker["http_api"]["access_tokens"]["admin"] = "MyAccessToken"
    tracker["http_api"]["bind_address"] = "0.0.0.0:9999"
    index = build_index_config(cfg, creds)
    index["tracker"]["api_url"] = "http://localhost:1212"
    del index["auth"]["user_claim_token_pepper"]
    tracker_path = tmp_path / "tracker.toml"
    index_path = tmp_path / "index.toml"
    tracker_path.write_text(tomli_w.dumps(tracker), encoding="utf-8")
    index_path.write_text(tomli_w.dumps(index), encoding="utf-8")

    checks = _by_name(validate_configs(cfg, tracker_path, index_path))
    assert checks["tracker_admin_token"]["ok"] is False
    assert "well-known" in checks["tracker_admin_token"]["reason"]
    assert checks["tracker_api_bind"]["ok"] is False
    assert checks["index_tracker_api_url"]["ok"] is False
    assert checks["index_auth_user_claim_token_pepper"]["ok"] is False
    assert checks["index_auth_secret_key"]["ok"] is True
    assert checks["token_match"]["ok"] is False
    assert report_checks(list(checks.values())) is False


def test_invalid_toml(cfg, tmp_path):
    bad = tmp_path / "tracker.toml"
    bad.write_text("[http_api\n", encoding="utf-8")
    checks = _by_name(validate_configs(cfg, bad, tmp_path / "index.toml"))
    assert "not valid TOML" in checks["tracker_config"]["reason"]


def test_database_files_native(cfg):
    cfg["layout"] = "native"
    files = database_files(cfg)
    assert str(files["tracker"]) == "/var/lib/torrust/tracker/database/sqlite3.db"
    assert str(files["index"]) == "/var/lib/torrust/index/database/sqlite3.db"
