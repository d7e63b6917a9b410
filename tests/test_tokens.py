from __future__ import annotations

import re
import stat

from common.tokens import (
    ADMIN_TOKEN_FILE,
    PEPPER_FILE,
    SECRET_KEY_FILE,
    generate_admin_token,
    generate_pepper,
    generate_secret_key,
    load_or_create_secrets,
    write_env_file,
)


def test_token_shapes():
    token = generate_admin_token()
    assert len(token) == 32
    assert re.fullmatch(r"[A-Za-z0-9]+", token)
    assert re.fullmatch(r"[0-9a-f]{64}", generate_secret_key())
    assert re.fullmatch(r"[A-Za-z0-9]{32}", generate_pepper())
    assert generate_admin_token() != token


def test_creates_secrets_with_private_modes(tmp_path):
    out = tmp_path / "secrets"
    creds = load_or_create_secrets(out)
    for name in (ADMIN_TOKEN_FILE, SECRET_KEY_FILE, PEPPER_FILE):
        assert stat.S_IMODE((out / name).stat().st_mode) == 0o600
    assert stat.S_IMODE(out.stat().st_mode) == 0o700
    assert (out / ADMIN_TOKEN_FILE).read_text().strip() == creds.tracker_admin_token


def test_existing_secrets_are_kept(tmp_path):
    first = load_or_create_secrets(tmp_path)
    second = load_or_create_secrets(tmp_path)
    assert first == second


def test_rotate_replaces_everything(tmp_path):
    first = load_or_create_secrets(tmp_path)
    rotated = load_or_create_secrets(tmp_path, rotate=True)
    assert rotated.tracker_admin_token != first.tracker_admin_token
    assert rotated.auth_secret_key != first.auth_secret_key
    assert rotated.user_claim_token_pepper != first.user_claim_token_pepper


def test_well_known_defaults_are_replaced(tmp_path):
    (tmp_path / ADMIN_TOKEN_FILE).write_text("MyAccessToken\n")
    (tmp_path / SECRET_KEY_FILE).write_text("keep-me\n")
    creds = load_or_create_secrets(tmp_path)
    assert creds.tracker_admin_token != "MyAccessToken"
    assert creds.auth_secret_key == "keep-me"


def test_masked(creds):
    assert creds.masked()["tracker_admin_token"] == "AdminTok..."
    assert "ab" * 32 not in str(creds.masked())


def test_env_file(tmp_path, creds):
    path = tmp_path / ".env"
    write_env_file(path, creds, "tracker.example.com")
    text = path.read_text()
    assert f"TRACKER_ADMIN_TOKEN={creds.tracker_admin_token}" in text
    assert "DOMAIN=tracker.example.com" in text
    assert text.startswith("# Production secrets")
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
