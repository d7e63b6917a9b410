from __future__ import annotations

import base64
import datetime
import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path

ADMIN_TOKEN_FILE = "tracker_admin_token.secret"
SECRET_KEY_FILE = "auth_secret_key.secret"
PEPPER_FILE = "user_claim_token_pepper.secret"

# Values shipped in upstream sample configs; never acceptable in production.
WELL_KNOWN_DEFAULTS = frozenset(
    {
        "MyAccessToken",
        "MaxVerstappenWC2021",
        "AnotherSecretPepper123",
    }
)

logger = logging.getLogger("common.tokens")


def _b64_alnum(nbytes: int, length: int) -> str:
    raw = base64.b64encode(secrets.token_bytes(nbytes)).decode("ascii")
    return raw.translate(str.maketrans("", "", "=+/"))[:length]


def generate_admin_token() -> str:
    return _b64_alnum(32, 32)


def generate_secret_key() -> str:
    return secrets.token_hex(32)


def generate_pepper() -> str:
    return _b64_alnum(32, 32)


def mask(value: str, keep: int = 8) -> str:
    return f"{value[:keep]}..."


@dataclass(frozen=True)
class Secrets:
    tracker_admin_token: str
    auth_secret_key: str
    user_claim_token_pepper: str

    def masked(self) -> dict[str, str]:
        return {
            "tracker_admin_token": mask(self.tracker_admin_token),
            "auth_secret_key": mask(self.auth_secret_key),
            "user_claim_token_pepper": mask(self.user_claim_token_pepper),
        }


_GENERATORS = {
    ADMIN_TOKEN_FILE: generate_admin_token,
    SECRET_KEY_FILE: generate_secret_key,
    PEPPER_FILE: generate_pepper,
}


def _write_secret(path: Path, value: str) -> None:
    path.write_text(value + "\n", encoding="utf-8")
    os.chmod(path, 0o600)


def load_or_create_secrets(secrets_dir: str | Path, rotate: bool = False) -> Secrets:
    out = Path(secrets_dir)
    out.mkdir(parents=True, exist_ok=True)
    os.chmod(out, 0o700)
    values: dict[str, str] = {}
    for filename, generate in _GENERATORS.items():
        path = out / filename
        current = ""
        if path.is_file() and not rotate:
            current = path.read_text(encoding="utf-8").strip()
        if not current or current in WELL_KNOWN_DEFAULTS:
            current = generate()
            _write_secret(path, current)
            logger.info("generated %s: %s", filename, mask(current))
        values[filename] = current
    return Secrets(
        tracker_admin_token=values[ADMIN_TOKEN_FILE],
        auth_secret_key=values[SECRET_KEY_FILE],
        user_claim_token_pepper=values[PEPPER_FILE],
    )


def write_env_file(path: str | Path, creds: Secrets, domain: str) -> None:
    stamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    lines = [
        "# Production secrets for Torrust",
        f"# Generated on {stamp}",
        "",
        f"TRACKER_ADMIN_TOKEN={creds.tracker_admin_token}",
        f"AUTH_SECRET_KEY={creds.auth_secret_key}",
        f"USER_CLAIM_TOKEN_PEPPER={creds.user_claim_token_pepper}",
        f"DOMAIN={domain}",
        "",
    ]
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text("\n".join(lines), encoding="utf-8")
    os.chmod(p, 0o600)
