from __future__ import annotations

from typing import Any

import pytest

from common.config import DEFAULTS, merge_defaults
from common.tokens import Secrets


@pytest.fixture
def cfg(tmp_path) -> dict[str, Any]:
    return merge_defaults(
        DEFAULTS,
        {
            "domain": "tracker.example.com",
            "email": "ops@example.com",
            "project_root": str(tmp_path / "torrust"),
            "ssl": {
                "letsencrypt_dir": str(tmp_path / "letsencrypt"),
                "webroot": str(tmp_path / "certbot"),
                "renew_cron": str(tmp_path / "cron.d" / "certbot-renew"),
            },
            "nginx": {
                "sites_available": str(tmp_path / "nginx" / "sites-available"),
                "sites_enabled": str(tmp_path / "nginx" / "sites-enabled"),
            },
            "native": {"unit_dir": str(tmp_path / "systemd")},
            "health": {"timeout": 2.0, "ready_attempts": 2, "ready_interval": 0.0},
        },
    )


@pytest.fixture
def creds() -> Secrets:
    return Secrets(
        tracker_admin_token="AdminToken0123456789abcdefghijkl",
        auth_secret_key="ab" * 32,
        user_claim_token_pepper="Pepper0123456789abcdefghijklmnop",
    )
