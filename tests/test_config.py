"""
tests/test_config.py -- Unit tests for core/config.py (Settings).

Settings is constructed directly with keyword arguments so the tests do not
depend on the process environment beyond what conftest.py sets.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings

GOOD_KEY = "k" * 32


class TestSecretKey:
    def test_production_requires_key(self) -> None:
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            Settings(debug=False, secret_key="")

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 32 characters"):
            Settings(debug=True, secret_key="short")

    def test_debug_generates_key(self, caplog) -> None:
        with caplog.at_level("WARNING", logger="microcrm.config"):
            settings = Settings(debug=True, secret_key="")
        assert len(settings.secret_key) == 64
        assert "auto-generated SECRET_KEY" in caplog.text

    def test_generated_keys_differ(self) -> None:
        assert Settings(debug=True, secret_key="").secret_key != Settings(debug=True, secret_key="").secret_key

    def test_explicit_key_kept(self) -> None:
        assert Settings(debug=False, secret_key=GOOD_KEY).secret_key == GOOD_KEY


class TestBcryptRounds:
    @pytest.mark.parametrize("rounds", [3, 32])
    def test_out_of_range(self, rounds: int) -> None:
        with pytest.raises(ValidationError, match="BCRYPT_ROUNDS"):
            Settings(secret_key=GOOD_KEY, bcrypt_rounds=rounds)

    @pytest.mark.parametrize("rounds", [4, 12, 31])
    def test_in_range(self, rounds: int) -> None:
        assert Settings(secret_key=GOOD_KEY, bcrypt_rounds=rounds).bcrypt_rounds == rounds


class TestOIDCEnabled:
    FULL = dict(
        oidc_issuer="https://idp.example.test",
        oidc_client_id="micro-crm",
        oidc_client_secret="s",
        oidc_redirect_uri="http://localhost:8000/login/oidc/callback",
        oidc_logout_url="https://idp.example.test/logout",
    )

    def test_all_set(self) -> None:
        assert Settings(secret_key=GOOD_KEY, **self.FULL).oidc_enabled is True

    @pytest.mark.parametrize("missing", sorted(FULL))
    def test_any_missing_disables(self, missing: str) -> None:
        values = {**self.FULL, missing: ""}
        assert Settings(secret_key=GOOD_KEY, **values).oidc_enabled is False

    def test_state_check_off_by_default(self) -> None:
        assert Settings(secret_key=GOOD_KEY).oidc_verify_state is False


def test_environment_is_read(monkeypatch) -> None:
    monkeypatch.setenv("LOGIN_RATE_LIMIT", "3/minute")
    monkeypatch.setenv("WEB_UI_BASE_URL", "https://crm.example.test")
    settings = Settings(secret_key=GOOD_KEY)
    assert settings.login_rate_limit == "3/minute"
    assert settings.web_ui_base_url == "https://crm.example.test"
