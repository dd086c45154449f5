"""
Settings registry and database path/value helpers.
"""
import os
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from portal.core import config
from portal.forms import quote_pdf
from portal.core.db import (
    db_path, get_db, is_database_configured, loads_json, parse_datetime, ts_to_datetime,
)


# ═══════════════════════════════════════════════════════════════════════════════
# Settings
# ═══════════════════════════════════════════════════════════════════════════════

class TestSettings:

    def test_business_flow_url_dev_default(self):
        assert config.get_key("business_flow_url") == config.LOCAL_API_URL

    def test_business_flow_url_production_default(self, monkeypatch):
        monkeypatch.setenv("PORTAL_ENV", "production")
        assert config.get_key("business_flow_url") == config.PRODUCTION_API_URL

    def test_env_overrides_default(self, monkeypatch):
        monkeypatch.setenv("BUSINESS_FLOW_API_URL", "https://crm.example.sk")
        assert config.get_key("business_flow_url") == "https://crm.example.sk"

    def test_blank_env_counts_as_unset(self, monkeypatch):
        monkeypatch.setenv("SECRET_KEY", "   ")
        assert config.get_key("secret_key") == "client-portal-dev"

    def test_unknown_setting(self):
        assert config.get_key("nope") == ""

    def test_railway_is_production(self, monkeypatch):
        monkeypatch.setenv("RAILWAY_ENVIRONMENT", "production")
        assert config.is_production()

    def test_mask(self):
        assert config.mask("") == "(not set)"
        assert config.mask("abcdef") == "abcd****"
        assert config.mask("abcdefghijklmnop") == "abcdefgh****(16 chars)"

    def test_validate_all_hides_sensitive_values(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "AIza-secret-value")
        report = config.validate_all()
        assert report["settings"]["google_api_key"]["masked"] == "set"
        assert report["settings"]["db_url"]["set"] is True
        assert report["warnings"] == []

    def test_missing_required_setting_warns(self, monkeypatch):
        monkeypatch.delenv("DB_URL")
        report = config.validate_all()
        assert any("DB_URL" in w for w in report["warnings"])

    def test_startup_check_logs_warnings(self, monkeypatch):
        monkeypatch.delenv("DB_URL")
        with patch.object(config, "log") as log:
            report = config.startup_check()
        assert report["missing"] >= 1
        warned = [c.args[1] for c in log.warning.call_args_list]
        assert any("DB_URL" in w for w in warned)

    def test_startup_check_warns_without_pdf_font(self, monkeypatch):
        monkeypatch.setattr(quote_pdf, "SYSTEM_FONT_DIRS", [])
        with patch.object(config, "log") as log:
            report = config.startup_check()
        warned = [c.args[1] for c in log.warning.call_args_list]
        assert any("DejaVuSans.ttf" in w and "Helvetica" in w for w in warned)
        assert any("DejaVuSans.ttf" in w for w in report["warnings"])

    def test_startup_check_quiet_with_pdf_font(self, monkeypatch, portal_env):
        monkeypatch.setattr(quote_pdf, "SYSTEM_FONT_DIRS", [])
        os.makedirs(os.path.join(portal_env, "fonts"))
        open(os.path.join(portal_env, "fonts", "DejaVuSans.ttf"), "wb").close()
        report = config.startup_check()
        assert quote_pdf.find_pdf_font() == os.path.join(portal_env, "fonts")
        assert not any("DejaVuSans.ttf" in w for w in report["warnings"])

    def test_data_dir_from_env(self, portal_env):
        assert config.data_dir() == portal_env


# ═══════════════════════════════════════════════════════════════════════════════
# Database
# ═══════════════════════════════════════════════════════════════════════════════

class TestDatabasePath:

    @pytest.mark.parametrize("url, expected", [
        ("file:/tmp/crm.db", "/tmp/crm.db"),
        ("file:///tmp/crm.db", "/tmp/crm.db"),
        ("/tmp/crm.db", "/tmp/crm.db"),
    ])
    def test_local_urls(self, monkeypatch, url, expected):
        monkeypatch.setenv("DB_URL", url)
        assert db_path() == expected

    def test_remote_url_rejected(self, monkeypatch):
        monkeypatch.setenv("DB_URL", "libsql://crm.turso.io")
        with pytest.raises(RuntimeError, match="remote URL libsql"):
            db_path()

    def test_missing_url(self, monkeypatch):
        monkeypatch.delenv("DB_URL")
        assert not is_database_configured()
        with pytest.raises(RuntimeError):
            db_path()

    def test_rollback_on_error(self, rows):
        with pytest.raises(ValueError):
            with get_db() as conn:
                conn.execute("INSERT INTO organization (id, name) VALUES ('o1', 'X')")
                raise ValueError("boom")
        assert rows("SELECT * FROM organization") == []


class TestValueHelpers:

    def test_ts_to_datetime(self):
        assert ts_to_datetime(0) is None
        assert ts_to_datetime(1735689600) == datetime(2025, 1, 1, tzinfo=timezone.utc)

    def test_parse_iso_with_z(self):
        assert parse_datetime("2025-03-01T08:00:00.000Z") == datetime(2025, 3, 1, 8, tzinfo=timezone.utc)

    def test_parse_epoch_millis(self):
        assert parse_datetime(1735689600000) == datetime(2025, 1, 1, tzinfo=timezone.utc)

    def test_parse_naive_assumed_utc(self):
        assert parse_datetime("2025-01-01 00:00:00").tzinfo == timezone.utc

    def test_parse_invalid(self):
        assert parse_datetime("") is None
        assert parse_datetime("yesterday") is None

    def test_loads_json(self):
        assert loads_json('{"a": 1}') == {"a": 1}
        assert loads_json(None, default=[]) == []
        assert loads_json("{bad", default={}) == {}
        assert loads_json({"a": 1}) == {"a": 1}
