"""
Tests for the config infrastructure layer.

This module tests the config loader and the credential manager.
"""

import json
import shutil
import tempfile
from pathlib import Path

import pytest
from pydantic import SecretStr

from autodbadmin.domain.config import Credential
from autodbadmin.domain.errors import ConfigurationError
from autodbadmin.infrastructure.config_loader import ConfigLoader
from autodbadmin.infrastructure.credential_manager import MASTER_PASSWORD_ENV, CredentialManager


class TestConfigLoader:
    """Test cases for ConfigLoader."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.loader = ConfigLoader(str(self.temp_dir), master_password="master")

    def teardown_method(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir)

    def _write_targets(self, targets):
        (self.temp_dir / "targets.json").write_text(json.dumps({"targets": targets}), encoding="utf-8")

    def test_load_targets(self):
        """Test loading a valid targets file."""
        self._write_targets([
            {"id": "prod", "server": "sql01", "instance": "INST1"},
            {"id": "dr", "server": "sql02", "auth": "sql", "credential_file": "sql_dr"},
        ])

        targets = self.loader.load_targets()

        assert [t.id for t in targets] == ["prod", "dr"]
        assert targets[0].server_instance == "sql01\\INST1"

    def test_missing_targets_file(self):
        """Test the hint for a missing targets file."""
        with pytest.raises(ConfigurationError, match="not found"):
            self.loader.load_targets()

    def test_empty_targets_file(self):
        (self.temp_dir / "targets.json").write_text("  \n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="empty"):
            self.loader.load_targets()

    def test_malformed_json(self):
        """Test that JSON errors carry the position."""
        (self.temp_dir / "targets.json").write_text('{"targets": [}', encoding="utf-8")

        with pytest.raises(ConfigurationError, match="line 1"):
            self.loader.load_targets()

    def test_invalid_target_names_position(self):
        self._write_targets([{"id": "ok", "server": "sql01"}, {"id": "bad", "server": ""}])

        with pytest.raises(ConfigurationError, match="Invalid target #2"):
            self.loader.load_targets()

    def test_duplicate_ids(self):
        self._write_targets([{"id": "prod", "server": "a"}, {"id": "prod", "server": "b"}])

        with pytest.raises(ConfigurationError, match="Duplicate target ids"):
            self.loader.load_targets()

    def test_get_target_is_case_insensitive(self):
        self._write_targets([{"id": "Prod", "server": "sql01"}])

        assert self.loader.get_target("prod").server == "sql01"

    def test_get_disabled_target(self):
        self._write_targets([{"id": "old", "server": "sql09", "enabled": False}])

        with pytest.raises(ConfigurationError, match="disabled"):
            self.loader.get_target("old")

    def test_unknown_target_is_a_server_name(self):
        """Test the ad-hoc Windows-auth fallback."""
        target = self.loader.get_target("SQL05\\REPORTING")

        assert target.server == "SQL05"
        assert target.instance == "REPORTING"
        assert target.credentials_ref is None

    def test_settings_default_when_missing(self):
        assert self.loader.load_settings().job_poll_interval == 5

    def test_settings_from_file(self):
        (self.temp_dir / "settings.json").write_text(
            json.dumps({"job_poll_interval": 10, "timeouts": {"query_timeout": 0}}), encoding="utf-8"
        )

        assert self.loader.load_settings().job_poll_interval == 10

    def test_invalid_settings(self):
        (self.temp_dir / "settings.json").write_text(json.dumps({"job_poll_interval": 0}), encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Invalid settings"):
            self.loader.load_settings()

    def test_windows_target_has_no_sql_credential(self):
        self._write_targets([{"id": "prod", "server": "sql01"}])

        assert self.loader.load_sql_credential(self.loader.get_target("prod")) is None

    def test_sql_credential_loaded(self):
        """Test a target whose SQL login lives in an encrypted file."""
        self._write_targets([{"id": "dr", "server": "sql02", "auth": "sql", "credential_file": "sql_dr"}])
        self.loader.credentials.save_encrypted_credential(
            "sql_dr", Credential(username="dba", password=SecretStr("pw"))
        )

        credential = self.loader.load_sql_credential(self.loader.get_target("dr"))

        assert credential.username == "dba"
        assert credential.get_password() == "pw"

    def test_validate_config(self):
        self._write_targets([{"id": "dr", "server": "sql02", "auth": "sql", "credential_file": "missing"}])

        assert self.loader.validate_config() is False


class TestCredentialManager:
    """Test cases for CredentialManager."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.manager = CredentialManager(self.temp_dir, "master-password")

    def teardown_method(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir)

    def test_encrypt_decrypt_round_trip(self):
        """Test that encrypted data decrypts back to the same credential."""
        credential = Credential(username="svc_sql", password=SecretStr("Pa$$w0rd"))

        encrypted = self.manager.encrypt_credential(credential)

        assert encrypted["encrypted"] is True
        assert "Pa$$w0rd" not in encrypted["data"]
        decrypted = self.manager.decrypt_credential(encrypted)
        assert decrypted.username == "svc_sql"
        assert decrypted.get_password() == "Pa$$w0rd"

    def test_plain_credential_file(self):
        """Test that unencrypted credential files are accepted."""
        path = self.temp_dir / "credentials" / "plain.json"
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"username": "sa", "password": "x"}), encoding="utf-8")

        assert self.manager.load_credential("plain").username == "sa"

    def test_salt_is_reused(self):
        """Test that a second manager derives the same key from the stored salt."""
        path = self.manager.save_encrypted_credential(
            "sql_prod", Credential(username="dba", password=SecretStr("pw"))
        )

        other = CredentialManager(self.temp_dir, "master-password")

        assert path == self.temp_dir / "credentials" / "sql_prod.json"
        assert other.load_credential("sql_prod").get_password() == "pw"

    def test_wrong_master_password(self):
        self.manager.save_encrypted_credential("sql_prod", Credential(username="dba", password=SecretStr("pw")))

        other = CredentialManager(self.temp_dir, "not-the-password")

        with pytest.raises(ConfigurationError, match="wrong master password"):
            other.load_credential("sql_prod")

    def test_master_password_from_environment(self, monkeypatch):
        monkeypatch.setenv(MASTER_PASSWORD_ENV, "from-env")

        assert CredentialManager(self.temp_dir).master_password == "from-env"

    def test_missing_master_password(self, monkeypatch):
        monkeypatch.delenv(MASTER_PASSWORD_ENV, raising=False)
        manager = CredentialManager(self.temp_dir)

        with pytest.raises(ConfigurationError, match="Master password required"):
            manager.encrypt_credential(Credential(username="dba", password=SecretStr("pw")))

    def test_missing_credential_file(self):
        with pytest.raises(ConfigurationError, match="save-credential"):
            self.manager.load_credential("nowhere")

    def test_incomplete_data(self):
        with pytest.raises(ConfigurationError, match="incomplete"):
            self.manager.decrypt_credential({"username": "sa"})

    def test_credential_path_resolution(self):
        assert self.manager.credential_path("sql_prod") == self.temp_dir / "credentials" / "sql_prod.json"
        assert self.manager.credential_path("other/dir/c.json") == Path("other/dir/c.json")
