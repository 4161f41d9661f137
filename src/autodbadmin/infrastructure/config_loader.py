"""
Configuration loader module.

Handles loading and validation of JSON configuration files:
- targets.json: SQL Server instances the toolkit may connect to
- settings.json: Timeouts and operation defaults (optional)
"""

import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from autodbadmin.domain.config import Credential, SqlTarget, ToolkitSettings
from autodbadmin.domain.errors import ConfigurationError
from autodbadmin.infrastructure.credential_manager import CredentialManager


logger = logging.getLogger(__name__)


class ConfigLoader:
    """
    Load and validate configuration files.

    Produces pydantic models so every value is type-checked once, on load.
    """

    def __init__(self, config_dir: str = "config", master_password: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_dir: Directory containing configuration files. A relative
                default is anchored to the executable when frozen.
            master_password: Password for encrypted credential files
        """
        if getattr(sys, "frozen", False) and not Path(config_dir).is_absolute():
            self.config_dir = Path(sys.executable).parent / config_dir
        else:
            self.config_dir = Path(config_dir)
        self.credentials = CredentialManager(self.config_dir, master_password)
        self._targets: List[SqlTarget] | None = None

        logger.info("ConfigLoader initialized with directory: %s", self.config_dir)

    def _load_json_file(self, filepath: Path, required: bool = True) -> dict | None:
        """
        Load and parse a JSON file with hints for the common mistakes.

        Returns:
            Parsed JSON, or None if an optional file is missing

        Raises:
            ConfigurationError: Required file missing, unreadable, empty or malformed
        """
        if not filepath.exists():
            if required:
                raise ConfigurationError(
                    f"Configuration file not found: {filepath}\n"
                    f"Hint: Copy the .example.json file and customize it."
                )
            logger.debug("Optional config not found: %s", filepath)
            return None

        try:
            content = filepath.read_text(encoding="utf-8")
        except PermissionError as e:
            raise ConfigurationError(
                f"Cannot read config file (permission denied): {filepath}\n"
                f"Hint: Check file permissions or if another process has it locked."
            ) from e

        if not content.strip():
            raise ConfigurationError(
                f"Configuration file is empty: {filepath}\n"
                f"Hint: Add valid JSON content or copy from .example.json"
            )

        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Invalid JSON in config file: {filepath}\n"
                f"Error at line {e.lineno}, column {e.colno}: {e.msg}\n"
                f"Hint: Validate JSON syntax. Note: .json files cannot have comments."
            ) from e

    def load_targets(self, filename: str = "targets.json") -> List[SqlTarget]:
        """
        Load SQL Server target configurations.

        Raises:
            ConfigurationError: File problems or an invalid target entry
        """
        if self._targets is not None:
            return self._targets

        filepath = self.config_dir / filename
        logger.info("Loading SQL targets from: %s", filepath)
        data = self._load_json_file(filepath, required=True)

        targets = []
        for index, item in enumerate(data.get("targets", [])):
            try:
                target = SqlTarget.model_validate(item)
            except ValidationError as e:
                raise ConfigurationError(
                    f"Invalid target #{index + 1} in {filepath}:\n{e}"
                ) from e
            targets.append(target)
            logger.debug("Loaded target: %s", target.display_name)

        ids = [t.id for t in targets]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate target ids in {filepath}: {', '.join(duplicates)}")

        logger.info("Loaded %d SQL Server targets", len(targets))
        self._targets = targets
        return targets

    def get_target(self, target_id: str) -> SqlTarget:
        """
        Find a target by id, falling back to an ad-hoc Windows-auth target.

        A value that is not a configured id is treated as a server name, so
        ``SQL01\\INST`` works without a targets.json entry.
        """
        filepath = self.config_dir / "targets.json"
        if filepath.exists():
            for target in self.load_targets():
                if target.id.lower() == target_id.lower():
                    if not target.enabled:
                        raise ConfigurationError(f"Target '{target_id}' is disabled")
                    return target

        server, _, instance = target_id.partition("\\")
        logger.debug("'%s' is not a configured target; using it as a server name", target_id)
        return SqlTarget(id=target_id, server=server, instance=instance or None)

    def load_settings(self, filename: str = "settings.json") -> ToolkitSettings:
        """Load toolkit settings; a missing file yields the defaults."""
        filepath = self.config_dir / filename
        data = self._load_json_file(filepath, required=False)
        if data is None:
            return ToolkitSettings()
        try:
            return ToolkitSettings.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings in {filepath}:\n{e}") from e

    def load_sql_credential(self, target: SqlTarget) -> Credential | None:
        """SQL login for a target, or None for Windows authentication."""
        if not target.credentials_ref:
            return None
        return self.credentials.load_credential(target.credentials_ref)

    def load_os_credential(self, target: SqlTarget) -> Credential | None:
        """Windows account used for WinRM, or None to use the current user."""
        if not target.os_credentials_ref:
            return None
        return self.credentials.load_credential(target.os_credentials_ref)

    def validate_config(self) -> bool:
        """Load every configuration file, logging the first problem found."""
        try:
            for target in self.load_targets():
                self.load_sql_credential(target)
            self.load_settings()
        except ConfigurationError as e:
            logger.error("Configuration validation failed: %s", e)
            return False
        logger.info("Configuration validation passed")
        return True
