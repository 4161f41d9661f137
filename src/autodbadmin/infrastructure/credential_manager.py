"""
Credential manager for encrypted credential files.

Credential files live under ``<config_dir>/credentials/``. A file is either
plain JSON ``{"username": ..., "password": ...}`` or the encrypted form
written by ``save_encrypted_credential``.
"""

import base64
import hashlib
import json
import logging
import os
import secrets
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import SecretStr, ValidationError

from autodbadmin.domain.config import Credential
from autodbadmin.domain.errors import ConfigurationError

logger = logging.getLogger(__name__)

MASTER_PASSWORD_ENV = "AUTODBADMIN_MASTER_PASSWORD"


class CredentialManager:
    """
    Encrypts and decrypts credentials.

    Uses PBKDF2 key derivation and Fernet symmetric encryption. The salt is
    stored next to the credentials so the same master password always
    derives the same key.
    """

    SALT_LENGTH = 32
    ITERATIONS = 100000
    KEY_LENGTH = 32

    def __init__(self, config_dir: Path, master_password: Optional[str] = None):
        """
        Args:
            config_dir: Configuration directory
            master_password: Falls back to the AUTODBADMIN_MASTER_PASSWORD variable
        """
        self.credentials_dir = Path(config_dir) / "credentials"
        self.master_password = master_password or os.environ.get(MASTER_PASSWORD_ENV)
        self._encryption_key: Optional[bytes] = None
        self._salt: Optional[bytes] = None

    def _derive_key(self, password: str, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=self.KEY_LENGTH,
            salt=salt,
            iterations=self.ITERATIONS,
        )
        return base64.urlsafe_b64encode(kdf.derive(password.encode()))

    def _get_or_create_salt(self) -> bytes:
        if self._salt is not None:
            return self._salt

        salt_file = self.credentials_dir / ".salt"
        if salt_file.exists():
            self._salt = salt_file.read_bytes()
            return self._salt

        self._salt = secrets.token_bytes(self.SALT_LENGTH)
        salt_file.parent.mkdir(parents=True, exist_ok=True)
        salt_file.write_bytes(self._salt)
        logger.info("Created new salt file: %s", salt_file)
        return self._salt

    def _get_encryption_key(self) -> bytes:
        if self._encryption_key is not None:
            return self._encryption_key

        if not self.master_password:
            raise ConfigurationError(
                "Master password required for encrypted credentials\n"
                f"Hint: set the {MASTER_PASSWORD_ENV} environment variable."
            )

        self._encryption_key = self._derive_key(self.master_password, self._get_or_create_salt())
        return self._encryption_key

    def encrypt_credential(self, credential: Credential) -> Dict[str, Any]:
        """
        Encrypt a credential for storage.

        Returns:
            Dictionary with the encrypted payload and a hash of the salt used
        """
        fernet = Fernet(self._get_encryption_key())
        payload = json.dumps({
            "username": credential.username,
            "password": credential.get_password(),
        }).encode()
        return {
            "encrypted": True,
            "data": base64.b64encode(fernet.encrypt(payload)).decode(),
            "salt_hash": hashlib.sha256(self._get_or_create_salt()).hexdigest(),
        }

    def decrypt_credential(self, data: Dict[str, Any]) -> Credential:
        """
        Turn stored credential data (plain or encrypted) into a Credential.

        Raises:
            ConfigurationError: Wrong master password, corrupted data or
                missing fields
        """
        try:
            if not data.get("encrypted", False):
                return Credential(username=data["username"], password=SecretStr(data["password"]))

            if "salt_hash" in data:
                expected_hash = hashlib.sha256(self._get_or_create_salt()).hexdigest()
                if data["salt_hash"] != expected_hash:
                    raise ConfigurationError("Salt hash mismatch - credential may be corrupted")

            fernet = Fernet(self._get_encryption_key())
            decrypted = json.loads(fernet.decrypt(base64.b64decode(data["data"])).decode())
            return Credential(username=decrypted["username"], password=SecretStr(decrypted["password"]))
        except InvalidToken as e:
            raise ConfigurationError("Credential decryption failed: wrong master password?") from e
        except (KeyError, ValidationError) as e:
            raise ConfigurationError(f"Credential data is incomplete: {e}") from e

    def credential_path(self, cred_ref: str) -> Path:
        """Resolve a credential reference to a file path."""
        path = Path(cred_ref)
        if path.is_absolute() or path.parent != Path("."):
            return path
        if path.suffix != ".json":
            path = path.with_suffix(".json")
        return self.credentials_dir / path

    def save_encrypted_credential(self, cred_ref: str, credential: Credential) -> Path:
        """Encrypt and write a credential file; returns its path."""
        path = self.credential_path(cred_ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.encrypt_credential(credential), indent=2), encoding="utf-8")
        logger.info("Saved encrypted credential: %s", cred_ref)
        return path

    def load_credential(self, cred_ref: str) -> Credential:
        """
        Load (and decrypt when needed) a credential file.

        Raises:
            ConfigurationError: File missing, unreadable or undecryptable
        """
        path = self.credential_path(cred_ref)
        if not path.exists():
            raise ConfigurationError(
                f"Credential file not found: {path}\n"
                f"Hint: create it with 'autodbadmin save-credential {cred_ref}'."
            )
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in credential file: {path}") from e
        credential = self.decrypt_credential(data)
        logger.debug("Loaded credential: %s", cred_ref)
        return credential
