"""Credential vault interface and an encrypted file-based implementation.

The OAuth handlers never persist tokens themselves. Flow orchestration code
(``oauth_helpers``) hands finished tokens to a ``CredentialVault``. The
``FileCredentialVault`` here is the default; a database or OS keychain
backend only needs to provide the same three methods.
"""

import json
import logging
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol, runtime_checkable

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class StoredCredential(BaseModel):
    """OAuth credential with metadata."""

    access_token: str = Field(..., description="OAuth access token", repr=False)
    refresh_token: str | None = Field(None, description="OAuth refresh token", repr=False)
    token_type: str = Field(default="Bearer", description="Token type")
    expires_at: datetime | None = Field(None, description="Token expiration timestamp")
    scopes: list[str] = Field(default_factory=list, description="Granted scopes")
    client_id: str | None = Field(None, description="Client the token was issued to")
    stored_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def is_expired(self) -> bool:
        """Check if token is expired."""
        if not self.expires_at:
            return False
        # Add 5-minute buffer to avoid race conditions
        return datetime.now(UTC) >= (self.expires_at - timedelta(minutes=5))

    def time_until_expiry(self) -> timedelta | None:
        """Get time until token expires."""
        if not self.expires_at:
            return None
        return self.expires_at - datetime.now(UTC)


@runtime_checkable
class CredentialVault(Protocol):
    """Persistence for the current OAuth credential."""

    def store(
        self,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None,
        scopes: list[str],
        token_type: str,
        client_id: str | None,
    ) -> None: ...

    def get(self) -> StoredCredential | None: ...

    def clear(self) -> None: ...


class FileCredentialVault:
    """
    File-based credential storage with optional encryption.

    Security considerations:
    - Credentials are encrypted at rest using Fernet (symmetric encryption)
    - Files are created with 0600 permissions
    - In production, consider using a proper secret management service
    """

    def __init__(self, storage_path: Path, encryption_key: str | None = None, name: str = "default"):
        """
        Initialize credential vault.

        Args:
            storage_path: Directory to store credential files
            encryption_key: Optional encryption key (base64-encoded Fernet key)
            name: Credential name, used as the file name
        """
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.name = name

        # Initialize encryption if key is provided
        self.cipher: Fernet | None = None
        if encryption_key:
            try:
                self.cipher = Fernet(encryption_key.encode())
                logger.info("Credential encryption enabled")
            except (ValueError, TypeError) as e:
                logger.warning(
                    f"Failed to initialize encryption: {e}. Credentials will be stored unencrypted."
                )
        else:
            logger.warning("No encryption key provided. Credentials will be stored unencrypted.")

    @property
    def path(self) -> Path:
        """File holding the credential."""
        safe_name = "".join(c if c.isalnum() or c in "_-" else "_" for c in self.name)
        return self.storage_path / f"{safe_name}.token"

    def store(
        self,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None,
        scopes: list[str],
        token_type: str = "Bearer",
        client_id: str | None = None,
    ) -> None:
        """Save the credential, replacing any existing one.

        Raises:
            OSError: If the file cannot be written
        """
        credential = StoredCredential(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type=token_type,
            expires_at=expires_at,
            scopes=list(scopes),
            client_id=client_id,
        )
        data = json.dumps(credential.model_dump(mode="json")).encode()

        # Encrypt if encryption is enabled
        if self.cipher:
            data = self.cipher.encrypt(data)

        # Create with secure permissions from the start
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        except OSError as e:
            logger.error(f"Failed to save credential {self.name}: {e}")
            raise

        logger.info(f"Saved credential {self.name}")

    def get(self) -> StoredCredential | None:
        """
        Retrieve the credential.

        Returns:
            StoredCredential if found and readable, None otherwise
        """
        if not self.path.exists():
            logger.debug(f"No credential found for {self.name}")
            return None

        try:
            data = self.path.read_bytes()

            # Decrypt if encryption is enabled
            if self.cipher:
                data = self.cipher.decrypt(data)

            return StoredCredential(**json.loads(data.decode()))

        except (OSError, InvalidToken, ValueError, ValidationError) as e:
            logger.error(f"Failed to retrieve credential {self.name}: {e}")
            return None

    def clear(self) -> None:
        """Delete the credential. Missing files are ignored."""
        try:
            self.path.unlink()
            logger.info(f"Deleted credential {self.name}")
        except FileNotFoundError:
            pass

    @staticmethod
    def generate_encryption_key() -> str:
        """Generate a new Fernet encryption key."""
        return Fernet.generate_key().decode()
