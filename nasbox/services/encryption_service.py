"""Encryption service for securing stored server passwords."""

import sys
from typing import Optional
from cryptography.fernet import Fernet

from nasbox.config import settings

KEY_HINT = (
    "Generate a key with: python -c \"from cryptography.fernet import Fernet; "
    "print(Fernet.generate_key().decode())\""
)


class EncryptionService:
    """Service for encrypting and decrypting secrets with a Fernet key."""

    def __init__(self, encryption_key: Optional[str] = None):
        """Initialize encryption service.

        Args:
            encryption_key: Fernet key (defaults to settings.encryption_key).
        """
        self._key = encryption_key if encryption_key is not None else settings.encryption_key
        self._validate_encryption_key()
        self._fernet = Fernet(self._key.encode())

    def _validate_encryption_key(self) -> None:
        """Validate that the encryption key is properly configured.

        Raises:
            SystemExit: If the encryption key is missing or invalid.
        """
        if not self._key:
            print("ERROR: ENCRYPTION_KEY environment variable is not set.", file=sys.stderr)
            print("Server passwords cannot be stored without a valid encryption key.", file=sys.stderr)
            print(KEY_HINT, file=sys.stderr)
            sys.exit(1)

        try:
            Fernet(self._key.encode())
        except Exception as e:
            print(f"ERROR: Invalid ENCRYPTION_KEY format: {e}", file=sys.stderr)
            print(KEY_HINT, file=sys.stderr)
            sys.exit(1)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string.

        Args:
            plaintext: The string to encrypt.

        Returns:
            The encrypted string (base64 encoded).
        """
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a ciphertext string.

        Raises:
            InvalidToken: If the ciphertext is invalid or was encrypted with another key.
        """
        return self._fernet.decrypt(ciphertext.encode()).decode()
