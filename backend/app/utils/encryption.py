"""
Encryption utilities for secrets stored in the local database.

Uses Fernet (AES-128) symmetric encryption for MCP server environment
overrides, which commonly carry API tokens.
"""

import json
import logging
import os
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_FILE = Path.home() / ".desk" / "encryption.key"


def _get_or_create_encryption_key() -> bytes:
    """
    Get encryption key from the ENCRYPTION_KEY environment variable or key file.
    Auto-generates and saves one if neither is usable.
    """
    env_key = os.getenv("ENCRYPTION_KEY")
    if env_key:
        try:
            Fernet(env_key.encode())
            return env_key.encode()
        except ValueError as e:
            logger.warning("Invalid ENCRYPTION_KEY in environment: %s", e)

    if ENCRYPTION_KEY_FILE.exists():
        try:
            key = ENCRYPTION_KEY_FILE.read_bytes().strip()
            Fernet(key)
            return key
        except (OSError, ValueError) as e:
            logger.warning("Invalid encryption key in file: %s", e)

    logger.info("Generating new encryption key")
    key = Fernet.generate_key()
    try:
        ENCRYPTION_KEY_FILE.parent.mkdir(parents=True, exist_ok=True)
        ENCRYPTION_KEY_FILE.write_bytes(key)
        # owner read/write only
        ENCRYPTION_KEY_FILE.chmod(0o600)
        logger.info("Saved encryption key to %s", ENCRYPTION_KEY_FILE)
    except OSError as e:
        logger.error("Failed to save encryption key: %s", e)

    return key


def encrypt(plaintext: str) -> str:
    if not plaintext:
        return ""
    fernet = Fernet(_get_or_create_encryption_key())
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt(ciphertext: str) -> str:
    """
    Decrypt a value produced by `encrypt`.

    Raises:
        ValueError: if the key changed since the value was written
    """
    if not ciphertext:
        return ""
    fernet = Fernet(_get_or_create_encryption_key())
    try:
        return fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken as e:
        logger.error("Failed to decrypt data: %s", e)
        raise ValueError("Failed to decrypt data - encryption key may have changed") from e


def encrypt_env(env: dict[str, str]) -> str:
    if not env:
        return ""
    return encrypt(json.dumps(env, sort_keys=True))


def decrypt_env(ciphertext: str) -> dict[str, str]:
    raw = decrypt(ciphertext)
    if not raw:
        return {}
    value = json.loads(raw)
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items()}


def mask_secret(value: str, show_chars: int = 4) -> str:
    """Mask a secret for display, e.g. "...xyz1"."""
    if not value or len(value) <= show_chars:
        return "***"
    return f"...{value[-show_chars:]}"
