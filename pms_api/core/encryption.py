"""Encryption and masking for integration credentials stored at rest."""

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from pms_api.core.config import Settings, settings


_ENCRYPTED_PREFIX = "enc:"
_KEY_DERIVATION_SALT = b"pms_integration_settings_v1"
_MIN_AUTH_SECRET_LENGTH = 32

# Display mask: fixed run of mask characters, then at most the last few characters
MASK_CHAR = "•"
MASK_LENGTH = 8
MASK_VISIBLE_SUFFIX = 4
# Secrets shorter than this are fully masked so the suffix never reveals a large share
MASK_MIN_LENGTH_FOR_SUFFIX = 12


class SecretDecryptionError(ValueError):
    """Stored value could not be decrypted with any configured key."""


def derive_key_from_secret(secret: str) -> bytes:
    """Derive a Fernet key from AUTH_SECRET (scrypt, fixed salt so restarts agree)."""
    if not secret or len(secret) < _MIN_AUTH_SECRET_LENGTH:
        raise RuntimeError(
            f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} characters for encryption"
        )
    raw = hashlib.scrypt(
        secret.encode(),
        salt=_KEY_DERIVATION_SALT,
        n=2**14,
        r=8,
        p=1,
        dklen=32,
    )
    return base64.urlsafe_b64encode(raw)


class SecretCodec:
    """
    Encrypts, decrypts and masks credential values.

    Encryption always uses the first (current) key; decryption accepts any
    configured key so a previous key can be retired after re-saving settings.
    """

    def __init__(self, keys: list[bytes]):
        if not keys:
            raise RuntimeError("At least one encryption key is required")
        self._fernet = MultiFernet([Fernet(key) for key in keys])

    @classmethod
    def from_settings(cls, config: Settings) -> "SecretCodec":
        keys: list[bytes] = []
        if config.INTEGRATION_ENCRYPTION_KEY:
            keys.append(config.INTEGRATION_ENCRYPTION_KEY.encode())
        elif config.AUTH_SECRET:
            keys.append(derive_key_from_secret(config.AUTH_SECRET))
        else:
            raise RuntimeError(
                "INTEGRATION_ENCRYPTION_KEY not configured. "
                'Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            )
        if config.INTEGRATION_ENCRYPTION_KEY_PREVIOUS:
            keys.append(config.INTEGRATION_ENCRYPTION_KEY_PREVIOUS.encode())
        return cls(keys)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a credential value for storage."""
        token = self._fernet.encrypt(plaintext.encode()).decode()
        return f"{_ENCRYPTED_PREFIX}{token}"

    def decrypt(self, stored: str) -> str:
        """Decrypt a stored credential value."""
        if not is_encrypted(stored):
            raise SecretDecryptionError("Encrypted data is missing prefix")
        token = stored[len(_ENCRYPTED_PREFIX) :]
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken:
            raise SecretDecryptionError("Invalid or corrupted encrypted data")


def is_encrypted(value: object) -> bool:
    return isinstance(value, str) and value.startswith(_ENCRYPTED_PREFIX)


def mask_secret(value: str | None) -> str | None:
    """
    Return the display form of a secret.

    Long secrets show the last 4 characters behind a fixed-length mask
    ("••••••••wxyz"); short ones are fully masked. Blank input returns None.
    """
    if value is None or not str(value).strip():
        return None
    value = str(value)
    if len(value) < MASK_MIN_LENGTH_FOR_SUFFIX:
        return MASK_CHAR * MASK_LENGTH
    return MASK_CHAR * MASK_LENGTH + value[-MASK_VISIBLE_SUFFIX:]


_codec: SecretCodec | None = None


def get_codec() -> SecretCodec:
    """Get or create the process-wide codec."""
    global _codec
    if _codec is None:
        _codec = SecretCodec.from_settings(settings)
    return _codec


def is_encryption_configured() -> bool:
    """Check if encryption is properly configured."""
    return bool(
        settings.INTEGRATION_ENCRYPTION_KEY
        or len(settings.AUTH_SECRET) >= _MIN_AUTH_SECRET_LENGTH
    )
