"""Encryption utilities for secrets stored at rest."""

from cryptography.fernet import Fernet, InvalidToken

from aris.core.config import settings


_fernet: Fernet | None = None


def get_fernet() -> Fernet:
    """Get or create Fernet instance for encryption/decryption."""
    global _fernet
    if _fernet is None:
        if not settings.FERNET_KEY:
            raise RuntimeError(
                "FERNET_KEY not configured. "
                'Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            )
        _fernet = Fernet(settings.FERNET_KEY.encode())
    return _fernet


def encrypt_secret(value: str) -> str:
    """Encrypt a secret (password, token, API key) for storage."""
    if not value:
        return ""
    return get_fernet().encrypt(value.encode()).decode()


def decrypt_secret(encrypted: str) -> str:
    """Decrypt a stored secret."""
    if not encrypted:
        return ""
    try:
        return get_fernet().decrypt(encrypted.encode()).decode()
    except InvalidToken:
        raise ValueError("Invalid or corrupted encrypted secret")


def mask_secret(encrypted: str | None) -> str | None:
    """Return a display-safe version of a stored secret: sk-a...wxyz."""
    if not encrypted:
        return None
    try:
        plain = decrypt_secret(encrypted)
    except ValueError:
        return "****"
    if len(plain) <= 8:
        return "****"
    return f"{plain[:4]}...{plain[-4:]}"


def is_encryption_configured() -> bool:
    """Check if encryption is properly configured."""
    return bool(settings.FERNET_KEY)
