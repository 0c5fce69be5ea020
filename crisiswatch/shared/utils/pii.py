"""PII handling for caller contact details.

Phone numbers, e-mail addresses and names never appear raw in logs or
outbound events; they are replaced by a salted hash. Message content is
only ever logged as a fingerprint.
"""
import hashlib
import logging
from typing import Optional

logger = logging.getLogger(__name__)

MIN_SALT_LENGTH = 32

_PII_SALT: Optional[str] = None


def configure_pii_salt(salt: str) -> None:
    """Configure the hashing salt. Call once during application startup.

    Args:
        salt: Secret salt value (PII_SALT)

    Raises:
        ValueError: If salt is empty or shorter than 32 characters
    """
    global _PII_SALT
    if not salt or len(salt) < MIN_SALT_LENGTH:
        logger.critical(
            "PII_SALT_CONFIGURATION_FAILED",
            extra={"reason": "Salt too short or empty", "min_length": MIN_SALT_LENGTH}
        )
        raise ValueError(f"PII salt must be at least {MIN_SALT_LENGTH} characters")

    _PII_SALT = salt
    logger.info("PII_SALT_CONFIGURED", extra={"salt_length": len(salt)})


def is_pii_salt_configured() -> bool:
    return _PII_SALT is not None


def hash_pii(value: str) -> str:
    """Hash a caller identifier for safe logging.

    Args:
        value: Phone number, e-mail address or other identifier

    Returns:
        64-char hex digest, stable for a given salt

    Raises:
        RuntimeError: If the salt has not been configured
    """
    if _PII_SALT is None:
        logger.critical(
            "PII_HASH_FAILED",
            extra={"reason": "Salt not configured", "action": "call configure_pii_salt()"}
        )
        raise RuntimeError("PII salt not configured. Call configure_pii_salt() first.")

    salted = f"{_PII_SALT}{value}"
    return hashlib.sha256(salted.encode()).hexdigest()


def hash_contact(value: Optional[str]) -> Optional[str]:
    """Like hash_pii but passes None through (for optional contact fields)."""
    if not value:
        return None
    return hash_pii(value)


def hash_text_for_audit(text: str) -> str:
    """Unsalted SHA-256 fingerprint of message text."""
    return hashlib.sha256(text.encode()).hexdigest()
