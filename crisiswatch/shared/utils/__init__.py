"""Shared utilities for the crisiswatch pipeline."""
from .pii import (
    configure_pii_salt,
    hash_contact,
    hash_pii,
    hash_text_for_audit,
    is_pii_salt_configured,
)

__all__ = [
    "configure_pii_salt",
    "hash_contact",
    "hash_pii",
    "hash_text_for_audit",
    "is_pii_salt_configured",
]
