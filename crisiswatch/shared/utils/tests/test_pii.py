"""Tests for PII hashing."""
import pytest

from crisiswatch.shared.utils import pii
from crisiswatch.shared.utils import configure_pii_salt, hash_contact, hash_pii, hash_text_for_audit


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


class TestConfigurePiiSalt:

    def test_short_salt_rejected(self):
        with pytest.raises(ValueError):
            configure_pii_salt("too_short")

    def test_empty_salt_rejected(self):
        with pytest.raises(ValueError):
            configure_pii_salt("")


class TestHashPii:

    def test_hash_is_deterministic(self):
        assert hash_pii("+15551234567") == hash_pii("+15551234567")

    def test_hash_hides_value(self):
        hashed = hash_pii("+15551234567")
        assert "5551234567" not in hashed
        assert len(hashed) == 64

    def test_unconfigured_salt_raises(self, monkeypatch):
        monkeypatch.setattr(pii, "_PII_SALT", None)
        with pytest.raises(RuntimeError):
            hash_pii("+15551234567")

    def test_hash_contact_passes_none(self):
        assert hash_contact(None) is None
        assert hash_contact("") is None
        assert hash_contact("a@b.com") == hash_pii("a@b.com")

    def test_audit_fingerprint_is_unsalted(self):
        assert hash_text_for_audit("hello") == hash_text_for_audit("hello")
        assert hash_text_for_audit("hello") != hash_pii("hello")
