"""Encryption and integrity services for Strongbox."""

from .encryption import CryptoContext, EncryptionService, secure_compare, secure_hash

__all__ = ["CryptoContext", "EncryptionService", "secure_compare", "secure_hash"]
