"""Authenticated encryption, hashing and integrity checks for backup payloads."""

import base64
import binascii
import hashlib
import hmac
import json
import os
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..utils.errors import ConfigurationError, IntegrityError, ValidationError, create_error_suggestions

ENCRYPTION_ALGORITHM = "aes-256-gcm"
KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16
PBKDF2_ITERATIONS = 100000

ENVELOPE_FIELDS = ("cipherTextHex", "ivHex", "authTagHex", "algorithm")


def canonical_json(data: Any) -> str:
    """Serialize a value to the canonical string form used for hashing and encryption."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _to_bytes(data: Any) -> bytes:
    if isinstance(data, bytes):
        return data
    if isinstance(data, str):
        return data.encode("utf-8")
    return canonical_json(data).encode("utf-8")


def secure_hash(data: Any) -> str:
    """Return the SHA-256 hex digest of data (str, bytes or a JSON-serializable value)."""
    return hashlib.sha256(_to_bytes(data)).hexdigest()


def secure_compare(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """
    Compare two values in constant time.

    Returns False on a length mismatch or unsupported types instead of raising.
    """
    try:
        a_bytes = a if isinstance(a, bytes) else a.encode("utf-8")
        b_bytes = b if isinstance(b, bytes) else b.encode("utf-8")
    except AttributeError:
        return False

    if len(a_bytes) != len(b_bytes):
        return False
    return hmac.compare_digest(a_bytes, b_bytes)


class CryptoContext:
    """Owns the symmetric key material used by EncryptionService."""

    def __init__(self, key: bytes):
        """
        Initialize crypto context.

        Args:
            key: Raw 256-bit key

        Raises:
            ConfigurationError: If the key is not exactly 32 bytes
        """
        if not isinstance(key, bytes) or len(key) != KEY_LENGTH:
            length = len(key) if isinstance(key, (bytes, str)) else "unknown"
            raise ConfigurationError(
                "Encryption key must be exactly 32 bytes",
                details=f"Got key of length {length}",
                suggestions=create_error_suggestions("invalid_key"),
            )
        self._key = key

    @classmethod
    def from_key(cls, key: bytes) -> "CryptoContext":
        return cls(key)

    @classmethod
    def from_encoded_key(cls, encoded: str) -> "CryptoContext":
        """
        Build a context from a key encoded as 64 hex characters or base64.

        Raw strings of other shapes are rejected rather than padded or
        truncated.
        """
        value = (encoded or "").strip()

        if len(value) == KEY_LENGTH * 2:
            try:
                return cls(bytes.fromhex(value))
            except ValueError:
                pass

        try:
            decoded = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            decoded = b""
        if len(decoded) != KEY_LENGTH:
            try:
                decoded = base64.urlsafe_b64decode(value)
            except (binascii.Error, ValueError):
                decoded = b""

        if len(decoded) == KEY_LENGTH:
            return cls(decoded)

        raise ConfigurationError(
            "Malformed encryption key material",
            details="Expected 64 hex characters or base64 encoding of 32 bytes",
            suggestions=create_error_suggestions("invalid_key"),
        )

    @classmethod
    def from_passphrase(
        cls,
        passphrase: str,
        salt: Union[str, bytes],
        iterations: int = PBKDF2_ITERATIONS,
    ) -> "CryptoContext":
        """Derive a key from a passphrase with PBKDF2-HMAC-SHA256."""
        if not passphrase:
            raise ConfigurationError("Encryption passphrase must not be empty")
        if not salt:
            raise ConfigurationError(
                "A salt is required to derive an encryption key from a passphrase",
                suggestions=["Set encryption.salt to a random value and keep it stable"],
            )

        salt_bytes = salt if isinstance(salt, bytes) else salt.encode("utf-8")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt_bytes,
            iterations=iterations,
        )
        return cls(kdf.derive(passphrase.encode("utf-8")))

    @classmethod
    def generate(cls) -> "CryptoContext":
        return cls(AESGCM.generate_key(bit_length=256))

    @property
    def key_hex(self) -> str:
        return self._key.hex()

    def cipher(self) -> AESGCM:
        return AESGCM(self._key)


class EncryptionService:
    """Symmetric authenticated encryption (AES-256-GCM) with integrity helpers."""

    def __init__(self, context: CryptoContext):
        self.context = context

    def encrypt(self, plaintext: Any) -> Dict[str, str]:
        """
        Encrypt a value into a self-describing envelope.

        Bytes are encrypted as-is; every other value, strings included, is
        serialized to canonical JSON first so decrypt returns the same value.

        Returns:
            Dict[str, str]: cipherTextHex, ivHex, authTagHex, algorithm, timestamp
        """
        if isinstance(plaintext, bytes):
            payload = plaintext
        else:
            payload = canonical_json(plaintext).encode("utf-8")

        iv = os.urandom(IV_LENGTH)
        sealed = self.context.cipher().encrypt(iv, payload, None)
        cipher_text, auth_tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        return {
            "cipherTextHex": cipher_text.hex(),
            "ivHex": iv.hex(),
            "authTagHex": auth_tag.hex(),
            "algorithm": ENCRYPTION_ALGORITHM,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def decrypt(self, package: Dict[str, Any]) -> Any:
        """
        Decrypt an envelope produced by encrypt.

        JSON plaintext is decoded, other UTF-8 text is returned as a string and
        anything else as the raw bytes.

        Raises:
            ValidationError: If the envelope is missing fields or uses an unknown algorithm
            IntegrityError: If authentication fails
        """
        if not is_envelope(package):
            raise ValidationError("Invalid encrypted package format")

        if package["algorithm"] != ENCRYPTION_ALGORITHM:
            raise ValidationError(f"Unsupported encryption algorithm: {package['algorithm']}")

        try:
            cipher_text = bytes.fromhex(package["cipherTextHex"])
            iv = bytes.fromhex(package["ivHex"])
            auth_tag = bytes.fromhex(package["authTagHex"])
        except (TypeError, ValueError) as e:
            raise IntegrityError("Encrypted package is corrupted", details=str(e)) from e

        if len(auth_tag) != TAG_LENGTH or len(iv) < 8:
            raise IntegrityError("Encrypted package is corrupted", details="Invalid IV or tag length")

        try:
            plaintext = self.context.cipher().decrypt(iv, cipher_text + auth_tag, None)
        except InvalidTag as e:
            raise IntegrityError("Data decryption failed: authentication tag mismatch") from e

        try:
            text = plaintext.decode("utf-8")
        except UnicodeDecodeError:
            return plaintext
        try:
            return json.loads(text)
        except ValueError:
            return text

    def hash(self, data: Any) -> str:
        return secure_hash(data)

    def verify_integrity(self, data: Any, expected_hash: str) -> bool:
        """Recompute the hash of data and compare it to expected_hash in constant time."""
        if not isinstance(expected_hash, (str, bytes)):
            return False
        return secure_compare(secure_hash(data), expected_hash)

    def secure_compare(self, a: Union[str, bytes], b: Union[str, bytes]) -> bool:
        return secure_compare(a, b)

    def generate_token(self, length: int = 32) -> str:
        """Generate a random hex token of length bytes."""
        return secrets.token_hex(length)


def is_envelope(value: Any) -> bool:
    """Return True if value looks like an encryption envelope."""
    return isinstance(value, dict) and all(isinstance(value.get(field), str) for field in ENVELOPE_FIELDS)
