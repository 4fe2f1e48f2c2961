# encryption.py — Field-level encryption for stored credentials
"""
AES-256-GCM sealing for secrets persisted inside JSON configuration blobs
(e.g. a ticketing API key inside Source.api_connection_config).

Sealed format: ``<nonce hex>:<tag hex>:<ciphertext hex>``.
The key comes from ENCRYPTION_KEY (64 hex characters = 32 bytes).
"""
import os
import logging
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger("foundry.encryption")

NONCE_LENGTH = 12
TAG_LENGTH = 16


class EncryptionError(Exception):
    pass


def _load_key() -> Optional[bytes]:
    raw = os.getenv("ENCRYPTION_KEY", "").strip()
    if not raw:
        return None
    if len(raw) != 64:
        raise EncryptionError("ENCRYPTION_KEY must be exactly 64 hexadecimal characters")
    try:
        return bytes.fromhex(raw)
    except ValueError:
        raise EncryptionError("ENCRYPTION_KEY must be valid hexadecimal")


def is_configured() -> bool:
    return _load_key() is not None


def encrypt(plaintext: str) -> str:
    key = _load_key()
    if key is None:
        raise EncryptionError("ENCRYPTION_KEY not configured")
    nonce = os.urandom(NONCE_LENGTH)
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt(sealed: str) -> str:
    key = _load_key()
    if key is None:
        raise EncryptionError("ENCRYPTION_KEY not configured")
    try:
        nonce_hex, tag_hex, ciphertext_hex = sealed.split(":")
        nonce = bytes.fromhex(nonce_hex)
        payload = bytes.fromhex(ciphertext_hex) + bytes.fromhex(tag_hex)
    except ValueError:
        raise EncryptionError("Malformed encrypted value")
    try:
        return AESGCM(key).decrypt(nonce, payload, None).decode("utf-8")
    except InvalidTag:
        logger.warning("Rejected encrypted value with invalid authentication tag")
        raise EncryptionError("Encrypted value failed authentication")
