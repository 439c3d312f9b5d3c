"""
Article content encryption.

The key for an article is derived from the author's wallet signature over a
fixed message naming the article's permanent id, so the author can recover
it on any device by signing again. Payloads are AES-256-GCM with a random
12-byte nonce, stored as base64(nonce || ciphertext || tag).
"""

import base64
import binascii
import hashlib
import os
import re
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from amberink.constants import (
    AES_GCM_NONCE_BYTES,
    AES_GCM_TAG_BYTES,
    AES_KEY_BYTES,
    ENCRYPTION_MESSAGE_PREFIX,
    HKDF_INFO,
    HKDF_SALT,
)
from amberink.core.execution.actions import Visibility
from amberink.core.recovery.errors import DecryptionError, ValidationError

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+=*$")
_MIN_PAYLOAD_BYTES = AES_GCM_NONCE_BYTES + AES_GCM_TAG_BYTES


class ArticleKey:
    """
    AES-256-GCM key for one article.

    The raw key bytes are not exposed; two keys compare equal when they were
    derived from the same material.
    """

    __slots__ = ("_aead", "_fingerprint")

    def __init__(self, key: bytes):
        if len(key) != AES_KEY_BYTES:
            raise ValidationError(f"Article key must be {AES_KEY_BYTES} bytes")
        self._aead = AESGCM(key)
        self._fingerprint = hashlib.sha256(key).hexdigest()[:16]

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    def encrypt(self, nonce: bytes, data: bytes) -> bytes:
        return self._aead.encrypt(nonce, data, None)

    def decrypt(self, nonce: bytes, data: bytes) -> bytes:
        return self._aead.decrypt(nonce, data, None)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ArticleKey):
            return NotImplemented
        return self._fingerprint == other._fingerprint

    def __hash__(self) -> int:
        return hash(self._fingerprint)

    def __repr__(self) -> str:
        return f"ArticleKey(fingerprint={self._fingerprint})"


def signing_message(article_id: str) -> str:
    """Message the author signs to (re)derive the key for ``article_id``."""
    return f"{ENCRYPTION_MESSAGE_PREFIX}{article_id}"


def _signature_bytes(signature: str) -> bytes:
    raw = signature[2:] if signature.startswith("0x") else signature
    try:
        data = bytes.fromhex(raw)
    except ValueError as e:
        raise ValidationError("Signature is not valid hex") from e
    if not data:
        raise ValidationError("Signature is empty")
    return data


def derive_key(signature: str) -> ArticleKey:
    """HKDF-SHA256 over the signature bytes. Deterministic for a given signature."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=AES_KEY_BYTES,
        salt=HKDF_SALT,
        info=HKDF_INFO,
    )
    return ArticleKey(hkdf.derive(_signature_bytes(signature)))


def encrypt_content(content: str, key: ArticleKey) -> str:
    nonce = os.urandom(AES_GCM_NONCE_BYTES)
    ciphertext = key.encrypt(nonce, content.encode("utf-8"))
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt_content(encrypted: str, key: ArticleKey) -> str:
    """
    Reverse ``encrypt_content``.

    Raises:
        DecryptionError: Malformed payload, wrong key or tampered data
    """
    try:
        combined = base64.b64decode(encrypted.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError("Encrypted content is not valid base64") from e
    if len(combined) < _MIN_PAYLOAD_BYTES:
        raise DecryptionError("Encrypted content is too short")

    nonce, ciphertext = combined[:AES_GCM_NONCE_BYTES], combined[AES_GCM_NONCE_BYTES:]
    try:
        plaintext = key.decrypt(nonce, ciphertext)
    except InvalidTag as e:
        raise DecryptionError() from e
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError("Decrypted content is not valid UTF-8") from e


def is_encrypted_content(content: str) -> bool:
    """
    Heuristic: valid base64 that decodes to at least nonce + tag bytes.

    Plain text that happens to be long base64 is misclassified, so prefer
    ``should_decrypt`` with a known visibility.
    """
    text = content.strip()
    if not text or not _BASE64_RE.match(text):
        return False
    try:
        decoded = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(decoded) >= _MIN_PAYLOAD_BYTES


def should_decrypt(content: str, visibility: Optional[int] = None) -> bool:
    """The article's visibility flag decides when known; the heuristic otherwise."""
    if visibility is not None:
        return int(visibility) == Visibility.ENCRYPTED
    return is_encrypted_content(content)
