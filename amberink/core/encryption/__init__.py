from .key_cache import EncryptionKeyCache
from .keys import (
    ArticleKey,
    decrypt_content,
    derive_key,
    encrypt_content,
    is_encrypted_content,
    should_decrypt,
    signing_message,
)

__all__ = [
    "ArticleKey",
    "EncryptionKeyCache",
    "decrypt_content",
    "derive_key",
    "encrypt_content",
    "is_encrypted_content",
    "should_decrypt",
    "signing_message",
]
