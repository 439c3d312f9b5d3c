import logging
from typing import Optional

from amberink.constants import ENCRYPTION_SIG_CACHE_PREFIX
from amberink.core.recovery.errors import ValidationError
from amberink.core.wallet.store import KeyValueStore
from amberink.providers.base import WalletProvider

from .keys import ArticleKey, derive_key, signing_message

logger = logging.getLogger(__name__)


class EncryptionKeyCache:
    """
    Per-device cache of the author's encryption signatures, keyed by article id.

    Only the signature is stored; the key is re-derived on each use.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def cache_key(article_id: str) -> str:
        return f"{ENCRYPTION_SIG_CACHE_PREFIX}{article_id}"

    def cache_signature(self, article_id: str, signature: str) -> None:
        self.store.set(self.cache_key(article_id), {"signature": signature})
        logger.debug(f"Cached encryption signature for article {article_id}")

    def get_signature(self, article_id: str) -> Optional[str]:
        entry = self.store.get(self.cache_key(article_id))
        if entry is None:
            return None
        if not isinstance(entry, dict) or not entry.get("signature"):
            logger.warning(f"Discarding malformed encryption signature entry for {article_id}")
            self.clear(article_id)
            return None
        return entry["signature"]

    def get_key(self, article_id: str) -> Optional[ArticleKey]:
        """Key from the cached signature, or None. An underivable signature is dropped."""
        signature = self.get_signature(article_id)
        if signature is None:
            return None
        try:
            return derive_key(signature)
        except ValidationError as e:
            logger.warning(f"Cached signature for {article_id} is unusable ({e.message}), clearing")
            self.clear(article_id)
            return None

    async def request_key(self, article_id: str, wallet: WalletProvider) -> ArticleKey:
        """
        Cached key for ``article_id``, else ask the wallet to sign and cache the result.

        Raises:
            UserRejectedError: The author declined to sign
        """
        key = self.get_key(article_id)
        if key is not None:
            return key

        signature = await wallet.sign_message(signing_message(article_id))
        self.cache_signature(article_id, signature)
        return derive_key(signature)

    def clear(self, article_id: str) -> None:
        self.store.delete(self.cache_key(article_id))
