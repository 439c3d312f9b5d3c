"""
Article publishing orchestration.

Uploads article folders to permanent storage (plain, or two-phase when the
content is encrypted), updates them through Root-TX manifests, and records
them on BlogHub through the session key.
"""

import logging
from typing import Dict, List, Optional, Tuple

from amberink.config import settings
from amberink.constants import PLACEHOLDER_CACHE_PREFIX, PLACEHOLDER_CONTENT
from amberink.core.encryption.key_cache import EncryptionKeyCache
from amberink.core.encryption.keys import (
    ArticleKey,
    decrypt_content,
    derive_key,
    encrypt_content,
    should_decrypt,
    signing_message,
)
from amberink.core.execution.actions import EditArticle, Publish, Visibility
from amberink.core.execution.executor import DelegatedExecutor
from amberink.core.recovery.errors import (
    AmberInkError,
    InsufficientFundsError,
    SessionKeyError,
    ValidationError,
    classify_error,
)
from amberink.core.wallet.session_manager import SessionKeyManager
from amberink.core.wallet.store import KeyValueStore
from amberink.logging_config import bind_owner
from amberink.providers.base import ManifestIndex, StorageUploader, Tag, WalletProvider
from amberink.providers.gateway import GatewayClient
from amberink.services.funding import BalanceController

from .manifest import (
    ArticleFolderManifest,
    build_folder,
    content_image_tags,
    content_tags,
    cover_tags,
    manifest_tags,
)
from .models import (
    ArticleFolderParams,
    ArticleFolderResult,
    ArticleUpdateParams,
    ArticleUpdateResult,
    ContentImage,
    PublishArticleParams,
    PublishArticleResult,
    ResolvedArticle,
    SignatureProvider,
    UploadFile,
)

logger = logging.getLogger(__name__)


class PublishOrchestrator:
    """
    Publishes, edits and resolves articles.

    Storage writes go through ``uploader``; on-chain writes go through the
    session key, so neither needs a wallet prompt once the key is ready.
    """

    def __init__(
        self,
        uploader: StorageUploader,
        store: KeyValueStore,
        balance: BalanceController,
        gateway: Optional[GatewayClient] = None,
        index: Optional[ManifestIndex] = None,
        session_manager: Optional[SessionKeyManager] = None,
        executor: Optional[DelegatedExecutor] = None,
        wallet: Optional[WalletProvider] = None,
        key_cache: Optional[EncryptionKeyCache] = None,
        environment: Optional[str] = None,
    ):
        self.uploader = uploader
        self.store = store
        self.balance = balance
        self.gateway = gateway
        self.index = index
        self.session_manager = session_manager
        self.executor = executor
        self.wallet = wallet or (session_manager.wallet if session_manager else None)
        self.key_cache = key_cache or EncryptionKeyCache(store)
        self.environment = environment or settings.environment

    # Uploads

    async def _upload(self, data: bytes, tags: List[Tag], what: str, paid_by: Optional[str] = None) -> str:
        """
        Upload one payload.

        ``paid_by`` is only passed above the free size; otherwise our own
        storage balance must cover it.
        """
        effective_paid_by = None if self.balance.is_within_free_limit(len(data)) else paid_by
        if effective_paid_by is None:
            if not await self.balance.ensure_storage_balance(self.uploader, len(data)):
                raise InsufficientFundsError(f"Failed to fund storage for {what}. Please try again.")

        try:
            tx_id = await self.uploader.upload(data, tags, effective_paid_by)
        except AmberInkError:
            raise
        except Exception as e:
            raise classify_error(e) from e
        logger.info(f"Uploaded {what} ({len(data)} bytes): {tx_id}")
        return tx_id

    async def upload_markdown(
        self,
        content: str,
        params: ArticleFolderParams,
        key: Optional[ArticleKey] = None,
        paid_by: Optional[str] = None,
    ) -> str:
        payload = encrypt_content(content, key) if key is not None else content
        tags = content_tags(
            params.title,
            params.author_address,
            params.visibility,
            params.originality,
            params.tags,
            encrypted=key is not None,
        )
        return await self._upload(payload.encode("utf-8"), tags, "article content", paid_by)

    async def upload_cover(self, cover: UploadFile, paid_by: Optional[str] = None) -> str:
        return await self._upload(cover.data, cover_tags(cover.content_type), "cover image", paid_by)

    async def upload_content_images(
        self,
        images: List[ContentImage],
        paid_by: Optional[str] = None,
    ) -> Dict[str, str]:
        uploaded: Dict[str, str] = {}
        for image in images:
            tags = content_image_tags(image.file.content_type, image.id)
            uploaded[image.filename] = await self._upload(
                image.file.data, tags, f"content image {image.filename}", paid_by
            )
        return uploaded

    async def upload_manifest(
        self,
        manifest: ArticleFolderManifest,
        params: ArticleFolderParams,
        root_tx: Optional[str] = None,
        paid_by: Optional[str] = None,
    ) -> str:
        tags = manifest_tags(params.title, params.summary, params.tags, root_tx=root_tx)
        return await self._upload(manifest.to_bytes(), tags, "manifest", paid_by)

    def _placeholder_cache_key(self) -> str:
        return f"{PLACEHOLDER_CACHE_PREFIX}_{self.environment}"

    async def placeholder_tx_id(self, params: ArticleFolderParams, paid_by: Optional[str] = None) -> str:
        """Shared throwaway index content for text-only encrypted articles, uploaded once per environment."""
        cached = self.store.get(self._placeholder_cache_key())
        if cached:
            return cached

        tx_id = await self.upload_markdown(PLACEHOLDER_CONTENT, params, paid_by=paid_by)
        self.store.set(self._placeholder_cache_key(), tx_id)
        logger.info(f"Placeholder content cached for {self.environment}: {tx_id}")
        return tx_id

    async def initial_index_tx_id(
        self,
        params: ArticleFolderParams,
        cover_tx_id: Optional[str],
        image_tx_ids: Dict[str, str],
        paid_by: Optional[str] = None,
    ) -> str:
        """Index entry of the first manifest of an encrypted article, before its content exists."""
        if cover_tx_id:
            return cover_tx_id
        if image_tx_ids:
            return next(iter(image_tx_ids.values()))
        return await self.placeholder_tx_id(params, paid_by)

    async def upload_article_folder(
        self,
        params: ArticleFolderParams,
        signature_provider: Optional[SignatureProvider] = None,
        paid_by: Optional[str] = None,
    ) -> ArticleFolderResult:
        """
        Upload an article folder and return its permanent manifest id.

        With a ``signature_provider`` the content is encrypted under a key
        bound to the manifest id, which only exists after a first upload:
        a placeholder manifest is uploaded first, then the ciphertext, then
        a second manifest tagged ``Root-TX=<first manifest id>``.
        """
        cover_tx_id = await self.upload_cover(params.cover_image, paid_by) if params.cover_image else None
        image_tx_ids = await self.upload_content_images(params.content_images, paid_by)

        if signature_provider is None:
            index_tx_id = await self.upload_markdown(params.content, params, paid_by=paid_by)
            manifest_id = await self.upload_manifest(
                build_folder(index_tx_id, cover_tx_id, image_tx_ids), params, paid_by=paid_by
            )
            return ArticleFolderResult(manifest_id, index_tx_id, cover_tx_id, image_tx_ids)

        initial_index = await self.initial_index_tx_id(params, cover_tx_id, image_tx_ids, paid_by)
        manifest_id = await self.upload_manifest(
            build_folder(initial_index, cover_tx_id, image_tx_ids), params, paid_by=paid_by
        )

        signature = await signature_provider(manifest_id)
        key = derive_key(signature)
        index_tx_id = await self.upload_markdown(params.content, params, key=key, paid_by=paid_by)

        updated_id = await self.upload_manifest(
            build_folder(index_tx_id, cover_tx_id, image_tx_ids),
            params,
            root_tx=manifest_id,
            paid_by=paid_by,
        )
        logger.info(f"Encrypted article {manifest_id} updated by manifest {updated_id}")
        return ArticleFolderResult(manifest_id, index_tx_id, cover_tx_id, image_tx_ids)

    async def update_article_folder(
        self,
        original_manifest_id: str,
        params: ArticleUpdateParams,
        paid_by: Optional[str] = None,
        key: Optional[ArticleKey] = None,
    ) -> ArticleUpdateResult:
        """
        Upload a new generation of an article folder.

        The previous files are carried over from the newest manifest in the
        article's Root-TX chain; if it cannot be fetched the update still
        goes ahead with the new files.
        """
        index_tx_id = await self.upload_markdown(params.content, params, key=key, paid_by=paid_by)

        cover_tx_id: Optional[str] = None
        existing_files: Dict[str, str] = {}
        original: Optional[ArticleFolderManifest] = None
        if self.gateway is not None:
            latest_id = original_manifest_id
            try:
                if self.index is not None:
                    latest_id = await self.index.latest_manifest_id(original_manifest_id) or original_manifest_id
                original = ArticleFolderManifest.from_dict(await self.gateway.fetch_manifest(latest_id))
            except AmberInkError as e:
                logger.warning(f"Failed to fetch previous manifest {latest_id}: {e.message}")

        if params.cover_image is not None:
            cover_tx_id = await self.upload_cover(params.cover_image, paid_by)
        elif original is not None and params.keep_existing_cover:
            cover_tx_id = original.cover_image_tx_id
        if original is not None:
            existing_files = original.content_files()

        new_images = await self.upload_content_images(params.content_images, paid_by)

        manifest = build_folder(index_tx_id, cover_tx_id, {**existing_files, **new_images})
        new_manifest_id = await self.upload_manifest(
            manifest, params, root_tx=original_manifest_id, paid_by=paid_by
        )
        return ArticleUpdateResult(new_manifest_id, index_tx_id, cover_tx_id)

    # End-to-end flows

    def _require_delegation(self) -> Tuple[SessionKeyManager, DelegatedExecutor]:
        if self.session_manager is None or self.executor is None:
            raise AmberInkError("Publishing requires a session key manager and executor")
        return self.session_manager, self.executor

    def _signature_provider(self) -> SignatureProvider:
        wallet = self.wallet
        if wallet is None:
            raise AmberInkError("Encrypted publishing requires an owner wallet")

        async def provide(manifest_id: str) -> str:
            signature = await wallet.sign_message(signing_message(manifest_id))
            self.key_cache.cache_signature(manifest_id, signature)
            return signature

        return provide

    @staticmethod
    def validate_publish(params: PublishArticleParams) -> None:
        if not params.title.strip():
            raise ValidationError("Title is required")
        if not params.content.strip():
            raise ValidationError("Content is required")
        # Arweave id is unknown until upload; check everything else before paying for storage
        Publish(
            arweave_id="pending",
            category_id=params.category_id,
            royalty_bps=params.royalty_bps,
            original_author=params.original_author,
            title=params.title.strip(),
            summary=params.summary.strip(),
            true_author=params.true_author,
            collect_price=params.collect_price,
            max_collect_supply=params.max_collect_supply,
            originality=params.originality,
            visibility=params.visibility,
        ).validate()

    async def publish_article(self, params: PublishArticleParams) -> PublishArticleResult:
        """
        Upload an article and register it on BlogHub through the session key.

        Raises:
            ValidationError: Bad parameters (nothing uploaded)
            SessionKeyError: No usable session key could be prepared
        """
        self.validate_publish(params)
        manager, executor = self._require_delegation()

        key = await manager.ensure_ready(required_selector=Publish.selector)
        if key is None:
            raise SessionKeyError("Failed to prepare session key. Please try again.")
        bind_owner(key.owner, session_key=key.address.lower())

        title = params.title.strip()
        summary = params.summary.strip()
        folder_params = ArticleFolderParams(
            title=title,
            summary=summary,
            content=params.content.strip(),
            author_address=key.owner,
            tags=params.tags,
            cover_image=params.cover_image,
            content_images=params.content_images,
            visibility=params.visibility,
            originality=params.originality,
        )
        signature_provider = (
            self._signature_provider() if params.visibility == Visibility.ENCRYPTED else None
        )
        folder = await self.upload_article_folder(folder_params, signature_provider, paid_by=key.owner)

        tx_hash = await executor.execute(
            key,
            Publish(
                arweave_id=folder.manifest_id,
                category_id=params.category_id,
                royalty_bps=params.royalty_bps,
                original_author=params.original_author,
                title=title,
                summary=summary,
                true_author=params.true_author,
                collect_price=params.collect_price,
                max_collect_supply=params.max_collect_supply,
                originality=params.originality,
                visibility=params.visibility,
            ),
        )
        logger.info(f"Published article {folder.manifest_id}. Tx: {tx_hash}")
        return PublishArticleResult(arweave_id=folder.manifest_id, tx_hash=tx_hash, folder=folder)

    async def edit_article(
        self,
        article_id: int,
        original_manifest_id: str,
        params: ArticleUpdateParams,
        category_id: int,
        original_author: str = "",
    ) -> Tuple[ArticleUpdateResult, str]:
        """
        Upload a new folder generation and record the edit on BlogHub.

        Encrypted articles stay encrypted under the key bound to the
        original manifest id.
        """
        manager, executor = self._require_delegation()
        action = EditArticle(
            article_id=article_id,
            original_author=original_author,
            title=params.title.strip(),
            summary=params.summary.strip(),
            category_id=category_id,
        )
        action.validate()

        key = await manager.ensure_ready(required_selector=EditArticle.selector)
        if key is None:
            raise SessionKeyError("Failed to prepare session key. Please try again.")
        bind_owner(key.owner, session_key=key.address.lower())

        article_key = None
        if params.visibility == Visibility.ENCRYPTED:
            if self.wallet is None:
                raise AmberInkError("Encrypted editing requires an owner wallet")
            article_key = await self.key_cache.request_key(original_manifest_id, self.wallet)

        update = await self.update_article_folder(
            original_manifest_id, params, paid_by=key.owner, key=article_key
        )
        tx_hash = await executor.execute(key, action)
        logger.info(f"Edited article {article_id} ({update.new_manifest_tx_id}). Tx: {tx_hash}")
        return update, tx_hash

    # Reading

    async def resolve_article(
        self,
        article_id: str,
        visibility: Optional[int] = None,
        request_key: bool = False,
    ) -> ResolvedArticle:
        """
        Fetch the article's content at its newest manifest, decrypting when possible.

        Encrypted content is decrypted with a cached key, or by asking the
        wallet to sign when ``request_key`` is set. Otherwise the ciphertext
        is returned with ``decrypted=False``.

        Raises:
            NetworkError: The manifest or its content could not be fetched
            DecryptionError: A key was available but does not open the content
        """
        if self.gateway is None:
            raise AmberInkError("Resolving articles requires a gateway client")

        latest_id = None
        if self.index is not None:
            latest_id = await self.index.latest_manifest_id(article_id)
        manifest_id = latest_id or article_id

        manifest = ArticleFolderManifest.from_dict(await self.gateway.fetch_manifest(manifest_id))
        if not manifest.index_tx_id:
            raise ValidationError(f"Manifest {manifest_id} has no index file")
        content = await self.gateway.fetch_text(manifest.index_tx_id)

        resolved = ResolvedArticle(
            article_id=article_id,
            manifest_id=manifest_id,
            content=content,
            files=dict(manifest.paths),
        )
        if not should_decrypt(content, visibility):
            return resolved

        resolved.encrypted = True
        # First generation of an encrypted article only holds a placeholder
        if self.index is not None and latest_id is None and visibility is not None:
            resolved.pending = True
            return resolved

        key = self.key_cache.get_key(article_id)
        if key is None and request_key and self.wallet is not None:
            key = await self.key_cache.request_key(article_id, self.wallet)
        if key is None:
            return resolved

        resolved.content = decrypt_content(content, key)
        resolved.decrypted = True
        return resolved
