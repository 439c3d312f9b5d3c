"""
Tests for article folder uploads, the two-phase encrypted flow, edits and reads.
"""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from amberink.core.encryption.keys import (
    decrypt_content,
    derive_key,
    encrypt_content,
    signing_message,
)
from amberink.core.execution.actions import EditArticle, Publish, Visibility
from amberink.core.publishing.models import (
    ArticleFolderParams,
    ArticleUpdateParams,
    ContentImage,
    PublishArticleParams,
    UploadFile,
)
from amberink.core.publishing.orchestrator import PublishOrchestrator
from amberink.core.recovery.errors import (
    AmberInkError,
    DecryptionError,
    InsufficientFundsError,
    NetworkError,
    SessionKeyError,
    UserRejectedError,
    ValidationError,
)
from amberink.core.wallet.store import InMemoryStore
from amberink.services.funding import BalanceController
from amberink.services.price import PriceService
from tests.fakes import FakeChain, FakeIndex, FakeUploader, FakeWallet, make_session_key

SIGNATURE = "0x" + "5a" * 65
COVER = UploadFile(data=b"\x89PNG cover", content_type="image/png")
ORIGINAL_MANIFEST = {
    "manifest": "arweave/paths",
    "version": "0.2.0",
    "index": {"path": "index.md"},
    "paths": {
        "index.md": {"id": "old-index"},
        "coverImage": {"id": "old-cover"},
        "img1.png": {"id": "old-img"},
    },
}


class FakeGateway:
    def __init__(self, manifests=None, texts=None):
        self.manifests = manifests or {}
        self.texts = texts or {}

    async def fetch_manifest(self, manifest_id):
        if manifest_id not in self.manifests:
            raise NetworkError(f"Failed to fetch {manifest_id} from all gateways")
        return self.manifests[manifest_id]

    async def fetch_text(self, tx_id):
        return self.texts[tx_id]


def manifest_paths(uploader: FakeUploader, upload_index: int):
    data = json.loads(uploader.uploads[upload_index][0])
    return {name: entry["id"] for name, entry in data["paths"].items()}


def folder_params(**overrides) -> ArticleFolderParams:
    params = dict(title="Title", summary="Summary", content="# Hello", author_address="0xauthor")
    params.update(overrides)
    return ArticleFolderParams(**params)


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def balance(wallet):
    chain = FakeChain()
    return BalanceController(chain, wallet, price=PriceService(chain))


@pytest.fixture
def orchestrator(uploader, store, balance, wallet):
    return PublishOrchestrator(uploader, store, balance, wallet=wallet, environment="test")


# =============================================================================
# Folder Upload Tests
# =============================================================================

class TestPlainFolder:
    @pytest.mark.asyncio
    async def test_plain_article_without_cover(self, orchestrator, uploader):
        """Test that a 50 KB article is one content upload and one manifest, with no funding."""
        content = "a" * (50 * 1024)

        result = await orchestrator.upload_article_folder(folder_params(content=content))

        assert len(uploader.uploads) == 2
        assert uploader.uploads[0][0] == content.encode()
        assert manifest_paths(uploader, 1) == {"index.md": result.index_tx_id}
        assert result.manifest_id == "tx-2"
        assert uploader.tag_value(1, "Root-TX") is None
        assert uploader.funded == []

    @pytest.mark.asyncio
    async def test_cover_and_images(self, orchestrator, uploader):
        image = ContentImage(id="a1", extension="png", file=UploadFile(b"img", "image/png"))

        result = await orchestrator.upload_article_folder(
            folder_params(cover_image=COVER, content_images=[image])
        )

        assert result.cover_image_tx_id == "tx-1"
        assert result.content_image_tx_ids == {"a1.png": "tx-2"}
        assert manifest_paths(uploader, 3) == {"index.md": "tx-3", "coverImage": "tx-1", "a1.png": "tx-2"}
        assert uploader.tag_value(1, "Image-Id") == "a1"

    @pytest.mark.asyncio
    async def test_paid_by_only_above_free_limit(self, orchestrator, uploader):
        await orchestrator.upload_article_folder(
            folder_params(content="b" * 200_000), paid_by="0xowner"
        )

        assert uploader.uploads[0][2] == "0xowner"
        assert uploader.uploads[1][2] is None
        assert uploader.funded == []

    @pytest.mark.asyncio
    async def test_large_upload_funds_storage(self, orchestrator, uploader):
        await orchestrator.upload_article_folder(folder_params(content="b" * 200_000))
        assert uploader.funded == [uploader.price * 30]

    @pytest.mark.asyncio
    async def test_storage_funding_failure(self, orchestrator, uploader):
        uploader.fund_error = NetworkError()

        with pytest.raises(InsufficientFundsError):
            await orchestrator.upload_article_folder(folder_params(content="b" * 200_000))
        assert uploader.uploads == []


class TestEncryptedFolder:
    @pytest.mark.asyncio
    async def test_two_phase_upload_with_cover(self, orchestrator, uploader):
        """Test that the key is bound to the first manifest and the second one points back at it."""
        provider = AsyncMock(return_value=SIGNATURE)

        result = await orchestrator.upload_article_folder(
            folder_params(cover_image=COVER, visibility=Visibility.ENCRYPTED), provider
        )

        # cover, first manifest, ciphertext, second manifest
        assert len(uploader.uploads) == 4
        assert manifest_paths(uploader, 1) == {"index.md": "tx-1", "coverImage": "tx-1"}
        provider.assert_awaited_once_with("tx-2")
        assert manifest_paths(uploader, 3) == {"index.md": "tx-3", "coverImage": "tx-1"}
        assert uploader.tag_value(3, "Root-TX") == "tx-2"
        assert result.manifest_id == "tx-2"
        assert result.index_tx_id == "tx-3"

        ciphertext = uploader.uploads[2][0].decode()
        assert uploader.tag_value(2, "Encrypted") == "true"
        assert decrypt_content(ciphertext, derive_key(SIGNATURE)) == "# Hello"

    @pytest.mark.asyncio
    async def test_first_image_is_initial_index_without_cover(self, orchestrator, uploader):
        image = ContentImage(id="a1", extension="png", file=UploadFile(b"img", "image/png"))

        await orchestrator.upload_article_folder(
            folder_params(content_images=[image]), AsyncMock(return_value=SIGNATURE)
        )

        assert manifest_paths(uploader, 1)["index.md"] == "tx-1"

    @pytest.mark.asyncio
    async def test_text_only_placeholder_is_uploaded_once(self, orchestrator, uploader, store):
        provider = AsyncMock(return_value=SIGNATURE)

        await orchestrator.upload_article_folder(folder_params(), provider)
        await orchestrator.upload_article_folder(folder_params(title="Second"), provider)

        assert uploader.uploads[0][0] == b"empty text"
        assert store.get("amberink_placeholder_txid_test") == "tx-1"
        # second article: manifest, ciphertext, manifest
        assert len(uploader.uploads) == 7
        assert manifest_paths(uploader, 4) == {"index.md": "tx-1"}

    @pytest.mark.asyncio
    async def test_rejected_signature_stops_after_first_manifest(self, orchestrator, uploader):
        provider = AsyncMock(side_effect=UserRejectedError())

        with pytest.raises(UserRejectedError):
            await orchestrator.upload_article_folder(folder_params(cover_image=COVER), provider)
        assert len(uploader.uploads) == 2


class TestUpdateFolder:
    @pytest.mark.asyncio
    async def test_keeps_existing_cover_and_files(self, orchestrator, uploader):
        orchestrator.gateway = FakeGateway(manifests={"root-1": ORIGINAL_MANIFEST})

        result = await orchestrator.update_article_folder(
            "root-1", ArticleUpdateParams(title="T", summary="S", content="v2", author_address="0xa")
        )

        assert manifest_paths(uploader, 1) == {
            "index.md": "tx-1",
            "coverImage": "old-cover",
            "img1.png": "old-img",
        }
        assert uploader.tag_value(1, "Root-TX") == "root-1"
        assert result.new_manifest_tx_id == "tx-2"
        assert result.cover_image_tx_id == "old-cover"

    @pytest.mark.asyncio
    async def test_replaces_or_drops_cover(self, orchestrator, uploader):
        orchestrator.gateway = FakeGateway(manifests={"root-1": ORIGINAL_MANIFEST})

        replaced = await orchestrator.update_article_folder(
            "root-1",
            ArticleUpdateParams(title="T", summary="S", content="v2", author_address="0xa", cover_image=COVER),
        )
        dropped = await orchestrator.update_article_folder(
            "root-1",
            ArticleUpdateParams(
                title="T", summary="S", content="v3", author_address="0xa", keep_existing_cover=False
            ),
        )

        assert replaced.cover_image_tx_id == "tx-2"
        assert dropped.cover_image_tx_id is None
        assert "img1.png" in manifest_paths(uploader, len(uploader.uploads) - 1)

    @pytest.mark.asyncio
    async def test_carries_files_from_latest_generation(self, orchestrator, uploader):
        """Test that a second edit builds on the first edit's manifest, not the root one."""
        second_generation = {
            "manifest": "arweave/paths",
            "version": "0.2.0",
            "index": {"path": "index.md"},
            "paths": {
                "index.md": {"id": "v2-index"},
                "coverImage": {"id": "v2-cover"},
                "img1.png": {"id": "old-img"},
                "img2.png": {"id": "v2-img"},
            },
        }
        orchestrator.gateway = FakeGateway(manifests={"root-1": ORIGINAL_MANIFEST, "m2": second_generation})
        orchestrator.index = FakeIndex({"root-1": "m2"})

        result = await orchestrator.update_article_folder(
            "root-1", ArticleUpdateParams(title="T", summary="S", content="v3", author_address="0xa")
        )

        assert manifest_paths(uploader, 1) == {
            "index.md": "tx-1",
            "coverImage": "v2-cover",
            "img1.png": "old-img",
            "img2.png": "v2-img",
        }
        assert uploader.tag_value(1, "Root-TX") == "root-1"
        assert result.cover_image_tx_id == "v2-cover"

    @pytest.mark.asyncio
    async def test_unindexed_article_uses_root_manifest(self, orchestrator, uploader):
        orchestrator.gateway = FakeGateway(manifests={"root-1": ORIGINAL_MANIFEST})
        orchestrator.index = FakeIndex()

        await orchestrator.update_article_folder(
            "root-1", ArticleUpdateParams(title="T", summary="S", content="v2", author_address="0xa")
        )

        assert manifest_paths(uploader, 1)["coverImage"] == "old-cover"

    @pytest.mark.asyncio
    async def test_unreachable_original_still_updates(self, orchestrator, uploader):
        orchestrator.gateway = FakeGateway()

        result = await orchestrator.update_article_folder(
            "root-1", ArticleUpdateParams(title="T", summary="S", content="v2", author_address="0xa")
        )

        assert manifest_paths(uploader, 1) == {"index.md": "tx-1"}
        assert result.cover_image_tx_id is None


# =============================================================================
# Publish and Edit Tests
# =============================================================================

@pytest.fixture
def session_key(wallet):
    return make_session_key(owner=wallet.address)


@pytest.fixture
def delegated(orchestrator, session_key):
    manager = MagicMock()
    manager.ensure_ready = AsyncMock(return_value=session_key)
    executor = MagicMock()
    executor.execute = AsyncMock(return_value="0xhash")
    orchestrator.session_manager = manager
    orchestrator.executor = executor
    return orchestrator


class TestPublishArticle:
    @pytest.mark.asyncio
    async def test_publish_records_manifest_on_chain(self, delegated, uploader, session_key):
        result = await delegated.publish_article(
            PublishArticleParams(title="  Title ", content="# Body", category_id=2, royalty_bps=500)
        )

        delegated.session_manager.ensure_ready.assert_awaited_once_with(required_selector=Publish.selector)
        key, action = delegated.executor.execute.await_args.args
        assert key == session_key
        assert isinstance(action, Publish)
        assert action.arweave_id == result.arweave_id == "tx-2"
        assert action.title == "Title"
        assert result.tx_hash == "0xhash"
        assert uploader.tag_value(0, "Author") == session_key.owner

    @pytest.mark.asyncio
    async def test_invalid_params_upload_nothing(self, delegated, uploader):
        with pytest.raises(ValidationError):
            await delegated.publish_article(PublishArticleParams(title=" ", content="x", category_id=1))
        with pytest.raises(ValidationError):
            await delegated.publish_article(
                PublishArticleParams(title="T", content="x", category_id=1, royalty_bps=10_001)
            )

        assert uploader.uploads == []
        delegated.session_manager.ensure_ready.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_session_key(self, delegated, uploader):
        delegated.session_manager.ensure_ready.return_value = None

        with pytest.raises(SessionKeyError):
            await delegated.publish_article(PublishArticleParams(title="T", content="x", category_id=1))
        assert uploader.uploads == []

    @pytest.mark.asyncio
    async def test_encrypted_publish_signs_first_manifest(self, delegated, uploader, wallet):
        result = await delegated.publish_article(
            PublishArticleParams(title="T", content="secret", category_id=1, visibility=Visibility.ENCRYPTED)
        )

        assert wallet.signed_messages == [signing_message(result.arweave_id)]
        key = delegated.key_cache.get_key(result.arweave_id)
        assert decrypt_content(uploader.uploads[2][0].decode(), key) == "secret"
        _, action = delegated.executor.execute.await_args.args
        assert action.visibility == Visibility.ENCRYPTED

    @pytest.mark.asyncio
    async def test_requires_delegation(self, orchestrator):
        with pytest.raises(AmberInkError, match="session key manager"):
            await orchestrator.publish_article(PublishArticleParams(title="T", content="x", category_id=1))


class TestEditArticle:
    @pytest.mark.asyncio
    async def test_edit_uploads_then_records(self, delegated, uploader):
        delegated.gateway = FakeGateway(manifests={"root-1": ORIGINAL_MANIFEST})

        update, tx_hash = await delegated.edit_article(
            7,
            "root-1",
            ArticleUpdateParams(title="New", summary="S", content="v2", author_address="0xa"),
            category_id=3,
        )

        _, action = delegated.executor.execute.await_args.args
        assert isinstance(action, EditArticle)
        assert (action.article_id, action.title, action.category_id) == (7, "New", 3)
        assert tx_hash == "0xhash"
        assert update.new_manifest_tx_id == "tx-2"
        delegated.session_manager.ensure_ready.assert_awaited_once_with(required_selector=EditArticle.selector)

    @pytest.mark.asyncio
    async def test_encrypted_edit_keeps_original_key(self, delegated, uploader, wallet):
        delegated.key_cache.cache_signature("root-1", SIGNATURE)

        await delegated.edit_article(
            7,
            "root-1",
            ArticleUpdateParams(
                title="T", summary="S", content="v2 secret", author_address="0xa",
                visibility=Visibility.ENCRYPTED,
            ),
            category_id=3,
        )

        assert wallet.signed_messages == []
        assert decrypt_content(uploader.uploads[0][0].decode(), derive_key(SIGNATURE)) == "v2 secret"


# =============================================================================
# Resolve Tests
# =============================================================================

class TestResolveArticle:
    def manifest(self, index_id):
        return {"manifest": "arweave/paths", "paths": {"index.md": {"id": index_id}}}

    @pytest.mark.asyncio
    async def test_plain_article(self, orchestrator):
        orchestrator.index = FakeIndex()
        orchestrator.gateway = FakeGateway(
            manifests={"root": self.manifest("idx")}, texts={"idx": "# Hello"}
        )

        resolved = await orchestrator.resolve_article("root", Visibility.PUBLIC)

        assert resolved.content == "# Hello"
        assert resolved.manifest_id == "root"
        assert not resolved.encrypted

    @pytest.mark.asyncio
    async def test_encrypted_article_with_cached_key(self, orchestrator):
        ciphertext = encrypt_content("secret", derive_key(SIGNATURE))
        orchestrator.key_cache.cache_signature("root", SIGNATURE)
        orchestrator.index = FakeIndex({"root": "m2"})
        orchestrator.gateway = FakeGateway(manifests={"m2": self.manifest("enc")}, texts={"enc": ciphertext})

        resolved = await orchestrator.resolve_article("root", Visibility.ENCRYPTED)

        assert resolved.manifest_id == "m2"
        assert resolved.encrypted and resolved.decrypted
        assert resolved.content == "secret"

    @pytest.mark.asyncio
    async def test_encrypted_article_not_yet_indexed(self, orchestrator):
        orchestrator.index = FakeIndex()
        orchestrator.gateway = FakeGateway(
            manifests={"root": self.manifest("placeholder")}, texts={"placeholder": "empty text"}
        )

        resolved = await orchestrator.resolve_article("root", Visibility.ENCRYPTED)

        assert resolved.pending
        assert not resolved.decrypted

    @pytest.mark.asyncio
    async def test_requests_key_from_wallet(self, orchestrator, wallet):
        signature = await wallet.sign_message(signing_message("root"))
        ciphertext = encrypt_content("secret", derive_key(signature))
        orchestrator.index = FakeIndex({"root": "m2"})
        orchestrator.gateway = FakeGateway(manifests={"m2": self.manifest("enc")}, texts={"enc": ciphertext})

        without = await orchestrator.resolve_article("root", Visibility.ENCRYPTED)
        resolved = await orchestrator.resolve_article("root", Visibility.ENCRYPTED, request_key=True)

        assert not without.decrypted
        assert without.content == ciphertext
        assert resolved.content == "secret"

    @pytest.mark.asyncio
    async def test_wrong_key(self, orchestrator):
        ciphertext = encrypt_content("secret", derive_key(SIGNATURE))
        orchestrator.key_cache.cache_signature("root", "0x" + "a5" * 65)
        orchestrator.index = FakeIndex({"root": "m2"})
        orchestrator.gateway = FakeGateway(manifests={"m2": self.manifest("enc")}, texts={"enc": ciphertext})

        with pytest.raises(DecryptionError):
            await orchestrator.resolve_article("root", Visibility.ENCRYPTED)
