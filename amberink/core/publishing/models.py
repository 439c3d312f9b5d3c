"""
Publishing models.

Parameters and results for article folder uploads, updates and the
end-to-end publish flow.
"""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from amberink.constants import ZERO_ADDRESS
from amberink.core.execution.actions import Visibility

# Given the permanent manifest id, returns the author's signature over the
# canonical encryption message for it.
SignatureProvider = Callable[[str], Awaitable[str]]


@dataclass
class UploadFile:
    """An image (or any binary file) to upload."""
    data: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ContentImage:
    """An inline article image, stored in the folder as ``<id>.<extension>``."""
    id: str
    extension: str
    file: UploadFile

    @property
    def filename(self) -> str:
        return f"{self.id}.{self.extension}"


@dataclass
class ArticleFolderParams:
    title: str
    summary: str
    content: str
    author_address: str
    tags: List[str] = field(default_factory=list)
    cover_image: Optional[UploadFile] = None
    content_images: List[ContentImage] = field(default_factory=list)
    visibility: Visibility = Visibility.PUBLIC
    originality: int = 0


@dataclass
class ArticleFolderResult:
    manifest_id: str
    index_tx_id: str
    cover_image_tx_id: Optional[str] = None
    content_image_tx_ids: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "manifestId": self.manifest_id,
            "indexTxId": self.index_tx_id,
            "coverImageTxId": self.cover_image_tx_id,
            "contentImageTxIds": dict(self.content_image_tx_ids),
        }


@dataclass
class ArticleUpdateParams(ArticleFolderParams):
    keep_existing_cover: bool = True


@dataclass
class ArticleUpdateResult:
    new_manifest_tx_id: str
    index_tx_id: str
    cover_image_tx_id: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "newManifestTxId": self.new_manifest_tx_id,
            "indexTxId": self.index_tx_id,
            "coverImageTxId": self.cover_image_tx_id,
        }


@dataclass
class PublishArticleParams:
    """Everything needed to upload an article and register it on BlogHub."""
    title: str
    content: str
    category_id: int
    summary: str = ""
    tags: List[str] = field(default_factory=list)
    cover_image: Optional[UploadFile] = None
    content_images: List[ContentImage] = field(default_factory=list)
    royalty_bps: int = 0
    original_author: str = ""
    true_author: str = ZERO_ADDRESS
    collect_price: int = 0
    max_collect_supply: int = 0
    originality: int = 0
    visibility: Visibility = Visibility.PUBLIC


@dataclass
class PublishArticleResult:
    arweave_id: str
    tx_hash: str
    folder: ArticleFolderResult


@dataclass
class ResolvedArticle:
    """Readable content of an article at its latest manifest."""
    article_id: str
    manifest_id: str
    content: str
    encrypted: bool = False
    decrypted: bool = False
    # Encrypted article whose content upload has not been indexed yet
    pending: bool = False
    files: Dict[str, str] = field(default_factory=dict)
