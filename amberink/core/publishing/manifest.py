"""
Irys path manifests and upload tags for article folders.

An article is a folder: ``index.md`` for the markdown (or ciphertext),
``coverImage`` and ``<id>.<ext>`` inline images, bound by a path manifest.
Later manifests reference the first one through a ``Root-TX`` tag.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from amberink.config import settings
from amberink.constants import (
    ARTICLE_COVER_IMAGE_FILE,
    ARTICLE_INDEX_FILE,
    MANIFEST_CONTENT_TYPE,
    MANIFEST_SUMMARY_TAG_LIMIT,
)
from amberink.core.recovery.errors import ValidationError
from amberink.providers.base import Tag

MANIFEST_KIND = "arweave/paths"
MANIFEST_VERSION = "0.2.0"


@dataclass
class ArticleFolderManifest:
    """Path manifest: file name -> transaction id, with ``index.md`` as the index."""
    paths: Dict[str, str] = field(default_factory=dict)
    index: str = ARTICLE_INDEX_FILE

    @property
    def index_tx_id(self) -> Optional[str]:
        return self.paths.get(self.index)

    @property
    def cover_image_tx_id(self) -> Optional[str]:
        return self.paths.get(ARTICLE_COVER_IMAGE_FILE)

    def content_files(self) -> Dict[str, str]:
        """Every file other than the index and the cover."""
        return {
            name: tx_id
            for name, tx_id in self.paths.items()
            if name not in (self.index, ARTICLE_COVER_IMAGE_FILE)
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "manifest": MANIFEST_KIND,
            "version": MANIFEST_VERSION,
            "index": {"path": self.index},
            "paths": {name: {"id": tx_id} for name, tx_id in self.paths.items()},
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArticleFolderManifest":
        if data.get("manifest") != MANIFEST_KIND:
            raise ValidationError(f"Unsupported manifest type {data.get('manifest')!r}")
        try:
            paths = {name: entry["id"] for name, entry in data["paths"].items()}
        except (KeyError, TypeError, AttributeError) as e:
            raise ValidationError("Manifest paths are malformed") from e
        index = (data.get("index") or {}).get("path", ARTICLE_INDEX_FILE)
        return cls(paths=paths, index=index)


def build_folder(
    index_tx_id: str,
    cover_image_tx_id: Optional[str] = None,
    content_files: Optional[Dict[str, str]] = None,
) -> ArticleFolderManifest:
    """Manifest with index first, then cover, then content files in insertion order."""
    paths = {ARTICLE_INDEX_FILE: index_tx_id}
    if cover_image_tx_id:
        paths[ARTICLE_COVER_IMAGE_FILE] = cover_image_tx_id
    for name, tx_id in (content_files or {}).items():
        paths[name] = tx_id
    return ArticleFolderManifest(paths=paths)


def _tag(name: str, value: Any) -> Tag:
    return {"name": name, "value": str(value)}


def content_tags(
    title: str,
    author_address: str,
    visibility: int,
    originality: int,
    article_tags: List[str],
    encrypted: bool,
) -> List[Tag]:
    return [
        _tag("Content-Type", "application/octet-stream" if encrypted else "text/markdown"),
        _tag("App-Name", settings.app_name),
        _tag("App-Version", settings.app_version),
        _tag("Type", "article-content"),
        _tag("Title", title),
        _tag("Author", author_address),
        _tag("Visibility", int(visibility)),
        _tag("Originality", int(originality)),
        _tag("Encrypted", "true" if encrypted else "false"),
        *[_tag("Tag", t) for t in article_tags],
    ]


def cover_tags(content_type: str) -> List[Tag]:
    return [
        _tag("Content-Type", content_type),
        _tag("App-Name", settings.app_name),
        _tag("Type", "article-cover"),
    ]


def content_image_tags(content_type: str, image_id: str) -> List[Tag]:
    return [
        _tag("Content-Type", content_type),
        _tag("App-Name", settings.app_name),
        _tag("Type", "article-content-image"),
        _tag("Image-Id", image_id),
    ]


def manifest_tags(
    title: str,
    summary: str,
    article_tags: List[str],
    root_tx: Optional[str] = None,
) -> List[Tag]:
    tags = [
        _tag("Type", "manifest"),
        _tag("Content-Type", MANIFEST_CONTENT_TYPE),
    ]
    if root_tx:
        tags.append(_tag("Root-TX", root_tx))
    tags.extend([
        _tag("App-Name", settings.app_name),
        _tag("App-Version", settings.app_version),
        _tag("Article-Title", title),
        _tag("Article-Summary", summary[:MANIFEST_SUMMARY_TAG_LIMIT]),
        *[_tag("Article-Tag", t) for t in article_tags],
    ])
    return tags
