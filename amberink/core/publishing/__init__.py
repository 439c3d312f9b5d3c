"""
Publishing Module

Article folders on permanent storage and their registration on BlogHub:
- PublishOrchestrator: Upload, update, publish, edit and resolve articles
- ArticleFolderManifest: Irys path manifest for an article folder
"""

from .manifest import ArticleFolderManifest, build_folder
from .models import (
    ArticleFolderParams,
    ArticleFolderResult,
    ArticleUpdateParams,
    ArticleUpdateResult,
    ContentImage,
    PublishArticleParams,
    PublishArticleResult,
    ResolvedArticle,
    UploadFile,
)
from .orchestrator import PublishOrchestrator

__all__ = [
    "ArticleFolderManifest",
    "ArticleFolderParams",
    "ArticleFolderResult",
    "ArticleUpdateParams",
    "ArticleUpdateResult",
    "ContentImage",
    "PublishArticleParams",
    "PublishArticleResult",
    "PublishOrchestrator",
    "ResolvedArticle",
    "UploadFile",
    "build_folder",
]
