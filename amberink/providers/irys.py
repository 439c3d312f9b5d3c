import logging
from typing import Any, Dict, Optional

import httpx

from ..config import settings
from ..core.recovery.errors import classify_error
from .base import ManifestIndex

logger = logging.getLogger(__name__)

LATEST_MANIFEST_QUERY = """
query LatestManifest($tags: [TagFilter!]) {
  transactions(tags: $tags, order: DESC, limit: 1) {
    edges {
      node {
        id
        timestamp
      }
    }
  }
}
"""


class IrysGraphQLIndex(ManifestIndex):
    """Finds the newest manifest in a Root-TX chain through the Irys GraphQL endpoint"""

    name = "irys"

    def __init__(self, url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.url = url or settings.resolved_irys_graphql_url
        self._client = client or httpx.AsyncClient(timeout=float(settings.request_timeout_seconds))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(self.url, json={"query": query, "variables": variables})
            response.raise_for_status()
            payload = response.json()
        except Exception as e:
            raise classify_error(e) from e

        if payload.get("errors"):
            messages = "; ".join(str(err.get("message")) for err in payload["errors"])
            raise classify_error(RuntimeError(f"Irys GraphQL error: {messages}"))
        return payload.get("data") or {}

    async def latest_manifest_id(self, root_id: str) -> Optional[str]:
        """Newest manifest tagged ``Root-TX=root_id``; None when the article was never updated."""
        data = await self._query(
            LATEST_MANIFEST_QUERY,
            {
                "tags": [
                    {"name": "Root-TX", "values": [root_id]},
                    {"name": "Type", "values": ["manifest"]},
                ]
            },
        )
        edges = (data.get("transactions") or {}).get("edges") or []
        if not edges:
            return None
        manifest_id = edges[0]["node"]["id"]
        logger.debug(f"Latest manifest for {root_id}: {manifest_id}")
        return manifest_id
