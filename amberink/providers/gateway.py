"""
Read access to permanent storage through a list of HTTP gateways.

Gateways are tried in configured order; the first successful response wins.
Article folders are read through ``mutable/<manifest id>/<file>`` so the
newest manifest carrying the same Root-TX is served.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from ..config import settings
from ..constants import ARTICLE_COVER_IMAGE_FILE, ARTICLE_INDEX_FILE
from ..core.recovery.errors import NetworkError

logger = logging.getLogger(__name__)


def folder_path(manifest_id: str, file_name: str, mutable: bool = True) -> str:
    return f"{'mutable/' if mutable else ''}{manifest_id}/{file_name}"


class GatewayClient:
    """Ordered gateway fallback over httpx"""

    name = "gateway"

    def __init__(
        self,
        gateways: Optional[List[str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.gateways = [g.rstrip("/") for g in (gateways or settings.gateway_list)]
        if not self.gateways:
            raise ValueError("At least one gateway is required")
        self._client = client or httpx.AsyncClient(
            timeout=float(settings.request_timeout_seconds),
            follow_redirects=True,
        )
        self._clock = clock

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _fetch(
        self,
        path: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        First successful response for ``path`` across the gateways.

        Raises:
            NetworkError: Every gateway failed or returned a non-2xx status
        """
        attempts: List[Dict[str, Any]] = []
        for gateway in self.gateways:
            url = f"{gateway}/{path}"
            try:
                response = await self._client.request(method, url, headers=headers)
            except httpx.HTTPError as e:
                logger.warning(f"Gateway {gateway} failed for {path}: {type(e).__name__}")
                attempts.append({"gateway": gateway, "error": type(e).__name__})
                continue
            if response.is_success:
                return response
            logger.warning(f"Gateway {gateway} returned {response.status_code} for {path}")
            attempts.append({"gateway": gateway, "status": response.status_code})

        raise NetworkError(f"Failed to fetch {path} from all gateways", details={"attempts": attempts})

    async def fetch_text(self, tx_id: str) -> str:
        return (await self._fetch(tx_id)).text

    async def fetch_bytes(self, tx_id: str) -> bytes:
        return (await self._fetch(tx_id)).content

    async def fetch_json(self, tx_id: str) -> Any:
        response = await self._fetch(tx_id, headers={"Accept": "application/json"})
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"{tx_id} did not return JSON", original=e) from e

    async def exists(self, tx_id: str) -> bool:
        try:
            await self._fetch(tx_id, method="HEAD")
        except NetworkError:
            return False
        return True

    async def fetch_from_folder(
        self,
        manifest_id: str,
        file_name: str,
        mutable: bool = True,
        bypass_cache: bool = True,
    ) -> httpx.Response:
        path = folder_path(manifest_id, file_name, mutable)
        headers = None
        if bypass_cache:
            path = f"{path}?_t={int(self._clock() * 1000)}"
            headers = {"Cache-Control": "no-store"}
        return await self._fetch(path, headers=headers)

    async def fetch_article_markdown(self, manifest_id: str, mutable: bool = True) -> str:
        response = await self.fetch_from_folder(manifest_id, ARTICLE_INDEX_FILE, mutable)
        return response.text

    async def fetch_manifest(self, manifest_id: str) -> Dict[str, Any]:
        """Raw manifest JSON of a specific (immutable) manifest transaction."""
        data = await self.fetch_json(manifest_id)
        if not isinstance(data, dict) or "paths" not in data:
            raise NetworkError(f"{manifest_id} is not a path manifest")
        return data

    # URL helpers (primary gateway)

    def url(self, tx_id: str) -> str:
        return f"{self.gateways[0]}/{tx_id}"

    def folder_file_url(self, manifest_id: str, file_name: str, mutable: bool = True) -> str:
        return self.url(folder_path(manifest_id, file_name, mutable))

    def cover_image_url(self, manifest_id: str, mutable: bool = True) -> str:
        return self.folder_file_url(manifest_id, ARTICLE_COVER_IMAGE_FILE, mutable)
