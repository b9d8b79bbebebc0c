"""
IPFS Client for Content-Addressed Metadata

Fetches immutable blobs (project metadata, cert templates, profile
pictures/bios) from an IPFS node over the HTTP RPC API.

Key Features:
- DAG reads (/api/v0/dag/get) by default, raw reads (/api/v0/cat) when
  IPFS_USE_DAG=false
- Optional fallback node tried when the primary fails
- One error type (IPFSFetchError) for every failure
"""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class IPFSFetchError(Exception):
    """Content could not be retrieved from any configured IPFS node"""


class IPFSClient:
    def __init__(
        self,
        api_url: Optional[str] = None,
        fallback_api_url: Optional[str] = None,
        use_dag: Optional[bool] = None,
        timeout_seconds: Optional[float] = None,
    ):
        from pob_indexer import config

        self.api_url = (api_url or config.IPFS_API_URL).rstrip("/")
        fallback = fallback_api_url if fallback_api_url is not None else config.IPFS_FALLBACK_API_URL
        self.fallback_api_url = fallback.rstrip("/") if fallback else None
        self.use_dag = config.IPFS_USE_DAG if use_dag is None else use_dag
        self.timeout_seconds = timeout_seconds or config.IPFS_TIMEOUT_SECONDS

    async def _fetch_from(self, client: httpx.AsyncClient, api_url: str, cid: str) -> str:
        endpoint = "dag/get" if self.use_dag else "cat"
        # The RPC API only accepts POST
        response = await client.post(f"{api_url}/api/v0/{endpoint}", params={"arg": cid})
        response.raise_for_status()
        return response.text

    async def fetch_raw(self, cid: str) -> str:
        """
        Fetch the raw content of a CID.

        Returns:
            str: Content as text (JSON for DAG reads)

        Raises:
            IPFSFetchError: If the primary (and fallback, when configured) fail
        """
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            try:
                return await self._fetch_from(client, self.api_url, cid)
            except httpx.HTTPError as primary_error:
                if not self.fallback_api_url:
                    raise IPFSFetchError(f"Failed to fetch {cid}: {primary_error}") from primary_error

                logger.warning(f"⚠️  Primary IPFS node failed for {cid}, trying fallback: {primary_error}")
                try:
                    content = await self._fetch_from(client, self.fallback_api_url, cid)
                    logger.info(f"📦 Fetched {cid} from fallback IPFS node")
                    return content
                except httpx.HTTPError as fallback_error:
                    raise IPFSFetchError(
                        f"Failed to fetch {cid} from both primary and fallback IPFS nodes: {fallback_error}"
                    ) from fallback_error
