# src/integrations/telemetry_source.py
"""
HTTP Telemetry Source

Fetches one partition of telemetry records from the external telemetry
service:

    GET {base_url}/partitions/{name}  ->  {"partition": "...", "records": [...]}

Every failure (timeout, transport error, non-2xx, malformed body) is raised
as TelemetrySourceError; the sync engine records it against the partition.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from src.errors import TelemetrySourceError

logger = logging.getLogger("castquest.integrations.telemetry")


class PartitionResponse(BaseModel):
    """Response body of the partition endpoint"""
    partition: Optional[str] = None
    records: List[Dict[str, Any]] = Field(default_factory=list)


class HttpTelemetrySource:
    """Async telemetry client. Pass `source.fetch` to OracleSyncEngine."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = headers or {}
        self._client = client
        self._owns_client = client is None

        logger.info(f"HttpTelemetrySource initialized: url={self.base_url}, timeout={timeout}s")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx async client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=self.base_url, headers=self.headers)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.debug("HttpTelemetrySource closed")

    async def __aenter__(self) -> "HttpTelemetrySource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def fetch(self, partition: str) -> List[Dict[str, Any]]:
        """
        Fetch all records of a partition.

        Raises:
            TelemetrySourceError: request failed or the body is malformed
        """
        client = await self._get_client()
        try:
            response = await client.get(f"/partitions/{partition}", timeout=self.timeout)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise TelemetrySourceError(
                partition, f"Timed out after {self.timeout}s fetching '{partition}'", e
            ) from e
        except httpx.HTTPStatusError as e:
            raise TelemetrySourceError(
                partition, f"Telemetry source returned HTTP {e.response.status_code} for '{partition}'", e
            ) from e
        except httpx.HTTPError as e:
            raise TelemetrySourceError(partition, f"Request for '{partition}' failed: {e}", e) from e

        try:
            body = PartitionResponse.model_validate(response.json())
        except ValueError as e:
            raise TelemetrySourceError(partition, f"Malformed response for '{partition}': {e}", e) from e

        logger.debug(f"Fetched partition | partition={partition} | records={len(body.records)}")
        return body.records
