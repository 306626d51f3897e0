"""Temporal client configuration and connection management.

Services publishing to the message bus and the background worker share a
single lazily created client.
"""

import asyncio
from typing import Optional

from temporalio.client import Client as TemporalClient

from voidx.core.config import settings
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


class TemporalClientManager:
    """Lazily creates a Temporal client and keeps it around for reuse."""

    def __init__(self, target: str, namespace: str):
        self.target = target
        self.namespace = namespace
        self._client: Optional[TemporalClient] = None
        self._lock = asyncio.Lock()

    async def get_client(self) -> TemporalClient:
        """Get or create Temporal client instance."""
        async with self._lock:
            if self._client is None:
                LOGGER.info(f"Connecting to Temporal at {self.target}", extra={"namespace": self.namespace})
                self._client = await TemporalClient.connect(self.target, namespace=self.namespace)
        return self._client

    async def connect_with_retries(self, max_retries: int = 5, retry_delay: float = 5.0) -> TemporalClient:
        """Connect, retrying while the Temporal server is still starting."""
        for attempt in range(max_retries):
            try:
                return await self.get_client()
            except Exception as e:
                if attempt >= max_retries - 1:
                    LOGGER.error(f"Failed to connect to Temporal after {max_retries} attempts: {e}")
                    raise
                LOGGER.warning(f"Temporal connection attempt {attempt + 1} failed: {e}. Retrying in {retry_delay}s...")
                await asyncio.sleep(retry_delay)
        raise RuntimeError("unreachable")

    def reset(self) -> None:
        # The Python SDK client has no close(); dropping the reference frees the connection
        self._client = None


temporal_manager = TemporalClientManager(settings.temporal_target, settings.temporal_namespace)


async def get_temporal_client() -> TemporalClient:
    return await temporal_manager.get_client()
