"""Object storage on the Supabase storage REST API."""

from typing import Any, Dict

import httpx

from voidx.core.exceptions import APIClientError, NotFoundError
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


class SupabaseObjectStore:
    """Blob put/get/delete/presign against one Supabase bucket."""

    def __init__(self, url: str, service_role_key: str, bucket: str, timeout: int = 60):
        self.bucket = bucket
        self.timeout = timeout
        self.base_api_url = f"{url.rstrip('/')}/storage/v1"
        self.headers = {
            "Authorization": f"Bearer {service_role_key}",
            "apikey": service_role_key,
        }

    def _object_url(self, key: str) -> str:
        return f"{self.base_api_url}/object/{self.bucket}/{key.lstrip('/')}"

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> Dict[str, Any]:
        """Upload bytes under ``key`` (overwriting).

        Returns:
            Dict with the storage ``Key`` and an ``etag`` when the server sends one
        """
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self._object_url(key),
                headers={**self.headers, "Content-Type": content_type, "x-upsert": "true"},
                content=data,
            )
        if response.status_code != 200:
            LOGGER.error(
                f"Failed to upload object: {response.text}",
                extra={"bucket": self.bucket, "key": key, "status_code": response.status_code},
            )
            raise APIClientError(f"Upload failed: {response.text}")
        body = response.json()
        return {"key": body.get("Key", key), "etag": response.headers.get("etag", "")}

    async def get(self, key: str) -> bytes:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(self._object_url(key), headers=self.headers)
        if response.status_code in (400, 404):
            raise NotFoundError(f"Object {key} not found in bucket {self.bucket}")
        if response.status_code != 200:
            raise APIClientError(f"Download of {key} failed with status {response.status_code}")
        return response.content

    async def delete(self, key: str) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.delete(self._object_url(key), headers=self.headers)
        if response.status_code not in (200, 204, 404):
            raise APIClientError(f"Delete of {key} failed: {response.text}")

    async def presign_get(self, key: str, ttl: int = 3600) -> str:
        """Create a signed download URL valid for ``ttl`` seconds."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_api_url}/object/sign/{self.bucket}/{key.lstrip('/')}",
                headers=self.headers,
                json={"expiresIn": ttl},
            )
        if response.status_code != 200:
            raise APIClientError(f"Signing {key} failed: {response.text}")
        signed = response.json().get("signedURL", "")
        return f"{self.base_api_url}{signed}" if signed.startswith("/") else signed
