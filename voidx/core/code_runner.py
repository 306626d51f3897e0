"""Client for the external code sandbox used by workflow code nodes."""

from typing import Any, Dict, Optional

import httpx

from voidx.core.exceptions import APIClientError, APITimeoutError
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


class HttpCodeRunner:
    """Runs code in a sandbox service that answers ``{"outputs": {...}}`` or ``{"error": "..."}``."""

    def __init__(self, url: str, default_timeout: float = 30.0, api_key: str = ""):
        self.url = url
        self.default_timeout = default_timeout
        self.api_key = api_key

    async def run(
        self,
        language: str,
        code: str,
        inputs: Dict[str, Any],
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        timeout = timeout or self.default_timeout
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        payload = {"language": language, "code": code, "inputs": inputs, "env": env or {}, "timeout": timeout}

        try:
            # Allow the sandbox a little slack beyond its own execution timeout
            async with httpx.AsyncClient(timeout=timeout + 5) as client:
                response = await client.post(self.url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise APITimeoutError(f"Code runner timed out after {timeout}s", original_error=e) from e
        except httpx.HTTPError as e:
            LOGGER.error("Code runner request failed", exc_info=True, extra={"language": language})
            raise APIClientError(f"Code runner request failed: {str(e)}", original_error=e) from e

        body = response.json()
        if body.get("error"):
            raise APIClientError(f"Code execution failed: {body['error']}")
        outputs = body.get("outputs", {})
        if not isinstance(outputs, dict):
            raise APIClientError("Code runner returned non-object outputs")
        return outputs
