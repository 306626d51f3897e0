import asyncio
from typing import Any, Dict, List, Optional

import httpx
from httpx import HTTPStatusError, TimeoutException
from langchain_core.embeddings import Embeddings

from voidx.core.exceptions import APIClientError, APITimeoutError
from voidx.utils.logging import get_logger
from voidx.utils.token_counter import TokenCounter

LOGGER = get_logger(__name__)


class BaseLLMClient:
    """Base client for LLM API interactions.

    Handles common logic for HTTP requests, retries, timeout management,
    and error logging.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 3,
        retry_delay: int = 2
    ):
        """Initialize the LLM client.

        Args:
            api_key: API key for authentication
            base_url: Base URL for the API
            timeout: Request timeout in seconds
            max_retries: Maximum number of retries
            retry_delay: Base delay for exponential backoff
        """
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.logger = LOGGER

    async def call_api(self, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """POST ``payload`` with retry and exponential backoff.

        Raises:
            APIClientError: If the API call fails after retries or on a non-retryable 4xx
            APITimeoutError: If every attempt timed out
        """
        request_headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            **(headers or {}),
        }

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(self.max_retries):
                try:
                    response = await client.post(self.base_url, headers=request_headers, json=payload)
                    response.raise_for_status()
                    return response.json()
                except HTTPStatusError as e:
                    await self._handle_http_error(e, attempt)
                except TimeoutException as e:
                    self.logger.warning(
                        f"API Timeout (Attempt {attempt + 1}/{self.max_retries})",
                        extra={"url": self.base_url},
                    )
                    if attempt >= self.max_retries - 1:
                        raise APITimeoutError(f"API Timeout after {self.max_retries} attempts", original_error=e) from e
                    await self._wait_before_retry(attempt)
                except httpx.HTTPError as e:
                    self.logger.warning(
                        f"API transport error (Attempt {attempt + 1}/{self.max_retries})",
                        extra={"url": self.base_url, "error": str(e)},
                    )
                    if attempt >= self.max_retries - 1:
                        raise APIClientError(f"API Error: {str(e)}", original_error=e) from e
                    await self._wait_before_retry(attempt)

        raise APIClientError(f"Failed to call API {self.base_url} after {self.max_retries} attempts")

    async def _handle_http_error(self, error: HTTPStatusError, attempt: int) -> None:
        status_code = error.response.status_code
        error_body = error.response.text

        self.logger.warning(
            f"API HTTP error (Attempt {attempt + 1}/{self.max_retries})",
            extra={"url": self.base_url, "status_code": status_code, "error_body": error_body[:500]},
        )

        # Client errors other than rate limiting are not retried
        if 400 <= status_code < 500 and status_code != 429:
            raise APIClientError(f"API Client Error {status_code}: {error_body}", original_error=error) from error
        if attempt >= self.max_retries - 1:
            raise APIClientError(f"API HTTP Error {status_code} after retries", original_error=error) from error
        await self._wait_before_retry(attempt)

    async def _wait_before_retry(self, attempt: int) -> None:
        await asyncio.sleep(self.retry_delay * (2 ** attempt))


class OpenRouterLanguageModel(BaseLLMClient):
    """Chat completion over an OpenAI-compatible endpoint, local embeddings, tiktoken counting."""

    def __init__(
        self,
        api_key: str,
        api_url: str,
        model: str,
        embeddings: Embeddings,
        token_counter: Optional[TokenCounter] = None,
        timeout: int = 60,
        max_retries: int = 3,
        retry_delay: int = 2,
    ):
        super().__init__(api_key, api_url, timeout=timeout, max_retries=max_retries, retry_delay=retry_delay)
        self.model = model
        self.embeddings = embeddings
        self.token_counter = token_counter or TokenCounter()

    async def complete(self, prompt: str, **params: Any) -> str:
        """Single-turn completion.

        Args:
            prompt: User message content
            **params: ``system`` (system prompt), ``model``, ``temperature``, ``max_tokens``

        Returns:
            The assistant message text
        """
        messages: List[Dict[str, str]] = []
        if params.get("system"):
            messages.append({"role": "system", "content": params["system"]})
        messages.append({"role": "user", "content": prompt})

        payload: Dict[str, Any] = {
            "model": params.get("model") or self.model,
            "messages": messages,
        }
        for key in ("temperature", "max_tokens"):
            if params.get(key) is not None:
                payload[key] = params[key]

        data = await self.call_api(payload)
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise APIClientError("Malformed completion response", original_error=e) from e

    async def embed(self, text: str) -> List[float]:
        # Sentence-transformers inference is CPU bound
        return await asyncio.to_thread(self.embeddings.embed_query, text)

    def count_tokens(self, text: str) -> int:
        return self.token_counter.count_tokens(text)


def build_language_model(llm_settings) -> OpenRouterLanguageModel:
    """Create the production language model from ``LLMSettings``."""
    from langchain_huggingface import HuggingFaceEmbeddings

    embeddings = HuggingFaceEmbeddings(model_name=llm_settings.embedding_model)
    return OpenRouterLanguageModel(
        api_key=llm_settings.api_key,
        api_url=llm_settings.api_url,
        model=llm_settings.model,
        embeddings=embeddings,
        token_counter=TokenCounter(llm_settings.tokenizer_encoding),
        timeout=llm_settings.timeout,
        max_retries=llm_settings.max_retries,
        retry_delay=llm_settings.retry_delay,
    )
