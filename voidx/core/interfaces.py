"""Narrow interfaces of the external collaborators the core depends on.

Concrete implementations live next to this module (pgvector, Redis, Temporal,
Supabase, OpenRouter); tests plug in in-memory fakes with the same shape.

Vector-store filters use a small DSL keyed by metadata field::

    {"dataset_id": {"contains_any": [id1, id2]}, "document_enabled": {"equal": True}}
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, runtime_checkable

from langchain_core.documents import Document

VectorFilter = Dict[str, Dict[str, Any]]
MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]


@runtime_checkable
class VectorStore(Protocol):
    async def add_documents(self, documents: List[Document]) -> List[str]:
        """Upsert documents; each metadata must carry ``node_id``. Returns node IDs."""
        ...

    async def similarity_search(
        self,
        query: str,
        k: int = 4,
        filter: Optional[VectorFilter] = None,
        score_threshold: float = 0.0,
    ) -> List[Document]:
        """Nearest documents with ``metadata["score"]`` set, best first."""
        ...

    async def update_metadata(self, filter: VectorFilter, values: Dict[str, Any]) -> int: ...

    async def delete_by_filter(self, filter: VectorFilter) -> int: ...


@runtime_checkable
class LanguageModel(Protocol):
    async def complete(self, prompt: str, **params: Any) -> str: ...

    async def embed(self, text: str) -> List[float]: ...

    def count_tokens(self, text: str) -> int: ...


@runtime_checkable
class ObjectStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> Dict[str, Any]: ...

    async def get(self, key: str) -> bytes: ...

    async def delete(self, key: str) -> None: ...

    async def presign_get(self, key: str, ttl: int = 3600) -> str: ...


@runtime_checkable
class CodeRunner(Protocol):
    async def run(
        self,
        language: str,
        code: str,
        inputs: Dict[str, Any],
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]: ...


@runtime_checkable
class ToolManager(Protocol):
    async def invoke(self, name: str, args_json: str) -> str: ...


@runtime_checkable
class MessageBus(Protocol):
    async def publish(self, topic: str, payload: Dict[str, Any]) -> None: ...

    async def consume(self, topic: str, group_id: str, handler: MessageHandler) -> None: ...


@runtime_checkable
class Locker(Protocol):
    async def acquire(self, key: str, ttl: float) -> str:
        """Return an owner token, or ``""`` when the lock is held elsewhere."""
        ...

    async def release(self, key: str, token: str) -> bool: ...


@runtime_checkable
class Clock(Protocol):
    def monotonic(self) -> float: ...

    def now(self) -> datetime: ...
