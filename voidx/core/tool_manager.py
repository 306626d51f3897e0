"""Tool registry used by workflow tool nodes.

Tools are addressed as ``<provider_id>/<tool_id>`` and receive their
arguments as a JSON object string.
"""

import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from voidx.core.exceptions import APIClientError, NotFoundError, ValidationError
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)

ToolFunc = Callable[[Dict[str, Any]], Awaitable[str]]


def tool_name(provider_id: str, tool_id: str) -> str:
    return f"{provider_id}/{tool_id}"


async def current_time(args: Dict[str, Any]) -> str:
    fmt = args.get("format") or "%Y-%m-%d %H:%M:%S %Z"
    return datetime.now(timezone.utc).strftime(fmt)


async def word_count(args: Dict[str, Any]) -> str:
    return str(len(str(args.get("text", "")).split()))


class ApiTool:
    """Tool backed by a user-registered HTTP endpoint; args are sent as the JSON body."""

    def __init__(self, url: str, method: str = "post", headers: Optional[Dict[str, str]] = None, timeout: float = 30.0):
        self.url = url
        self.method = method.upper()
        self.headers = headers or {}
        self.timeout = timeout

    async def __call__(self, args: Dict[str, Any]) -> str:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            if self.method == "GET":
                response = await client.get(self.url, params=args, headers=self.headers)
            else:
                response = await client.request(self.method, self.url, json=args, headers=self.headers)
        if response.status_code >= 400:
            raise APIClientError(f"API tool {self.url} returned {response.status_code}: {response.text[:200]}")
        return response.text


class ToolRegistry:
    """In-process tool manager with the builtin tools pre-registered."""

    def __init__(self):
        self._tools: Dict[str, ToolFunc] = {}
        self.register("time", "current_time", current_time)
        self.register("text", "word_count", word_count)

    def register(self, provider_id: str, tool_id: str, func: ToolFunc) -> None:
        self._tools[tool_name(provider_id, tool_id)] = func

    def register_api_tool(self, provider_id: str, tool_id: str, url: str, method: str = "post", headers: Optional[Dict[str, str]] = None) -> None:
        self.register(provider_id, tool_id, ApiTool(url, method, headers))

    def has(self, name: str) -> bool:
        return name in self._tools

    async def invoke(self, name: str, args_json: str) -> str:
        """Invoke a tool by name.

        Raises:
            NotFoundError: If no tool is registered under ``name``
            ValidationError: If ``args_json`` is not a JSON object
        """
        func = self._tools.get(name)
        if func is None:
            raise NotFoundError(f"Tool {name} is not registered")
        try:
            args = json.loads(args_json) if args_json else {}
        except json.JSONDecodeError as e:
            raise ValidationError(f"Tool arguments are not valid JSON: {e}", original_error=e) from e
        if not isinstance(args, dict):
            raise ValidationError("Tool arguments must be a JSON object")

        LOGGER.debug(f"Invoking tool {name}", extra={"tool": name})
        return await func(args)
