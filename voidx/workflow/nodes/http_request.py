from typing import Any, Dict, List, Literal, Optional

import httpx
from pydantic import Field, field_validator

from voidx.workflow.entities import BaseNodeData, NodeType, VariableEntity, VariableType, VariableValue, VariableValueType
from voidx.workflow.nodes.base import BaseNode
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)

INPUT_TYPES = ("params", "headers", "body")


def _response_outputs() -> List[VariableEntity]:
    generated = VariableValue(type=VariableValueType.GENERATED, content="")
    return [
        VariableEntity(name="status_code", type=VariableType.INT, value=generated),
        VariableEntity(name="text", type=VariableType.STRING, value=generated),
    ]


class HttpRequestNodeData(BaseNodeData):
    """Each input's ``meta.type`` places it in the query string, headers or JSON body."""

    node_type: NodeType = NodeType.HTTP_REQUEST
    url: str
    method: Literal["get", "post", "put", "patch", "delete", "head", "options"] = "get"
    timeout: Optional[float] = Field(default=None, gt=0)
    inputs: List[VariableEntity] = Field(default_factory=list)
    outputs: List[VariableEntity] = Field(default_factory=_response_outputs)

    @field_validator("method", mode="before")
    @classmethod
    def lower_method(cls, method: Any) -> Any:
        return method.lower() if isinstance(method, str) else method

    @field_validator("url")
    @classmethod
    def check_url(cls, url: str) -> str:
        url = url.strip()
        if not url.startswith(("http://", "https://")):
            raise ValueError("HTTP request node url must be an http(s) URL")
        return url

    @field_validator("inputs")
    @classmethod
    def check_inputs(cls, inputs: List[VariableEntity]) -> List[VariableEntity]:
        for variable in inputs:
            input_type = variable.meta.get("type", "params")
            if input_type not in INPUT_TYPES:
                raise ValueError(f"HTTP request input {variable.name} has unknown meta.type {input_type}")
        return inputs

    @field_validator("outputs")
    @classmethod
    def fixed_outputs(cls, outputs: List[VariableEntity]) -> List[VariableEntity]:
        return _response_outputs()


class HttpRequestNode(BaseNode):
    data_class = HttpRequestNodeData

    def _partition(self, inputs: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        parts: Dict[str, Dict[str, Any]] = {name: {} for name in INPUT_TYPES}
        for variable in self.node_data.inputs:
            parts[variable.meta.get("type", "params")][variable.name] = inputs.get(variable.name)
        return parts

    async def invoke(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        parts = self._partition(inputs)
        method = self.node_data.method.upper()
        headers = {name: str(value) for name, value in parts["headers"].items()}
        params = {name: value for name, value in parts["params"].items() if value is not None}

        timeout = self.context.http_timeout
        if self.node_data.timeout:
            timeout = min(timeout, self.node_data.timeout)

        request_kwargs: Dict[str, Any] = {"params": params, "headers": headers}
        if method != "GET" and parts["body"]:
            if not any(name.lower() == "content-type" for name in headers):
                headers["Content-Type"] = "application/json"
            request_kwargs["json"] = parts["body"]

        LOGGER.info(
            f"HTTP request node calling {method} {self.node_data.url}",
            extra={"node_id": str(self.node_data.id), "timeout": timeout},
        )
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.request(method, self.node_data.url, **request_kwargs)

        return {"status_code": response.status_code, "text": response.text}
