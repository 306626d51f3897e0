"""In-memory collaborators and graph builders shared by the test modules."""

import asyncio
import math
import re
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from langchain_core.documents import Document as LCDocument

_TOKEN = re.compile(r"\w+", re.UNICODE)


def _bag(text: str) -> Counter:
    return Counter(_TOKEN.findall(text.lower()))


def _cosine(a: Counter, b: Counter) -> float:
    dot = sum(a[token] * b[token] for token in set(a) & set(b))
    norm = math.sqrt(sum(v * v for v in a.values())) * math.sqrt(sum(v * v for v in b.values()))
    return dot / norm if norm else 0.0


def _matches(metadata: Dict[str, Any], filter: Optional[Dict[str, Dict[str, Any]]]) -> bool:
    for field, clause in (filter or {}).items():
        value = metadata.get(field)
        if "equal" in clause and value != clause["equal"]:
            return False
        if "contains_any" in clause and value not in clause["contains_any"]:
            return False
    return True


class FakeVectorStore:
    """Bag-of-words cosine similarity over documents kept in a dict."""

    def __init__(self):
        self.points: Dict[str, LCDocument] = {}
        self.add_failures = 0
        self.search_error: Optional[Exception] = None

    async def add_documents(self, documents: List[LCDocument]) -> List[str]:
        if self.add_failures:
            self.add_failures -= 1
            raise RuntimeError("vector store unavailable")
        node_ids = []
        for document in documents:
            node_id = document.metadata["node_id"]
            self.points[node_id] = LCDocument(page_content=document.page_content, metadata=dict(document.metadata))
            node_ids.append(node_id)
        return node_ids

    async def similarity_search(self, query, k=4, filter=None, score_threshold=0.0) -> List[LCDocument]:
        if self.search_error is not None:
            raise self.search_error
        query_bag = _bag(query)
        scored = []
        for document in self.points.values():
            if not _matches(document.metadata, filter):
                continue
            score = _cosine(query_bag, _bag(document.page_content))
            if score_threshold and score < score_threshold:
                continue
            scored.append((score, document))
        scored.sort(key=lambda item: -item[0])
        return [
            LCDocument(page_content=document.page_content, metadata={**document.metadata, "score": score})
            for score, document in scored[:k]
        ]

    async def update_metadata(self, filter, values) -> int:
        matched = [document for document in self.points.values() if _matches(document.metadata, filter)]
        for document in matched:
            document.metadata.update(values)
        return len(matched)

    async def delete_by_filter(self, filter) -> int:
        doomed = [node_id for node_id, document in self.points.items() if _matches(document.metadata, filter)]
        for node_id in doomed:
            del self.points[node_id]
        return len(doomed)


class FakeLanguageModel:
    """Answers from a script, else echoes the prompt; tokens are whitespace words."""

    model = "fake-model"

    def __init__(self, answers: Optional[List[str]] = None):
        self.answers = list(answers or [])
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    async def complete(self, prompt: str, **params: Any) -> str:
        self.calls.append({"prompt": prompt, **params})
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.answers:
            return self.answers.pop(0)
        return f"echo: {prompt}"

    async def embed(self, text: str) -> List[float]:
        return [float(len(text))]

    def count_tokens(self, text: str) -> int:
        return len(text.split())


class FakeObjectStore:
    def __init__(self):
        self.files: Dict[str, bytes] = {}

    async def put(self, key, data, content_type="application/octet-stream"):
        self.files[key] = data
        return {"key": key, "size": len(data)}

    async def get(self, key):
        return self.files[key]

    async def delete(self, key):
        self.files.pop(key, None)

    async def presign_get(self, key, ttl=3600):
        return f"memory://{key}"


class FakeLocker:
    def __init__(self):
        self.held: Dict[str, str] = {}
        self.acquired: List[str] = []

    async def acquire(self, key: str, ttl: float) -> str:
        if key in self.held:
            return ""
        token = uuid.uuid4().hex
        self.held[key] = token
        self.acquired.append(key)
        return token

    async def release(self, key: str, token: str) -> bool:
        if self.held.get(key) != token:
            return False
        del self.held[key]
        return True


class FakeCodeRunner:
    def __init__(self, outputs: Optional[Dict[str, Any]] = None):
        self.outputs = outputs or {}
        self.calls: List[Dict[str, Any]] = []

    async def run(self, language, code, inputs, env=None, timeout=None):
        self.calls.append({"language": language, "code": code, "inputs": inputs, "timeout": timeout})
        return dict(self.outputs)


class FakeClock:
    """Advances a quarter second on every monotonic read."""

    def __init__(self):
        self.ticks = 0.0
        self.start = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def monotonic(self) -> float:
        self.ticks += 0.25
        return self.ticks

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.ticks)


# Graph payload builders


def node(node_type: str, title: str, **fields) -> Dict[str, Any]:
    return {"id": str(uuid.uuid4()), "node_type": node_type, "title": title, **fields}


def edge(source: Dict[str, Any], target: Dict[str, Any], handle: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": str(uuid.uuid4()),
        "source": source["id"],
        "target": target["id"],
        "source_type": source["node_type"],
        "target_type": target["node_type"],
        "source_handle_id": handle,
    }


def ref(name: str, source: Dict[str, Any], var_name: str, var_type: str = "string", required: bool = True) -> Dict[str, Any]:
    return {
        "name": name,
        "type": var_type,
        "required": required,
        "value": {"type": "ref", "content": {"ref_node_id": source["id"], "ref_var_name": var_name}},
    }


def literal(name: str, value: Any, var_type: str = "string") -> Dict[str, Any]:
    return {"name": name, "type": var_type, "value": {"type": "literal", "content": value}}


def start_node(*names: str, var_type: str = "string") -> Dict[str, Any]:
    return node("start", "Start", inputs=[{"name": name, "type": var_type, "required": True} for name in names])


def end_node(*outputs: Dict[str, Any]) -> Dict[str, Any]:
    return node("end", "End", outputs=list(outputs))


def template_node(title: str, template: str, *inputs: Dict[str, Any], output: str = "output") -> Dict[str, Any]:
    return node(
        "template_transform",
        title,
        template=template,
        inputs=list(inputs),
        outputs=[{"name": output, "type": "string", "value": {"type": "generated", "content": ""}}],
    )


def greeting_graph() -> Dict[str, Any]:
    """start(name) -> template "Hello {{name}}" -> end(result)."""
    start = start_node("name")
    greet = template_node("Greet", "Hello {{name}}", ref("name", start, "name"))
    end = end_node(ref("result", greet, "output"))
    return {"nodes": [start, greet, end], "edges": [edge(start, greet), edge(greet, end)]}


def classifier_graph() -> Dict[str, Any]:
    """start -> classifier -> (x-branch | y-branch of two nodes) -> end; end reports the x-branch."""
    start = start_node("query")
    classifier = node(
        "question_classifier",
        "Route",
        inputs=[ref("query", start, "query")],
        classes=[
            {"query": "questions about x", "source_handle_id": "hx"},
            {"query": "questions about y", "source_handle_id": "hy"},
        ],
    )
    x_branch = template_node("Emit X", "x")
    y_branch = template_node("Emit Y", "y")
    y_follow = template_node("Shout Y", "{{text}}!", ref("text", y_branch, "output"))
    end = end_node(ref("result", x_branch, "output", required=False))
    return {
        "nodes": [start, classifier, x_branch, y_branch, y_follow, end],
        "edges": [
            edge(start, classifier),
            edge(classifier, x_branch, "hx"),
            edge(classifier, y_branch, "hy"),
            edge(x_branch, end),
            edge(y_branch, y_follow),
            edge(y_follow, end),
        ],
    }


def exclaim_graph() -> Dict[str, Any]:
    """Sub-workflow: start(input) -> template "{{input}}!" -> end(processed_input)."""
    start = start_node("input")
    exclaim = template_node("Exclaim", "{{input}}!", ref("input", start, "input"))
    end = end_node(ref("processed_input", exclaim, "output"))
    return {"nodes": [start, exclaim, end], "edges": [edge(start, exclaim), edge(exclaim, end)]}


def iteration_graph(sub_workflow_id: uuid.UUID) -> Dict[str, Any]:
    start = start_node("items", var_type="list[string]")
    loop = node(
        "iteration",
        "Loop",
        workflow_ids=[str(sub_workflow_id)],
        inputs=[ref("inputs", start, "items", var_type="list[string]")],
    )
    end = end_node(ref("results", loop, "outputs", var_type="list[string]"))
    return {"nodes": [start, loop, end], "edges": [edge(start, loop), edge(loop, end)]}
