import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from voidx.workflow.entities import BaseNodeData, NodeType, VariableEntity, VariableType
from voidx.workflow.nodes.base import BaseNode
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)

END_ROUTE = "END"
CLASS_PREFIX = "qc_source_handle_"

CLASSIFIER_SYSTEM_PROMPT = """You are a text classifier. Read the user's question and pick the single class it belongs to.
The available classes are given as a JSON list; each item has a "query" describing the class and a "class" name:
{classes}

Rules:
1. Answer with the "class" value only, exactly as written, with no punctuation or explanation.
2. If no class fits well, answer with the first class."""


class ClassConfig(BaseModel):
    query: str = ""
    node_id: Optional[str] = None
    node_type: Optional[str] = None
    source_handle_id: str

    @property
    def class_name(self) -> str:
        return f"{CLASS_PREFIX}{self.source_handle_id}"


def _query_input() -> List[VariableEntity]:
    return [VariableEntity(name="query", type=VariableType.STRING, required=True)]


class QuestionClassifierNodeData(BaseNodeData):
    node_type: NodeType = NodeType.QUESTION_CLASSIFIER
    inputs: List[VariableEntity] = Field(default_factory=_query_input)
    classes: List[ClassConfig] = Field(default_factory=list)

    @field_validator("inputs")
    @classmethod
    def check_inputs(cls, inputs: List[VariableEntity]) -> List[VariableEntity]:
        if len(inputs) != 1 or inputs[0].name != "query" or inputs[0].type != VariableType.STRING:
            raise ValueError("Question classifier takes exactly one string input named query")
        return inputs

    @field_validator("classes")
    @classmethod
    def unique_handles(cls, classes: List[ClassConfig]) -> List[ClassConfig]:
        handles = [item.source_handle_id for item in classes]
        if len(handles) != len(set(handles)):
            raise ValueError("Question classifier classes need distinct source_handle_id values")
        return classes

    def get_outputs(self) -> List[VariableEntity]:
        return []


def _clean_answer(answer: str) -> str:
    return answer.strip().strip("`'\"").strip()


class QuestionClassifierNode(BaseNode):
    """Asks the model which class the query belongs to and reports the chosen handle.

    Output ``classification`` is the selected ``source_handle_id``, or ``END``
    when the node declares no classes.
    """

    data_class = QuestionClassifierNodeData

    async def invoke(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        classes = self.node_data.classes
        if not classes:
            return {"classification": END_ROUTE}

        language_model = self.context.require("language_model")
        class_list = [{"query": item.query, "class": item.class_name} for item in classes]
        answer = await language_model.complete(
            str(inputs.get("query", "")),
            system=CLASSIFIER_SYSTEM_PROMPT.format(classes=json.dumps(class_list, ensure_ascii=False)),
            temperature=0,
            max_tokens=512,
        )

        chosen = _clean_answer(answer or "")
        for item in classes:
            if chosen in (item.class_name, item.source_handle_id):
                return {"classification": item.source_handle_id}

        LOGGER.warning(
            "Classifier answer matched no class, using the first one",
            extra={"node_id": str(self.node_data.id), "answer": chosen[:100]},
        )
        return {"classification": classes[0].source_handle_id}
