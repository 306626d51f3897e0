"""Process-rule pre-processing and recursive chunking.

A process rule is stored as::

    {
        "pre_process_rules": [{"id": "remove_extra_space", "enabled": true}, ...],
        "segment": {"chunk_size": 500, "chunk_overlap": 50, "separators": [...]},
    }

Separators are regular expressions tried in order. The first separator is a
hard boundary: chunks never span it.
"""

import copy
import re
from typing import Any, Callable, Dict, List, Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter

from voidx.core.exceptions import ValidationError

DEFAULT_SEPARATORS = [
    "\n\n",
    "\n",
    "。|！|？",
    r"\.\s|\!\s|\?\s",
    r"；|;\s",
    r"，|,\s",
    " ",
    "",
]

DEFAULT_PROCESS_RULE: Dict[str, Any] = {
    "mode": "custom",
    "rule": {
        "pre_process_rules": [
            {"id": "remove_extra_space", "enabled": True},
            {"id": "remove_url_and_email", "enabled": True},
        ],
        "segment": {
            "separators": DEFAULT_SEPARATORS,
            "chunk_size": 500,
            "chunk_overlap": 50,
        },
    },
}

PRE_PROCESS_RULE_IDS = ("remove_extra_space", "remove_url_and_email")

_EXTRA_NEWLINES = re.compile(r"\n{3,}")
_EXTRA_SPACES = re.compile(r"[\t\f\r\x20\u00a0\u1680\u180e\u2000-\u200a\u202f\u205f\u3000]{2,}")
_EMAIL = re.compile(r"([a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+)")
_URL = re.compile(r"https?://[^\s]+")


def default_process_rule() -> Dict[str, Any]:
    return copy.deepcopy(DEFAULT_PROCESS_RULE["rule"])


def validate_rule(rule: Dict[str, Any]) -> Dict[str, Any]:
    """Check a custom rule and fill in missing segment parameters.

    Raises:
        ValidationError: If the rule is malformed
    """
    if not isinstance(rule, dict):
        raise ValidationError("Process rule must be an object")

    pre_process_rules = rule.get("pre_process_rules", [])
    if not isinstance(pre_process_rules, list):
        raise ValidationError("pre_process_rules must be a list")
    seen = set()
    for item in pre_process_rules:
        if not isinstance(item, dict) or item.get("id") not in PRE_PROCESS_RULE_IDS:
            raise ValidationError(f"Unknown pre-process rule: {item}")
        if item["id"] in seen:
            raise ValidationError(f"Duplicate pre-process rule: {item['id']}")
        seen.add(item["id"])

    defaults = DEFAULT_PROCESS_RULE["rule"]["segment"]
    segment = {**defaults, **(rule.get("segment") or {})}
    separators = segment["separators"]
    if not isinstance(separators, list) or not separators or not all(isinstance(s, str) for s in separators):
        raise ValidationError("segment.separators must be a non-empty list of strings")
    for separator in separators:
        try:
            re.compile(separator)
        except re.error as e:
            raise ValidationError(f"Invalid separator pattern {separator!r}: {e}", original_error=e) from e

    chunk_size, chunk_overlap = segment["chunk_size"], segment["chunk_overlap"]
    if not isinstance(chunk_size, int) or not 100 <= chunk_size <= 1000:
        raise ValidationError("segment.chunk_size must be an integer between 100 and 1000")
    if not isinstance(chunk_overlap, int) or not 0 <= chunk_overlap <= chunk_size // 2:
        raise ValidationError("segment.chunk_overlap must be between 0 and half of chunk_size")

    return {
        "pre_process_rules": [{"id": i["id"], "enabled": bool(i.get("enabled"))} for i in pre_process_rules],
        "segment": {"separators": separators, "chunk_size": chunk_size, "chunk_overlap": chunk_overlap},
    }


def clean_text_by_rule(text: str, rule: Dict[str, Any]) -> str:
    """Apply the enabled pre-process toggles of ``rule`` to ``text``."""
    for item in rule.get("pre_process_rules", []):
        if not item.get("enabled"):
            continue
        if item["id"] == "remove_extra_space":
            text = _EXTRA_NEWLINES.sub("\n\n", text)
            text = _EXTRA_SPACES.sub(" ", text)
        elif item["id"] == "remove_url_and_email":
            text = _EMAIL.sub("", text)
            text = _URL.sub("", text)
    return text


class ParagraphTextSplitter(RecursiveCharacterTextSplitter):
    """Recursive splitter that measures length in tokens and keeps paragraphs apart.

    Text is first cut on the first configured separator, whatever it is; the
    default puts the blank-line paragraph break there, and a rule that leads
    with ``"\\n"`` keeps every line apart instead. Each piece is then
    split recursively with the remaining separators, merging fragments while
    their combined length stays within ``chunk_size`` and carrying up to
    ``chunk_overlap`` into the next chunk. A fragment that still does not fit
    once separators run out is sliced character by character.
    """

    def __init__(
        self,
        chunk_size: int,
        chunk_overlap: int,
        separators: Optional[List[str]] = None,
        length_function: Callable[[str], int] = len,
    ):
        super().__init__(
            separators=separators or DEFAULT_SEPARATORS,
            keep_separator=True,
            is_separator_regex=True,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            length_function=length_function,
        )

    def split_text(self, text: str) -> List[str]:
        paragraph_separator, *rest = self._separators
        if not paragraph_separator:
            return super().split_text(text)

        chunks: List[str] = []
        for paragraph in re.split(paragraph_separator, text):
            if paragraph.strip():
                chunks.extend(self._split_text(paragraph, rest or [""]))
        return chunks


def build_text_splitter(rule: Dict[str, Any], length_function: Callable[[str], int]) -> ParagraphTextSplitter:
    segment = rule.get("segment") or {}
    defaults = DEFAULT_PROCESS_RULE["rule"]["segment"]
    return ParagraphTextSplitter(
        chunk_size=segment.get("chunk_size", defaults["chunk_size"]),
        chunk_overlap=segment.get("chunk_overlap", defaults["chunk_overlap"]),
        separators=segment.get("separators") or defaults["separators"],
        length_function=length_function,
    )
