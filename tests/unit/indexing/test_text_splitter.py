"""Tests for process rules and the paragraph-aware splitter."""

import pytest

from voidx.core.exceptions import ValidationError
from voidx.services.indexing.text_splitter import (
    DEFAULT_SEPARATORS,
    ParagraphTextSplitter,
    build_text_splitter,
    clean_text_by_rule,
    default_process_rule,
    validate_rule,
)


def word_count(text: str) -> int:
    return len(text.split())


class TestParagraphTextSplitter:
    """Tests for ParagraphTextSplitter."""

    def test_short_paragraphs_stay_separate(self):
        """Chunks never span a paragraph boundary even when both would fit."""
        splitter = ParagraphTextSplitter(chunk_size=100, chunk_overlap=0, length_function=word_count)

        chunks = splitter.split_text("alpha beta\n\ngamma delta")

        assert chunks == ["alpha beta", "gamma delta"]

    def test_long_paragraph_respects_chunk_size(self):
        words = [f"w{i}" for i in range(30)]
        splitter = ParagraphTextSplitter(chunk_size=10, chunk_overlap=0, length_function=word_count)

        chunks = splitter.split_text(" ".join(words))

        assert len(chunks) == 3
        assert all(word_count(chunk) <= 10 for chunk in chunks)
        assert " ".join(chunks).split() == words

    def test_blank_paragraphs_are_dropped(self):
        splitter = ParagraphTextSplitter(chunk_size=100, chunk_overlap=0, length_function=word_count)

        chunks = splitter.split_text("first\n\n   \n\nsecond")

        assert chunks == ["first", "second"]

    def test_custom_first_separator_is_the_hard_boundary(self):
        splitter = ParagraphTextSplitter(
            chunk_size=100, chunk_overlap=0, separators=["\n", " ", ""], length_function=word_count
        )

        chunks = splitter.split_text("alpha beta\ngamma delta")

        assert chunks == ["alpha beta", "gamma delta"]

    def test_build_from_rule_uses_segment_settings(self):
        rule = {"segment": {"chunk_size": 200, "chunk_overlap": 20, "separators": ["\n\n", " "]}}

        splitter = build_text_splitter(rule, word_count)

        assert splitter._chunk_size == 200
        assert splitter._chunk_overlap == 20
        assert splitter._separators == ["\n\n", " "]

    def test_build_without_segment_uses_defaults(self):
        splitter = build_text_splitter({}, word_count)

        assert splitter._chunk_size == 500
        assert splitter._separators == DEFAULT_SEPARATORS


class TestProcessRules:
    """Tests for rule validation and pre-processing."""

    def test_default_rule_is_a_copy(self):
        rule = default_process_rule()
        rule["segment"]["chunk_size"] = 999

        assert default_process_rule()["segment"]["chunk_size"] == 500

    def test_validate_fills_missing_segment_values(self):
        rule = validate_rule({"pre_process_rules": [{"id": "remove_extra_space", "enabled": True}]})

        assert rule["segment"]["chunk_size"] == 500
        assert rule["segment"]["chunk_overlap"] == 50
        assert rule["pre_process_rules"] == [{"id": "remove_extra_space", "enabled": True}]

    @pytest.mark.parametrize(
        "rule",
        [
            {"segment": {"chunk_size": 50}},
            {"segment": {"chunk_size": 200, "chunk_overlap": 150}},
            {"segment": {"separators": []}},
            {"segment": {"separators": ["("]}},
            {"pre_process_rules": [{"id": "remove_everything", "enabled": True}]},
            {"pre_process_rules": [{"id": "remove_extra_space"}, {"id": "remove_extra_space"}]},
        ],
    )
    def test_invalid_rules_are_rejected(self, rule):
        with pytest.raises(ValidationError):
            validate_rule(rule)

    def test_clean_text_removes_urls_and_emails(self):
        rule = {"pre_process_rules": [{"id": "remove_url_and_email", "enabled": True}]}

        cleaned = clean_text_by_rule("mail ops@example.com or see https://example.com/docs today", rule)

        assert "@" not in cleaned
        assert "https://" not in cleaned
        assert cleaned.startswith("mail ")
        assert cleaned.endswith(" today")

    def test_clean_text_collapses_whitespace(self):
        rule = {"pre_process_rules": [{"id": "remove_extra_space", "enabled": True}]}

        cleaned = clean_text_by_rule("a    b\n\n\n\nc", rule)

        assert cleaned == "a b\n\nc"

    def test_disabled_toggles_leave_text_alone(self):
        rule = {"pre_process_rules": [{"id": "remove_extra_space", "enabled": False}]}

        assert clean_text_by_rule("a    b", rule) == "a    b"
