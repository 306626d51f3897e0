"""Keyword extraction for segments and queries.

jieba's TF-IDF extractor handles mixed Chinese and English text; results
are lowercased, trimmed, de-duplicated and filtered against a stop-word list.
"""

import logging
import re
from typing import Iterable, List, Optional, Set

import jieba
import jieba.analyse

from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Silence jieba's dictionary-loading chatter
jieba.setLogLevel(logging.WARNING)

STOP_WORDS: Set[str] = {
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "from", "has", "have",
    "he", "her", "his", "how", "i", "if", "in", "into", "is", "it", "its", "me", "my",
    "no", "not", "of", "on", "or", "our", "she", "so", "than", "that", "the", "their",
    "them", "then", "there", "these", "they", "this", "those", "to", "too", "us", "was",
    "we", "were", "what", "when", "where", "which", "who", "why", "will", "with", "you",
    "your",
    "的", "了", "和", "是", "在", "我", "有", "就", "不", "人", "都", "一", "一个", "上",
    "也", "很", "到", "说", "要", "去", "你", "会", "着", "没有", "看", "好", "自己", "这",
    "那", "他", "她", "它", "我们", "你们", "他们", "什么", "怎么", "如何", "为什么",
}

_WORD = re.compile(r"\w", re.UNICODE)


class KeywordExtractor:
    """Extracts at most ``max_keywords`` normalized keywords from text."""

    def __init__(self, stop_words: Optional[Iterable[str]] = None):
        self.stop_words = set(STOP_WORDS if stop_words is None else stop_words)

    def extract(self, text: str, max_keywords: int = 10) -> List[str]:
        if not text or not text.strip() or max_keywords <= 0:
            return []

        # Over-fetch so stop-word filtering can still fill the quota
        candidates = jieba.analyse.extract_tags(text, topK=max_keywords * 2)
        return self.normalize(candidates)[:max_keywords]

    def normalize(self, keywords: Iterable[str]) -> List[str]:
        """Lowercase, trim, drop stop words and punctuation, keep first occurrence order."""
        result: List[str] = []
        seen: Set[str] = set()
        for keyword in keywords:
            keyword = keyword.strip().lower()
            if not keyword or keyword in seen or keyword in self.stop_words:
                continue
            if not _WORD.search(keyword):
                continue
            seen.add(keyword)
            result.append(keyword)
        return result
