"""Token counting used by the splitter and for segment/document token counts."""

import tiktoken

from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


class TokenCounter:
    """Counts tokens with a tiktoken encoding."""

    def __init__(self, encoding_name: str = "cl100k_base"):
        """Initialize token counter.

        Args:
            encoding_name: tiktoken encoding; unknown names fall back to cl100k_base
        """
        try:
            self.encoder = tiktoken.get_encoding(encoding_name)
        except ValueError:
            LOGGER.warning(f"Unknown encoding {encoding_name}, using cl100k_base")
            self.encoder = tiktoken.get_encoding("cl100k_base")
        LOGGER.debug(f"Initialized token counter with encoding: {self.encoder.name}")

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        # Special-token text in user documents is counted as plain text
        return len(self.encoder.encode(text, disallowed_special=()))

    def __call__(self, text: str) -> int:
        return self.count_tokens(text)
