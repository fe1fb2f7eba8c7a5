"""
LLM Response Handler - normalize completion text before it reaches the document
"""
from typing import Any, Iterable, List

from flyer_engine.config import settings
from flyer_engine.logging_config import logger


class LLMResponseHandler:
    """
    Clean completion text returned by either provider.

    The model is never trusted to omit markdown wrapping, so every HTML
    completion passes through ``clean_html`` at least once.
    """

    @staticmethod
    def clean_html(html: str) -> str:
        """Remove a leading ```html / ``` fence and a trailing ``` fence.

        Repeats until nothing changes, so cleaning is idempotent even for
        doubly-wrapped output.
        """
        cleaned = (html or "").strip()

        while True:
            previous = cleaned
            if cleaned.startswith("```html"):
                cleaned = cleaned[7:]
            elif cleaned.startswith("```"):
                cleaned = cleaned[3:]
            if cleaned.endswith("```"):
                cleaned = cleaned[:-3]
            cleaned = cleaned.strip()
            if cleaned == previous:
                return cleaned

    @staticmethod
    def is_degenerate(html: str, min_length: int = None) -> bool:
        """Empty or too-short completions carry no usable document."""
        min_length = settings.MIN_HTML_LENGTH if min_length is None else min_length
        return not html or len(html) < min_length

    @staticmethod
    def join_text_blocks(blocks: Iterable[Any]) -> str:
        """Concatenate the text parts of an Anthropic ``content`` list."""
        parts: List[str] = []
        for block in blocks or []:
            if getattr(block, "type", None) == "text":
                parts.append(block.text)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
            else:
                logger.debug("Skipping non-text content block", block_type=getattr(block, "type", None))
        return "".join(parts)
