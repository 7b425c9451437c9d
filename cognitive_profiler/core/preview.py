"""
Deterministic previews for providers the account cannot pay for.

Pure functions only: the same input always yields the same preview and no
network call is ever made.
"""

from typing import Any, Dict, Union
import re

from cognitive_profiler.models.contracts import AnalysisKind

PREVIEW_MESSAGE = "This is a real preview. Purchase credits to unlock the full analysis."

_WHITESPACE = re.compile(r"\s+")


def count_words(text: str) -> int:
    return len([word for word in _WHITESPACE.split(text.strip()) if word])


def truncate_words(text: str, max_words: int) -> str:
    """Keep the first ``max_words`` words, marking the cut with an ellipsis."""
    words = [word for word in _WHITESPACE.split(text.strip()) if word]
    if len(words) <= max_words:
        return text.strip()
    return " ".join(words[:max_words]) + "..."


class PreviewGenerator:
    """Builds truncated substitutes for full provider payloads."""

    def __init__(self, max_words: int = 200, list_limit: int = 2):
        if max_words < 1 or list_limit < 1:
            raise ValueError("Preview limits must be positive")
        self.max_words = max_words
        self.list_limit = list_limit

    def generate(self, source: Union[str, Dict[str, Any]], kind: AnalysisKind) -> Dict[str, Any]:
        """
        Build a preview payload.

        Args:
            source: The input text, or a full/partial provider payload
            kind: Requested analysis kind

        Returns:
            Preview payload flagged with ``is_preview``
        """
        if isinstance(source, str):
            return {
                "is_preview": True,
                "kind": kind.value,
                "excerpt": truncate_words(source, self.max_words),
                "word_count": count_words(source),
                "message": PREVIEW_MESSAGE,
            }

        preview = {key: self._truncate(value) for key, value in source.items()}
        preview["is_preview"] = True
        preview["kind"] = kind.value
        preview["message"] = PREVIEW_MESSAGE
        return preview

    def _truncate(self, value: Any) -> Any:
        if isinstance(value, str):
            return truncate_words(value, self.max_words)
        if isinstance(value, list):
            return [self._truncate(item) for item in value[: self.list_limit]]
        if isinstance(value, dict):
            return {key: self._truncate(item) for key, item in value.items()}
        return value
