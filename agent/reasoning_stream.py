"""
Reasoning stream: human-readable progress messages for one run.

The orchestration loop calls ``emit()`` at run start, before each model
re-invocation, around each tool call, and at run end. Messages are
scrubbed of storage vocabulary first ("running SQL query on table" reads
as "running data analysis on data"). Nothing here ever raises into the
loop: a failing callback is logged and ignored.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable

from .logging import tagged
from .truncation import trunc

logger = logging.getLogger("datachat")

# Ordered: phrase-level replacements first, then single words, then
# collapse the doubled words the first two passes can produce.
_SCRUB_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"(?:\btable\s+)?\"?\bdata_[0-9a-f]{6,}\b\"?", re.I), "the dataset"),
    (re.compile(r"\b(?:sql\s+)?quer(?:y|ies)\s+(?:execution|run)\b", re.I), "data analysis"),
    (re.compile(r"\b(?:execut(?:e|ing)|run(?:ning)?)\s+(?:an?\s+)?(?:sql\s+)?quer(?:y|ies)\b", re.I), "analyzing the data"),
    (re.compile(r"\btable\s+(?:lookup|scan)\b", re.I), "data analysis"),
    (re.compile(r"\bschema\s+(?:lookup|inspection|check)\b", re.I), "structure review"),
    (re.compile(r"\bcolumn\s+mapping\b", re.I), "field names"),
    (re.compile(r"\bdatabases?\b", re.I), "information"),
    (re.compile(r"\bsql\b", re.I), "data"),
    (re.compile(r"\bquer(?:y|ies)\b", re.I), "analysis"),
    (re.compile(r"\btables?\b", re.I), "data"),
    (re.compile(r"\bschemas?\b", re.I), "structure"),
    (re.compile(r"\bcolumns?\b", re.I), "fields"),
    (re.compile(r"\brows?\b", re.I), "records"),
    (re.compile(r"\bmappings?\b", re.I), "names"),
    (re.compile(r"\b(data|analysis)(\s+\1\b)+", re.I), r"\1"),
]


def scrub(text: str) -> str:
    """Replace internal/storage terms with generic phrasing (best-effort)."""
    for pattern, replacement in _SCRUB_RULES:
        text = pattern.sub(replacement, text)
    return text


class ReasoningStream:
    """Progress side-channel bound to one run.

    Args:
        callback: ``(message: str) -> None``; may be None to discard.
        enabled: When False, messages are logged but not delivered.
    """

    def __init__(self, callback: Callable[[str], None] | None = None, *, enabled: bool = True):
        self._callback = callback
        self._enabled = enabled
        self.sent: int = 0

    def emit(self, message: str, prefix: str | None = None) -> None:
        if not message:
            return
        try:
            text = scrub(message)
            if prefix:
                text = f"{prefix} {text}"
            text = trunc(text, "stream.message")
            logger.debug(f"[Reasoning] {text}", extra=tagged("reasoning"))
            if self._callback is None or not self._enabled:
                return
            self._callback(text)
            self.sent += 1
        except Exception as e:
            logger.debug(f"Reasoning callback failed (ignored): {e}")
