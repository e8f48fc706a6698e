"""
Read one string field out of a JSON document that is still arriving.

The accumulated payload only becomes valid JSON once the stream ends, so a
full parser cannot be used mid-stream. Instead the value of a single known
field is matched structurally, and the newly visible characters are obtained
by comparing the match before and after the latest fragment.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_FIELD = "formatted_content"

_SIMPLE_ESCAPES = {
    "n": "\n",
    '"': '"',
    "\\": "\\",
    "t": "\t",
    "r": "\r",
    "/": "/",
    "b": "\b",
    "f": "\f",
}

# A complete escape is either \uXXXX or a backslash plus one non-u character.
# An escape cut off by a fragment boundary is left out of the match.
_VALUE_PATTERN = r'"{field}"\s*:\s*"((?:[^"\\]|\\u[0-9a-fA-F]{{4}}|\\[^u])*)'
_ESCAPE_RE = re.compile(r"\\(u[0-9a-fA-F]{4}|.)", re.DOTALL)


def unescape_json_string(value: str) -> str:
    """Decode JSON string escapes in a single pass."""

    def _replace(match: re.Match) -> str:
        token = match.group(1)
        if token.startswith("u") and len(token) == 5:
            return chr(int(token[1:], 16))
        return _SIMPLE_ESCAPES.get(token, token)

    return _ESCAPE_RE.sub(_replace, value)


class PartialFieldExtractor:
    """Emits the new characters of one string field per appended fragment."""

    def __init__(self, field_name: str = DEFAULT_FIELD):
        self.field_name = field_name
        self._pattern = re.compile(
            _VALUE_PATTERN.format(field=re.escape(field_name)),
            re.DOTALL,
        )

    def field_value(self, text: str) -> Optional[str]:
        """Return the decoded (possibly unterminated) field value, if present."""
        match = self._pattern.search(text)
        if match is None:
            return None
        return unescape_json_string(match.group(1))

    def extract_delta(self, accumulated: str, fragment: str) -> str:
        """Return the characters ``fragment`` added to the field value.

        ``accumulated`` must already end with ``fragment``. Returns an empty
        string when the field is absent, did not grow, or no longer extends
        the previous value.
        """
        try:
            current = self.field_value(accumulated)
            if current is None:
                return ""

            cut = accumulated.rfind(fragment) if fragment else -1
            previous_text = accumulated[:cut] if cut >= 0 else accumulated
            previous = self.field_value(previous_text) or ""

            if len(current) > len(previous) and current.startswith(previous):
                return current[len(previous):]
            return ""
        except Exception as exc:  # extraction must never break the stream
            logger.debug(
                "Partial field extraction failed",
                extra={"data": {"field": self.field_name, "error": str(exc)}},
            )
            return ""
