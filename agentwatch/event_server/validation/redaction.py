"""Payload redaction and field exclusion.

Redaction runs before commit and is irreversible: matching values are
replaced with ``REDACTION_MARKER`` in a fresh copy of the structure, the
original object is never stored anywhere.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

REDACTION_MARKER = "[REDACTED]"


class Redactor:
    """Replaces secrets in nested JSON-like structures.

    - *key_patterns* are matched (case-insensitive ``re.search``) against
      dict keys; a match replaces the whole value, whatever its type.
    - *value_patterns* are matched against string values; each match is
      substituted in place, leaving the surrounding text intact.
    """

    def __init__(self, key_patterns: Iterable[str] = (), value_patterns: Iterable[str] = ()) -> None:
        self._key_patterns = [re.compile(p, re.IGNORECASE) for p in key_patterns]
        self._value_patterns = [re.compile(p) for p in value_patterns]

    def redact(self, value: Any) -> tuple[Any, int]:
        """Return a redacted copy of *value* and the number of replacements."""
        counter = [0]
        return self._walk(value, counter), counter[0]

    def key_matches(self, key: str) -> bool:
        return any(p.search(key) for p in self._key_patterns)

    def _walk(self, value: Any, counter: list[int]) -> Any:
        if isinstance(value, dict):
            out: dict[str, Any] = {}
            for key, item in value.items():
                if isinstance(key, str) and self.key_matches(key):
                    out[key] = REDACTION_MARKER
                    counter[0] += 1
                else:
                    out[key] = self._walk(item, counter)
            return out
        if isinstance(value, list):
            return [self._walk(item, counter) for item in value]
        if isinstance(value, str) and self._value_patterns:
            for pattern in self._value_patterns:
                value, n = pattern.subn(REDACTION_MARKER, value)
                counter[0] += n
            return value
        return value


def drop_path(data: dict[str, Any], path: str) -> bool:
    """Remove the dotted *path* from *data* in place.  Returns ``True`` if removed.

    Intermediate non-dict values stop the walk silently: a path that does not
    exist in this particular event is simply not applicable.
    """
    parts = path.split(".")
    node: Any = data
    for part in parts[:-1]:
        if not isinstance(node, dict) or part not in node:
            return False
        node = node[part]
    if isinstance(node, dict) and parts[-1] in node:
        del node[parts[-1]]
        return True
    return False
