from __future__ import annotations

import re
from collections.abc import Iterable

MASK = "****"
TRUNCATED_SUFFIX = "... (truncated)"
_KEY_SEPARATORS = re.compile(r"[:= ]")


def _mask_match(match: re.Match[str]) -> str:
    parts = _KEY_SEPARATORS.split(match.group(0), maxsplit=1)
    if len(parts) > 1:
        return f"{parts[0]}={MASK}"
    return MASK


def mask_sensitive(text: str, patterns: Iterable[str]) -> str:
    """Replace secrets matched by ``patterns``, keeping the key name when there is one."""
    if not text:
        return text
    result = text
    for pattern in patterns:
        try:
            result = re.sub(pattern, _mask_match, result, flags=re.IGNORECASE)
        except re.error:
            continue
    return result


def truncate_line(line: str, max_len: int) -> str:
    if max_len <= 0 or len(line) <= max_len:
        return line
    return line[:max_len] + TRUNCATED_SUFFIX
