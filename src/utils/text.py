"""Utilities for parsing model output and trimming text safely."""

from __future__ import annotations

import re

_LIST_MARKER = re.compile(r"^\s*(?:[-*•]+|\d+[.)]|[a-z][.)])\s*", re.IGNORECASE)
_QUOTES = "\"'`“”‘’"


def ellipsize(text: str, max_chars: int) -> str:
    """Shorten text with ellipsis."""
    if not text:
        return ""
    if len(text) <= max_chars:
        return text
    trimmed = text[: max(max_chars - 3, 0)].rstrip()
    return trimmed + "..."


def clean_query_line(line: str) -> str:
    """Strip list markers and surrounding quotes from one generated query line."""
    cleaned = _LIST_MARKER.sub("", line.strip(), count=1)
    return cleaned.strip().strip(_QUOTES).strip()


def parse_query_lines(text: str, min_length: int = 3) -> list[str]:
    """
    Turn a one-query-per-line model response into a clean, de-duplicated list.

    Lines ending with ':' are treated as headings and skipped.
    """
    queries: list[str] = []
    seen: set[str] = set()
    for raw in (text or "").splitlines():
        query = clean_query_line(raw)
        if len(query) < min_length or query.endswith(":"):
            continue
        key = query.lower()
        if key in seen:
            continue
        seen.add(key)
        queries.append(query)
    return queries


def extract_block(text: str, tag: str) -> str | None:
    """Return the stripped body of ``<tag>...</tag>`` or None when absent."""
    match = re.search(rf"<{tag}>(.*?)</{tag}>", text or "", re.DOTALL | re.IGNORECASE)
    if not match:
        return None
    return match.group(1).strip()
