"""Split translated markup that exceeds a destination length limit."""

from __future__ import annotations


def split_markup(content: str, limit: int = 2000) -> list[str]:
    """Split content into ordered chunks, each <= limit characters.

    Prefers breaking after the last newline or space of a chunk when that
    boundary sits in the second half of it. Nothing is added or dropped:
    ``"".join(split_markup(s, n)) == s`` always holds.
    """
    if not content:
        return []
    if limit <= 0:
        raise ValueError("limit must be positive")
    if len(content) <= limit:
        return [content]

    chunks: list[str] = []
    start = 0
    while start < len(content):
        end = min(start + limit, len(content))
        if end < len(content):
            window = content[start:end]
            # Try to break at a line, then word, boundary
            cut = window.rfind("\n")
            if cut <= limit // 2:
                cut = max(window.rfind(" "), cut)
            if cut > limit // 2:
                end = start + cut + 1
        chunks.append(content[start:end])
        start = end
    return chunks


def truncate(content: str, limit: int, ellipsis: str = "…") -> str:
    """Cut content to at most `limit` characters, marking the cut."""
    if len(content) <= limit:
        return content
    if limit <= len(ellipsis):
        return content[:limit]
    return content[: limit - len(ellipsis)] + ellipsis
