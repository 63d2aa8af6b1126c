"""Rolling summary update policy."""

from chatmem.memory.models import MemoryEntry

DEFAULT_SUMMARY_MAX_LENGTH = 1000
IMPORTANT_THRESHOLD = 7


def update_summary(
    existing: str,
    entry: MemoryEntry,
    max_length: int = DEFAULT_SUMMARY_MAX_LENGTH,
) -> str:
    """Fold a newly added memory entry into the conversation summary.

    - ``summary`` entries replace the summary outright.
    - Entries with importance >= 7 are appended as ``Important: ...``.
    - Everything else leaves the summary untouched.

    The result is cut to *max_length* characters, always from the tail.
    """
    if entry.metadata.type == "summary":
        return entry.content[:max_length]

    if entry.metadata.importance >= IMPORTANT_THRESHOLD:
        return f"{existing}\n\nImportant: {entry.content}"[:max_length]

    return existing
