"""Name preservation for device records.

Discovery backends often report an empty name or a generic placeholder
before the real name resolves. A stored name is only ever replaced by a
meaningful candidate, so history never regresses to a placeholder.
"""

PLACEHOLDER_NAME = "unknown"


def clean_name(candidate: str | None) -> str | None:
    """Return the trimmed candidate if it is meaningful, else None."""
    if candidate is None:
        return None
    trimmed = candidate.strip()
    if not trimmed or trimmed.casefold() == PLACEHOLDER_NAME:
        return None
    return trimmed


def is_meaningful_name(candidate: str | None) -> bool:
    return clean_name(candidate) is not None


def resolve_name(candidate: str | None, existing: str | None) -> str | None:
    """Pick the name to store: the trimmed candidate, or the existing name."""
    cleaned = clean_name(candidate)
    return cleaned if cleaned is not None else existing
