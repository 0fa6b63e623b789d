from datetime import UTC, datetime


def now() -> datetime:
    return datetime.now(UTC)


def format_number(value: int, width: int = 4) -> str:
    """Left-pad a sequence value with zeros; wider values are kept whole."""
    return str(value).zfill(width)
