from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the DB columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
