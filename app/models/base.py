from datetime import datetime, timezone
from typing import Any

from bson import ObjectId


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so mixed sources stay comparable."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def id_variants(value: str) -> list:
    """Match a stored id whether it was written as an ObjectId or a string."""
    variants: list = [value]
    if ObjectId.is_valid(value):
        variants.append(ObjectId(value))
    return variants


def stringify_ids(value: Any) -> Any:
    """Recursively convert ObjectIds in a Mongo document to strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {key: stringify_ids(item) for key, item in value.items()}
    if isinstance(value, list):
        return [stringify_ids(item) for item in value]
    return value
