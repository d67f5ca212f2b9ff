"""
Document store value types.

These are the shapes every service works with: document snapshots, query
predicates, change notifications and the write sentinels (server timestamp
and atomic increment) that are resolved inside the store's transaction.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class _ServerTimestamp:
    """Resolved to the commit time (UTC) when the write is applied."""

    def __repr__(self):
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    """Atomic numeric increment applied to a field inside an update."""
    delta: float


class ChangeType(Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class Document:
    """Snapshot of a stored document."""
    id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


@dataclass(frozen=True)
class DocumentChange:
    """Single change delivered to a subscription."""
    type: ChangeType
    document: Document


_OPERATORS = {
    '==': lambda a, b: a == b,
    '!=': lambda a, b: a != b,
    '<': lambda a, b: a < b,
    '<=': lambda a, b: a <= b,
    '>': lambda a, b: a > b,
    '>=': lambda a, b: a >= b,
}


@dataclass(frozen=True)
class Predicate:
    """Equality/range filter on a top-level document field."""
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported operator: {self.op}")

    def matches(self, data: Optional[Dict[str, Any]]) -> bool:
        # Documents without the field never match, whatever the operator
        if data is None or self.field not in data:
            return False
        try:
            return bool(_OPERATORS[self.op](data[self.field], self.value))
        except TypeError:
            return False


def where(field_name: str, op: str, value: Any) -> Predicate:
    return Predicate(field_name, op, value)


# JSON column encoding: datetimes survive the round trip as {"$date": iso}

def _json_default(value):
    if isinstance(value, datetime):
        return {'$date': value.isoformat()}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _json_object_hook(obj):
    if len(obj) == 1 and '$date' in obj:
        return datetime.fromisoformat(obj['$date'])
    return obj


def json_serializer(value) -> str:
    return json.dumps(value, default=_json_default)


def json_deserializer(text: str):
    return json.loads(text, object_hook=_json_object_hook)


@dataclass
class PendingWrite:
    """A planned write, queued into a WriteBatch at commit time."""
    kind: str  # 'set', 'update' or 'delete'
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]] = None
    merge: bool = False
