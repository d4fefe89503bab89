"""
Document store interface shared by the Couchbase and in-memory backends.

Documents are plain JSON dicts addressed by ``(collection, key)``.  Every
read returns the document's CAS value; ``replace`` only succeeds when the
caller presents the CAS it read, which is how concurrent writers to the same
document are serialized.
"""

import re
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Protocol, Sequence, Tuple

Operator = Literal["=", "!=", "<", "<=", ">", ">=", "in", "is_null", "is_not_null"]
Direction = Literal["ASC", "DESC"]

OPERATORS: Tuple[str, ...] = ("=", "!=", "<", "<=", ">", ">=", "in", "is_null", "is_not_null")

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Fixed-width UTC format so that stored timestamps order correctly as strings.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        raise ValueError("Timestamps must be timezone-aware")
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def encode_value(value: Any) -> Any:
    """Convert a query parameter to the representation used in stored documents."""
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def check_field_name(name: str) -> str:
    if not _FIELD_RE.match(name):
        raise ValueError(f"Invalid field name: {name!r}")
    return name


@dataclass(frozen=True)
class Condition:
    field: str
    op: Operator
    value: Any = None

    def __post_init__(self):
        check_field_name(self.field)
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported operator: {self.op!r}")


@dataclass(frozen=True)
class OrderBy:
    field: str
    direction: Direction = "ASC"

    def __post_init__(self):
        check_field_name(self.field)
        if self.direction not in ("ASC", "DESC"):
            raise ValueError(f"Unsupported direction: {self.direction!r}")


def eq(name: str, value: Any) -> Condition:
    return Condition(name, "=", value)


def lte(name: str, value: Any) -> Condition:
    return Condition(name, "<=", value)


def is_null(name: str) -> Condition:
    return Condition(name, "is_null")


@dataclass
class Document:
    key: str
    content: Dict[str, Any]
    cas: Optional[int] = None


@dataclass
class QuerySpec:
    collection: str
    conditions: Sequence[Condition] = field(default_factory=tuple)
    order_by: Sequence[OrderBy] = field(default_factory=tuple)
    limit: Optional[int] = None
    offset: int = 0


class DocumentStore(Protocol):
    async def get(self, collection: str, key: str) -> Optional[Document]:
        """Return the document or ``None`` when the key is absent."""
        ...

    async def insert(self, collection: str, key: str, content: Dict[str, Any]) -> int:
        """Create a document; raises ``DocumentExistsError`` if the key is taken."""
        ...

    async def replace(self, collection: str, key: str, content: Dict[str, Any], cas: int) -> int:
        """Overwrite a document iff its CAS still matches; raises ``CasMismatchError``."""
        ...

    async def query(self, spec: QuerySpec) -> List[Document]:
        """Equality / range query over one collection."""
        ...
