"""In-process document store with the same CAS semantics as Couchbase.

Used for local development when no cluster is configured, and by the test
suite.  Documents are deep-copied on the way in and out so callers never share
mutable state with the store.
"""

import copy
import itertools
from typing import Any, Dict, List, Optional

from .exceptions import CasMismatchError, DocumentExistsError, DocumentMissingError
from .store import Condition, Document, QuerySpec, encode_value


def _matches(content: Dict[str, Any], condition: Condition) -> bool:
    value = content.get(condition.field)
    if condition.op == "is_null":
        return value is None
    if condition.op == "is_not_null":
        return value is not None
    expected = encode_value(condition.value)
    if condition.op == "in":
        return value in expected
    if condition.op == "=":
        return value == expected
    if condition.op == "!=":
        return value is not None and value != expected
    # Range comparisons never match NULL / MISSING, as in N1QL
    if value is None or expected is None:
        return False
    try:
        if condition.op == "<":
            return value < expected
        if condition.op == "<=":
            return value <= expected
        if condition.op == ">":
            return value > expected
        if condition.op == ">=":
            return value >= expected
    except TypeError:
        return False
    return False


class _SortKey:
    """Orders NULL before any value, matching N1QL ascending order."""

    __slots__ = ("value", "reverse")

    def __init__(self, value: Any, reverse: bool):
        self.value = value
        self.reverse = reverse

    def __lt__(self, other: "_SortKey") -> bool:
        a, b = (other.value, self.value) if self.reverse else (self.value, other.value)
        if a is None:
            return b is not None
        if b is None:
            return False
        return a < b

    def __eq__(self, other: object) -> bool:
        return isinstance(other, _SortKey) and self.value == other.value


class InMemoryDocumentStore:
    def __init__(self):
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._cas_counter = itertools.count(1)

    def _collection(self, name: str) -> Dict[str, Document]:
        return self._collections.setdefault(name, {})

    async def get(self, collection: str, key: str) -> Optional[Document]:
        doc = self._collection(collection).get(key)
        if doc is None:
            return None
        return Document(key=key, content=copy.deepcopy(doc.content), cas=doc.cas)

    async def insert(self, collection: str, key: str, content: Dict[str, Any]) -> int:
        docs = self._collection(collection)
        if key in docs:
            raise DocumentExistsError(f"{collection}/{key} already exists")
        cas = next(self._cas_counter)
        docs[key] = Document(key=key, content=copy.deepcopy(content), cas=cas)
        return cas

    async def replace(self, collection: str, key: str, content: Dict[str, Any], cas: int) -> int:
        docs = self._collection(collection)
        current = docs.get(key)
        if current is None:
            raise DocumentMissingError(f"{collection}/{key} does not exist")
        if current.cas != cas:
            raise CasMismatchError(f"{collection}/{key} was modified concurrently")
        new_cas = next(self._cas_counter)
        docs[key] = Document(key=key, content=copy.deepcopy(content), cas=new_cas)
        return new_cas

    async def query(self, spec: QuerySpec) -> List[Document]:
        docs = [
            doc for doc in self._collection(spec.collection).values()
            if all(_matches(doc.content, c) for c in spec.conditions)
        ]
        # Stable multi-key sort: apply the least significant key first
        docs.sort(key=lambda d: d.key)
        for order in reversed(list(spec.order_by)):
            docs.sort(key=lambda d, o=order: _SortKey(d.content.get(o.field), o.direction == "DESC"))
        docs = docs[spec.offset:]
        if spec.limit is not None:
            docs = docs[:spec.limit]
        return [Document(key=d.key, content=copy.deepcopy(d.content), cas=d.cas) for d in docs]

    def count(self, collection: str) -> int:
        return len(self._collection(collection))
