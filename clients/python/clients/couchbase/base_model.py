import uuid
from datetime import datetime, timezone
from typing import Annotated, ClassVar, Generic, List, Optional, Sequence, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, PlainSerializer

from .store import Condition, DocumentStore, OrderBy, QuerySpec, format_timestamp


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return value.astimezone(timezone.utc)


# Stored as fixed-width UTC strings so range queries compare correctly.
UtcDateTime = Annotated[
    datetime,
    AfterValidator(_as_utc),
    PlainSerializer(format_timestamp, return_type=str, when_used="json"),
]


class BaseCouchbaseEntityData(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    schema_version: int = 1
    created_at: Optional[UtcDateTime] = None
    updated_at: Optional[UtcDateTime] = None
    created_by_user_id: Optional[str] = None


DataT = TypeVar("DataT", bound=BaseCouchbaseEntityData)
T = TypeVar("T", bound="BaseModelCouchbase")


class BaseModelCouchbase(BaseModel, Generic[DataT]):
    id: str
    data: DataT
    cas: Optional[int] = None

    _collection_name: ClassVar[str] = ""

    @classmethod
    def collection(cls) -> str:
        if not cls._collection_name:
            raise ValueError(f"_collection_name not set for {cls.__name__}")
        return cls._collection_name

    @staticmethod
    def to_document(data: BaseCouchbaseEntityData) -> dict:
        return data.model_dump(mode="json")

    @classmethod
    async def get(cls: type[T], store: DocumentStore, id: str) -> Optional[T]:
        doc = await store.get(cls.collection(), id)
        if doc is None:
            return None
        return cls(id=id, data=doc.content, cas=doc.cas)

    @classmethod
    async def create(
        cls: type[T],
        store: DocumentStore,
        data: DataT,
        key: Optional[str] = None,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> T:
        """Insert a new document. Raises ``DocumentExistsError`` when ``key`` is taken."""
        if key is None:
            key = str(uuid.uuid4())

        now = now or datetime.now(timezone.utc)
        if data.created_at is None:
            data.created_at = now
        data.updated_at = now

        if user_id:
            data.created_by_user_id = user_id

        cas = await store.insert(cls.collection(), key, cls.to_document(data))
        return cls(id=key, data=data, cas=cas)

    @classmethod
    async def update(cls: type[T], store: DocumentStore, item: T, now: Optional[datetime] = None) -> T:
        """CAS-conditional replace using the CAS the item was read with."""
        if item.cas is None:
            raise ValueError(f"{cls.__name__} {item.id} has no CAS; read it before updating")
        item.data.updated_at = now or datetime.now(timezone.utc)

        item.cas = await store.replace(cls.collection(), item.id, cls.to_document(item.data), item.cas)
        return item

    @classmethod
    async def find(
        cls: type[T],
        store: DocumentStore,
        conditions: Sequence[Condition] = (),
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[T]:
        spec = QuerySpec(cls.collection(), tuple(conditions), tuple(order_by), limit, offset)
        docs = await store.query(spec)
        return [cls(id=d.key, data=d.content, cas=d.cas) for d in docs]

    @classmethod
    async def find_all(
        cls: type[T],
        store: DocumentStore,
        conditions: Sequence[Condition] = (),
        order_by: Sequence[OrderBy] = (),
        page_size: int = 200,
        hard_limit: int = 5000,
    ) -> List[T]:
        """
        Page through every match before returning, up to ``hard_limit`` items.

        Callers that mutate the matched documents must collect first; changing
        them mid-pagination would shift the offsets of later pages.
        """
        items: List[T] = []
        offset = 0
        while len(items) < hard_limit:
            limit = min(page_size, hard_limit - len(items))
            page = await cls.find(store, conditions, order_by, limit=limit, offset=offset)
            items.extend(page)
            if len(page) < limit:
                break
            offset += len(page)
        return items
