import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Optional

from acouchbase.cluster import Cluster as AsyncCluster
from couchbase.auth import PasswordAuthenticator
from couchbase.exceptions import (
    CASMismatchException,
    DocumentExistsException,
    DocumentNotFoundException,
    ServiceUnavailableException,
    TemporaryFailException,
    TimeoutException,
)
from couchbase.n1ql import QueryScanConsistency
from couchbase.options import (
    ClusterOptions,
    GetOptions,
    InsertOptions,
    QueryOptions,
    ReplaceOptions,
)

from .config import CouchbaseConf
from .exceptions import (
    CasMismatchError,
    DocumentExistsError,
    DocumentMissingError,
    StoreTimeoutError,
)
from .keyspace import Keyspace
from .store import Condition, Document, QuerySpec, encode_value

# Raised while the cluster is still starting up
CONNECT_RETRY_ERRORS = (TimeoutException, ServiceUnavailableException, TemporaryFailException)


def build_query(keyspace: Keyspace, spec: QuerySpec) -> tuple[str, Dict[str, Any]]:
    """Render a ``QuerySpec`` as a parametrised N1QL statement."""
    params: Dict[str, Any] = {}
    clauses = []
    for i, cond in enumerate(spec.conditions):
        clauses.append(_render_condition(cond, f"p{i}", params))

    where = " AND ".join(clauses) if clauses else "1=1"
    query = f"SELECT META().id AS id, META().cas AS cas, d.* FROM {keyspace} AS d WHERE {where}"
    if spec.order_by:
        order = ", ".join(f"d.`{o.field}` {o.direction}" for o in spec.order_by)
        query += f" ORDER BY {order}"
    if spec.limit is not None:
        query += f" LIMIT {int(spec.limit)}"
    if spec.offset:
        query += f" OFFSET {int(spec.offset)}"
    return query, params


def _render_condition(cond: Condition, name: str, params: Dict[str, Any]) -> str:
    column = f"d.`{cond.field}`"
    if cond.op == "is_null":
        return f"({column} IS NULL OR {column} IS MISSING)"
    if cond.op == "is_not_null":
        return f"{column} IS VALUED"
    params[name] = encode_value(cond.value)
    if cond.op == "in":
        return f"{column} IN ${name}"
    return f"{column} {cond.op} ${name}"


class CouchbaseDocumentStore:
    """``DocumentStore`` backed by a Couchbase bucket, one collection per entity."""

    def __init__(self, conf: CouchbaseConf):
        conf.validate_or_raise()
        self._conf = conf
        self._cluster: Optional[AsyncCluster] = None

    async def connect(self, max_retries: int = 10, initial_delay: float = 1.0, max_delay: float = 30.0) -> None:
        """
        Open the cluster connection.
        Implements retry with exponential backoff for startup race conditions.
        """
        if self._cluster is not None:
            return
        auth = PasswordAuthenticator(self._conf.username, self._conf.password)
        delay = initial_delay
        for attempt in range(1, max_retries + 1):
            try:
                cluster = await AsyncCluster.connect(self._conf.connection_string, ClusterOptions(auth))
                break
            except CONNECT_RETRY_ERRORS:
                if attempt == max_retries:
                    raise
                await asyncio.sleep(delay)
                delay = min(delay * 2, max_delay)
        await cluster.wait_until_ready(timedelta(seconds=50))
        self._cluster = cluster

    async def close(self) -> None:
        if self._cluster is not None:
            await self._cluster.close()
            self._cluster = None

    async def check_connection(self) -> None:
        await self._get_cluster().ping()

    def _get_cluster(self) -> AsyncCluster:
        if self._cluster is None:
            raise RuntimeError("CouchbaseDocumentStore.connect() has not been awaited")
        return self._cluster

    def keyspace(self, collection: str) -> Keyspace:
        return Keyspace(self._conf.bucket, self._conf.scope, collection)

    def _collection(self, collection: str):
        bucket = self._get_cluster().bucket(self._conf.bucket)
        return bucket.scope(self._conf.scope).collection(collection)

    async def get(self, collection: str, key: str) -> Optional[Document]:
        try:
            result = await self._collection(collection).get(key, GetOptions(timeout=self._conf.kv_timeout))
        except DocumentNotFoundException:
            return None
        except TimeoutException as e:
            raise StoreTimeoutError(f"get {collection}/{key} timed out") from e
        return Document(key=key, content=result.content_as[dict], cas=result.cas)

    async def insert(self, collection: str, key: str, content: Dict[str, Any]) -> int:
        try:
            result = await self._collection(collection).insert(
                key, content, InsertOptions(timeout=self._conf.kv_timeout)
            )
        except DocumentExistsException as e:
            raise DocumentExistsError(f"{collection}/{key} already exists") from e
        except TimeoutException as e:
            raise StoreTimeoutError(f"insert {collection}/{key} timed out") from e
        return result.cas

    async def replace(self, collection: str, key: str, content: Dict[str, Any], cas: int) -> int:
        try:
            result = await self._collection(collection).replace(
                key, content, ReplaceOptions(cas=cas, timeout=self._conf.kv_timeout)
            )
        except CASMismatchException as e:
            raise CasMismatchError(f"{collection}/{key} was modified concurrently") from e
        except DocumentNotFoundException as e:
            raise DocumentMissingError(f"{collection}/{key} does not exist") from e
        except TimeoutException as e:
            raise StoreTimeoutError(f"replace {collection}/{key} timed out") from e
        return result.cas

    async def query(self, spec: QuerySpec) -> List[Document]:
        query, params = build_query(self.keyspace(spec.collection), spec)
        options = QueryOptions(
            named_parameters=params,
            scan_consistency=QueryScanConsistency.REQUEST_PLUS,
            timeout=self._conf.query_timeout,
        )
        try:
            result = self._get_cluster().query(query, options)
            rows = [row async for row in result]
        except TimeoutException as e:
            raise StoreTimeoutError(f"query on {spec.collection} timed out") from e

        docs = []
        for row in rows:
            content = dict(row)
            key = content.pop("id")
            cas = content.pop("cas", None)
            docs.append(Document(key=key, content=content, cas=cas))
        return docs
