from .config import CouchbaseConf
from .keyspace import Keyspace
from .exceptions import (
    CasMismatchError,
    DocumentExistsError,
    DocumentMissingError,
    DocumentStoreError,
    StoreTimeoutError,
)
from .store import (
    Condition,
    Document,
    DocumentStore,
    OrderBy,
    QuerySpec,
    eq,
    format_timestamp,
    is_null,
    lte,
)
from .memory import InMemoryDocumentStore
from .base_model import (
    BaseModelCouchbase,
    BaseCouchbaseEntityData,
    DataT,
    T,
    UtcDateTime,
)

# The SDK-backed store lives in clients.couchbase.cluster and is imported on demand.
