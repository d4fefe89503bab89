from datetime import timedelta
from typing import List

from pydantic import BaseModel

VALID_PROTOCOLS = ("couchbase", "couchbases")


class CouchbaseConf(BaseModel):
    username: str
    password: str
    host: str
    bucket: str
    protocol: str = "couchbase"
    scope: str = "_default"
    kv_timeout_seconds: float = 5.0
    query_timeout_seconds: float = 20.0

    @property
    def connection_string(self) -> str:
        return self.protocol + "://" + self.host

    @property
    def kv_timeout(self) -> timedelta:
        return timedelta(seconds=self.kv_timeout_seconds)

    @property
    def query_timeout(self) -> timedelta:
        return timedelta(seconds=self.query_timeout_seconds)

    def errors(self) -> List[str]:
        errors = []
        if not self.username:
            errors.append("COUCHBASE_USERNAME is missing or empty")
        if not self.password:
            errors.append("COUCHBASE_PASSWORD is missing or empty")
        if not self.host:
            errors.append("COUCHBASE_HOST is missing or empty")
        if not self.bucket:
            errors.append("COUCHBASE_BUCKET is missing or empty")
        if self.protocol not in VALID_PROTOCOLS:
            errors.append(
                f"COUCHBASE_PROTOCOL '{self.protocol}' is invalid. Must be one of {VALID_PROTOCOLS}"
            )
        return errors

    def validate_or_raise(self) -> None:
        errors = self.errors()
        if errors:
            raise ValueError("Invalid Couchbase Configuration:\n" + "\n".join(errors))
