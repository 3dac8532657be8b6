"""PostgreSQL-backed annotation store"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Optional

import psycopg2
import structlog

from pricemap.database.annotation_store import AnnotationStore
from pricemap.database.connection_pool import DatabasePool, get_pool
from pricemap.services.models import Annotation, PointIdentity
from pricemap.utils.exceptions import AnnotationStoreError

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS annotations (
    identity    TEXT PRIMARY KEY,
    price       NUMERIC(12, 3) NOT NULL CHECK (price > 0),
    updated_at  TIMESTAMPTZ NOT NULL
)
"""

# Only overwrite when the incoming write is at least as recent
UPSERT = """
INSERT INTO annotations (identity, price, updated_at)
VALUES (%s, %s, %s)
ON CONFLICT (identity) DO UPDATE
    SET price = EXCLUDED.price, updated_at = EXCLUDED.updated_at
    WHERE annotations.updated_at <= EXCLUDED.updated_at
RETURNING identity, price, updated_at
"""

SELECT_ONE = "SELECT identity, price, updated_at FROM annotations WHERE identity = %s"
SELECT_MANY = "SELECT identity, price, updated_at FROM annotations WHERE identity = ANY(%s)"

class PostgresAnnotationStore(AnnotationStore):
    """Annotations as rows of ``(identity, price, updated_at)``"""

    def __init__(self, db_pool: Optional[DatabasePool] = None, create_schema: bool = True):
        self.db_pool = db_pool or get_pool()
        if create_schema:
            self.ensure_schema()
        logger.info("PostgresAnnotationStore initialized")

    def ensure_schema(self) -> None:
        try:
            with self.db_pool.get_cursor() as cur:
                cur.execute(SCHEMA)
        except psycopg2.Error as e:
            raise AnnotationStoreError(f"Failed to create annotations table: {e}")

    def get(self, identity: PointIdentity) -> Optional[Annotation]:
        try:
            row = self.db_pool.execute_one(SELECT_ONE, (identity.key,))
        except psycopg2.Error as e:
            raise AnnotationStoreError(f"Annotation lookup failed: {e}")

        if not row:
            return None
        return Annotation(identity, row["price"], row["updated_at"])

    def bulk_get(self, identities: Iterable[PointIdentity]) -> Dict[PointIdentity, Annotation]:
        by_key = {identity.key: identity for identity in identities}
        if not by_key:
            return {}

        try:
            rows = self.db_pool.execute_query(SELECT_MANY, (list(by_key),))
        except psycopg2.Error as e:
            raise AnnotationStoreError(f"Bulk annotation lookup failed: {e}")

        found = {}
        for row in rows:
            identity = by_key[row["identity"]]
            found[identity] = Annotation(identity, row["price"], row["updated_at"])
        return found

    def upsert(self, identity: PointIdentity, price: Decimal, timestamp: datetime) -> Annotation:
        self._check_price(price)

        try:
            with self.db_pool.get_cursor() as cur:
                cur.execute(UPSERT, (identity.key, price, timestamp))
                row = cur.fetchone()
                if row is None:
                    # Stale write: the stored annotation is newer
                    cur.execute(SELECT_ONE, (identity.key,))
                    row = cur.fetchone()
                    logger.info("Ignoring stale annotation write",
                                identity=identity.key,
                                stored_at=row["updated_at"].isoformat(),
                                write_at=timestamp.isoformat())
        except psycopg2.Error as e:
            raise AnnotationStoreError(f"Annotation upsert failed: {e}")

        return Annotation(identity, row["price"], row["updated_at"])

    def ping(self) -> bool:
        try:
            self.db_pool.execute_one("SELECT 1 AS ok")
            return True
        except psycopg2.Error as e:
            logger.error("Postgres health check failed", error=str(e))
            return False

    def close(self) -> None:
        self.db_pool.close_all()
