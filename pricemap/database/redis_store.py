"""Redis-backed annotation store"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, Optional

import redis
import structlog

from pricemap.config.settings import settings
from pricemap.database.annotation_store import AnnotationStore
from pricemap.services.models import Annotation, PointIdentity
from pricemap.utils.exceptions import AnnotationStoreError

logger = structlog.get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
KEY_PREFIX = "annotation:"

# KEYS[1] annotation hash; ARGV[1] price; ARGV[2] updated_at in epoch microseconds.
# Leaves a newer record alone and returns whatever is stored.
UPSERT_SCRIPT = """
local stored = redis.call('HGET', KEYS[1], 'updated_us')
if stored and tonumber(stored) > tonumber(ARGV[2]) then
    return redis.call('HMGET', KEYS[1], 'price', 'updated_us')
end
redis.call('HSET', KEYS[1], 'price', ARGV[1], 'updated_us', ARGV[2])
return {ARGV[1], ARGV[2]}
"""

def _to_micros(timestamp: datetime) -> int:
    return (timestamp - EPOCH) // timedelta(microseconds=1)

def _from_micros(value) -> datetime:
    return EPOCH + timedelta(microseconds=int(value))

class RedisAnnotationStore(AnnotationStore):
    """One hash per identity: ``annotation:<key>`` -> {price, updated_us}"""

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis_client = redis_client or redis.Redis.from_url(
            settings.REDIS_URL, decode_responses=True
        )
        self._upsert = self.redis_client.register_script(UPSERT_SCRIPT)
        logger.info("RedisAnnotationStore initialized")

    @staticmethod
    def _key(identity: PointIdentity) -> str:
        return f"{KEY_PREFIX}{identity.key}"

    @staticmethod
    def _annotation(identity: PointIdentity, price, updated_us) -> Optional[Annotation]:
        if price is None or updated_us is None:
            return None
        return Annotation(identity, Decimal(price), _from_micros(updated_us))

    def get(self, identity: PointIdentity) -> Optional[Annotation]:
        try:
            price, updated_us = self.redis_client.hmget(self._key(identity), "price", "updated_us")
        except redis.RedisError as e:
            raise AnnotationStoreError(f"Annotation lookup failed: {e}")
        return self._annotation(identity, price, updated_us)

    def bulk_get(self, identities: Iterable[PointIdentity]) -> Dict[PointIdentity, Annotation]:
        wanted = list(set(identities))
        if not wanted:
            return {}

        try:
            pipe = self.redis_client.pipeline(transaction=False)
            for identity in wanted:
                pipe.hmget(self._key(identity), "price", "updated_us")
            results = pipe.execute()
        except redis.RedisError as e:
            raise AnnotationStoreError(f"Bulk annotation lookup failed: {e}")

        found = {}
        for identity, (price, updated_us) in zip(wanted, results):
            annotation = self._annotation(identity, price, updated_us)
            if annotation is not None:
                found[identity] = annotation
        return found

    def upsert(self, identity: PointIdentity, price: Decimal, timestamp: datetime) -> Annotation:
        self._check_price(price)
        written_us = _to_micros(timestamp)

        try:
            stored_price, stored_us = self._upsert(
                keys=[self._key(identity)], args=[str(price), written_us]
            )
        except redis.RedisError as e:
            raise AnnotationStoreError(f"Annotation upsert failed: {e}")

        if int(stored_us) != written_us:
            logger.info("Ignoring stale annotation write",
                        identity=identity.key,
                        stored_at=_from_micros(stored_us).isoformat(),
                        write_at=timestamp.isoformat())

        return Annotation(identity, Decimal(stored_price), _from_micros(stored_us))

    def ping(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError as e:
            logger.error("Redis health check failed", error=str(e))
            return False

    def close(self) -> None:
        self.redis_client.close()
