"""Annotation store contract and the in-process backend"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import structlog

from pricemap.services.models import Annotation, PointIdentity
from pricemap.utils.exceptions import InvalidPrice

logger = structlog.get_logger(__name__)

class AnnotationStore(ABC):
    """
    Keyed storage of price annotations.

    Upserts are last-write-wins by timestamp: a write whose timestamp is
    older than the stored one leaves the record untouched and the stored
    annotation is returned. Equal timestamps resolve by arrival order.
    Backend failures surface as AnnotationStoreError.
    """

    @abstractmethod
    def get(self, identity: PointIdentity) -> Optional[Annotation]:
        """Return the annotation for ``identity`` or None"""

    @abstractmethod
    def bulk_get(self, identities: Iterable[PointIdentity]) -> Dict[PointIdentity, Annotation]:
        """Return annotations for the identities that have one; misses are omitted"""

    @abstractmethod
    def upsert(self, identity: PointIdentity, price: Decimal, timestamp: datetime) -> Annotation:
        """Create or overwrite the annotation for ``identity``"""

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass

    @staticmethod
    def _check_price(price: Decimal) -> None:
        if not isinstance(price, Decimal) or not price.is_finite() or price <= 0:
            raise InvalidPrice(f"Refusing to store non-positive price {price!r}")

class InMemoryAnnotationStore(AnnotationStore):
    """Process-local store; one lock stripe per hash bucket of identity keys"""

    def __init__(self, stripes: int = 64):
        self._records: Dict[str, Annotation] = {}
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(stripes)]

    def _lock_for(self, identity: PointIdentity) -> threading.Lock:
        return self._locks[hash(identity.key) % len(self._locks)]

    def get(self, identity: PointIdentity) -> Optional[Annotation]:
        return self._records.get(identity.key)

    def bulk_get(self, identities: Iterable[PointIdentity]) -> Dict[PointIdentity, Annotation]:
        found = {}
        for identity in set(identities):
            annotation = self._records.get(identity.key)
            if annotation is not None:
                found[identity] = annotation
        return found

    def upsert(self, identity: PointIdentity, price: Decimal, timestamp: datetime) -> Annotation:
        self._check_price(price)

        with self._lock_for(identity):
            current = self._records.get(identity.key)
            if current is not None and current.updated_at > timestamp:
                logger.info("Ignoring stale annotation write",
                            identity=identity.key,
                            stored_at=current.updated_at.isoformat(),
                            write_at=timestamp.isoformat())
                return current

            annotation = Annotation(identity, price, timestamp)
            self._records[identity.key] = annotation

        return annotation

    def __len__(self) -> int:
        return len(self._records)
