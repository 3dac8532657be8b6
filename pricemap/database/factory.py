"""Select the annotation store backend from settings"""

from typing import Optional

import structlog

from pricemap.config.settings import settings, STORE_BACKENDS
from pricemap.database.annotation_store import AnnotationStore, InMemoryAnnotationStore
from pricemap.utils.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

def build_store(backend: Optional[str] = None) -> AnnotationStore:
    """Instantiate the configured backend (``memory``, ``postgres`` or ``redis``)"""
    backend = (backend or settings.STORE_BACKEND).lower()

    if backend == "memory":
        store = InMemoryAnnotationStore()
    elif backend == "postgres":
        from pricemap.database.postgres_store import PostgresAnnotationStore
        store = PostgresAnnotationStore()
    elif backend == "redis":
        from pricemap.database.redis_store import RedisAnnotationStore
        store = RedisAnnotationStore()
    else:
        raise ConfigurationError(
            f"Unknown store backend {backend!r}; expected one of {', '.join(STORE_BACKENDS)}"
        )

    logger.info("Annotation store ready", backend=backend)
    return store
