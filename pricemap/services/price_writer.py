"""Validate and store user price submissions"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Optional

import structlog

from pricemap.config.settings import settings
from pricemap.database.annotation_store import AnnotationStore
from pricemap.services.models import Annotation, CoordinateIdentity, PointIdentity
from pricemap.utils.exceptions import InvalidCoordinate, InvalidPrice
from pricemap.utils.geometry import Coordinate

logger = structlog.get_logger(__name__)

PRICE_QUANTUM = Decimal("0.001")

def parse_price(value: Any, max_price: Optional[float] = None) -> Decimal:
    """
    Turn untrusted input into a stored price

    Accepts numbers and numeric strings. Rejects booleans, NaN, infinities,
    non-positive values and values that round to zero at 0.001.
    """
    if value is None or isinstance(value, bool):
        raise InvalidPrice("Price must be a number")

    try:
        price = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidPrice(f"Price must be a number, got {value!r}")

    if not price.is_finite():
        raise InvalidPrice("Price must be finite")

    ceiling = settings.MAX_PRICE if max_price is None else max_price
    if price > Decimal(str(ceiling)):
        raise InvalidPrice(f"Price must not exceed {ceiling:g}")

    price = price.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)
    if price <= 0:
        raise InvalidPrice("Price must be greater than zero")

    return price

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

class PriceWriter:
    """Resolve a point identity and upsert its price"""

    def __init__(self, store: AnnotationStore, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self.clock = clock

    def submit_price(
        self,
        coordinate: Optional[Coordinate],
        price: Any,
        identity: Optional[PointIdentity] = None
    ) -> Annotation:
        """
        Store a price for a point

        Args:
            coordinate: Where the price was observed
            price: Raw price input
            identity: Known identity from a prior viewport query, if any

        Returns:
            The stored annotation, carrying the canonical identity
        """
        validated = parse_price(price)

        if identity is None:
            if coordinate is None:
                raise InvalidCoordinate("lat and lon are required when no id is given")
            identity = CoordinateIdentity.from_coordinate(coordinate)

        annotation = self.store.upsert(identity, validated, self.clock())
        logger.info("Price stored", identity=annotation.identity.key, price=str(annotation.price))
        return annotation
