"""Merge fresh POI data with stored price annotations for a viewport"""

import threading
from typing import Dict, Iterator, List, Optional, Sequence

import structlog

from pricemap.config.settings import settings
from pricemap.database.annotation_store import AnnotationStore
from pricemap.services.models import (
    Annotation,
    MergedEntry,
    MergedView,
    PointIdentity,
    PointOfInterest,
)
from pricemap.utils.exceptions import AnnotationStoreError, ReconcileCancelled
from pricemap.utils.geometry import Viewport
from pricemap.utils.monitoring import monitor_performance

logger = structlog.get_logger(__name__)

def _batched(pois: Sequence[PointOfInterest], size: int) -> Iterator[Sequence[PointOfInterest]]:
    for start in range(0, len(pois), size):
        yield pois[start:start + size]

def _check_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise ReconcileCancelled("Viewport query cancelled")

def pick_annotation(poi: PointOfInterest,
                    found: Dict[PointIdentity, Annotation]) -> Optional[Annotation]:
    """Most recently updated annotation among the POI's identities"""
    candidates = [found[i] for i in poi.lookup_identities if i in found]
    if not candidates:
        return None
    return max(candidates, key=lambda annotation: annotation.updated_at)

class ViewportReconciler:
    """
    Builds the merged view of a viewport.

    The gateway call must succeed; annotation lookups are batched and a
    failing batch only leaves its points unpriced.
    """

    def __init__(self, gateway, store: AnnotationStore, batch_size: Optional[int] = None):
        self.gateway = gateway
        self.store = store
        self.batch_size = batch_size or settings.ANNOTATION_BATCH_SIZE

    @monitor_performance
    def reconcile(self, viewport: Viewport,
                  cancel: Optional[threading.Event] = None) -> MergedView:
        """
        Args:
            viewport: Area to reconcile
            cancel: Set by the caller to abandon the query

        Raises:
            GatewayUnavailable, GatewayParseError: the POI feed failed
            ReconcileCancelled: ``cancel`` was set before completion
        """
        _check_cancelled(cancel)
        pois: List[PointOfInterest] = list(self.gateway.query_bounding_box(viewport, cancel=cancel))
        _check_cancelled(cancel)

        found: Dict[PointIdentity, Annotation] = {}
        unresolved = set()

        for batch in _batched(pois, self.batch_size):
            _check_cancelled(cancel)
            identities = {identity for poi in batch for identity in poi.lookup_identities}
            try:
                found.update(self.store.bulk_get(identities))
            except AnnotationStoreError as e:
                logger.warning("Batch annotation lookup failed; retrying per point",
                               batch_size=len(batch),
                               error=str(e))
                unresolved.update(self._lookup_each(batch, found, cancel))

        entries = tuple(MergedEntry(poi, pick_annotation(poi, found)) for poi in pois)
        view = MergedView(entries, frozenset(unresolved), viewport)

        logger.info("Viewport reconciled",
                    bbox=viewport.to_bbox_string(),
                    pois=len(entries),
                    priced=sum(1 for entry in entries if entry.annotation),
                    unresolved=len(unresolved))
        return view

    def _lookup_each(self, batch: Sequence[PointOfInterest],
                     found: Dict[PointIdentity, Annotation],
                     cancel: Optional[threading.Event]) -> List[PointIdentity]:
        """Look up a failed batch one point at a time; returns the points that still fail"""
        failed = []
        for poi in batch:
            _check_cancelled(cancel)
            try:
                found.update(self.store.bulk_get(poi.lookup_identities))
            except AnnotationStoreError as e:
                logger.warning("Annotation lookup failed; leaving point unpriced",
                               identity=poi.identity.key,
                               error=str(e))
                failed.append(poi.identity)
        return failed
