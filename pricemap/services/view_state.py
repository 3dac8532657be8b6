"""Client-side holder of the latest merged view"""

import threading
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import structlog

from pricemap.services.models import Annotation, MergedView
from pricemap.utils.exceptions import GatewayError, ReconcileCancelled
from pricemap.utils.geometry import Viewport

logger = structlog.get_logger(__name__)

Fetch = Callable[[Viewport, threading.Event], MergedView]

@dataclass(frozen=True)
class RefreshResult:
    """Outcome of one viewport refresh

    status is one of ``ok``, ``empty`` (feed answered with no stations),
    ``failed`` (feed error; previous view kept), ``stale`` (a newer request
    already applied) or ``cancelled``.
    """
    seq: int
    status: str
    view: Optional[MergedView]
    error: Optional[Exception] = None

class ViewportSession:
    """
    Keeps only the most recent viewport result.

    Every refresh gets a monotonically increasing sequence number. Beginning
    a new refresh cancels the one in flight, and a result is applied only if
    its sequence is newer than the last applied one.
    """

    def __init__(self, fetch: Fetch):
        self._fetch = fetch
        self._lock = threading.Lock()
        self._issued = 0
        self._applied = 0
        self._in_flight: Optional[threading.Event] = None
        self.view: Optional[MergedView] = None
        self.last_error: Optional[Exception] = None

    def begin(self) -> Tuple[int, threading.Event]:
        """Issue a sequence number, cancelling the previous request"""
        with self._lock:
            if self._in_flight is not None:
                self._in_flight.set()
            self._issued += 1
            self._in_flight = threading.Event()
            return self._issued, self._in_flight

    def apply(self, seq: int, view: MergedView) -> bool:
        with self._lock:
            if seq <= self._applied:
                logger.debug("Discarding superseded viewport result", seq=seq, applied=self._applied)
                return False
            self._applied = seq
            self.view = view
            self.last_error = None
            return True

    def fail(self, seq: int, error: Exception) -> bool:
        """Record a failure for the latest request; the current view stays"""
        with self._lock:
            if seq != self._issued:
                return False
            self.last_error = error
            return True

    def refresh(self, viewport: Viewport) -> RefreshResult:
        seq, cancel = self.begin()

        try:
            view = self._fetch(viewport, cancel)
        except ReconcileCancelled:
            return RefreshResult(seq, "cancelled", self.view)
        except GatewayError as e:
            logger.warning("Viewport refresh failed", seq=seq, error=str(e))
            self.fail(seq, e)
            return RefreshResult(seq, "failed", self.view, e)

        if not self.apply(seq, view):
            return RefreshResult(seq, "stale", self.view)
        return RefreshResult(seq, "ok" if len(view) else "empty", view)

    def fold(self, annotation: Annotation) -> Optional[MergedView]:
        """Fold a write result into the current view"""
        with self._lock:
            if self.view is not None:
                self.view = self.view.fold(annotation)
            return self.view
