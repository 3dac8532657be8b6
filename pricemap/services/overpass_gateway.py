"""Overpass API client for fuel station lookups by bounding box"""

import json
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional

import httpx
import structlog

from pricemap.config.settings import settings
from pricemap.services.models import (
    CoordinateIdentity,
    PointOfInterest,
    feed_identity,
)
from pricemap.utils.exceptions import (
    GatewayParseError,
    GatewayUnavailable,
    InvalidCoordinate,
    InvalidIdentity,
    ReconcileCancelled,
)
from pricemap.utils.geometry import Coordinate, Viewport
from pricemap.utils.monitoring import monitor_performance

logger = structlog.get_logger(__name__)

# How often a waiting caller re-checks cancellation
POLL_INTERVAL = 0.05

class OverpassGateway:
    """Client for the Overpass POI feed"""

    def __init__(
        self,
        url: Optional[str] = None,
        amenity: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None
    ):
        """
        Initialize the gateway

        Args:
            url: Overpass interpreter endpoint
            amenity: OSM ``amenity`` tag value to select (default: fuel)
            timeout: Hard deadline in seconds for one query, body included
            client: Preconfigured httpx client (tests pass a mock transport)
        """
        self.url = url or settings.OVERPASS_URL
        self.amenity = amenity or settings.POI_AMENITY
        self.timeout = timeout or settings.OVERPASS_TIMEOUT
        self.session = client or httpx.Client(
            timeout=self.timeout,
            headers={
                "User-Agent": settings.USER_AGENT,
                "Accept": "application/json"
            }
        )
        # Runs each request so the caller can stop waiting at the deadline
        self.executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="overpass")

    def build_query(self, viewport: Viewport) -> str:
        """
        Render the Overpass QL query for a viewport

        One ``node`` clause per box; a viewport crossing the antimeridian
        becomes a union of two boxes in the same request.
        """
        server_timeout = max(1, math.ceil(self.timeout))
        clauses = "\n".join(
            f'  node["amenity"="{self.amenity}"]({south},{west},{north},{east});'
            for south, west, north, east in viewport.boxes()
        )
        return (
            f"[out:json][timeout:{server_timeout}];\n"
            f"(\n{clauses}\n);\n"
            "out body;\n"
            ">;\n"
            "out skel qt;"
        )

    @monitor_performance
    def query_bounding_box(
        self,
        viewport: Viewport,
        cancel: Optional[threading.Event] = None
    ) -> List[PointOfInterest]:
        """
        Fetch the POIs inside a viewport

        Args:
            viewport: Area to query
            cancel: Set by the caller to abandon the request between body chunks

        Returns:
            POIs in feed order, without duplicates or coordinate-less elements

        Raises:
            GatewayUnavailable: network failure, timeout or non-success status
            GatewayParseError: body is not the expected JSON document
        """
        query = self.build_query(viewport)
        logger.info("Querying Overpass", bbox=viewport.to_bbox_string(), amenity=self.amenity)

        body = self._post(query, cancel)

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise GatewayParseError(f"Overpass returned invalid JSON: {e}")

        pois = self.parse_elements(payload)
        logger.info("Overpass query complete", bbox=viewport.to_bbox_string(), pois=len(pois))
        return pois

    def _post(self, query: str, cancel: Optional[threading.Event]) -> bytes:
        """
        POST the query, waiting no longer than ``timeout`` in total

        httpx timeouts apply per connect and per read, so the request runs on
        a worker and the caller stops waiting once the deadline passes.
        """
        deadline = time.monotonic() + self.timeout
        abandon = threading.Event()
        future = self.executor.submit(self._fetch, query, cancel, abandon, deadline)

        try:
            while not future.done():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.error("Overpass request exceeded deadline", timeout=self.timeout)
                    raise GatewayUnavailable(f"Overpass did not answer within {self.timeout:g}s")
                wait([future], timeout=min(remaining, POLL_INTERVAL))
                if cancel is not None and cancel.is_set():
                    raise ReconcileCancelled("Viewport query cancelled")
        finally:
            if not future.done():
                abandon.set()

        return future.result()

    def _fetch(self, query: str, cancel: Optional[threading.Event],
               abandon: threading.Event, deadline: float) -> bytes:
        body = bytearray()

        try:
            with self.session.stream(
                "POST", self.url, data={"data": query},
                timeout=max(deadline - time.monotonic(), 0.001)
            ) as response:
                if not response.is_success:
                    logger.error("Overpass request failed", status_code=response.status_code)
                    raise GatewayUnavailable(f"Overpass returned HTTP {response.status_code}")

                for chunk in response.iter_bytes():
                    if cancel is not None and cancel.is_set():
                        raise ReconcileCancelled("Viewport query cancelled")
                    if abandon.is_set() or time.monotonic() > deadline:
                        raise GatewayUnavailable(f"Overpass did not answer within {self.timeout:g}s")
                    body.extend(chunk)

        except httpx.TimeoutException as e:
            logger.error("Overpass request timed out", error=str(e))
            raise GatewayUnavailable(f"Overpass did not answer within {self.timeout:g}s")
        except httpx.HTTPError as e:
            logger.error("Overpass request failed", error=str(e))
            raise GatewayUnavailable(f"Overpass request failed: {e}")

        return bytes(body)

    @staticmethod
    def parse_elements(payload: Any) -> List[PointOfInterest]:
        """Normalize an Overpass JSON document into POIs"""
        if not isinstance(payload, dict) or not isinstance(payload.get("elements"), list):
            raise GatewayParseError("Overpass response has no 'elements' list")

        # Overpass reports server-side timeouts as a remark on a 200 response
        remark = payload.get("remark")
        if isinstance(remark, str) and "runtime error" in remark.lower():
            raise GatewayUnavailable(f"Overpass runtime error: {remark}")

        pois: List[PointOfInterest] = []
        seen = set()
        dropped = 0

        for element in payload["elements"]:
            if not isinstance(element, dict):
                raise GatewayParseError(f"Unexpected Overpass element: {element!r}")

            lat, lon = element.get("lat"), element.get("lon")
            if lat is None or lon is None:
                # way/relation skeletons carry no coordinates
                dropped += 1
                continue

            try:
                coordinate = Coordinate.parse(lat, lon)
                raw_id = element.get("id")
                if raw_id is None:
                    identity = CoordinateIdentity.from_coordinate(coordinate)
                else:
                    identity = feed_identity(raw_id)
            except (InvalidCoordinate, InvalidIdentity) as e:
                raise GatewayParseError(f"Malformed Overpass element: {e}")

            if identity in seen:
                continue
            seen.add(identity)

            pois.append(PointOfInterest(identity, coordinate, _display_name(element.get("tags"))))

        if dropped:
            logger.debug("Dropped elements without coordinates", dropped=dropped)

        return pois

    def close(self) -> None:
        self.executor.shutdown(wait=False)
        self.session.close()

    def __enter__(self) -> "OverpassGateway":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

def _display_name(tags: Optional[Dict[str, Any]]) -> Optional[str]:
    if not isinstance(tags, dict):
        return None
    name = tags.get("name") or tags.get("brand")
    return str(name) if name else None
