"""Shared fixtures: fake POI gateway, failing store, Flask test client"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from pricemap.app import create_app
from pricemap.database.annotation_store import InMemoryAnnotationStore
from pricemap.services.models import PointOfInterest, feed_identity
from pricemap.utils.exceptions import AnnotationStoreError
from pricemap.utils.geometry import Coordinate

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

def station(ref, lat, lon, name=None) -> PointOfInterest:
    return PointOfInterest(feed_identity(ref), Coordinate(lat, lon), name)

class FakeGateway:
    """Stands in for OverpassGateway; returns canned POIs or raises"""

    def __init__(self, pois=None, error=None):
        self.pois = list(pois or [])
        self.error = error
        self.calls = []
        self.closed = False

    def query_bounding_box(self, viewport, cancel=None):
        self.calls.append(viewport)
        if self.error is not None:
            raise self.error
        return list(self.pois)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

class PartiallyFailingStore(InMemoryAnnotationStore):
    """bulk_get raises for any request touching one of ``failing_keys``"""

    def __init__(self, failing_keys=()):
        super().__init__()
        self.failing_keys = set(failing_keys)
        self.bulk_requests = []

    def bulk_get(self, identities):
        identities = set(identities)
        self.bulk_requests.append(identities)
        if any(identity.key in self.failing_keys for identity in identities):
            raise AnnotationStoreError("shard offline")
        return super().bulk_get(identities)

@pytest.fixture
def t0():
    return T0

@pytest.fixture
def store():
    return InMemoryAnnotationStore()

@pytest.fixture
def gulf_stations():
    """POIs 101 and 102 from the end-to-end viewport scenario"""
    return [station(101, 30.0, -93.0), station(102, 31.5, -91.0)]

@pytest.fixture
def gateway(gulf_stations):
    return FakeGateway(gulf_stations)

@pytest.fixture
def app(store, gateway):
    app = create_app(
        config={"TESTING": True, "RATELIMIT_ENABLED": False},
        store=store,
        gateway_factory=lambda: gateway,
    )
    return app

@pytest.fixture
def client(app):
    return app.test_client()

@pytest.fixture
def priced_101(store, t0):
    store.upsert(feed_identity(101), Decimal("3.79"), t0)
    return store
