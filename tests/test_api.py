"""
Test the HTTP API

Flask test client against an in-memory store and a fake POI gateway.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from pricemap.app import create_app
from pricemap.services.models import CoordinateIdentity, feed_identity
from pricemap.utils.exceptions import AnnotationStoreError, GatewayParseError, GatewayUnavailable, ReconcileCancelled

from conftest import FakeGateway, PartiallyFailingStore

def make_client(store, gateway):
    app = create_app(
        config={"TESTING": True, "RATELIMIT_ENABLED": False},
        store=store,
        gateway_factory=lambda: gateway,
    )
    return app.test_client()

class TestSubmitPrice:
    """POST /api/prices"""

    def test_coordinate_submission(self, client, store):
        response = client.post("/api/prices", json={"lat": 30.0, "lon": -93.0, "price": 3.79})

        assert response.status_code == 201
        data = response.get_json()
        assert data["id"] == "@30.00000,-93.00000"
        assert data["price"] == 3.79
        assert data["updated_at"]
        assert len(store) == 1

    def test_submission_with_station_id(self, client, store):
        response = client.post("/api/prices", json={"id": "102", "price": "3.49"})

        assert response.status_code == 201
        assert response.get_json()["id"] == "102"
        assert store.get(feed_identity(102)).price == Decimal("3.49")

    @pytest.mark.parametrize("body", [
        {"lat": 30.0, "lon": -93.0, "price": -1},
        {"lat": 30.0, "lon": -93.0, "price": "abc"},
        {"lat": 30.0, "lon": -93.0, "price": 0},
        {"lat": 30.0, "lon": -93.0},
        {"lat": 95.0, "lon": -93.0, "price": 3.0},
        {"lon": -93.0, "price": 3.0},
        {"id": "@bad", "price": 3.0},
        [1, 2, 3],
    ])
    def test_invalid_submissions_are_rejected(self, client, store, body):
        response = client.post("/api/prices", json=body)

        assert response.status_code == 400
        assert set(response.get_json()) == {"error", "message"}
        assert len(store) == 0

    def test_invalid_price_names_the_error(self, client):
        response = client.post("/api/prices", json={"lat": 30.0, "lon": -93.0, "price": -1})
        assert response.get_json()["error"] == "InvalidPrice"

    def test_non_json_body(self, client):
        response = client.post("/api/prices", data="price=3", content_type="text/plain")
        assert response.status_code == 400

    def test_store_failure_is_bad_gateway(self, gateway):
        class BrokenStore(PartiallyFailingStore):
            def upsert(self, identity, price, timestamp):
                raise AnnotationStoreError("primary unreachable")

        client = make_client(BrokenStore(), gateway)
        response = client.post("/api/prices", json={"lat": 30.0, "lon": -93.0, "price": 3.0})

        assert response.status_code == 502
        assert response.get_json()["error"] == "AnnotationStoreError"

class TestGetPrice:
    """GET /api/prices/<id>"""

    def test_feed_identity(self, client, priced_101):
        response = client.get("/api/prices/101")
        assert response.status_code == 200
        assert response.get_json()["price"] == 3.79

    def test_coordinate_identity_round_trip(self, client):
        key = client.post("/api/prices", json={"lat": 39.12345, "lon": -98.54321, "price": 4.5}).get_json()["id"]

        response = client.get(f"/api/prices/{key}")
        assert response.status_code == 200
        assert response.get_json()["id"] == "@39.12345,-98.54321"

    def test_missing_price_is_404(self, client):
        response = client.get("/api/prices/999")
        assert response.status_code == 404
        assert response.get_json()["error"] == "NotFound"

    def test_station_with_coordinate_sees_newer_coordinate_price(self, client, priced_101):
        """Matches what /api/stations shows for the same station"""
        client.post("/api/prices", json={"lat": 30.0, "lon": -93.0, "price": 3.59})

        assert client.get("/api/prices/101").get_json()["price"] == 3.79
        response = client.get("/api/prices/101?lat=30&lon=-93")
        assert response.status_code == 200
        assert response.get_json()["price"] == 3.59
        stations = client.get("/api/stations?bbox=29,-95,33,-90").get_json()["stations"]
        assert stations[0]["price"] == 3.59

    def test_station_with_coordinate_keeps_newer_feed_price(self, client, store, t0):
        store.upsert(CoordinateIdentity(3000000, -9300000), Decimal("3.59"), t0)
        store.upsert(feed_identity(101), Decimal("3.99"), t0 + timedelta(hours=1))

        assert client.get("/api/prices/101?lat=30&lon=-93").get_json()["price"] == 3.99

    def test_station_coordinate_must_be_valid(self, client, priced_101):
        response = client.get("/api/prices/101?lat=95&lon=-93")
        assert response.status_code == 400
        assert response.get_json()["error"] == "InvalidCoordinate"

    def test_malformed_identity_is_400(self, client):
        response = client.get("/api/prices/@1,2")
        assert response.status_code == 400
        assert response.get_json()["error"] == "InvalidIdentity"

class TestStations:
    """GET /api/stations"""

    def test_merged_view(self, client, priced_101, gateway):
        response = client.get("/api/stations?bbox=29,-95,33,-90")

        assert response.status_code == 200
        data = response.get_json()
        assert data["count"] == 2
        assert data["degraded"] is False
        assert [(s["id"], s["lat"], s["lon"], s["price"]) for s in data["stations"]] == [
            ("101", 30.0, -93.0, 3.79),
            ("102", 31.5, -91.0, None),
        ]
        assert gateway.closed

    def test_separate_edge_params(self, client, gateway):
        response = client.get("/api/stations?south=29&west=-95&north=33&east=-90")
        assert response.status_code == 200
        assert gateway.calls[0].to_bbox_string() == "29.0,-95.0,33.0,-90.0"

    def test_price_submitted_then_seen_in_viewport(self, client):
        client.post("/api/prices", json={"id": "102", "price": 3.49})
        stations = client.get("/api/stations?bbox=29,-95,33,-90").get_json()["stations"]
        assert stations[1]["price"] == 3.49

    def test_degraded_view(self, gulf_stations, t0):
        store = PartiallyFailingStore(failing_keys={"101"})
        store.upsert(feed_identity(102), Decimal("3.49"), t0)
        client = make_client(store, FakeGateway(gulf_stations))
        data = client.get("/api/stations?bbox=29,-95,33,-90").get_json()

        assert data["count"] == 2
        assert data["degraded"] is True
        assert data["unresolved"] == ["101"]
        assert [s["price"] for s in data["stations"]] == [None, 3.49]

    def test_cancelled_reconcile_is_503(self, store):
        client = make_client(store, FakeGateway(error=ReconcileCancelled("Viewport query cancelled")))
        response = client.get("/api/stations?bbox=29,-95,33,-90")

        assert response.status_code == 503
        assert response.get_json()["error"] == "ReconcileCancelled"

    @pytest.mark.parametrize("query", [
        "",
        "?bbox=1,2,3",
        "?bbox=33,-95,29,-90",
        "?bbox=0,0,45,45",
        "?south=29&west=-95",
    ])
    def test_invalid_viewport_is_400(self, client, gateway, query):
        response = client.get(f"/api/stations{query}")
        assert response.status_code == 400
        assert response.get_json()["error"] == "InvalidViewport"
        assert gateway.calls == []

    @pytest.mark.parametrize("error", [
        GatewayUnavailable("Overpass returned HTTP 504"),
        GatewayParseError("Overpass response has no elements list"),
    ])
    def test_feed_failure_is_502(self, store, error):
        response = make_client(store, FakeGateway(error=error)).get("/api/stations?bbox=29,-95,33,-90")

        assert response.status_code == 502
        assert response.get_json()["error"] == type(error).__name__

class TestOperational:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json()["services"]["annotation_store"]["status"] == "healthy"

    def test_unhealthy_store(self, gateway):
        class DownStore(PartiallyFailingStore):
            def ping(self):
                return False

        response = make_client(DownStore(), gateway).get("/health")
        assert response.status_code == 503

    def test_response_time_header(self, client):
        assert client.get("/").headers["X-Response-Time"].endswith("s")

    def test_performance_report(self, client):
        client.get("/health")
        assert "metrics" in client.get("/metrics/performance").get_json()
