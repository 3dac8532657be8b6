"""
Test the command line client

The requests session is swapped for one that forwards to the Flask test
client, so the CLI runs against the real API in-process.
"""
import io
import threading
from decimal import Decimal
from urllib.parse import urlencode

import pytest
import requests

from pricemap.services.models import feed_identity
from pricemap.utils.exceptions import GatewayUnavailable, InvalidPrice, ReconcileCancelled
from pricemap.utils.geometry import Viewport
from pricemap_cli import PriceMapCli, PriceMapClient, main

from conftest import FakeGateway

API = "http://pricemap.test/api"
GULF = Viewport.parse(29, -95, 33, -90)

class FlaskResponse:
    def __init__(self, response):
        self.status_code = response.status_code
        self._response = response

    def json(self):
        data = self._response.get_json(silent=True)
        if data is None:
            raise ValueError("No JSON body")
        return data

class FlaskSession:
    """Minimal requests.Session stand-in backed by a Flask test client"""

    def __init__(self, test_client):
        self.test_client = test_client

    def _path(self, url, params=None):
        path = url.replace("http://pricemap.test", "", 1)
        return f"{path}?{urlencode(params)}" if params else path

    def get(self, url, params=None, timeout=None):
        return FlaskResponse(self.test_client.get(self._path(url, params)))

    def post(self, url, json=None, timeout=None):
        return FlaskResponse(self.test_client.post(self._path(url), json=json))

@pytest.fixture
def api_client(client):
    api_client = PriceMapClient(API)
    api_client.session = FlaskSession(client)
    return api_client

@pytest.fixture
def cli(api_client):
    cli = PriceMapCli(API)
    cli.client = api_client
    return cli

class TestPriceMapClient:
    """API responses back to domain records"""

    def test_stations(self, api_client, priced_101):
        view = api_client.stations(GULF)
        assert [entry.price for entry in view] == [Decimal("3.79"), None]
        assert view.viewport == GULF

    def test_submit_and_get(self, api_client):
        stored = api_client.submit_price("3.49", identity="102")
        assert stored.identity == feed_identity(102)
        assert api_client.get_price("102") == stored

    def test_get_price_with_station_coordinate(self, api_client, priced_101):
        api_client.submit_price("3.59", lat=30.0, lon=-93.0)
        assert api_client.get_price("101").price == Decimal("3.79")
        assert api_client.get_price("101", lat=30.0, lon=-93.0).price == Decimal("3.59")

    def test_get_missing_price(self, api_client):
        assert api_client.get_price("999") is None

    def test_error_type_is_preserved(self, api_client):
        with pytest.raises(InvalidPrice):
            api_client.submit_price("-1", lat=30.0, lon=-93.0)

    def test_cancelled_before_request(self, api_client):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ReconcileCancelled):
            api_client.stations(GULF, cancel=cancel)

    def test_unreachable_api(self, monkeypatch):
        api_client = PriceMapClient(API)

        def refuse(*args, **kwargs):
            raise requests.ConnectionError("connection refused")

        monkeypatch.setattr(api_client.session, "get", refuse)
        with pytest.raises(GatewayUnavailable):
            api_client.stations(GULF)

class TestCommands:
    """Exit codes and output"""

    def test_stations_table(self, cli, priced_101, capsys):
        assert cli.stations("29,-95,33,-90") == 0
        out = capsys.readouterr().out
        assert "$3.790" in out
        assert "Not added yet" in out
        assert "2 stations" in out

    def test_stations_invalid_bbox(self, cli, capsys):
        assert cli.stations("29,-95") == 1
        assert "InvalidViewport" in capsys.readouterr().out

    def test_submit_then_price(self, cli, capsys):
        assert cli.submit("4.00", 39.12345, -98.54321, None) == 0
        assert cli.price("@39.12345,-98.54321") == 0
        assert "$4.000" in capsys.readouterr().out

    def test_price_missing(self, cli):
        assert cli.price("999") == 1

    def test_explore_keeps_previous_view_on_failure(self, cli, gateway, capsys):
        lines = io.StringIO("29,-95,33,-90\nnot-a-bbox\n29,-90,33,-85\n")

        def fail_after_first(viewport, cancel=None):
            if len(gateway.calls) >= 1:
                gateway.calls.append(viewport)
                raise GatewayUnavailable("Overpass returned HTTP 504")
            return FakeGateway.query_bounding_box(gateway, viewport, cancel)

        gateway.query_bounding_box = fail_after_first

        assert cli.explore(lines) == 0
        out = capsys.readouterr().out
        assert "Could not load 29,-90,33,-85" in out
        assert "showing previous view" in out

class TestMain:

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_submit_requires_id_or_coordinate(self):
        with pytest.raises(SystemExit):
            main(["submit", "--price", "3.00"])
