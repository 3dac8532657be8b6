#!/usr/bin/env python3
"""Price map command line client"""

import argparse
import sys
import threading
from typing import Optional

import requests
from tabulate import tabulate

from pricemap.services.models import Annotation, MergedView
from pricemap.services.view_state import ViewportSession
from pricemap.utils import exceptions
from pricemap.utils.exceptions import (
    GatewayUnavailable,
    PriceMapException,
    ReconcileCancelled,
)
from pricemap.utils.geometry import Viewport

DEFAULT_API_URL = "http://localhost:5000/api"

# Error names the API returns, mapped back to their exception types
_ERRORS = {
    name: getattr(exceptions, name)
    for name in (
        "InvalidPrice", "InvalidCoordinate", "InvalidViewport", "InvalidIdentity",
        "ValidationError", "GatewayUnavailable", "GatewayParseError", "AnnotationStoreError",
    )
}

class PriceMapClient:
    """HTTP client for the price map API"""

    def __init__(self, api_url: str = DEFAULT_API_URL, timeout: float = 15.0):
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()

    def _raise_for_error(self, response: requests.Response) -> None:
        if response.status_code < 400:
            return
        try:
            body = response.json()
        except ValueError:
            body = {}
        error_type = _ERRORS.get(body.get("error"), PriceMapException)
        raise error_type(body.get("message") or f"HTTP {response.status_code}")

    def stations(self, viewport: Viewport, cancel: Optional[threading.Event] = None) -> MergedView:
        """Fetch the merged view for a viewport"""
        if cancel is not None and cancel.is_set():
            raise ReconcileCancelled("Viewport query cancelled")

        try:
            response = self.session.get(
                f"{self.api_url}/stations",
                params={"bbox": viewport.to_bbox_string()},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise GatewayUnavailable(f"Price map API unreachable: {e}")

        if cancel is not None and cancel.is_set():
            raise ReconcileCancelled("Viewport query cancelled")

        self._raise_for_error(response)
        return MergedView.from_dict(response.json(), viewport)

    def get_price(self, identity: str, lat: Optional[float] = None,
                  lon: Optional[float] = None) -> Optional[Annotation]:
        params = {"lat": lat, "lon": lon} if lat is not None and lon is not None else None
        response = self.session.get(f"{self.api_url}/prices/{identity}", params=params, timeout=self.timeout)
        if response.status_code == 404:
            return None
        self._raise_for_error(response)
        return Annotation.from_dict(response.json())

    def submit_price(self, price: str, lat: Optional[float] = None, lon: Optional[float] = None,
                     identity: Optional[str] = None) -> Annotation:
        body = {"price": price, "lat": lat, "lon": lon}
        if identity:
            body["id"] = identity
        response = self.session.post(f"{self.api_url}/prices", json=body, timeout=self.timeout)
        self._raise_for_error(response)
        return Annotation.from_dict(response.json())

def print_view(view: MergedView) -> None:
    rows = [
        [entry.poi.identity.key, entry.poi.name or "", f"{entry.poi.coordinate.lat:.5f}",
         f"{entry.poi.coordinate.lon:.5f}", f"${entry.price:.3f}" if entry.annotation else "Not added yet"]
        for entry in view
    ]
    print(tabulate(rows, headers=["ID", "Name", "Lat", "Lon", "Price"]))
    print(f"\n⛽ {len(view)} stations")
    if view.degraded:
        print(f"⚠️  Prices unavailable for {len(view.unresolved)} stations")

class PriceMapCli:
    """Command line interface for the price map"""

    def __init__(self, api_url: str = DEFAULT_API_URL):
        self.client = PriceMapClient(api_url)

    def stations(self, bbox: str) -> int:
        """List stations and prices in a bounding box"""
        print(f"🔍 Stations in {bbox}\n")
        try:
            view = self.client.stations(Viewport.from_bbox_string(bbox))
        except PriceMapException as e:
            print(f"❌ {type(e).__name__}: {e}")
            return 1

        if not len(view):
            print("No stations in this area")
            return 0
        print_view(view)
        return 0

    def price(self, identity: str, lat: Optional[float] = None, lon: Optional[float] = None) -> int:
        """Show the stored price of one point"""
        try:
            annotation = self.client.get_price(identity, lat=lat, lon=lon)
        except PriceMapException as e:
            print(f"❌ {type(e).__name__}: {e}")
            return 1

        if annotation is None:
            print(f"No price recorded for {identity}")
            return 1
        print(f"💲 {annotation.identity.key}: ${annotation.price:.3f} (updated {annotation.updated_at.isoformat()})")
        return 0

    def submit(self, price: str, lat: Optional[float], lon: Optional[float],
               identity: Optional[str]) -> int:
        """Submit a price by station id or coordinate"""
        try:
            annotation = self.client.submit_price(price, lat=lat, lon=lon, identity=identity)
        except PriceMapException as e:
            print(f"❌ {type(e).__name__}: {e}")
            return 1

        print(f"✅ Stored ${annotation.price:.3f} for {annotation.identity.key}")
        return 0

    def explore(self, lines) -> int:
        """Query one bbox per input line, keeping the last good view on failure"""
        session = ViewportSession(self.client.stations)

        for line in lines:
            bbox = line.strip()
            if not bbox:
                continue
            try:
                viewport = Viewport.from_bbox_string(bbox)
            except PriceMapException as e:
                print(f"❌ {e}")
                continue

            try:
                result = session.refresh(viewport)
            except PriceMapException as e:
                print(f"❌ {type(e).__name__}: {e}\n")
                continue

            if result.status == "failed":
                print(f"❌ Could not load {bbox}: {result.error}")
                if session.view is not None:
                    print("   (showing previous view)\n")
                    print_view(session.view)
            elif result.status == "empty":
                print(f"No stations in {bbox}")
            elif result.status == "ok":
                print_view(result.view)
            print()

        return 0

def main(argv=None) -> int:
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="Price map CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pricemap stations 29,-95,33,-90
  pricemap price 101
  pricemap submit --id 101 --price 3.79
  pricemap submit --lat 39.12345 --lon -98.54321 --price 4.00
  echo "29,-95,33,-90" | pricemap explore
        """
    )

    parser.add_argument("--api-url", default=DEFAULT_API_URL, help="API endpoint URL")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    stations_parser = subparsers.add_parser("stations", help="List stations in a bounding box")
    stations_parser.add_argument("bbox", help="south,west,north,east")

    price_parser = subparsers.add_parser("price", help="Show the price for a station id")
    price_parser.add_argument("id", help="Station id or '@lat,lon'")
    price_parser.add_argument("--lat", type=float, help="Station latitude, to include prices submitted by coordinate")
    price_parser.add_argument("--lon", type=float, help="Station longitude")

    submit_parser = subparsers.add_parser("submit", help="Submit a price")
    submit_parser.add_argument("--price", required=True, help="Price paid")
    submit_parser.add_argument("--id", help="Station id from a stations query")
    submit_parser.add_argument("--lat", type=float, help="Latitude (when no id)")
    submit_parser.add_argument("--lon", type=float, help="Longitude (when no id)")

    subparsers.add_parser("explore", help="Read bboxes from stdin, one per line")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    cli = PriceMapCli(args.api_url)

    if args.command == "stations":
        return cli.stations(args.bbox)
    elif args.command == "price":
        return cli.price(args.id, args.lat, args.lon)
    elif args.command == "submit":
        if not args.id and (args.lat is None or args.lon is None):
            parser.error("submit needs --id or both --lat and --lon")
        return cli.submit(args.price, args.lat, args.lon, args.id)
    elif args.command == "explore":
        return cli.explore(sys.stdin)

    parser.print_help()
    return 1

if __name__ == "__main__":
    sys.exit(main())
