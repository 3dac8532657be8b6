"""Price annotation endpoints"""

from flask import current_app, request
from flask_restx import Namespace, Resource, fields
import structlog

from pricemap.api.limiter import limiter, price_submission_limit
from pricemap.services.models import PointOfInterest, parse_identity
from pricemap.services.price_writer import PriceWriter
from pricemap.services.reconciler import pick_annotation
from pricemap.utils.exceptions import ValidationError
from pricemap.utils.geometry import Coordinate

logger = structlog.get_logger(__name__)

prices_ns = Namespace("prices", description="Price annotation operations")

# Request/Response models
price_submission_model = prices_ns.model("PriceSubmission", {
    "lat": fields.Float(description="Latitude in degrees (required without id)"),
    "lon": fields.Float(description="Longitude in degrees (required without id)"),
    "price": fields.Raw(required=True, description="Positive price, number or numeric string"),
    "id": fields.String(description="Station id from a prior /stations query")
})

price_model = prices_ns.model("Price", {
    "id": fields.String(description="Canonical point identity", required=True),
    "price": fields.Float(description="Stored price", required=True),
    "updated_at": fields.String(description="Last update (ISO 8601, UTC)")
})

@prices_ns.route("")
class PriceSubmission(Resource):
    """Submit a price for a station or coordinate"""

    decorators = [limiter.limit(price_submission_limit, methods=["POST"])]

    @prices_ns.doc("submit_price")
    @prices_ns.expect(price_submission_model)
    @prices_ns.response(201, "Price stored", price_model)
    @prices_ns.response(400, "Invalid price, coordinate or id")
    @prices_ns.response(502, "Annotation store unavailable")
    def post(self):
        """Create or overwrite the price at a point"""
        data = request.get_json(silent=True)

        if not isinstance(data, dict):
            raise ValidationError("A JSON object body is required")

        identity = None
        if data.get("id") not in (None, ""):
            identity = parse_identity(str(data["id"]))

        coordinate = None
        if identity is None or data.get("lat") is not None or data.get("lon") is not None:
            coordinate = Coordinate.parse(data.get("lat"), data.get("lon"))

        writer = PriceWriter(current_app.annotation_store)
        annotation = writer.submit_price(coordinate, data.get("price"), identity=identity)

        return annotation.to_dict(), 201

@prices_ns.route("/<string:identity>")
@prices_ns.param("identity", "Station id, or '@lat,lon' for coordinate-only points")
class PriceLookup(Resource):
    """Read the stored price of one point"""

    @prices_ns.doc("get_price")
    @prices_ns.response(200, "Price found", price_model)
    @prices_ns.param("lat", "Station latitude; with lon, also finds prices submitted by coordinate")
    @prices_ns.param("lon", "Station longitude")
    @prices_ns.response(404, "No price stored")
    def get(self, identity):
        """Get the current price for a point identity"""
        point = parse_identity(identity)
        store = current_app.annotation_store

        if request.args.get("lat") is not None or request.args.get("lon") is not None:
            # Same newest-of-both rule the stations view applies
            poi = PointOfInterest(point, Coordinate.parse(request.args.get("lat"), request.args.get("lon")))
            annotation = pick_annotation(poi, store.bulk_get(poi.lookup_identities))
        else:
            annotation = store.get(point)

        if annotation is None:
            return {
                "error": "NotFound",
                "message": f"No price recorded for {point.key}"
            }, 404

        return annotation.to_dict()
