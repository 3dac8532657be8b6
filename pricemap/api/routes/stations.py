"""Viewport query endpoint"""

from flask import current_app, request
from flask_restx import Namespace, Resource, fields

from pricemap.config.settings import settings
from pricemap.services.reconciler import ViewportReconciler
from pricemap.utils.exceptions import InvalidViewport
from pricemap.utils.geometry import Viewport

stations_ns = Namespace("stations", description="Stations merged with their prices")

station_model = stations_ns.model("Station", {
    "id": fields.String(required=True, description="Point identity"),
    "lat": fields.Float(required=True),
    "lon": fields.Float(required=True),
    "name": fields.String(description="Station name or brand, if tagged"),
    "price": fields.Float(description="Latest price, null when unset"),
    "updated_at": fields.String(description="When the price was last set")
})

stations_response_model = stations_ns.model("StationsResponse", {
    "stations": fields.List(fields.Nested(station_model), required=True),
    "count": fields.Integer(required=True),
    "degraded": fields.Boolean(description="True when some prices could not be looked up"),
    "unresolved": fields.List(fields.String, description="Ids whose price lookup failed")
})

def viewport_from_args(args) -> Viewport:
    """Read ``bbox=s,w,n,e`` or separate ``south/west/north/east`` params"""
    if args.get("bbox"):
        return Viewport.from_bbox_string(args["bbox"], max_span=settings.MAX_VIEWPORT_SPAN)

    edges = [args.get(name) for name in ("south", "west", "north", "east")]
    if any(edge is None for edge in edges):
        raise InvalidViewport("Provide bbox=south,west,north,east or all four edges")
    return Viewport.parse(*edges, max_span=settings.MAX_VIEWPORT_SPAN)

@stations_ns.route("")
class StationsInViewport(Resource):
    """Stations inside a bounding box"""

    @stations_ns.doc("stations_in_viewport")
    @stations_ns.param("bbox", "south,west,north,east in degrees")
    @stations_ns.param("south", "Southern edge (alternative to bbox)")
    @stations_ns.param("west", "Western edge")
    @stations_ns.param("north", "Northern edge")
    @stations_ns.param("east", "Eastern edge")
    @stations_ns.response(200, "Merged view", stations_response_model)
    @stations_ns.response(400, "Invalid viewport")
    @stations_ns.response(502, "Station feed unavailable")
    def get(self):
        """Fetch stations in the viewport and attach their prices"""
        viewport = viewport_from_args(request.args)

        with current_app.gateway_factory() as gateway:
            reconciler = ViewportReconciler(gateway, current_app.annotation_store)
            view = reconciler.reconcile(viewport)

        return view.to_dict()
