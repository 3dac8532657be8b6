"""API Routes Registration"""

from flask_restx import Api

def register_routes(api: Api) -> None:
    """Register all API routes"""

    # Import namespaces
    from pricemap.api.routes.prices import prices_ns
    from pricemap.api.routes.stations import stations_ns

    # Register namespaces
    api.add_namespace(prices_ns, path="/prices")
    api.add_namespace(stations_ns, path="/stations")
