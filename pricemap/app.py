"""Price map Flask application"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from flask import Flask, jsonify
from flask_restx import Api
from flask_cors import CORS
from flask_compress import Compress
import structlog

from pricemap.api.limiter import limiter
from pricemap.api.routes import register_routes
from pricemap.config.settings import settings
from pricemap.database.annotation_store import AnnotationStore
from pricemap.database.factory import build_store
from pricemap.services.overpass_gateway import OverpassGateway
from pricemap.utils.exceptions import PriceMapException
from pricemap.utils.monitoring import add_performance_monitoring, get_performance_report

# Configure structured logging
logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL)

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.LOG_FORMAT == "json" else structlog.dev.ConsoleRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

def create_app(
    config: Optional[Dict[str, Any]] = None,
    store: Optional[AnnotationStore] = None,
    gateway_factory: Optional[Callable[[], OverpassGateway]] = None
) -> Flask:
    """
    Create and configure the Flask application

    Args:
        config: Extra Flask config, applied before extensions are bound
        store: Annotation store (default: backend chosen by STORE_BACKEND)
        gateway_factory: Builds a POI gateway per request (default: OverpassGateway)
    """
    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.SECRET_KEY
    app.config["DEBUG"] = settings.DEBUG

    # Rate limiting defaults; storage shared through Redis when enabled
    app.config["RATELIMIT_DEFAULT"] = (
        f"{settings.RATE_LIMIT_PER_MINUTE} per minute;{settings.RATE_LIMIT_PER_HOUR} per hour"
    )
    app.config["RATELIMIT_STORAGE_URI"] = settings.REDIS_URL if settings.USE_REDIS else "memory://"
    app.config.update(config or {})

    # The map frontend runs on its own origin
    CORS(app,
         origins=settings.ALLOWED_ORIGINS,
         allow_headers=["Content-Type", "X-Requested-With"],
         methods=["GET", "POST", "OPTIONS"]
    )

    Compress(app)
    app.config.setdefault('COMPRESS_ALGORITHM', 'gzip')
    app.config.setdefault('COMPRESS_MIN_SIZE', 500)

    limiter.init_app(app)

    api = Api(
        app,
        version="1.0",
        title="Price Map API",
        description="Fuel stations with shared, user-submitted prices",
        doc="/docs" if settings.DEBUG else False,
        prefix="/api"
    )

    # Store collaborators on app
    app.annotation_store = store if store is not None else build_store()
    app.gateway_factory = gateway_factory or OverpassGateway

    register_routes(api)

    @api.errorhandler(PriceMapException)
    def handle_price_map_exception(error):
        """Render domain errors as {error, message} with their status code"""
        log = logger.error if error.status_code >= 500 else logger.info
        log("Request failed", error=str(error), type=type(error).__name__)
        return {
            "error": type(error).__name__,
            "message": str(error)
        }, error.status_code

    add_performance_monitoring(app)

    @app.route("/metrics/performance")
    def performance_metrics():
        """Get performance metrics"""
        return jsonify(get_performance_report())

    @app.route("/health", methods=["GET"])
    def health_check():
        """Report service and annotation store status"""
        store_healthy = app.annotation_store.ping()
        health_status = {
            "status": "healthy" if store_healthy else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": {
                "annotation_store": {
                    "status": "healthy" if store_healthy else "unhealthy",
                    "backend": type(app.annotation_store).__name__
                }
            }
        }

        status_code = 200 if store_healthy else 503
        return jsonify(health_status), status_code

    @app.route('/')
    def welcome():
        """Short endpoint index"""
        return jsonify({
            "message": "Price Map API",
            "version": "1.0",
            "documentation": "/docs" if settings.DEBUG else None,
            "health_check": "/health",
            "endpoints": {
                "stations_in_viewport": {
                    "method": "GET",
                    "url": "/api/stations?bbox=south,west,north,east"
                },
                "submit_price": {
                    "method": "POST",
                    "url": "/api/prices",
                    "example_body": {"lat": 29.7604, "lon": -95.3698, "price": 3.79}
                },
                "get_price": {
                    "method": "GET",
                    "url": "/api/prices/{id}"
                }
            }
        })

    logger.info(
        "Price map app created",
        debug=settings.DEBUG,
        store=type(app.annotation_store).__name__,
        rate_limiting_enabled=app.config.get("RATELIMIT_ENABLED", True)
    )

    return app
