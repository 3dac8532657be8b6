#!/usr/bin/env python3
"""Run the price map Flask application"""

from pricemap.app import create_app
from pricemap.config.settings import settings

if __name__ == "__main__":
    # Validate settings
    try:
        settings.validate()
        print(f"✓ Settings validated")
        print(f"  - Store: {settings.STORE_BACKEND}")
        print(f"  - Feed: {settings.OVERPASS_URL} (amenity={settings.POI_AMENITY})")
        print(f"  - Rate limit storage: {'Redis' if settings.USE_REDIS else 'memory'}")
    except Exception as e:
        print(f"✗ Settings validation failed: {e}")
        exit(1)

    app = create_app()

    # Run app
    print(f"\n🚀 Starting Price Map API on http://{settings.API_HOST}:{settings.API_PORT}")
    print(f"📚 API Docs: http://{settings.API_HOST}:{settings.API_PORT}/docs\n")

    app.run(
        host=settings.API_HOST,
        port=settings.API_PORT,
        debug=settings.DEBUG,
        threaded=True
    )
