#!/usr/bin/env python3
"""WSGI entry point, e.g. ``gunicorn wsgi:app``"""

import os

from pricemap.app import create_app
from pricemap.config.settings import settings

settings.validate()
app = create_app()

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    app.run(host="0.0.0.0", port=port)
