"""
asgi.py -- ASGI entry point for the catalog auth service.

api/main.py owns the app, its middleware and its lifespan; this module only
exposes it under the name process managers expect.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
