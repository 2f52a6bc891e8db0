"""
asgi.py -- ASGI entry point for the IT user console API.

api/main.py owns the application; this module only re-exports it so process
managers have a stable import path that does not depend on package layout.

Run with:  uvicorn asgi:app --reload
           python manage.py serve
"""

from api.main import app

__all__ = ["app"]
