"""
asgi.py -- ASGI entry point for Capstone Tracker.

The application is assembled in api/main.py; this module only gives process
managers a stable import path that does not depend on the package layout.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app

__all__ = ["app"]
