"""
REST API for the member directory.
Serves the country grouping to the forum front end.
"""

from .routes import router, create_api_app

__all__ = ["router", "create_api_app"]
