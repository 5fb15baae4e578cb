"""API Package.

FastAPI server for the billing <-> D365 integration.
"""

from api.server import create_app, app

__all__ = [
    "create_app",
    "app",
]
