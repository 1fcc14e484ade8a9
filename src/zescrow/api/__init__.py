"""HTTP interface for zescrow."""

from .app import create_app
from .routes import create_api_router

__all__ = ["create_app", "create_api_router"]
