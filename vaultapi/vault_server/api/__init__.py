"""
HTTP surface of the Vault server.

- app: FastAPI application factory and exception handlers
- cookies: encrypted cookie session middleware
- deps: request dependencies and the response envelope
- routes: versioned API routes
"""

from .app import create_app

__all__ = ["create_app"]
