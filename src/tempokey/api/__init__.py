"""API module for tempokey.

The main entry point is `api_router` from routers/, mounted in main.py under /api.

Structure:
- routers/: feature endpoints (incl. SSE streams) and health checks
- schemas/: Pydantic models for request/response
- dependencies.py: services from app.state
- exception_handlers.py: domain exception -> HTTP status mapping
"""

from tempokey.api.routers import api_router, features, health

__all__ = ["api_router", "features", "health"]
