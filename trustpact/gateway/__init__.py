"""
TrustPact HTTP Gateway - REST access to the request repository.

Run:
    trustpact-gateway
    uvicorn trustpact.gateway:create_app --factory --port 8080
"""

from .app import create_app
from .routes import router

__all__ = ["create_app", "router"]
