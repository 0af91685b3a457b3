"""DERMAI backend for skin-condition detection records."""

from .api import create_app
from .client import ApiError, DermaiClient, SessionCache

__all__ = ["create_app", "ApiError", "DermaiClient", "SessionCache"]
