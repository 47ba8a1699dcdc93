"""FastAPI middleware for BMNL Radar."""

from src.api.middleware.security import (
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
)

__all__ = [
    "RequestIDMiddleware",
    "SecurityHeadersMiddleware",
]
