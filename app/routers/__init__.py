"""
FastAPI routers for the face filter studio.
"""

from app.routers import health, studio

__all__ = ["health", "studio"]
