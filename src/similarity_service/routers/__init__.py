"""
API routers for the similarity service.

Each router handles a specific domain of endpoints.
"""

from similarity_service.routers import health, info, similarity

__all__ = ["health", "info", "similarity"]
