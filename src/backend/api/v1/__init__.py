"""
API v1 routes.

Intervention resources, lifecycle actions, collaborators, quotes, documents
and notifications. Paths are declared on each router.
"""

from fastapi import APIRouter

from .endpoints import collaborators, documents, interventions, notifications, quotes

api_router = APIRouter()

api_router.include_router(interventions.router, tags=["interventions"])
api_router.include_router(collaborators.router, tags=["intervention-collaborators"])
api_router.include_router(quotes.router, tags=["quotes"])
api_router.include_router(documents.router, tags=["documents"])
api_router.include_router(notifications.router, tags=["notifications"])
