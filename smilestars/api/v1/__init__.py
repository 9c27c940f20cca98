"""API v1 router aggregator."""

from fastapi import APIRouter

from smilestars.api.v1 import (
    agreements,
    auth,
    camps,
    consents,
    entities,
    memberships,
    users,
)

api_router = APIRouter(tags=["API v1"])

# Include all API routers
api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_router.include_router(entities.router, prefix="/entities", tags=["Entities"])
api_router.include_router(users.router, prefix="/users", tags=["Users"])
api_router.include_router(memberships.router, prefix="/memberships", tags=["Memberships"])
api_router.include_router(
    memberships.parent_links_router, prefix="/parent-links", tags=["Parent links"]
)
api_router.include_router(agreements.router, prefix="/agreements", tags=["Agreements"])
api_router.include_router(camps.router, prefix="/camps", tags=["Camps"])
api_router.include_router(consents.router, prefix="/consents", tags=["Consents"])
