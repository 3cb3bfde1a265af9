"""API routes."""

from fastapi import APIRouter

from frontdesk.api.routes import bookings, restaurants, tables, waitlist

api_router = APIRouter()

api_router.include_router(restaurants.router, prefix="/restaurants", tags=["restaurants"])
api_router.include_router(tables.router, prefix="/tables", tags=["tables"])
api_router.include_router(bookings.router, prefix="/bookings", tags=["bookings"])
api_router.include_router(waitlist.router, prefix="/waitlist", tags=["waitlist"])
