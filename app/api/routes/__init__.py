"""API routes."""

from fastapi import APIRouter

from app.api.routes import contacts, identify

api_router = APIRouter()

api_router.include_router(identify.router, tags=["identify"])
api_router.include_router(contacts.router, prefix="/contacts", tags=["contacts"])
