"""API routes."""

from fastapi import APIRouter

from resortops.api.routes import finance, lifecycle, stock

api_router = APIRouter()

api_router.include_router(lifecycle.router, tags=["lifecycle"])
api_router.include_router(stock.router, tags=["stock"])
api_router.include_router(finance.router, prefix="/finance", tags=["finance"])
