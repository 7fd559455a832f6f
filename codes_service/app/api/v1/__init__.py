from fastapi import APIRouter

from .codes import router as codes_router

api_router = APIRouter()
api_router.include_router(codes_router, prefix="/codes", tags=["codes"])
