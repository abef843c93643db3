from fastapi import APIRouter

from app.api.v1 import exports, scanned_rooms, uploads


api_router = APIRouter(prefix="/v1")

api_router.include_router(exports.router)
api_router.include_router(scanned_rooms.router)
api_router.include_router(uploads.router)
