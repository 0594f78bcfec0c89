from fastapi import APIRouter

from app.api.v1.image import router as image_router
from app.api.v1.media import router as media_router
from app.api.v1.video import router as video_router

api_router = APIRouter()
api_router.include_router(media_router)
api_router.include_router(video_router)
api_router.include_router(image_router)
