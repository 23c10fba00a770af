from fastapi import APIRouter

from .generations import router as generations_router
from .quota import router as quota_router

api_router = APIRouter()
api_router.include_router(quota_router)  # prefix는 router 파일 내부에서 정의되어 있음 (/quota)
api_router.include_router(generations_router)  # (/generations)
