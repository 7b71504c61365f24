from fastapi import APIRouter
from .chats import router as chats_router
from .ws import router as ws_router

router = APIRouter()
router.include_router(chats_router, prefix='/chats', tags=['chats'])
router.include_router(ws_router, prefix='/ws', tags=['ws'])
