from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from .routes import router
from .core import redis_startup, init_metrics, shutdown_connections
from . import core
from .crud import ChatRepository
from .chat_service import ChatService
from .errors import ChatError, chat_error_handler
from .file_storage import attachment_storage
from .ws_manager import manager
import logging
from pythonjsonlogger import jsonlogger

# setup structured logging
logger = logging.getLogger('marketchat')
handler = logging.StreamHandler()
formatter = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s')
handler.setFormatter(formatter)
logger.addHandler(handler)
logger.setLevel(logging.INFO)

app = FastAPI(title="Marketplace Chat API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.add_exception_handler(ChatError, chat_error_handler)
app.include_router(router, prefix="/api")
app.mount('/uploads', StaticFiles(directory=attachment_storage.uploads_path), name='uploads')

# the websocket manager is owned here and handed to the service
app.state.chat_service = ChatService(ChatRepository(), manager, attachment_storage)


@app.get('/healthz')
async def healthz():
    return {'status': 'ok'}


@app.middleware('http')
async def log_requests(request: Request, call_next):
    logger.info({'msg': 'request_start', 'method': request.method, 'path': request.url.path})
    response = await call_next(request)
    logger.info({'msg': 'request_end', 'status': response.status_code})
    return response


@app.on_event("startup")
async def startup():
    # Best-effort init, don't block app from starting if a dependency fails
    try:
        await redis_startup()
    except Exception as e:
        logger.warning({'msg': 'redis_start_failed', 'error': str(e)})
    if core.REDIS:
        manager.start_listener()
    try:
        init_metrics()
    except Exception as e:
        logger.warning({'msg': 'metrics_init_failed', 'error': str(e)})


@app.on_event("shutdown")
async def shutdown():
    await manager.stop_listener()
    await shutdown_connections()
