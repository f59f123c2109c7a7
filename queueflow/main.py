from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from queueflow.api.deps import close_queue_service
from queueflow.core.config import settings
from queueflow.core.exceptions import QueueError
from queueflow.core.logger import logger
from queueflow.middleware.log_middleware import LogMiddleware

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_queue_service()

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

from fastapi.middleware.cors import CORSMiddleware

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(LogMiddleware)

@app.exception_handler(QueueError)
async def queue_error_handler(request: Request, exc: QueueError):
    logger.info(f"Rejected {request.method} {request.url.path}: {type(exc).__name__}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": type(exc).__name__},
    )

@app.get("/")
async def root():
    return {"message": "Welcome to QueueFlow API"}

from queueflow.api.api import api_router
app.include_router(api_router, prefix=settings.API_V1_STR)
