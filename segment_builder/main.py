from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .routers import editor, fields, segments
from .config import settings
from .services.backend_client import create_http_client
from .services.editor_service import EditorService
from .services.local_matching import LocalMatchingService
from .services.matching_client import HttpMatchingService
from .services.preview_service import PreviewEvaluator
from .services.segment_store import SegmentStorageClient
from .utils.logger import setup_logger
import time

# Configure logging
logger = setup_logger(
    "segment_builder",
    settings.get_log_file("segment_builder")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    http_client = create_http_client()

    if settings.MATCHING_BACKEND == "local":
        matching_service = await LocalMatchingService.from_file(settings.local.CUSTOMERS_FILE)
    else:
        matching_service = HttpMatchingService(http_client)

    app.state.matching_service = matching_service
    app.state.storage = SegmentStorageClient(http_client)
    app.state.editor = EditorService(
        PreviewEvaluator(
            matching_service,
            sample_size=settings.preview.SAMPLE_SIZE,
            debounce_seconds=settings.debounce_seconds,
        ),
        app.state.storage,
        session_ttl=settings.editor.SESSION_TTL_SECONDS,
    )
    logger.info(
        f"Segment builder started: matching backend={settings.MATCHING_BACKEND} "
        f"api={settings.backend.API_URL}"
    )

    yield

    app.state.editor.close_all()
    await http_client.aclose()
    logger.info("Segment builder stopped")


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="API for building customer segments with live previews",
    version="1.0.0",
    debug=settings.is_development,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Root route
@app.get("/")
async def root():
    return {
        "message": "Segment Builder API",
        "status": "active",
        "api_version": "1.0.0",
        "documentation": "/docs"
    }

# Include routers
app.include_router(fields.router, prefix=settings.API_V1_STR)
app.include_router(segments.router, prefix=settings.API_V1_STR)
app.include_router(editor.router, prefix=settings.API_V1_STR)

# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    client_host = request.client.host if request.client else "unknown"
    logger.info(
        f"Request started: {request.method} {request.url.path} "
        f"Client: {client_host}"
    )

    response = await call_next(request)

    duration = time.time() - start_time
    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"Status: {response.status_code} Duration: {duration:.3f}s"
    )

    return response

# Error handling
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"Global error handler caught exception for request "
        f"{request.method} {request.url.path}",
        exc_info=True
    )

    logger.debug(f"Request headers: {dict(request.headers)}")
    logger.debug(f"Request query params: {dict(request.query_params)}")

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )
