"""
Receipt Splitter Backend — FastAPI application entry‑point.
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from receiptsplit.config import settings
from receiptsplit.database import engine
from receiptsplit.errors import ReceiptError
from receiptsplit.relay import RelayHub
from receiptsplit.security import SECURITY_HEADERS, is_protected_path
from receiptsplit.store import ensure_schema

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(name)-30s  %(levelname)-5s  %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: ensure data dir + tables exist
    os.makedirs(settings.DATA_DIR, exist_ok=True)
    ensure_schema(engine)
    logger.info("Database tables ready (%s)", settings.DATABASE_URL)

    app.state.relay = RelayHub()
    logger.info("Realtime relay ready on /api/websocket")

    yield
    logger.info("Shutting down (%d open relay groups)", app.state.relay.group_count)


app = FastAPI(
    title="Receipt Splitter",
    description="Shared receipts → live collaborative bill splitting",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    if not is_protected_path(request.url.path):
        return await call_next(request)
    try:
        response = await call_next(request)
    except Exception as exc:
        logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=True)
        response = JSONResponse({"error": "Internal server error"}, status_code=500)
    response.headers.update(SECURITY_HEADERS)
    return response


@app.exception_handler(ReceiptError)
async def receipt_error_handler(request: Request, exc: ReceiptError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"error": str(exc.detail)}, status_code=exc.status_code, headers=exc.headers
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info("Rejected request body on %s: %s", request.url.path, exc.errors())
    return JSONResponse({"error": "Invalid request body"}, status_code=400)


@app.get("/")
async def root():
    return {"service": "Receipt Splitter", "version": "0.1.0", "status": "running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


# ── Register API routers ─────────────────────────────────────────────────
from receiptsplit.routers.share import router as share_router  # noqa: E402
from receiptsplit.routers.receipts import router as receipts_router  # noqa: E402
from receiptsplit.routers.realtime import router as realtime_router  # noqa: E402

app.include_router(share_router, prefix="/api", tags=["Shared Receipts"])
app.include_router(receipts_router, prefix="/api", tags=["Receipts"])
app.include_router(realtime_router, prefix="/api", tags=["Realtime"])
