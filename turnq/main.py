import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from turnq.api.deps import HOST_PIN_HEADER
from turnq.api.routes import error_response, router
from turnq.config import load_settings
from turnq.errors import ApiError, ErrorKind, TurnError

settings = load_settings()

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="turn-queue", version="0.1.0")
app.state.settings = settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["authorization", "apikey", "content-type", HOST_PIN_HEADER],
)
app.include_router(router)


@app.exception_handler(ApiError)
async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc.error.message)
    return error_response(exc.error)


@app.exception_handler(Exception)
async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("%s %s failed unexpectedly", request.method, request.url.path, exc_info=exc)
    return error_response(TurnError(kind=ErrorKind.unexpected, message=f"500: {exc}"))


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "turn-queue", "version": "0.1.0"}
