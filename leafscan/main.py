# LeafScan Plant Disease Detection API
import asyncio
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware

from leafscan import __version__, config, dependencies
from leafscan.errors import InternalError, InvalidRequestError, LeafScanError
from leafscan.routers import analyze, health, upload
from leafscan.services.rate_limit import check_rate_limit

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# ============================================================================#
# Lifespan Events
# ============================================================================#

@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    # Startup: a missing required key raises ConfigurationError and aborts startup
    config.validate_config()
    dependencies.init_services()

    logger.info("=" * 60)
    logger.info(f"Starting LeafScan API v{__version__} ({config.ENVIRONMENT})")
    logger.info(f"Plant.id: {'✓' if config.PLANT_ID_API_KEY else '✗'}")
    logger.info(f"Text model: {'✓' if dependencies.text_client else '✗'}")
    logger.info(f"Supabase Storage: {'✓' if dependencies.supabase_client else '✗'}")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("Shutting down gracefully...")
    await dependencies.close_services()


# Initialize FastAPI app
app = FastAPI(
    title="LeafScan Plant Disease Detection API",
    description="Leaf photo analysis with Plant.id identification and Gemini disease details",
    version=__version__,
    lifespan=lifespan
)

# Per-route limits for operational endpoints
app.state.limiter = health.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ============================================================================#
# Request gate (/api/* only)
# ============================================================================#

def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


@app.middleware("http")
async def rate_limit_gate(request: Request, call_next):
    if not request.url.path.startswith("/api/"):
        return await call_next(request)

    # The Redis clients are synchronous; keep them off the event loop
    decision = await asyncio.to_thread(check_rate_limit, get_client_ip(request))
    if not decision.allowed:
        return JSONResponse(
            status_code=429,
            content={
                "error": "Too many requests",
                "message": f"Rate limit exceeded. Please try again in {config.RATE_LIMIT_WINDOW} seconds."
            },
            headers=decision.headers(),
        )

    response = await call_next(request)
    for name, value in decision.headers().items():
        response.headers[name] = value
    return response


# Added after the gate so CORS wraps it and 429 responses carry CORS headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================#
# Error envelopes
# ============================================================================#

def error_response(exc: LeafScanError) -> JSONResponse:
    body = exc.to_dict()
    if exc.status_code == 500:
        body["details"] = "Internal server error"
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": body})


@app.exception_handler(LeafScanError)
async def leafscan_error_handler(request: Request, exc: LeafScanError):
    logger.error(f"[{exc.status_code}] {exc.code}: {exc.message}")
    return error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return error_response(InvalidRequestError("Invalid request parameters", details=jsonable_encoder(exc.errors())))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=not config.IS_PRODUCTION)
    return error_response(InternalError("Failed to analyze image", code="ANALYSIS_ERROR"))


# ============================================================================#
# Routers
# ============================================================================#

app.include_router(health.router, tags=["Health"])
app.include_router(analyze.router, tags=["Analysis"])
app.include_router(upload.router, tags=["Storage"])


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run('leafscan.main:app', host='0.0.0.0', port=port, reload=True)
