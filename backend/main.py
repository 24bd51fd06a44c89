import logging
import logging.config

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

# ------------------------------------------------------------
# 1. CONFIG & LOGGING
# ------------------------------------------------------------
from paycollect.core.config import settings
from paycollect.core.errors import PaycollectError

LOG_LEVEL = "INFO" if settings.ENVIRONMENT == "production" else "DEBUG"

logging_config = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "loggers": {
        "uvicorn": {"handlers": ["console"], "level": LOG_LEVEL},
        "uvicorn.error": {"handlers": ["console"], "level": LOG_LEVEL},
        "uvicorn.access": {"handlers": ["console"], "level": LOG_LEVEL},
        "paycollect": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

logging.config.dictConfig(logging_config)
logger = logging.getLogger("paycollect")


class CustomProxyHeadersMiddleware(BaseHTTPMiddleware):
    """
    Honour X-Forwarded-For / X-Forwarded-Proto from the load balancer so
    request logs show the real client and scheme.
    """
    async def dispatch(self, request, call_next):
        x_forwarded_for = request.headers.get("x-forwarded-for")
        if x_forwarded_for:
            request.scope["client"] = (x_forwarded_for.split(",")[0].strip(), 0)

        x_forwarded_proto = request.headers.get("x-forwarded-proto")
        if x_forwarded_proto:
            request.scope["scheme"] = x_forwarded_proto

        return await call_next(request)


# ------------------------------------------------------------
# 2. FASTAPI APP
# ------------------------------------------------------------
app = FastAPI(
    title="Paycollect API",
    description="Patient balance collection: Stripe payment links, SMS, reconciliation.",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# ------------------------------------------------------------
# 3. MIDDLEWARE
# ------------------------------------------------------------
app.add_middleware(CustomProxyHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.BACKEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ------------------------------------------------------------
# 4. ROUTERS (API ROUTES)
# ------------------------------------------------------------
from paycollect.routers import (  # noqa: E402
    client_router,
    dashboard_router,
    paylink_router,
    progress_router,
    webhooks,
)

app.include_router(client_router.router, prefix="/api", tags=["Clients"])
app.include_router(paylink_router.router, prefix="/api", tags=["Payment Links"])
app.include_router(progress_router.router, prefix="/api", tags=["Progress"])
app.include_router(dashboard_router.router, prefix="/api", tags=["Dashboard"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])


@app.get("/health", tags=["System"])
async def health_check():
    return {"status": "healthy"}


# ------------------------------------------------------------
# 5. EXCEPTION HANDLERS
# ------------------------------------------------------------
@app.exception_handler(PaycollectError)
async def domain_exception_handler(request: Request, exc: PaycollectError):
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.__class__.__name__, "message": exc.message},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Something went wrong. We're on it.",
            "request_id": request.headers.get("X-Request-ID"),
        },
    )


# ------------------------------------------------------------
# 6. REQUEST LOGGING MIDDLEWARE
# ------------------------------------------------------------
@app.middleware("http")
async def log_requests(request: Request, call_next):
    client_host = request.client.host if request.client else "-"
    logger.info(f"➡️ {client_host} {request.method} {request.url.path}")
    try:
        response = await call_next(request)
    except Exception as e:
        logger.exception(f"💥 Exception during {request.method} {request.url.path}: {e}")
        raise
    logger.info(f"⬅️ {request.method} {request.url.path} → {response.status_code}")
    return response


@app.on_event("startup")
async def startup_event():
    logger.info(f"🚀 Paycollect API started | Env: {settings.ENVIRONMENT} | Debug: {settings.DEBUG}")
    logger.info(f"🔗 Stripe webhook: {settings.BACKEND_URL.rstrip('/')}/api/webhooks/stripe")


# ------------------------------------------------------------
# 7. RUN LOCALLY
# ------------------------------------------------------------
if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug",
        access_log=True,
    )
