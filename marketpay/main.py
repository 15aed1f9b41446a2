import time
import uuid

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from marketpay.core.config import get_settings
from marketpay.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from marketpay.core.logging import bind_request_id, configure_logging, get_logger
from marketpay.db.init import init_db
from marketpay.gateways.registry import build_http_client, build_registry
from marketpay.repositories.base import get_repositories
from marketpay.routers import orders, payments

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

app = FastAPI(
    title="marketpay API",
    version="1.0.0",
    default_response_class=ORJSONResponse,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    bind_request_id(request_id)
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    log.info(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(payments.router, prefix="/v1/payments", tags=["payments"])
app.include_router(orders.router, prefix="/v1/orders", tags=["orders"])


@app.on_event("startup")
async def startup():
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")
    if settings.repository_backend == "mongo":
        await init_db()
        log.info("startup", msg="DB connected")
    app.state.repositories = get_repositories()
    app.state.http_client = build_http_client(settings)
    app.state.gateways = build_registry(settings, app.state.http_client)
    log.info(
        "startup",
        msg="Gateways ready",
        backend=settings.repository_backend,
        configured=[g["id"] for g in app.state.gateways.available() if g["configured"]],
    )


@app.on_event("shutdown")
async def shutdown():
    client = getattr(app.state, "http_client", None)
    if client is not None:
        await client.aclose()


@app.get("/health")
async def health():
    """Health check for load balancers and monitoring."""
    return {"status": "ok"}
