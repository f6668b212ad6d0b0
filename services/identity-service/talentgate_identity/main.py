"""FastAPI application wiring for the identity service."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.error_handling import register_error_handlers
from .api.routes import router as v1_router
from .config import get_settings
from .domain.service import IdentityService
from .gateway import RazorpayGateway
from .notifications import MailDispatcher, build_mail_sender
from .repository import IdentityRepository
from .security.rate_limiter import build_rate_limiter

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, gateway client, mail workers) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    http_client = RazorpayGateway.build_client(
        settings.razorpay_api_url,
        settings.razorpay_key_id,
        settings.razorpay_key_secret,
        settings.gateway_timeout_seconds,
    )
    mail_executor = ThreadPoolExecutor(max_workers=settings.mail_workers, thread_name_prefix="mail")

    gateway = RazorpayGateway(
        http_client,
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
    )
    if not gateway.is_configured:
        logger.warning("razorpay credentials missing, checkout and payment verification will fail")

    app.state.pool = pool
    app.state.rate_limiter = build_rate_limiter(settings)
    app.state.identity_service = IdentityService(
        IdentityRepository(pool),
        gateway,
        MailDispatcher(build_mail_sender(settings), mail_executor),
        settings=settings,
    )
    logger.info("identity service started version=%s", settings.version)
    try:
        yield
    finally:
        mail_executor.shutdown(wait=True)
        http_client.close()
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

# CORS for the local frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)

register_error_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.http_host, port=settings.http_port, log_level=settings.log_level.lower())
