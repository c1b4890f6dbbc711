from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from imagestudio.config import settings
from imagestudio.api.accounts import router as accounts_router
from imagestudio.api.billing import router as billing_router
from imagestudio.api.generations import router as generations_router
from imagestudio.api.webhooks import router as webhooks_router
from imagestudio.middleware.rate_limit import RateLimitMiddleware
from imagestudio.middleware.security import SecurityHeadersMiddleware

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        (
            structlog.dev.ConsoleRenderer()
            if settings.APP_ENV == "development"
            else structlog.processors.JSONRenderer()
        ),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(0),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("starting_up", env=settings.APP_ENV)
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await redis.ping()
        log.info("redis_connected", url=settings.REDIS_URL)
    except Exception as e:
        # Rate limiting fails open without Redis.
        log.warning("redis_connection_failed", error=str(e))
    app.state.redis = redis

    if not settings.STRIPE_WEBHOOK_SECRET:
        log.warning("stripe_webhook_secret_missing")

    yield

    log.info("shutting_down")
    await redis.aclose()


app = FastAPI(
    title="SharePoint Image Studio",
    lifespan=lifespan,
)

# The SharePoint web part calls the API from the tenant's origin.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.APP_ENV == "development" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RateLimitMiddleware)


app.include_router(accounts_router)
app.include_router(generations_router)
app.include_router(billing_router)
app.include_router(webhooks_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
