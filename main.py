from contextlib import asynccontextmanager

import redis.asyncio as redis
import uvicorn
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter
from loguru import logger

from app.api.errors import register_exception_handlers
from app.api.routers import main_router
from app.core.config import settings
from app.core.loguru_logger import setup_logging
from app.db.db_helper import db_helper as db_lifespan



@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup
    setup_logging()
    await db_lifespan.create_tables()

    if settings.rate_limit.enabled:
        redis_client = redis.from_url(
            settings.rate_limit.redis_url,
            encoding="utf-8",
            decode_responses=True
        )
        await FastAPILimiter.init(redis_client)

    yield

    # shutdown
    if settings.rate_limit.enabled:
        await FastAPILimiter.close()
    logger.info("dispose db engine")
    await db_lifespan.dispose()

main_app = FastAPI(
    title="Event Ingestion API",
    description="Multi-tenant ingestion, querying and statistics of application events",
    lifespan=lifespan,
)
register_exception_handlers(main_app)
main_app.include_router(
    main_router,
    prefix=settings.api.prefix,
    tags=["events"],
    responses={404: {"description": "Not found"}},
)


@main_app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run("main:main_app",
                host=settings.run.host,
                port=settings.run.port,
                reload=True
    )
