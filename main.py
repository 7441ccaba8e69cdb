from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from loguru import logger

from analytics_core.api.routers import main_router, register_exception_handlers
from analytics_core.core.config import settings
from analytics_core.core.loguru_logger import configure_logging
from analytics_core.storage.factory import create_storage


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup
    configure_logging(settings.log.level, settings.log.file)
    app.state.storage = create_storage(settings)
    if settings.storage.create_schema_on_startup:
        await app.state.storage.initialize_schema()

    yield

    # shutdown
    logger.info("dispose storage backend")
    await app.state.storage.close()

main_app = FastAPI(lifespan=lifespan)
main_app.include_router(
    main_router,
    prefix=settings.api.prefix,
    tags=["api"],
    responses={404: {"description": "Not found"}},
)
register_exception_handlers(main_app)


if __name__ == "__main__":
    uvicorn.run("main:main_app",
                host=settings.run.host,
                port=settings.run.port,
                reload=True
    )
