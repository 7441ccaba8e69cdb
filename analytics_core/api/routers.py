from fastapi import APIRouter, FastAPI, Request, status
from loguru import logger
from starlette.responses import JSONResponse

from analytics_core.api.urls_analytics import analytics_router
from analytics_core.core.exceptions import StorageError, ValidationError

main_router = APIRouter()

# Register API routers ---------------------------------------
main_router.include_router(analytics_router)


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    logger.debug(f"Rejected query {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "validation_error", "detail": str(exc)},
    )


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(f"Query {request.url.path} failed in {exc.operation}: {exc}")
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE if exc.retryable else status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(
        status_code=status_code,
        content={"error": "storage_error", "detail": str(exc), "retryable": exc.retryable},
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(StorageError, storage_error_handler)
