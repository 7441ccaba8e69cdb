import time
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from starlette.responses import JSONResponse

from analytics_core.core.config import settings
from analytics_core.schemas.query import Granularity, QueryFilter
from analytics_core.services.query_filter import resolve
from analytics_core.storage.base import StorageAdapter

analytics_router = APIRouter(prefix="/projects/{project_id}")

LIMIT_QUERY = Query(settings.ingest.default_limit, ge=1, le=1000, description="Maximum number of rows")


def get_storage(request: Request) -> StorageAdapter:
    return request.app.state.storage


def get_filter(
        project_id: str,
        start_date: Optional[str] = Query(None, alias="startDate", description="Start date (YYYY-MM-DD)"),
        end_date: Optional[str] = Query(None, alias="endDate", description="End date, inclusive (YYYY-MM-DD)"),
        event_type: Optional[str] = Query(None, alias="eventType"),
        user_id: Optional[str] = Query(None, alias="userId"),
        session_id: Optional[str] = Query(None, alias="sessionId"),
        page_path: Optional[str] = Query(None, alias="pagePath"),
        country: Optional[str] = Query(None),
) -> QueryFilter:
    return resolve({
        "projectId": project_id,
        "startDate": start_date,
        "endDate": end_date,
        "eventType": event_type,
        "userId": user_id,
        "sessionId": session_id,
        "pagePath": page_path,
        "country": country,
    })


def to_json_response(result: Union[BaseModel, list[BaseModel]], elapsed_sec: float) -> JSONResponse:
    """Wraps an aggregation result with the elapsed query time."""
    if isinstance(result, list):
        data = [item.model_dump(mode="json", by_alias=True) for item in result]
    else:
        data = result.model_dump(mode="json", by_alias=True)
    return JSONResponse(content={"data": data, "response_time_sec": round(elapsed_sec, 3)})


@analytics_router.get("/overview")
async def get_overview(
        filters: QueryFilter = Depends(get_filter),
        storage: StorageAdapter = Depends(get_storage),
):
    """Total events and pageviews, unique sessions, visitors and users."""
    start_time = time.perf_counter()
    result = await storage.get_overview(filters)
    return to_json_response(result, time.perf_counter() - start_time)


@analytics_router.get("/pages")
async def get_page_views(
        filters: QueryFilter = Depends(get_filter),
        storage: StorageAdapter = Depends(get_storage),
        limit: int = LIMIT_QUERY,
):
    """Top pages by pageviews."""
    start_time = time.perf_counter()
    result = await storage.get_page_views(filters, limit)
    return to_json_response(result, time.perf_counter() - start_time)


@analytics_router.get("/referrers")
async def get_referrers(
        filters: QueryFilter = Depends(get_filter),
        storage: StorageAdapter = Depends(get_storage),
        limit: int = LIMIT_QUERY,
):
    """Top referrer domains by visits."""
    start_time = time.perf_counter()
    result = await storage.get_referrers(filters, limit)
    return to_json_response(result, time.perf_counter() - start_time)


@analytics_router.get("/devices")
async def get_device_stats(
        filters: QueryFilter = Depends(get_filter),
        storage: StorageAdapter = Depends(get_storage),
):
    """Device type, browser and operating system breakdowns."""
    start_time = time.perf_counter()
    result = await storage.get_device_stats(filters)
    return to_json_response(result, time.perf_counter() - start_time)


@analytics_router.get("/geo")
async def get_geo_stats(
        filters: QueryFilter = Depends(get_filter),
        storage: StorageAdapter = Depends(get_storage),
        limit: int = LIMIT_QUERY,
):
    """Pageviews by country and city."""
    start_time = time.perf_counter()
    result = await storage.get_geo_stats(filters, limit)
    return to_json_response(result, time.perf_counter() - start_time)


@analytics_router.get("/timeseries")
async def get_time_series(
        filters: QueryFilter = Depends(get_filter),
        storage: StorageAdapter = Depends(get_storage),
        granularity: Granularity = Query(Granularity.DAY, description="hour or day"),
):
    """Events, pageviews, sessions and visitors per time bucket."""
    start_time = time.perf_counter()
    result = await storage.get_time_series(filters, granularity)
    return to_json_response(result, time.perf_counter() - start_time)


@analytics_router.get("/web-vitals")
async def get_web_vitals(
        filters: QueryFilter = Depends(get_filter),
        storage: StorageAdapter = Depends(get_storage),
):
    """p50/p75/p95/p99 and rating counts per web vital metric."""
    start_time = time.perf_counter()
    result = await storage.get_web_vitals(filters)
    return to_json_response(result, time.perf_counter() - start_time)
