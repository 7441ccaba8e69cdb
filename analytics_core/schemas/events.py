from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    WrapValidator,
)
from pydantic.alias_generators import to_camel

from analytics_core.core.exceptions import report_partial_parse


def _lenient(value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo) -> Any:
    """Optional fields never fail an event: an unusable value becomes None."""
    try:
        return handler(value)
    except PydanticValidationError:
        report_partial_parse(info.field_name, value)
        return None


LenientStr = Annotated[Optional[str], WrapValidator(_lenient)]
LenientInt = Annotated[Optional[int], WrapValidator(_lenient)]
LenientFloat = Annotated[Optional[float], WrapValidator(_lenient)]


class WireModel(BaseModel):
    """Inbound client shape: camelCase keys, unknown keys dropped."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class PageContext(WireModel):
    url: LenientStr = None
    title: LenientStr = None
    path: LenientStr = None
    referrer: LenientStr = None


class ScreenContext(WireModel):
    width: LenientInt = None
    height: LenientInt = None


class GeoContext(WireModel):
    country: LenientStr = None
    country_code: LenientStr = None
    region: LenientStr = None
    city: LenientStr = None
    latitude: LenientFloat = None
    longitude: LenientFloat = None


class EventContext(WireModel):
    page: Annotated[Optional[PageContext], WrapValidator(_lenient)] = None
    user_agent: LenientStr = None
    locale: LenientStr = None
    screen: Annotated[Optional[ScreenContext], WrapValidator(_lenient)] = None
    ip: LenientStr = None
    geo: Annotated[Optional[GeoContext], WrapValidator(_lenient)] = None
    # epoch milliseconds
    received_at: LenientFloat = None


class RawEvent(WireModel):
    """Client-emitted event as delivered by the transport layer."""

    project_id: str = Field(..., min_length=1, description="Project the event belongs to.")
    event_type: str = Field(..., min_length=1, description="pageview, webvital or any custom name.")
    timestamp: float = Field(..., description="Client time of the event, epoch milliseconds.")
    session_id: LenientStr = None
    user_id: LenientStr = None
    anonymous_id: LenientStr = None
    message_id: LenientStr = Field(None, description="Client nonce; makes the event id reproducible.")
    properties: Annotated[Optional[Dict[str, Any]], WrapValidator(_lenient)] = None
    context: Annotated[Optional[EventContext], WrapValidator(_lenient)] = None


class CanonicalEventRow(BaseModel):
    """One persisted analytics event. Field order is the stored column order."""
    model_config = ConfigDict(frozen=True)

    event_id: UUID
    project_id: str
    event_type: str
    event_time: datetime
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    anonymous_id: Optional[str] = None

    page_url: Optional[str] = None
    page_title: Optional[str] = None
    page_path: Optional[str] = None
    page_referrer: Optional[str] = None

    user_agent: Optional[str] = None
    browser_name: Optional[str] = None
    browser_version: Optional[str] = None
    os_name: Optional[str] = None
    os_version: Optional[str] = None
    device_type: Optional[str] = None

    screen_width: Optional[int] = None
    screen_height: Optional[int] = None

    country: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    ip_address: Optional[str] = None
    locale: Optional[str] = None

    properties: Optional[str] = Field(None, description="Custom properties as a JSON string.")
    received_at: datetime


EVENT_COLUMNS: tuple[str, ...] = tuple(CanonicalEventRow.model_fields)


class SkippedPayload(WireModel):
    index: int
    error_type: str
    reason: str


class BatchResult(WireModel):
    """Outcome of one stream batch, reported back to the transport."""
    received: int
    inserted: int
    skipped: List[SkippedPayload] = []
