"""
Raw client event -> canonical stored row.

Pure transform: parses the user agent, coalesces page fields (context first,
then top-level properties), serializes custom properties and assigns the
event id. Only a missing projectId / eventType / timestamp is fatal.
"""
import json
import math
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, NamedTuple, Optional, Union
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from user_agents import parse as parse_user_agent

from analytics_core.core.config import settings
from analytics_core.core.exceptions import ValidationError, report_partial_parse
from analytics_core.schemas.events import CanonicalEventRow, PageContext, RawEvent

UNRECOGNIZED_FAMILY = "Other"
DEFAULT_DEVICE_TYPE = "desktop"


class DeviceFacet(NamedTuple):
    browser_name: Optional[str] = None
    browser_version: Optional[str] = None
    os_name: Optional[str] = None
    os_version: Optional[str] = None
    device_type: Optional[str] = None


def _family(name: Optional[str]) -> Optional[str]:
    if not name or name == UNRECOGNIZED_FAMILY:
        return None
    return name


def _device_type(parsed) -> str:
    if parsed.is_tablet:
        return "tablet"
    if parsed.is_mobile:
        return "mobile"
    if parsed.is_bot:
        return "bot"
    return DEFAULT_DEVICE_TYPE


def parse_device(user_agent: Optional[str]) -> DeviceFacet:
    """All fields are None without a user agent; each sub-field fails on its own."""
    if not user_agent:
        return DeviceFacet()

    parsed = parse_user_agent(user_agent)
    browser_name = _family(parsed.browser.family)
    os_name = _family(parsed.os.family)

    if browser_name is None or os_name is None:
        report_partial_parse("user agent", user_agent)

    return DeviceFacet(
        browser_name=browser_name,
        browser_version=(parsed.browser.version_string or None) if browser_name else None,
        os_name=os_name,
        os_version=(parsed.os.version_string or None) if os_name else None,
        device_type=_device_type(parsed),
    )


def resolve_page_field(page: Optional[PageContext], properties: Mapping[str, Any], name: str) -> Optional[str]:
    """context.page.<name>, then properties[<name>], then None."""
    value = getattr(page, name, None) if page is not None else None
    if value:
        return value
    fallback = properties.get(name)
    if isinstance(fallback, str) and fallback:
        return fallback
    return None


def serialize_properties(properties: Optional[Mapping[str, Any]]) -> Optional[str]:
    # null, not "{}", marks "no custom data"
    if not properties:
        return None
    try:
        return json.dumps(properties, ensure_ascii=False, separators=(",", ":"), default=str, allow_nan=False)
    except ValueError:
        # NaN and Infinity have no JSON form
        report_partial_parse("properties", properties)
        return None


def epoch_ms_to_datetime(value: float, field: str) -> datetime:
    if not math.isfinite(value):
        raise ValidationError(f"{field} must be a finite number", errors=[{"loc": (field,), "msg": "not finite"}])
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise ValidationError(f"{field} is out of range: {value}", errors=[{"loc": (field,), "msg": str(e)}]) from e


class EventNormalizer:
    """Stateless apart from the id namespace and the clock used for receivedAt."""

    def __init__(
            self,
            namespace: UUID = settings.ingest.event_id_namespace,
            clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.namespace = namespace
        self.clock = clock

    def event_id(self, event: RawEvent) -> UUID:
        """
        Content-derived when the client supplies a messageId, so a redelivered
        event keeps its id; random otherwise.
        """
        if not event.message_id:
            return uuid.uuid4()
        key = "|".join((
            event.project_id,
            event.event_type,
            f"{event.timestamp:.3f}",
            event.session_id or event.anonymous_id or "",
            event.message_id,
        ))
        return uuid.uuid5(self.namespace, key)

    def normalize(self, raw: Union[RawEvent, Mapping[str, Any]]) -> CanonicalEventRow:
        event = raw if isinstance(raw, RawEvent) else self._validate(raw)

        context = event.context
        page = context.page if context else None
        screen = context.screen if context else None
        geo = context.geo if context else None
        properties = event.properties or {}

        user_agent = context.user_agent if context else None
        device = parse_device(user_agent)

        if context is not None and context.received_at is not None:
            received_at = epoch_ms_to_datetime(context.received_at, "context.receivedAt")
        else:
            received_at = self.clock()

        return CanonicalEventRow(
            event_id=self.event_id(event),
            project_id=event.project_id,
            event_type=event.event_type,
            event_time=epoch_ms_to_datetime(event.timestamp, "timestamp"),
            session_id=event.session_id or None,
            user_id=event.user_id or None,
            anonymous_id=event.anonymous_id or None,
            page_url=resolve_page_field(page, properties, "url"),
            page_title=resolve_page_field(page, properties, "title"),
            page_path=resolve_page_field(page, properties, "path"),
            page_referrer=resolve_page_field(page, properties, "referrer"),
            user_agent=user_agent or None,
            **device._asdict(),
            screen_width=screen.width if screen else None,
            screen_height=screen.height if screen else None,
            country=geo.country if geo else None,
            city=geo.city if geo else None,
            region=geo.region if geo else None,
            ip_address=context.ip if context else None,
            locale=context.locale if context else None,
            properties=serialize_properties(event.properties),
            received_at=received_at,
        )

    @staticmethod
    def _validate(payload: Mapping[str, Any]) -> RawEvent:
        try:
            return RawEvent.model_validate(payload)
        except PydanticValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise ValidationError(
                f"Invalid event, missing or malformed: {fields}",
                errors=e.errors(include_url=False, include_context=False),
            ) from e


default_normalizer = EventNormalizer()


def normalize(raw: Union[RawEvent, Mapping[str, Any]]) -> CanonicalEventRow:
    return default_normalizer.normalize(raw)
