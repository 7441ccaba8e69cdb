from sqlalchemy import Column, DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import declarative_base

BaseORM = declarative_base()


class Event(BaseORM):
    """Wide events table of the relational backend, one row per ingested event."""
    __tablename__ = "events"

    event_id = Column(UUID(as_uuid=True), primary_key=True)
    project_id = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=False)
    event_time = Column(DateTime(timezone=True), nullable=False)

    session_id = Column(String(255))
    user_id = Column(String(255))
    anonymous_id = Column(String(255))

    page_url = Column(Text)
    page_title = Column(Text)
    page_path = Column(String(2048))
    page_referrer = Column(Text)

    user_agent = Column(Text)
    browser_name = Column(String(100))
    browser_version = Column(String(50))
    os_name = Column(String(100))
    os_version = Column(String(50))
    device_type = Column(String(50))

    screen_width = Column(Integer)
    screen_height = Column(Integer)

    country = Column(String(100))
    city = Column(String(255))
    region = Column(String(255))
    ip_address = Column(String(45))
    locale = Column(String(35))

    properties = Column(JSONB(none_as_null=True))
    received_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_events_project_event_time", "project_id", event_time.desc()),
        Index("idx_events_project_type_event_time", "project_id", "event_type", event_time.desc()),
        Index("idx_events_session", "session_id"),
        Index("idx_events_user", "user_id"),
        Index("idx_events_anonymous", "anonymous_id"),
        Index("idx_events_page_path", "project_id", "page_path", event_time.desc()),
        Index("idx_events_geo", "project_id", "country", "city"),
        Index("idx_events_device", "project_id", "device_type", event_time.desc()),
        Index("idx_events_browser", "project_id", "browser_name", "browser_version"),
        Index("idx_events_os", "project_id", "os_name", "os_version"),
        Index("idx_events_properties", "properties", postgresql_using="gin"),
    )
