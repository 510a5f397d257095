import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Float,
    Text,
    Index,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


class CoverEvent(Base):
    """Append-only panel event. Rows are never updated or deleted."""

    __tablename__ = "cover_events"

    id: Mapped[uuid.UUID] = uuid_pk()
    panel_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    covered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    covered_by: Mapped[str] = mapped_column(String(255), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    photo_filename: Mapped[Optional[str]] = mapped_column(String(255))
    event_type: Mapped[str] = mapped_column(String(20), nullable=False, default="covered")  # covered|absent|overposted|todo
    absent_reason: Mapped[Optional[str]] = mapped_column(Text)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index("ix_cover_events_panel_time", "panel_id", "covered_at"),
        Index("ix_cover_events_covered_at", "covered_at"),
    )


class PanelAssignment(Base):
    """Current claim of responsibility for a panel. Upserted, no history."""

    __tablename__ = "panel_assignments"

    panel_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    assigned_to: Mapped[Optional[str]] = mapped_column(String(255))
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)


class ExtraPanel(Base):
    """Panel added by the team in the field, outside the open-data catalogue."""

    __tablename__ = "extra_panels"

    id: Mapped[uuid.UUID] = uuid_pk()
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255))
    subtitle: Mapped[Optional[str]] = mapped_column(String(255))
    created_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)

    @property
    def panel_id(self) -> str:
        return f"extra:{self.id}"
