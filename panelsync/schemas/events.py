import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator


class EventType(str, Enum):
    covered = "covered"
    absent = "absent"
    overposted = "overposted"
    todo = "todo"


def normalize_event_payload(data: Any) -> Any:
    """Legacy rows carry no event_type (or mixed case); both mean a plain coverage."""
    if not isinstance(data, dict):
        return data
    data = dict(data)
    raw = data.get("event_type")
    data["event_type"] = str(raw).strip().lower() if raw else EventType.covered.value
    return data


# Event variants. The wire shape is flat: covered_at/covered_by carry the
# occurrence time and actor for every variant.
class _EventBase(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    panel_id: str = Field(min_length=1)
    covered_at: datetime
    covered_by: str


class CoveredEvent(_EventBase):
    event_type: Literal["covered"] = "covered"
    note: Optional[str] = None
    photo_filename: Optional[str] = None


class AbsentEvent(_EventBase):
    event_type: Literal["absent"] = "absent"
    absent_reason: Optional[str] = None


class OverpostedEvent(_EventBase):
    event_type: Literal["overposted"] = "overposted"
    note: Optional[str] = None


class TodoEvent(_EventBase):
    event_type: Literal["todo"] = "todo"


PanelEvent = Annotated[
    Union[CoveredEvent, AbsentEvent, OverpostedEvent, TodoEvent],
    Field(discriminator="event_type"),
]

_event_adapter = TypeAdapter(PanelEvent)
_event_list_adapter = TypeAdapter(List[PanelEvent])


def parse_event(data: Any) -> Union[CoveredEvent, AbsentEvent, OverpostedEvent, TodoEvent]:
    """Validate one flat event payload into its variant. Raises pydantic.ValidationError."""
    return _event_adapter.validate_python(normalize_event_payload(data))


def parse_events(data: Any) -> List[Union[CoveredEvent, AbsentEvent, OverpostedEvent, TodoEvent]]:
    if isinstance(data, list):
        data = [normalize_event_payload(item) for item in data]
    return _event_list_adapter.validate_python(data)


def event_to_wire(event: _EventBase) -> Dict[str, Any]:
    """Flat JSON-ready dict with every column present (absent ones as null)."""
    body = {
        "id": str(event.id),
        "panel_id": event.panel_id,
        "covered_at": event.covered_at.isoformat(),
        "covered_by": event.covered_by,
        "note": getattr(event, "note", None),
        "photo_filename": getattr(event, "photo_filename", None),
        "event_type": event.event_type,
        "absent_reason": getattr(event, "absent_reason", None),
    }
    return body


class CombinedStatusRow(BaseModel):
    """
    One row of the latest combined status feed: the panel's most recent event
    (if any) joined with its current assignment.
    """

    panel_id: str = Field(min_length=1)
    event: Optional[PanelEvent] = None
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _split_flat_row(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "event" in data:
            return data
        event = None
        if data.get("id") is not None:
            event = normalize_event_payload({
                key: data.get(key)
                for key in ("id", "panel_id", "covered_at", "covered_by", "note",
                            "photo_filename", "event_type", "absent_reason")
            })
        return {
            "panel_id": data.get("panel_id"),
            "event": event,
            "assigned_to": data.get("assigned_to"),
            "assigned_at": data.get("assigned_at"),
        }

    @property
    def event_type(self) -> EventType:
        if self.event is None:
            return EventType.todo
        return EventType(self.event.event_type)


_rows_adapter = TypeAdapter(List[CombinedStatusRow])


def parse_combined_rows(data: Any) -> List[CombinedStatusRow]:
    return _rows_adapter.validate_python(data)


class AssignmentUpsert(BaseModel):
    """Panel ids are free-form (`vote:<address>`, `extra:<uuid>`), so they travel in the body."""

    panel_id: str = Field(min_length=1)
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None


class ExtraPanelCreate(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    title: Optional[str] = None
    subtitle: Optional[str] = None
    created_by: Optional[str] = None


class ExtraPanelOut(BaseModel):
    id: uuid.UUID
    lat: float
    lon: float
    title: Optional[str] = None
    subtitle: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def panel_id(self) -> str:
        return f"extra:{self.id}"

    @property
    def display_title(self) -> str:
        title = (self.title or "").strip()
        return title or "Panel (team added)"

    @property
    def display_subtitle(self) -> str:
        return (self.subtitle or "").strip()
