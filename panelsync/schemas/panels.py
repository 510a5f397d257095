from typing import Optional
from pydantic import BaseModel, Field

from .events import ExtraPanelOut


class PanelLocation(BaseModel):
    panel_id: str
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    title: str = "Panel"
    subtitle: Optional[str] = None
    is_extra: bool = False

    @classmethod
    def from_extra(cls, panel: ExtraPanelOut) -> "PanelLocation":
        return cls(
            panel_id=panel.panel_id,
            lat=panel.lat,
            lon=panel.lon,
            title=panel.display_title,
            subtitle=panel.display_subtitle or None,
            is_extra=True,
        )


class TourCandidate(BaseModel):
    panel: PanelLocation
    distance_m: float
