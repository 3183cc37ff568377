"""Page annotations and the named profiles that group them."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime

from pydantic import Field, field_validator

from setlist_sync.models.base import CamelModel, utc_now


class AnnotationColor(str, enum.Enum):
    YELLOW = "yellow"
    RED = "red"
    BLUE = "blue"
    GREEN = "green"
    ORANGE = "orange"
    PURPLE = "purple"


class AnnotationFontSize(str, enum.Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class Annotation(CamelModel):
    """A text marker placed on a page at page-relative coordinates."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    page_index: int = Field(default=0, ge=0)
    relative_x: float = 0.5
    relative_y: float = 0.5
    text: str = ""
    color: AnnotationColor = AnnotationColor.YELLOW
    font_size: AnnotationFontSize = AnnotationFontSize.SMALL
    is_bold: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    modified_at: datetime = Field(default_factory=utc_now)

    @field_validator("relative_x", "relative_y")
    @classmethod
    def _clamp_unit_interval(cls, value: float) -> float:
        return min(1.0, max(0.0, value))


class AnnotationProfile(CamelModel):
    """A named set of annotations for one song ("My Notes", "Band Leader").

    Profiles are the unit of synchronization: two copies sharing an ``id`` are
    reconciled as a whole by ``modified_at``, never annotation by annotation.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    owner_name: str | None = None
    is_default: bool = False
    annotations: list[Annotation] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    modified_at: datetime = Field(default_factory=utc_now)

    def annotations_for_page(self, page_index: int) -> list[Annotation]:
        return [a for a in self.annotations if a.page_index == page_index]
