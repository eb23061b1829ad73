"""
Gallery metadata document, persisted as JSON at galleries/{id}/metadata.json.
"""
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

SLOT_COUNT = 4


class ImageStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class GalleryStatus(str, Enum):
    GENERATING = "generating"
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


class CamelModel(BaseModel):
    """Snake-case attributes, camelCase JSON (the format the frontend reads)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class UserInputs(CamelModel):
    location: str = ""
    atmosphere: str = ""
    focus: str = ""
    detail: str = ""
    feelings: list[str] = Field(default_factory=list)
    aspect_ratio: str = "1:1"
    season: str = ""


class ImageSlot(CamelModel):
    index: int
    status: ImageStatus = ImageStatus.PENDING
    request_id: Optional[str] = None
    web_url: Optional[str] = None
    print_url: Optional[str] = None
    original_url: Optional[str] = None
    error: Optional[str] = None


class Progress(CamelModel):
    completed: int = 0
    total: int = SLOT_COUNT
    failed: int = 0
    generating: int = 0


def pending_slots() -> list[ImageSlot]:
    return [ImageSlot(index=i) for i in range(1, SLOT_COUNT + 1)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GalleryMetadata(CamelModel):
    id: str
    status: GalleryStatus = GalleryStatus.GENERATING
    progress: Progress = Field(default_factory=Progress)
    images: list[ImageSlot] = Field(default_factory=pending_slots)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    user_inputs: Optional[UserInputs] = None
    purchased: bool = False
    view_count: int = 0

    @model_validator(mode="after")
    def _normalize_slots(self) -> "GalleryMetadata":
        # Exactly one slot per index 1..SLOT_COUNT, in order.
        by_index = {}
        for slot in self.images:
            if 1 <= slot.index <= SLOT_COUNT and slot.index not in by_index:
                by_index[slot.index] = slot
        self.images = [by_index.get(i) or ImageSlot(index=i) for i in range(1, SLOT_COUNT + 1)]
        return self

    @classmethod
    def new(cls, gallery_id: str, user_inputs: UserInputs, ttl_days: int) -> "GalleryMetadata":
        now = utcnow()
        return cls(
            id=gallery_id,
            created_at=now,
            expires_at=now + timedelta(days=ttl_days),
            user_inputs=user_inputs,
        )

    def slot(self, index: int) -> ImageSlot:
        return self.images[index - 1]

    @property
    def expires_at_utc(self) -> datetime:
        if self.expires_at.tzinfo is None:
            return self.expires_at.replace(tzinfo=timezone.utc)
        return self.expires_at

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at_utc

    def time_remaining_ms(self, now: Optional[datetime] = None) -> int:
        remaining = self.expires_at_utc - (now or utcnow())
        return max(0, int(remaining.total_seconds() * 1000))

    def to_document(self) -> dict:
        """JSON-ready dict in the persisted (camelCase) layout."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
