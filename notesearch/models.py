from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from notesearch.database import Base

EMPTY_DOCUMENT = '{"type": "doc", "content": [{"type": "paragraph"}]}'


def _new_note_id() -> str:
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime stored as UTC.

    SQLite keeps no offset, so values are converted to UTC on the way in and
    tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Note(Base):
    """A note as stored in the local database.

    ``content`` is the serialized editor document and is opaque to search;
    ``plain_text`` is its plain-text rendering used for keyword matching and
    embedding. A note with a null or empty ``embedding`` is unindexed.
    """

    __tablename__ = "notes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_note_id)
    title: Mapped[str] = mapped_column(String(500), default="Untitled")
    content: Mapped[str] = mapped_column(Text, default=EMPTY_DOCUMENT)
    plain_text: Mapped[str] = mapped_column(Text, default="")
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)
    tags: Mapped[list] = mapped_column(JSON, default=list)  # ["tag1", "tag2"]
    embedding: Mapped[list | None] = mapped_column(JSON(none_as_null=True), nullable=True)  # list[float]
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    trashed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("idx_notes_updated_at", "updated_at"),
        Index("idx_notes_trashed_at", "trashed_at"),
    )

    @property
    def is_indexed(self) -> bool:
        return bool(self.embedding)
