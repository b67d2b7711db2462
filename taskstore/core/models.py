"""Core data model for stored tasks.

A task is the only entity persisted by the storage layer. The model is a
plain ``msgspec.Struct`` so every backend can share one definition and the
file backend can encode and decode it without an intermediate layer.

Timestamps are always timezone aware. A naive datetime handed to the model
is taken to be UTC, which keeps ordering and equality consistent across
backends that store UTC natively and backends that drop the offset.
"""

from datetime import UTC, datetime

import msgspec


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; aware values are returned unchanged."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def to_utc(value: datetime) -> datetime:
    """Convert any datetime to an aware UTC datetime."""
    return ensure_utc(value).astimezone(UTC)


class Task(msgspec.Struct, kw_only=True):
    """A single task record.

    ``id`` is assigned by the caller and never generated by storage.
    ``due_date`` is optional and ``None`` means "no due date"; backends must
    hand it back as ``None``, not as an epoch or an empty value.
    """

    id: str
    title: str
    done: bool = False
    created_at: datetime = msgspec.field(default_factory=utcnow)
    due_date: datetime | None = None

    def __post_init__(self):
        self.created_at = ensure_utc(self.created_at)
        if self.due_date is not None:
            self.due_date = ensure_utc(self.due_date)

    @property
    def has_due_date(self) -> bool:
        return self.due_date is not None

    def is_overdue(self, now: datetime | None = None) -> bool:
        """True when the task is open and its due date has passed."""
        if self.done or self.due_date is None:
            return False
        return self.due_date < ensure_utc(now or utcnow())

    def replace(self, **changes) -> "Task":
        """Return a copy with the given fields changed."""
        return msgspec.structs.replace(self, **changes)
