"""Core task model."""

from .models import Task, ensure_utc, to_utc, utcnow

__all__ = ["Task", "ensure_utc", "to_utc", "utcnow"]
