"""Persisted campaign state entry - one row per logical field."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from kiosk.models import Base, BaseModel


class StateEntry(Base, BaseModel):
    """Whole-value JSON for one CampaignState field.

    Attributes:
        key: Logical field name (e.g. "ramadanProgress")
        value: JSON text, always written as a whole value
    """

    __tablename__ = "state_entries"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<StateEntry(key={self.key}, size={len(self.value or '')})>"


__all__ = ["StateEntry"]
