"""Broadcast notification ORM model (topic outbox shared by instances)."""

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from kiosk.models import Base, BaseModel


class StateNotification(Base, BaseModel):
    """A partial CampaignState update posted on a named topic.

    Rows are appended by the posting instance and read by every other
    subscriber of the same topic in id order. Delivery is best-effort:
    a subscriber only sees rows written after it subscribed.
    """

    __tablename__ = "state_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    topic: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Broadcast topic name",
    )
    sender: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Subscription token of the posting instance",
    )
    payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="JSON object with the updated fields",
    )

    __table_args__ = (Index("idx_notification_topic_id", "topic", "id"),)

    def __repr__(self) -> str:
        return (
            f"<StateNotification(id={self.id}, topic={self.topic}, "
            f"sender={self.sender})>"
        )


__all__ = ["StateNotification"]
