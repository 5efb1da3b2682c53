"""Keyed state stores with a best-effort broadcast topic.

A StateStore persists whole-value JSON text per key and lets instances
subscribe to a named topic. Posting on a subscription reaches every other
live subscription of the same topic; the poster never hears its own message.

Two implementations:
- InMemoryStateStore: shared by instances inside one process, immediate delivery
- SqlStateStore: SQLAlchemy tables shared by processes, delivery on poll()
"""

import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from kiosk.models import StateEntry, StateNotification

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], None]


class Subscription(ABC):
    """One instance's handle on a broadcast topic."""

    def __init__(self, topic: str, handler: MessageHandler):
        self.topic = topic
        self.token = uuid.uuid4().hex
        self._handler = handler
        self.closed = False
        # Set when messages may have been lost; the owner re-reads the store
        self.missed = False

    @abstractmethod
    def post(self, message: Dict[str, Any]) -> None:
        """Send a message to all other subscriptions (fire-and-forget)."""

    def poll(self) -> int:
        """Deliver pending messages to the handler.

        Returns:
            Number of messages delivered
        """
        return 0

    def close(self) -> None:
        self.closed = True

    def _dispatch(self, raw: str) -> bool:
        """Decode one payload and hand it to the handler.

        Undecodable payloads and handler failures are logged, never raised.
        """
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Dropping undecodable message on %s: %s", self.topic, e)
            return False
        try:
            self._handler(message)
        except Exception as e:
            logger.error("Handler failed for message on %s: %s", self.topic, e, exc_info=True)
            return False
        return True


class StateStore(ABC):
    """Persistence + notification backend for CampaignState."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Read JSON text for a key; None if absent or unreadable."""

    @abstractmethod
    def put(self, key: str, value: str) -> bool:
        """Write JSON text for a key.

        Returns:
            False if the write failed (logged, never raised)
        """

    @abstractmethod
    def subscribe(self, topic: str, handler: MessageHandler) -> Subscription:
        """Open a subscription on a topic."""


class _InMemorySubscription(Subscription):
    def __init__(self, store: "InMemoryStateStore", topic: str, handler: MessageHandler):
        super().__init__(topic, handler)
        self._store = store

    def post(self, message: Dict[str, Any]) -> None:
        if self.closed:
            logger.warning("Post on closed subscription to %s ignored", self.topic)
            return
        self._store.deliver(self.topic, json.dumps(message), sender=self.token)

    def close(self) -> None:
        super().close()
        self._store.unsubscribe(self)


class InMemoryStateStore(StateStore):
    """Process-local store; every instance sharing the object shares the state."""

    def __init__(self):
        self._entries: Dict[str, str] = {}
        self._subscriptions: Dict[str, List[_InMemorySubscription]] = defaultdict(list)

    def get(self, key: str) -> Optional[str]:
        return self._entries.get(key)

    def put(self, key: str, value: str) -> bool:
        self._entries[key] = value
        return True

    def keys(self) -> List[str]:
        return list(self._entries)

    def subscribe(self, topic: str, handler: MessageHandler) -> Subscription:
        subscription = _InMemorySubscription(self, topic, handler)
        self._subscriptions[topic].append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions.get(subscription.topic, [])
        if subscription in subscribers:
            subscribers.remove(subscription)

    def deliver(self, topic: str, raw: str, sender: Optional[str] = None) -> int:
        """Hand raw JSON text to every live subscriber except the sender."""
        delivered = 0
        for subscription in list(self._subscriptions.get(topic, [])):
            if subscription.token == sender or subscription.closed:
                continue
            if subscription._dispatch(raw):
                delivered += 1
        return delivered


class _SqlSubscription(Subscription):
    def __init__(self, store: "SqlStateStore", topic: str, handler: MessageHandler):
        super().__init__(topic, handler)
        self._store = store
        # Only messages posted after subscribing are delivered
        self._cursor = store.last_notification_id(topic)
        self._last_poll = time.monotonic()

    def post(self, message: Dict[str, Any]) -> None:
        if self.closed:
            logger.warning("Post on closed subscription to %s ignored", self.topic)
            return
        self._store.append_notification(self.topic, self.token, json.dumps(message))

    def poll(self) -> int:
        if self.closed:
            return 0
        now = time.monotonic()
        if now - self._last_poll > self._store.retention_seconds:
            # Rows newer than our cursor may already have been pruned
            self.missed = True
        self._last_poll = now

        delivered = 0
        for notification_id, sender, payload in self._store.notifications_after(
            self.topic, self._cursor
        ):
            self._cursor = notification_id
            if sender == self.token:
                continue
            if self._dispatch(payload):
                delivered += 1
        return delivered


class SqlStateStore(StateStore):
    """State store backed by the state_entries and state_notifications tables.

    Notification rows are kept for retention_seconds. A subscriber that goes
    longer than that between polls is flagged as having missed messages.
    """

    def __init__(self, session_factory: sessionmaker, retention_seconds: float = 300):
        """Initialize store.

        Args:
            session_factory: SQLAlchemy sessionmaker bound to the shared database
            retention_seconds: How long broadcast rows are kept before pruning
        """
        self._session_factory = session_factory
        self.retention_seconds = retention_seconds

    def _session(self) -> Session:
        return self._session_factory()

    def get(self, key: str) -> Optional[str]:
        try:
            with self._session() as session:
                entry = session.get(StateEntry, key)
                return entry.value if entry else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to read state key '{key}': {e}")
            return None

    def put(self, key: str, value: str) -> bool:
        try:
            with self._session() as session:
                entry = session.get(StateEntry, key)
                if entry is None:
                    session.add(StateEntry(key=key, value=value))
                else:
                    entry.value = value
                session.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist state key '{key}': {e}")
            return False

    def subscribe(self, topic: str, handler: MessageHandler) -> Subscription:
        return _SqlSubscription(self, topic, handler)

    def last_notification_id(self, topic: str) -> int:
        try:
            with self._session() as session:
                last_id = session.scalar(
                    select(func.max(StateNotification.id)).where(StateNotification.topic == topic)
                )
                return last_id or 0
        except SQLAlchemyError as e:
            logger.error(f"Failed to read notification cursor for '{topic}': {e}")
            return 0

    def append_notification(self, topic: str, sender: str, payload: str) -> None:
        """Append a broadcast row and prune rows past the retention window."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.retention_seconds)
        try:
            with self._session() as session:
                pruned = session.execute(
                    delete(StateNotification).where(
                        StateNotification.topic == topic,
                        StateNotification.created_at < cutoff,
                    )
                ).rowcount
                session.add(StateNotification(topic=topic, sender=sender, payload=payload))
                session.commit()
            if pruned:
                logger.debug(f"Pruned {pruned} notification(s) on '{topic}'")
        except SQLAlchemyError as e:
            logger.error(f"Failed to broadcast on '{topic}': {e}")

    def notification_count(self, topic: str) -> int:
        try:
            with self._session() as session:
                return session.scalar(
                    select(func.count(StateNotification.id)).where(StateNotification.topic == topic)
                ) or 0
        except SQLAlchemyError as e:
            logger.error(f"Failed to count notifications for '{topic}': {e}")
            return 0

    def notifications_after(self, topic: str, cursor: int) -> List[tuple]:
        try:
            with self._session() as session:
                rows = session.execute(
                    select(
                        StateNotification.id,
                        StateNotification.sender,
                        StateNotification.payload,
                    )
                    .where(StateNotification.topic == topic, StateNotification.id > cursor)
                    .order_by(StateNotification.id)
                ).all()
                return [tuple(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to read notifications for '{topic}': {e}")
            return []


__all__ = [
    "InMemoryStateStore",
    "MessageHandler",
    "SqlStateStore",
    "StateStore",
    "Subscription",
]
