"""State synchronization across independently running kiosk instances.

Each instance keeps its own CampaignState. Local changes are persisted per
field and posted on a broadcast topic; remote changes are merged field by
field, last write wins. Startup hydration from the store is the point where
instances converge even if they missed a broadcast.
"""

import json
import logging
import threading
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional

from kiosk.services.ledger import DEFAULT_BUCKET_COUNT
from kiosk.services.parsers import ParseResult, UsedDefault, parse_or_default, validate_or_default
from kiosk.services.state import (
    KEY_ALIASES,
    CampaignState,
    InvalidStateUpdate,
    MergeStrategy,
    build_fields,
    decode_update,
    encode_update,
    merge_by_field,
)
from kiosk.services.state_store import StateStore, Subscription

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "kiosk-config"

StateListener = Callable[[CampaignState, FrozenSet[str]], None]


class StateSynchronizer:
    """Keeps one instance's CampaignState in step with the shared store.

    Local and remote merges are serialized, so request handlers and the
    poller may call in from different threads.
    """

    def __init__(
        self,
        store: StateStore,
        topic: str = DEFAULT_TOPIC,
        bucket_count: int = DEFAULT_BUCKET_COUNT,
        merge: MergeStrategy = merge_by_field,
    ):
        """Initialize synchronizer.

        Args:
            store: Shared persistence + broadcast backend
            topic: Broadcast topic name
            bucket_count: Campaign length in buckets (days)
            merge: Merge strategy for local and remote updates
        """
        self._store = store
        self._topic = topic
        self._fields = build_fields(bucket_count)
        self._defaults = CampaignState.defaults(bucket_count)
        self._merge = merge
        self._state = self._defaults
        self._listeners: List[StateListener] = []
        self._subscription: Optional[Subscription] = None
        self._lock = threading.RLock()
        self._unsaved: set = set()

    @property
    def state(self) -> CampaignState:
        return self._state

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def unsaved_keys(self) -> FrozenSet[str]:
        """Keys whose last local write did not reach the store."""
        with self._lock:
            return frozenset(self._unsaved)

    def add_listener(self, listener: StateListener) -> None:
        """Call listener(state, changed_attrs) after every merge."""
        self._listeners.append(listener)

    def start(self) -> Dict[str, ParseResult]:
        """Hydrate from the store, then start listening on the topic."""
        report = self.hydrate()
        if self._subscription is None:
            self._subscription = self._store.subscribe(self._topic, self.on_remote_update)
        logger.info("State synchronizer listening on '%s'", self._topic)
        return report

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def poll(self) -> int:
        """Deliver pending remote updates (stores with polled delivery).

        If the subscription reports lost messages, the state is re-read
        from the store.
        """
        subscription = self._subscription
        if subscription is None:
            return 0
        delivered = subscription.poll()
        if subscription.missed:
            subscription.missed = False
            logger.warning("Broadcasts on '%s' may have been missed, re-reading store", self._topic)
            self.hydrate()
        return delivered

    def hydrate(self) -> Dict[str, ParseResult]:
        """Read every persisted field; missing or corrupt values use defaults.

        Returns:
            Parse result per store key (Ok or UsedDefault)
        """
        report: Dict[str, ParseResult] = {}
        changes: Dict[str, Any] = {}
        for key, state_field in self._fields.items():
            default = getattr(self._defaults, state_field.attr)
            result = parse_or_default(self._store.get(key), default, state_field.validator)
            if isinstance(result, UsedDefault) and result.reason != "absent":
                logger.warning("Persisted '%s' unusable, using default: %s", key, result.reason)
            report[key] = result
            changes[state_field.attr] = result.value
        with self._lock:
            self._apply(changes)
        logger.info(
            "Hydrated campaign state (%d of %d fields persisted)",
            sum(1 for result in report.values() if not isinstance(result, UsedDefault)),
            len(report),
        )
        return report

    def refresh(self, key: str) -> Any:
        """Re-read one field from the store before a read-modify-write.

        Returns:
            The field's current local value
        """
        state_field = self._fields[key]
        raw = self._store.get(key)
        with self._lock:
            current = getattr(self._state, state_field.attr)
            result = parse_or_default(raw, current, state_field.validator)
            if isinstance(result, UsedDefault):
                if result.reason != "absent":
                    logger.warning(
                        "Persisted '%s' unusable, keeping local value: %s", key, result.reason
                    )
                return current
            self._apply({state_field.attr: result.value})
            return result.value

    def encoded_state(self) -> Dict[str, Any]:
        """Whole local state as a wire-keyed JSON-ready object."""
        state = self._state
        values = {
            state_field.attr: getattr(state, state_field.attr)
            for state_field in self._fields.values()
        }
        return encode_update(values, self._fields)

    def has_persisted(self, key: str) -> bool:
        return self._store.get(KEY_ALIASES.get(key, key)) is not None

    def publish(self, update: Mapping[str, Any]) -> CampaignState:
        """Merge a partial update locally, persist the changed fields and broadcast.

        Args:
            update: Wire-keyed values (e.g. {"visibleCategories": ["zakat"]})

        Returns:
            Merged local state

        Raises:
            InvalidStateUpdate: If any recognised field is invalid (nothing applied)
        """
        changes = decode_update(update, self._fields)
        if not changes:
            return self._state

        with self._lock:
            self._apply(changes)
            state = self._state
            message = encode_update(changes, self._fields)
            for key, value in message.items():
                if self._store.put(key, json.dumps(value, ensure_ascii=False)):
                    self._unsaved.discard(key)
                else:
                    self._unsaved.add(key)
                    logger.warning("'%s' not saved; it stays local until the next write", key)

        # Posted outside the lock: in-process delivery enters other synchronizers
        if self._subscription is not None:
            self._subscription.post(message)
        logger.debug("Published %s", sorted(message))
        return state

    def on_remote_update(self, message: Any) -> bool:
        """Merge an update received from another instance.

        Malformed messages are logged and dropped as a whole. Applying the
        same message twice leaves the state unchanged.

        Returns:
            True if the message was applied
        """
        if not isinstance(message, dict):
            logger.warning("Dropping remote update with unexpected shape: %r", type(message).__name__)
            return False
        try:
            changes = decode_update(message, self._fields)
        except InvalidStateUpdate as e:
            logger.warning("Dropping malformed remote update: %s", e)
            return False
        if not changes:
            return False
        with self._lock:
            self._apply(changes)
        logger.debug("Applied remote update %s", sorted(changes))
        return True

    def apply_defaults(self, defaults: Mapping[str, Any]) -> List[str]:
        """Apply installation defaults to fields with no persisted value.

        Invalid default values are skipped individually. Nothing is persisted
        or broadcast: local state always takes precedence.

        Returns:
            Store keys that took the default
        """
        changes: Dict[str, Any] = {}
        applied: List[str] = []
        for raw_key, value in defaults.items():
            key = KEY_ALIASES.get(raw_key, raw_key)
            state_field = self._fields.get(key)
            if state_field is None or self.has_persisted(key):
                continue
            result = validate_or_default(value, None, state_field.validator)
            if isinstance(result, UsedDefault) or result.value is None:
                logger.warning("Ignoring invalid installation default for '%s'", key)
                continue
            changes[state_field.attr] = result.value
            applied.append(key)
        with self._lock:
            self._apply(changes)
        return applied

    def _apply(self, changes: Mapping[str, Any]) -> None:
        # Caller holds self._lock
        if not changes:
            return
        self._state = self._merge(self._state, changes)
        changed = frozenset(changes)
        for listener in self._listeners:
            listener(self._state, changed)


__all__ = ["DEFAULT_TOPIC", "StateListener", "StateSynchronizer"]
