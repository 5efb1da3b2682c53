"""Replicated campaign state and its per-field wire/store registry.

CampaignState is a value object: every change produces a new instance.
Each field is persisted under its own store key and travels in broadcast
messages under the same name, so a partial update is simply a JSON object
whose keys are a subset of the field names below.
"""

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional

from kiosk.services.catalog import CATEGORY_IDS
from kiosk.services.ledger import DEFAULT_BUCKET_COUNT, DEFAULT_CAPACITY
from kiosk.services.parsers import (
    iso_date,
    non_negative_number,
    number_list,
    positive_int,
    positive_number,
    string_list,
    string_value,
    to_json_number,
)
from kiosk.services.transaction_log import ContributionRecord, records_from_json

logger = logging.getLogger(__name__)


class InvalidStateUpdate(ValueError):
    """A partial update contains a recognised field with an invalid value."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        detail = "; ".join(f"{key}: {reason}" for key, reason in sorted(errors.items()))
        super().__init__(f"Invalid state update ({detail})")


@dataclass(frozen=True)
class CampaignState:
    """Configuration, ledger totals and progress shared by all instances."""

    visible_categories: tuple[str, ...] = CATEGORY_IDS
    campaign_start_date: date = field(default_factory=date.today)
    daily_target: Decimal = DEFAULT_CAPACITY
    ramadan_progress: tuple[Decimal, ...] = tuple(Decimal(0) for _ in range(DEFAULT_BUCKET_COUNT))
    sponsor_people: Optional[int] = None
    sponsor_items: tuple[str, ...] = ()
    sadaqah_amounts: Optional[tuple[Decimal, ...]] = None
    sadaqah_quote_arabic: str = ""
    sadaqah_quote_translation: str = (
        "The example of those who spend their wealth in the way of Allah is like a "
        "seed which grows seven ears; in every ear is a hundred grains."
    )
    sadaqah_quote_ref: str = "Quran 2:261"
    zakat_quote_arabic: str = "خُذْ مِنْ أَمْوَالِهِمْ صَدَقَةً تُطَهِّرُهُمْ وَتُزَكِّيهِمْ بِهَا"
    zakat_quote_translation: str = (
        "Take from their wealth a charity by which you purify them and cause them to grow."
    )
    zakat_quote_ref: str = "Quran 9:103"
    zakat_fitr_amount: Decimal = Decimal("5")
    zakat_fitr_quote_arabic: str = (
        "طُهْرَةٌ لِلصَّائِمِ مِنَ اللَّغْوِ وَالرَّفَثِ، وَطُعْمَةٌ لِلْمَسَاكِينِ"
    )
    zakat_fitr_quote_translation: str = (
        "A purification for the fasting person from idle talk and obscenity, "
        "and a meal for the poor."
    )
    zakat_fitr_quote_ref: str = "Sunan Abi Dawud"
    special_appeal_name: str = "Special Appeal"
    special_appeal_target: Decimal = Decimal("15000")
    special_appeal_amounts: tuple[Decimal, ...] = (Decimal(50), Decimal(100), Decimal(250))
    special_appeal_progress: Decimal = Decimal(0)
    transactions: tuple[ContributionRecord, ...] = ()

    @classmethod
    def defaults(cls, bucket_count: int = DEFAULT_BUCKET_COUNT) -> "CampaignState":
        """Built-in defaults for a campaign of bucket_count days."""
        return cls(ramadan_progress=tuple(Decimal(0) for _ in range(bucket_count)))

    @property
    def bucket_count(self) -> int:
        return len(self.ramadan_progress)


MergeStrategy = Callable[[CampaignState, Mapping[str, Any]], CampaignState]


def merge_by_field(state: CampaignState, changes: Mapping[str, Any]) -> CampaignState:
    """Last-write-wins per field: each changed field overwrites the current one.

    Args:
        state: Current local state
        changes: Validated values keyed by CampaignState attribute name

    Returns:
        New CampaignState (state itself is never modified)
    """
    if not changes:
        return state
    return replace(state, **changes)


def _visible_categories(value: Any) -> tuple[str, ...]:
    # Older admin consoles wrap the list: {"visibleTabs": [...]}
    if isinstance(value, dict):
        value = value.get("visibleTabs")
    if not isinstance(value, list):
        raise ValueError(f"not a list: {value!r}")
    known = [item for item in value if item in CATEGORY_IDS]
    if not known:
        raise ValueError("no known categories in visibility list")
    return tuple(dict.fromkeys(known))


def _optional(validator: Callable[[Any], Any]) -> Callable[[Any], Any]:
    def validate(value: Any) -> Any:
        return None if value is None else validator(value)

    return validate


def _tuple_of_strings(value: Any) -> tuple[str, ...]:
    return tuple(string_list(value))


def _encode_identity(value: Any) -> Any:
    return value


def _encode_number(value: Decimal) -> Any:
    return to_json_number(value)


def _encode_numbers(value: Optional[tuple]) -> Any:
    if value is None:
        return None
    return [to_json_number(item) for item in value]


def _encode_strings(value: tuple) -> list:
    return list(value)


def _encode_date(value: date) -> str:
    return value.isoformat()


def _encode_records(value: tuple) -> list:
    return [record.to_dict() for record in value]


@dataclass(frozen=True)
class StateField:
    """One logical field: attribute name, store/wire key, validation, encoding."""

    attr: str
    key: str
    validator: Callable[[Any], Any]
    encode: Callable[[Any], Any] = _encode_identity


def build_fields(bucket_count: int = DEFAULT_BUCKET_COUNT) -> Dict[str, StateField]:
    """Field registry keyed by store/wire key."""
    registry = [
        StateField("visible_categories", "visibleCategories", _visible_categories, _encode_strings),
        StateField("campaign_start_date", "ramadanStartDate", iso_date, _encode_date),
        StateField("daily_target", "ramadanDailyTarget", positive_number, _encode_number),
        StateField(
            "ramadan_progress",
            "ramadanProgress",
            number_list(bucket_count, non_negative_number),
            _encode_numbers,
        ),
        StateField("sponsor_people", "ramadanSponsorPeople", _optional(positive_int)),
        StateField("sponsor_items", "ramadanSponsorItems", _tuple_of_strings, _encode_strings),
        StateField(
            "sadaqah_amounts",
            "sadaqahAmounts",
            _optional(number_list(6, positive_number)),
            _encode_numbers,
        ),
        StateField("sadaqah_quote_arabic", "sadaqahQuoteArabic", string_value),
        StateField("sadaqah_quote_translation", "sadaqahQuoteTranslation", string_value),
        StateField("sadaqah_quote_ref", "sadaqahQuoteRef", string_value),
        StateField("zakat_quote_arabic", "zakatQuoteArabic", string_value),
        StateField("zakat_quote_translation", "zakatQuoteTranslation", string_value),
        StateField("zakat_quote_ref", "zakatQuoteRef", string_value),
        StateField("zakat_fitr_amount", "zakatFitrAmount", positive_number, _encode_number),
        StateField("zakat_fitr_quote_arabic", "zakatFitrQuoteArabic", string_value),
        StateField("zakat_fitr_quote_translation", "zakatFitrQuoteTranslation", string_value),
        StateField("zakat_fitr_quote_ref", "zakatFitrQuoteRef", string_value),
        StateField("special_appeal_name", "specialAppealName", string_value),
        StateField("special_appeal_target", "specialAppealTarget", positive_number, _encode_number),
        StateField(
            "special_appeal_amounts",
            "specialAppealAmounts",
            number_list(3, positive_number),
            _encode_numbers,
        ),
        StateField(
            "special_appeal_progress",
            "specialAppealProgress",
            non_negative_number,
            _encode_number,
        ),
        StateField("transactions", "kioskTransactions", records_from_json, _encode_records),
    ]
    return {state_field.key: state_field for state_field in registry}


# Message keys written by older admin consoles
KEY_ALIASES = {"visibleTabs": "visibleCategories"}

_ATTRS = {f.name for f in fields(CampaignState)}


def decode_update(message: Mapping[str, Any], registry: Dict[str, StateField]) -> Dict[str, Any]:
    """Validate a partial update as a whole.

    Unknown keys are ignored. If any recognised key is invalid nothing is
    returned, so the caller can never apply half a message.

    Args:
        message: Wire-keyed values (decoded JSON or typed values)
        registry: Field registry from build_fields()

    Returns:
        Validated values keyed by CampaignState attribute name

    Raises:
        InvalidStateUpdate: If a recognised field fails validation
    """
    changes: Dict[str, Any] = {}
    errors: Dict[str, str] = {}
    for raw_key, value in message.items():
        key = KEY_ALIASES.get(raw_key, raw_key)
        state_field = registry.get(key)
        if state_field is None:
            logger.debug("Ignoring unknown state key %r", raw_key)
            continue
        try:
            changes[state_field.attr] = state_field.validator(value)
        except (TypeError, ValueError, ArithmeticError) as e:
            errors[key] = str(e)
    if errors:
        raise InvalidStateUpdate(errors)
    return changes


def encode_update(changes: Mapping[str, Any], registry: Dict[str, StateField]) -> Dict[str, Any]:
    """Turn attribute-keyed values into a JSON-ready wire message."""
    by_attr = {state_field.attr: state_field for state_field in registry.values()}
    message = {}
    for attr, value in changes.items():
        if attr not in _ATTRS:
            raise KeyError(f"Unknown CampaignState field: {attr}")
        state_field = by_attr[attr]
        message[state_field.key] = state_field.encode(value)
    return message


__all__ = [
    "CampaignState",
    "InvalidStateUpdate",
    "MergeStrategy",
    "StateField",
    "build_fields",
    "decode_update",
    "encode_update",
    "merge_by_field",
]
