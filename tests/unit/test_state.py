"""Unit tests for campaign state and its field registry."""

import dataclasses
from datetime import date
from decimal import Decimal

import pytest

from kiosk.services.catalog import CATEGORY_IDS
from kiosk.services.state import (
    CampaignState,
    InvalidStateUpdate,
    build_fields,
    decode_update,
    encode_update,
    merge_by_field,
)


@pytest.fixture
def registry():
    return build_fields(bucket_count=30)


class TestCampaignState:
    def test_defaults(self):
        state = CampaignState.defaults(bucket_count=10)

        assert state.bucket_count == 10
        assert state.daily_target == Decimal("300")
        assert state.visible_categories == CATEGORY_IDS
        assert state.special_appeal_target == Decimal("15000")
        assert state.transactions == ()

    def test_is_immutable(self):
        state = CampaignState.defaults()

        with pytest.raises(dataclasses.FrozenInstanceError):
            state.daily_target = Decimal("1")


class TestMergeByField:
    def test_changed_fields_overwrite(self):
        state = CampaignState.defaults()

        merged = merge_by_field(state, {"daily_target": Decimal("250")})

        assert merged.daily_target == Decimal("250")
        assert merged.special_appeal_name == state.special_appeal_name
        assert state.daily_target == Decimal("300")

    def test_idempotent(self):
        state = CampaignState.defaults()
        changes = {"special_appeal_progress": Decimal("40")}

        once = merge_by_field(state, changes)

        assert merge_by_field(once, changes) == once

    def test_empty_changes_return_same_state(self):
        state = CampaignState.defaults()
        assert merge_by_field(state, {}) is state


class TestDecodeUpdate:
    def test_decodes_known_keys(self, registry):
        changes = decode_update(
            {"ramadanDailyTarget": 250, "ramadanStartDate": "2026-02-18"}, registry
        )

        assert changes == {
            "daily_target": Decimal("250"),
            "campaign_start_date": date(2026, 2, 18),
        }

    def test_ignores_unknown_keys(self, registry):
        assert decode_update({"somethingElse": 1}, registry) == {}

    def test_invalid_key_rejects_whole_message(self, registry):
        with pytest.raises(InvalidStateUpdate) as exc_info:
            decode_update({"ramadanDailyTarget": 250, "zakatFitrAmount": -1}, registry)

        assert set(exc_info.value.errors) == {"zakatFitrAmount"}

    def test_visible_tabs_alias(self, registry):
        changes = decode_update({"visibleTabs": ["zakat", "bogus", "zakat"]}, registry)

        assert changes == {"visible_categories": ("zakat",)}

    def test_wrapped_visibility_list(self, registry):
        changes = decode_update(
            {"visibleCategories": {"visibleTabs": ["daily-sadaqah"]}}, registry
        )

        assert changes == {"visible_categories": ("daily-sadaqah",)}

    def test_visibility_needs_a_known_category(self, registry):
        with pytest.raises(InvalidStateUpdate):
            decode_update({"visibleCategories": ["bogus"]}, registry)

    def test_progress_length_must_match_campaign(self, registry):
        with pytest.raises(InvalidStateUpdate):
            decode_update({"ramadanProgress": [0] * 29}, registry)

    def test_optional_fields_accept_null(self, registry):
        changes = decode_update({"sadaqahAmounts": None, "ramadanSponsorPeople": None}, registry)

        assert changes == {"sadaqah_amounts": None, "sponsor_people": None}

    def test_sadaqah_amounts_need_six_values(self, registry):
        with pytest.raises(InvalidStateUpdate):
            decode_update({"sadaqahAmounts": [5, 10, 20]}, registry)


class TestEncodeUpdate:
    def test_encodes_to_wire_keys(self, registry):
        message = encode_update(
            {
                "daily_target": Decimal("250"),
                "campaign_start_date": date(2026, 2, 18),
                "special_appeal_amounts": (Decimal(50), Decimal("75.5"), Decimal(100)),
            },
            registry,
        )

        assert message == {
            "ramadanDailyTarget": 250,
            "ramadanStartDate": "2026-02-18",
            "specialAppealAmounts": [50, 75.5, 100],
        }

    def test_unknown_attribute(self, registry):
        with pytest.raises(KeyError):
            encode_update({"nope": 1}, registry)

    def test_encoded_message_decodes_to_same_values(self, registry):
        state = CampaignState.defaults()
        values = {f.attr: getattr(state, f.attr) for f in registry.values()}

        decoded = decode_update(encode_update(values, registry), registry)

        assert merge_by_field(state, decoded) == state
