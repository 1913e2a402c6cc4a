"""Tests for the regex dispatch parser and the shared call-type rules."""

import pytest

from dispatch_worker.services.dispatch_parser import (
    DEFAULT_RESOLUTION_MINUTES,
    address_variants,
    apply_call_type_policy,
    classify,
    extract_channels,
    extract_units,
    is_channel_name,
    parse_dispatch_call,
    quick_estimate_resolution,
    strip_instruction_words,
    strip_unit_dashes,
)

SECOND_ALARM = (
    "Second alarm, engine 33, fire standby. "
    "Response on FD-201, Engine 3, Truck 3, Engine 14"
)


# ── Scenarios ──

class TestScenarios:
    def test_second_alarm_units_across_transcript(self):
        parsed = parse_dispatch_call(SECOND_ALARM)

        assert set(parsed.units) == {"Engine 33", "Engine 3", "Truck 3", "Engine 14"}
        assert len(parsed.units) == 4
        assert parsed.call_type == "Second Alarm"
        assert parsed.classification == "fire"

    def test_special_response_unit_and_call_type(self):
        parsed = parse_dispatch_call("SR-20 fall at 123 Main St")

        assert parsed.units == ["SR20"]
        assert parsed.call_type == "Fall"
        assert parsed.address == "123 Main St"
        assert parsed.classification == "medical"

    def test_priority_code_merged_with_incident_phrase(self):
        parsed = parse_dispatch_call("Sick person, code 1, in AFD box 801")

        assert parsed.call_type == "Sick Person Code 1"
        assert parsed.units == []
        assert parsed.classification == "medical"

    def test_never_raises_on_empty_input(self):
        parsed = parse_dispatch_call("")

        assert parsed.call_type is None
        assert parsed.units == []
        assert parsed.address is None
        assert parsed.address_variants == []
        assert parsed.classification == "unknown"
        assert parsed.estimated_resolution_minutes == DEFAULT_RESOLUTION_MINUTES


# ── Units and channels ──

class TestUnits:
    def test_units_in_spoken_order(self):
        assert extract_units("Medic 5, Engine 2, Ladder 7") == ["Medic 5", "Engine 2", "Ladder 7"]

    def test_duplicates_removed(self):
        assert extract_units("Engine 2, Engine 2, Engine 2") == ["Engine 2"]

    def test_box_and_esd_numbers_are_not_units(self):
        assert extract_units("Alarm in AFD box 1801 ESD 4, Engine 9") == ["Engine 9"]

    def test_channel_numbers_are_not_units(self):
        assert extract_units("Engine 9 respond on F-TAC 201") == ["Engine 9"]

    def test_strip_unit_dashes(self):
        assert strip_unit_dashes("Engine 14-01") == "Engine 1401"
        assert strip_unit_dashes("SR-20") == "SR20"
        assert strip_unit_dashes("Medic 5") == "Medic 5"

    def test_channel_names(self):
        assert is_channel_name("F-Pack 203")
        assert is_channel_name("F-TAC-201")
        assert not is_channel_name("Engine 3")

    def test_extract_channels(self):
        text = "Respond on F-TAC 201, Firecom north, Medcom 2"
        assert extract_channels(text) == ["F-TAC-201", "Firecom North", "Medcom 2"]


# ── Call type policy ──

class TestCallTypePolicy:
    def test_alarm_level_overrides_extracted_type(self):
        assert apply_call_type_policy("Structure Fire", "Third alarm at 100 Oak St") == "Third Alarm"

    def test_bare_code_joined_with_preceding_phrase(self):
        transcript = "Lift assist, code 1, in AFD box 801"
        assert apply_call_type_policy("Code 1", transcript) == "Lift Assist Code 1"

    def test_bare_code_without_phrase_dropped(self):
        assert apply_call_type_policy("Code 2", "Code 2") is None

    def test_instruction_words_stripped(self):
        assert apply_call_type_policy("Assault Check", "assault check") == "Assault"
        assert strip_instruction_words("Fire Standby") == "Fire"

    def test_blank_is_none(self):
        assert apply_call_type_policy("   ", "nothing") is None
        assert apply_call_type_policy(None, "nothing") is None


# ── Classification and estimates ──

class TestClassification:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Chest Pain", "medical"),
            ("Lift Assist", "medical"),
            ("Structure Fire", "fire"),
            ("Gas Leak", "fire"),
            ("Public Service", "unknown"),
        ],
    )
    def test_classify(self, text, expected):
        assert classify(text) == expected


class TestQuickEstimate:
    @pytest.mark.parametrize(
        "text, minutes",
        [
            ("Second Alarm", 180),
            ("Box Alarm", 90),
            ("Structure Fire", 45),
            ("Lift Assist", 20),
            ("Fire Alarm", 15),
            ("", DEFAULT_RESOLUTION_MINUTES),
            ("something else", DEFAULT_RESOLUTION_MINUTES),
        ],
    )
    def test_estimate(self, text, minutes):
        assert quick_estimate_resolution(text) == minutes


# ── Address variants ──

class TestAddressVariants:
    def test_abbreviation_and_expansion(self):
        variants = address_variants("1200 North Lamar Boulevard")

        assert variants[0] == "1200 North Lamar Boulevard"
        assert "1200 North Lamar Blvd" in variants
        assert "1200 N Lamar Blvd" in variants
        assert "1200 North Lamar Boulevard, Austin, TX" in variants
        assert "1200 North Lamar Boulevard, Travis County, TX" in variants
        assert len(variants) == len(set(variants))

    def test_range_first_number(self):
        variants = address_variants("2200-2400 Main St")

        assert "2200 Main St" in variants
        assert "2200 Main Street" in variants

    def test_no_address(self):
        assert address_variants(None) == []
