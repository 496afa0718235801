"""Tests for whitelist screening and weight normalization."""

import pytest

from suivote.models import WhitelistEntry
from suivote.tokens import from_fixed_point, to_fixed_point
from suivote.weights import normalize, screen_whitelist, weight_deviation, weight_total

ADDR_A = "0x" + "aa" * 32
ADDR_B = "0x" + "bb" * 32
ADDR_C = "0x" + "cc" * 32


def test_weights_are_percent_fractions():
    entries = [WhitelistEntry(address=ADDR_A, weight_percent=50), WhitelistEntry(address=ADDR_B, weight_percent=25)]

    result = normalize(entries, weighting_enabled=True)
    assert result.weights == [0.5, 0.25]
    assert result.warnings == []


def test_missing_weight_defaults_to_one_with_warning():
    entries = [WhitelistEntry(address=ADDR_A, weight_percent=40), WhitelistEntry(address=ADDR_B)]

    result = normalize(entries, weighting_enabled=True)
    assert result.weights == [0.4, 1]
    assert len(result.warnings) == 1
    assert result.warnings[0].position == 1
    assert result.warnings[0].address == ADDR_B


def test_weighting_disabled_yields_no_weights():
    entries = [WhitelistEntry(address=ADDR_A, weight_percent=40)]
    assert normalize(entries, weighting_enabled=False).weights == []


def test_empty_whitelist():
    assert normalize([], weighting_enabled=True).weights == []


def test_totals_are_not_rescaled():
    entries = [WhitelistEntry(address=ADDR_A, weight_percent=30), WhitelistEntry(address=ADDR_B, weight_percent=30)]

    assert normalize(entries, True).weights == [0.3, 0.3]
    assert weight_total(entries) == 60
    assert weight_deviation(entries) == -40


def test_screen_rejects_out_of_range_and_malformed_rows():
    screen = screen_whitelist(
        [
            {"address": ADDR_A, "weight_percent": 150},
            "not-an-address",
            {"address": ADDR_B, "weight_percent": "20"},
            ADDR_C,
        ]
    )

    assert [e.address for e in screen.accepted] == [ADDR_B, ADDR_C]
    assert screen.accepted[0].weight_percent == 20
    assert [r.position for r in screen.rejected] == [0, 1]
    assert screen.rejected[1].address == "not-an-address"


def test_screen_rejects_duplicates_case_insensitively():
    screen = screen_whitelist([ADDR_A, ADDR_A.upper().replace("0X", "0x")])
    assert len(screen.accepted) == 1
    assert screen.rejected[0].reason == "duplicate address"


def test_screen_blank_weight_becomes_missing():
    screen = screen_whitelist([{"address": ADDR_A, "weight_percent": " "}])
    assert screen.accepted[0].weight_percent is None


def test_entry_rejects_zero_weight():
    with pytest.raises(ValueError):
        WhitelistEntry(address=ADDR_A, weight_percent=0)


def test_fixed_point_conversion():
    assert to_fixed_point("1.5", 9) == 1_500_000_000
    assert to_fixed_point(0.1, 9) == 100_000_000
    assert to_fixed_point("0.1234567891", 9) == 123_456_789
    assert to_fixed_point("", 6) == 0
    assert from_fixed_point(1_500_000_000, 9) == "1.5"
    assert from_fixed_point(0, 9) == "0"
    assert from_fixed_point(2_000_000, 6) == "2"


def test_fixed_point_rejects_bad_amounts():
    with pytest.raises(ValueError):
        to_fixed_point("-1", 9)
    with pytest.raises(ValueError):
        to_fixed_point("abc", 9)
