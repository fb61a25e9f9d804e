"""Tests for single-field payload parsing."""

from __future__ import annotations

import pytest

from tasktree.board.enums import PricingType
from tasktree.board.updates import (
    ReplaceLabels,
    ReplaceSubscribers,
    SetField,
    SetFixedPrice,
    SetGroup,
    SetParent,
    SetPricingType,
    parse_subtask_update,
    parse_task_update,
    to_minor_units,
)


def test_parent_id_parsed():
    assert parse_task_update({"parent_id": "7"}) == SetParent(7)
    assert parse_task_update({"parent_id": None}) == SetParent(None)


def test_pricing_type_parsed_to_enum():
    update = parse_task_update({"pricing_type": "hourly"})
    assert update == SetPricingType(PricingType.HOURLY)
    assert update.field == "pricing_type"


def test_pricing_type_invalid():
    with pytest.raises(ValueError, match="Invalid pricing_type"):
        parse_task_update({"pricing_type": "weekly"})


def test_pricing_type_required():
    with pytest.raises(ValueError, match="required"):
        parse_task_update({"pricing_type": None})


def test_fixed_price_coerced_to_int():
    assert parse_task_update({"fixed_price": "1250.7"}) == SetFixedPrice(1250)
    assert to_minor_units(None) is None
    with pytest.raises(ValueError):
        to_minor_units(True)
    with pytest.raises(ValueError):
        to_minor_units("abc")


def test_negative_price_rejected():
    assert to_minor_units(0) == 0
    with pytest.raises(ValueError, match=">= 0"):
        to_minor_units(-500)
    with pytest.raises(ValueError, match=">= 0"):
        parse_task_update({"fixed_price": "-12.5"})


def test_group_id_required():
    assert parse_task_update({"group_id": 3}) == SetGroup(3)
    with pytest.raises(ValueError):
        parse_task_update({"group_id": None})


def test_membership_lists_deduplicated():
    assert parse_task_update({"labels": [1, 2, 2]}) == ReplaceLabels((1, 2))
    assert parse_task_update({"subscribed_users": []}) == ReplaceSubscribers(())
    with pytest.raises(ValueError):
        parse_task_update({"labels": "1,2"})


def test_plain_columns():
    assert parse_task_update({"name": "Write docs"}) == SetField("name", "Write docs")
    assert parse_task_update({"priority": "high"}) == SetField("priority", "high")
    assert parse_task_update({"estimation": "1.5"}) == SetField("estimation", 1.5)
    assert parse_task_update({"billable": False}) == SetField("billable", 0)


@pytest.mark.parametrize("payload", [
    {"name": ""},
    {"name": "x" * 256},
    {"priority": "asap"},
    {"complexity": "impossible"},
    {"estimation": -1},
    {"order_column": -2},
    {"hidden_from_clients": "yes"},
])
def test_invalid_values_rejected(payload):
    with pytest.raises(ValueError):
        parse_task_update(payload)


def test_exactly_one_field_required():
    with pytest.raises(ValueError, match="exactly one field"):
        parse_task_update({})
    with pytest.raises(ValueError, match="exactly one field"):
        parse_task_update({"name": "a", "priority": "low"})


def test_unknown_field_rejected():
    with pytest.raises(ValueError, match="cannot be updated"):
        parse_task_update({"project_id": 2})


def test_subtask_fields_are_restricted():
    assert parse_subtask_update({"parent_id": 4}) == SetParent(4)
    assert parse_subtask_update({"completed_at": None}) == SetField("completed_at", None)
    with pytest.raises(ValueError, match="subtask"):
        parse_subtask_update({"group_id": 1})
    with pytest.raises(ValueError, match="subtask"):
        parse_subtask_update({"labels": [1]})
