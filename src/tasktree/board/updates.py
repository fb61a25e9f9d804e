"""Single-field update commands and payload parsing.

An update request carries exactly one changed field.  Instead of inspecting
"whichever key is present" at mutation time, payloads are parsed up front
into one of the command types below and dispatched on type by
:class:`~tasktree.board.hierarchy.HierarchyMutator`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Mapping, Union

from tasktree.board.enums import Complexity, PricingType, Priority


@dataclass(frozen=True)
class SetParent:
    parent_id: int | None
    field: ClassVar[str] = "parent_id"


@dataclass(frozen=True)
class SetPricingType:
    pricing_type: PricingType
    field: ClassVar[str] = "pricing_type"


@dataclass(frozen=True)
class SetFixedPrice:
    amount: int | None
    field: ClassVar[str] = "fixed_price"


@dataclass(frozen=True)
class SetGroup:
    group_id: int
    field: ClassVar[str] = "group_id"


@dataclass(frozen=True)
class ReplaceLabels:
    label_ids: tuple[int, ...]
    field: ClassVar[str] = "labels"


@dataclass(frozen=True)
class ReplaceSubscribers:
    user_ids: tuple[int, ...]
    field: ClassVar[str] = "subscribed_users"


@dataclass(frozen=True)
class SetField:
    field: str
    value: Any


FieldUpdate = Union[
    SetParent,
    SetPricingType,
    SetFixedPrice,
    SetGroup,
    ReplaceLabels,
    ReplaceSubscribers,
    SetField,
]


# Plain columns shared by tasks and subtasks.
_COMMON_COLUMNS = frozenset({
    "name",
    "description",
    "assigned_to_user_id",
    "due_on",
    "estimation",
    "priority",
    "complexity",
    "completed_at",
    "order_column",
})

TASK_FIELDS = _COMMON_COLUMNS | {
    "parent_id",
    "group_id",
    "pricing_type",
    "fixed_price",
    "hidden_from_clients",
    "billable",
    "labels",
    "subscribed_users",
}

SUBTASK_FIELDS = _COMMON_COLUMNS | {"parent_id"}


# ------------------------------------------------------------------
# Value coercion
# ------------------------------------------------------------------


def _optional_int(value: Any, name: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"'{name}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{name}' must be an integer, got {value!r}") from None


def to_minor_units(value: Any) -> int | None:
    """Coerce a price to an integer amount in the smallest currency unit."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"'fixed_price' must be numeric, got {value!r}")
    try:
        amount = int(float(value))
    except (TypeError, ValueError):
        raise ValueError(f"'fixed_price' must be numeric, got {value!r}") from None
    if amount < 0:
        raise ValueError(f"'fixed_price' must be >= 0, got {value!r}")
    return amount


def _id_list(value: Any, name: str) -> tuple[int, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"'{name}' must be a list of ids")
    ids = []
    for item in value:
        parsed = _optional_int(item, name)
        if parsed is None:
            raise ValueError(f"'{name}' must not contain empty ids")
        if parsed not in ids:
            ids.append(parsed)
    return tuple(ids)


def _enum_value(enum_cls, value: Any, name: str):
    if value is None:
        return None
    try:
        return enum_cls(value).value
    except ValueError:
        valid = sorted(member.value for member in enum_cls)
        raise ValueError(f"Invalid {name} {value!r}. Valid: {valid}") from None


def _coerce_column(name: str, value: Any) -> Any:
    if name == "name":
        if not isinstance(value, str) or not value.strip():
            raise ValueError("'name' must be a non-empty string")
        if len(value) > 255:
            raise ValueError("'name' must be at most 255 characters")
        return value
    if name == "priority":
        return _enum_value(Priority, value, "priority")
    if name == "complexity":
        return _enum_value(Complexity, value, "complexity")
    if name == "assigned_to_user_id":
        return _optional_int(value, name)
    if name == "order_column":
        order = _optional_int(value, name)
        if order is None or order < 0:
            raise ValueError("'order_column' must be a non-negative integer")
        return order
    if name == "estimation":
        if value is None or value == "":
            return None
        try:
            estimation = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"'estimation' must be numeric, got {value!r}") from None
        if estimation < 0:
            raise ValueError("'estimation' must be >= 0")
        return estimation
    if name in ("hidden_from_clients", "billable"):
        if not isinstance(value, bool):
            raise ValueError(f"'{name}' must be a boolean")
        return int(value)
    return value


# ------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------


def _single_item(payload: Mapping[str, Any]) -> tuple[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValueError("Update payload must be an object")
    if len(payload) != 1:
        raise ValueError(
            f"Expected exactly one field per update, got {sorted(payload)!r}"
        )
    return next(iter(payload.items()))


def parse_task_update(payload: Mapping[str, Any]) -> FieldUpdate:
    """Parse a one-key task payload such as ``{"group_id": 3}``.

    Raises
    ------
    ValueError
        If the payload does not hold exactly one known field, or the value
        cannot be coerced.
    """
    name, value = _single_item(payload)
    if name not in TASK_FIELDS:
        raise ValueError(f"Field '{name}' cannot be updated")

    if name == "parent_id":
        return SetParent(_optional_int(value, name))
    if name == "pricing_type":
        pricing = _enum_value(PricingType, value, "pricing_type")
        if pricing is None:
            raise ValueError("'pricing_type' is required")
        return SetPricingType(PricingType(pricing))
    if name == "fixed_price":
        return SetFixedPrice(to_minor_units(value))
    if name == "group_id":
        group_id = _optional_int(value, name)
        if group_id is None:
            raise ValueError("'group_id' is required")
        return SetGroup(group_id)
    if name == "labels":
        return ReplaceLabels(_id_list(value, name))
    if name == "subscribed_users":
        return ReplaceSubscribers(_id_list(value, name))
    return SetField(name, _coerce_column(name, value))


def parse_subtask_update(payload: Mapping[str, Any]) -> FieldUpdate:
    """Parse a one-key subtask payload; only subtask columns are accepted."""
    name, value = _single_item(payload)
    if name not in SUBTASK_FIELDS:
        raise ValueError(f"Field '{name}' cannot be updated on a subtask")
    if name == "parent_id":
        return SetParent(_optional_int(value, name))
    return SetField(name, _coerce_column(name, value))
