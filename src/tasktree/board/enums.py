"""Value enumerations stored on tasks and subtasks."""

from __future__ import annotations

from enum import Enum


class PricingType(str, Enum):
    HOURLY = "hourly"
    FIXED = "fixed"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Complexity(str, Enum):
    TRIVIAL = "trivial"
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXTREME = "extreme"
