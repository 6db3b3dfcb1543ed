from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

# Allocation levels; the same validator guards every one of them.
BINDING_ADVICE = "binding_advice"
JOB_CARD = "job_card"
BATCH_PRODUCT = "batch_product"
STAGE = "stage"
DISPATCH = "dispatch"

# Child allocations in these states still hold their parent's quantity.
HOLDING_STATUSES = ("active", "completed")


@dataclass(frozen=True)
class JobCardAllocation:
    job_card_id: str
    allocated_quantity: int
    status: str = "active"
    allocated_date: datetime | None = None


@dataclass(frozen=True)
class QuantityValidation:
    is_valid: bool
    message: str
    max_allowed: int
    requested: int
    level: str


@dataclass(frozen=True)
class QuantitySummary:
    level: str
    total_quantity: int
    allocated: int
    completed: int
    remaining: int
    percentage: int

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "total_quantity": self.total_quantity,
            "allocated": self.allocated,
            "completed": self.completed,
            "remaining": self.remaining,
            "percentage": self.percentage,
        }


def calculate_binding_advice_balance(total_quantity: int, allocations: Iterable[JobCardAllocation]) -> int:
    allocated = sum(a.allocated_quantity for a in allocations if a.status in HOLDING_STATUSES)
    return total_quantity - allocated


def calculate_job_card_balance(total_allocated: int, stage_allocations: Iterable) -> int:
    return total_allocated - sum(s.allocated_quantity for s in stage_allocations)


def calculate_stage_balance(allocated_quantity: int, completed_quantity: int) -> int:
    return allocated_quantity - completed_quantity


def validate_quantity_allocation(requested: int, available: int, level: str) -> QuantityValidation:
    """Gate for every allocation call-site.

    Nothing enforces the parent/child totals transactionally except callers running
    this before committing a new child allocation.
    """
    if requested <= 0:
        return QuantityValidation(False, "Quantity must be greater than 0", available, requested, level)
    if requested > available:
        return QuantityValidation(
            False,
            f"Requested quantity ({requested}) exceeds available balance ({available})",
            available,
            requested,
            level,
        )
    return QuantityValidation(True, "Quantity allocation is valid", available, requested, level)


def calculate_percentage(part: int, total: int) -> int:
    if total == 0:
        return 0
    # Halves round up: 1 of 8 is 13%.
    return int((Decimal(part) * 100 / Decimal(total)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def binding_advice_summary(total_quantity: int, allocations: Iterable[JobCardAllocation]) -> QuantitySummary:
    allocations = list(allocations)
    allocated = sum(a.allocated_quantity for a in allocations if a.status in HOLDING_STATUSES)
    completed = sum(a.allocated_quantity for a in allocations if a.status == "completed")
    return QuantitySummary(
        level=BINDING_ADVICE,
        total_quantity=total_quantity,
        allocated=allocated,
        completed=completed,
        remaining=total_quantity - allocated,
        percentage=calculate_percentage(allocated, total_quantity),
    )


def job_card_summary(total_allocated: int, stage_allocations: Iterable, finished_quantity: int = 0) -> QuantitySummary:
    """Job card totals.

    `completed` is the number of units that cleared the final stage; summing completed
    quantities across stages would count the same units once per stage.
    """
    stage_allocations = list(stage_allocations)
    allocated = sum(s.allocated_quantity for s in stage_allocations)
    return QuantitySummary(
        level=JOB_CARD,
        total_quantity=total_allocated,
        allocated=allocated,
        completed=finished_quantity,
        remaining=calculate_job_card_balance(total_allocated, stage_allocations),
        percentage=calculate_percentage(finished_quantity, total_allocated),
    )


def stage_summary(entry) -> QuantitySummary:
    return QuantitySummary(
        level=STAGE,
        total_quantity=entry.allocated_quantity,
        allocated=entry.allocated_quantity,
        completed=entry.completed_quantity,
        remaining=entry.remaining_quantity,
        percentage=calculate_percentage(entry.completed_quantity, entry.allocated_quantity),
    )
