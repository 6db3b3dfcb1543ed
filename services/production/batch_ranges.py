from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol

from services.production.ranges import BatchRange, format_range, is_well_formed, quantity_of, ranges_overlap


class RangedBatch(Protocol):
    batch_number: int
    range: BatchRange | None


@dataclass(frozen=True)
class BatchSlot:
    """Plain snapshot of a batch's claim on a job card's unit space."""

    batch_number: int
    range: BatchRange | None
    status: str = "active"

    @property
    def quantity(self) -> int:
        return quantity_of(self.range) if is_well_formed(self.range) else 0


@dataclass(frozen=True)
class RangeValidationResult:
    is_valid: bool
    error: str | None = None
    suggested_range: BatchRange | None = None


def _ranged(batches: Iterable[RangedBatch]) -> list[RangedBatch]:
    """Batches carrying a well-formed range, sorted by start.

    Batches with no range (or a malformed one) own no units and are ignored by every
    function in this module.
    """
    valid = [b for b in batches if is_well_formed(getattr(b, "range", None))]
    return sorted(valid, key=lambda b: b.range.start)


def validate_batch_range(new_range: BatchRange, existing_batches: Iterable[RangedBatch], total_quantity: int) -> RangeValidationResult:
    if new_range.start < 1:
        return RangeValidationResult(False, "Range 'from' must be at least 1")
    if new_range.end < new_range.start:
        return RangeValidationResult(False, "Range 'to' must be greater than or equal to 'from'")
    if new_range.end > total_quantity:
        return RangeValidationResult(
            False, f"Range 'to' ({new_range.end}) cannot exceed total quantity ({total_quantity})"
        )

    existing = _ranged(existing_batches)
    for batch in existing:
        if ranges_overlap(new_range, batch.range):
            suggestion = find_range_for_quantity(existing, total_quantity, quantity_of(new_range))
            return RangeValidationResult(
                False,
                f"Range {format_range(new_range)} overlaps with existing batch #{batch.batch_number} "
                f"({format_range(batch.range)})",
                suggestion,
            )
    return RangeValidationResult(True)


def find_range_gaps(batches: Iterable[RangedBatch], total_quantity: int) -> list[BatchRange]:
    ordered = _ranged(batches)
    if not ordered:
        return [BatchRange(1, total_quantity)] if total_quantity >= 1 else []

    gaps: list[BatchRange] = []
    if ordered[0].range.start > 1:
        gaps.append(BatchRange(1, ordered[0].range.start - 1))

    # covered_to is the furthest unit claimed so far, so a batch nested in an
    # earlier one never opens a false gap.
    covered_to = ordered[0].range.end
    for batch in ordered[1:]:
        if batch.range.start - covered_to > 1:
            gaps.append(BatchRange(covered_to + 1, batch.range.start - 1))
        covered_to = max(covered_to, batch.range.end)

    if covered_to < total_quantity:
        gaps.append(BatchRange(covered_to + 1, total_quantity))
    return [BatchRange(g.start, min(g.end, total_quantity)) for g in gaps if g.start <= total_quantity]


def get_next_available_range(
    batches: Iterable[RangedBatch], total_quantity: int, requested_quantity: int | None = None
) -> BatchRange | None:
    if requested_quantity is not None and requested_quantity <= 0:
        raise ValueError("Requested quantity must be greater than 0")
    for gap in find_range_gaps(batches, total_quantity):
        size = quantity_of(gap)
        take = size if requested_quantity is None else min(requested_quantity, size)
        if take == 0:
            continue
        return BatchRange(gap.start, gap.start + take - 1)
    return None


def find_range_for_quantity(batches: Iterable[RangedBatch], total_quantity: int, quantity: int) -> BatchRange | None:
    """First free gap that holds `quantity` contiguous units."""
    if quantity <= 0:
        return None
    for gap in find_range_gaps(batches, total_quantity):
        if quantity_of(gap) >= quantity:
            return BatchRange(gap.start, gap.start + quantity - 1)
    return None


def validate_complete_coverage(batches: Iterable[RangedBatch], total_quantity: int) -> RangeValidationResult:
    batches = list(batches)
    if not batches:
        return RangeValidationResult(False, "No batches assigned")

    unranged = [b for b in batches if not is_well_formed(getattr(b, "range", None))]
    if unranged:
        return RangeValidationResult(False, f"Batch #{unranged[0].batch_number} has no unit range assigned")

    ordered = _ranged(batches)
    first = ordered[0]
    if first.range.start != 1:
        return RangeValidationResult(
            False,
            f"Gap at start: batches should start at 1, but first batch starts at {first.range.start}",
            BatchRange(1, first.range.start - 1),
        )

    for current, nxt in zip(ordered, ordered[1:]):
        expected = current.range.end + 1
        if nxt.range.start > expected:
            return RangeValidationResult(
                False,
                f"Gap between batch #{current.batch_number} (ends at {current.range.end}) and "
                f"batch #{nxt.batch_number} (starts at {nxt.range.start})",
                BatchRange(expected, nxt.range.start - 1),
            )
        if nxt.range.start < expected:
            return RangeValidationResult(
                False,
                f"Overlap between batch #{current.batch_number} (ends at {current.range.end}) and "
                f"batch #{nxt.batch_number} (starts at {nxt.range.start})",
            )

    last = ordered[-1]
    if last.range.end != total_quantity:
        return RangeValidationResult(
            False,
            f"Gap at end: last batch ends at {last.range.end}, but total quantity is {total_quantity}",
            BatchRange(last.range.end + 1, total_quantity) if last.range.end < total_quantity else None,
        )
    return RangeValidationResult(True)


def calculate_assigned_quantity(batches: Iterable[RangedBatch]) -> int:
    return sum(quantity_of(b.range) for b in _ranged(batches))


def calculate_remaining_quantity(total_quantity: int, batches: Iterable[RangedBatch]) -> int:
    return total_quantity - calculate_assigned_quantity(batches)


def get_batch_statistics(batches: Iterable[BatchSlot]) -> dict:
    batches = list(batches)
    counts = {"active": 0, "completed": 0, "cancelled": 0}
    for b in batches:
        if b.status in counts:
            counts[b.status] += 1
    live = [b for b in batches if b.status != "cancelled"]
    total_qty = calculate_assigned_quantity(live)
    completed_qty = calculate_assigned_quantity(b for b in live if b.status == "completed")
    return {
        "total": len(batches),
        **counts,
        "total_quantity": total_qty,
        "completed_quantity": completed_qty,
        "remaining_quantity": total_qty - completed_qty,
        "completion_percentage": (completed_qty / total_qty * 100) if total_qty > 0 else 0,
    }
