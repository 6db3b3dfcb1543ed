from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Mapping

from services.production.quantities import calculate_percentage

PENDING = "pending"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"

# product_id of the single line carried by entities without a product breakdown
UNSPLIT = None


@dataclass(frozen=True)
class ProductionStage:
    key: str
    label: str
    description: str = ""


DEFAULT_PRODUCTION_STAGES: tuple[ProductionStage, ...] = (
    ProductionStage("designing", "Design", "Design and planning phase"),
    ProductionStage("procurement", "Procurement", "Material procurement and preparation"),
    ProductionStage("printing", "Printing", "Printing process"),
    ProductionStage("cutting", "Cutting & Binding", "Cutting and folding operations"),
    ProductionStage("binding", "Gathering & Binding", "Gathering and binding process"),
    ProductionStage("quality_check", "Quality", "Quality inspection and testing"),
    ProductionStage("packing", "Packing", "Final packing and labeling"),
)


class StageProgressError(ValueError):
    pass


@dataclass(frozen=True)
class ProductLine:
    product_id: str | None
    allocated_quantity: int = 0
    completed_quantity: int = 0
    rejected_quantity: int = 0

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "allocated_quantity": self.allocated_quantity,
            "completed_quantity": self.completed_quantity,
            "rejected_quantity": self.rejected_quantity,
        }


@dataclass(frozen=True)
class StageProgressEntry:
    """Progress of one stage for one batch or job card.

    Quantities are always derived from the product lines; the aggregate is never
    stored on its own, so it cannot drift from its components.
    """

    stage_key: str
    stage_name: str
    status: str = PENDING
    lines: tuple[ProductLine, ...] = ()
    start_date: datetime | None = None
    completed_date: datetime | None = None

    @property
    def allocated_quantity(self) -> int:
        return sum(l.allocated_quantity for l in self.lines)

    @property
    def completed_quantity(self) -> int:
        return sum(l.completed_quantity for l in self.lines)

    @property
    def rejected_quantity(self) -> int:
        return sum(l.rejected_quantity for l in self.lines)

    @property
    def remaining_quantity(self) -> int:
        return self.allocated_quantity - self.completed_quantity - self.rejected_quantity

    @property
    def can_move_next(self) -> bool:
        allocated = self.allocated_quantity
        return allocated > 0 and self.completed_quantity + self.rejected_quantity == allocated

    @property
    def is_split(self) -> bool:
        return any(l.product_id is not UNSPLIT for l in self.lines)

    def to_dict(self) -> dict:
        data = {
            "allocated_quantity": self.allocated_quantity,
            "completed_quantity": self.completed_quantity,
            "rejected_quantity": self.rejected_quantity,
            "remaining_quantity": self.remaining_quantity,
            "status": self.status,
            "can_move_next": self.can_move_next,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "completed_date": self.completed_date.isoformat() if self.completed_date else None,
        }
        if self.is_split:
            data["products"] = [l.to_dict() for l in self.lines]
        return data

    @classmethod
    def from_dict(cls, stage: ProductionStage, data: Mapping) -> "StageProgressEntry":
        if data.get("products"):
            lines = tuple(
                ProductLine(
                    product_id=p["product_id"],
                    allocated_quantity=int(p.get("allocated_quantity") or 0),
                    completed_quantity=int(p.get("completed_quantity") or 0),
                    rejected_quantity=int(p.get("rejected_quantity") or 0),
                )
                for p in data["products"]
            )
        else:
            lines = (
                ProductLine(
                    UNSPLIT,
                    allocated_quantity=int(data.get("allocated_quantity") or 0),
                    completed_quantity=int(data.get("completed_quantity") or 0),
                    rejected_quantity=int(data.get("rejected_quantity") or 0),
                ),
            )
        return cls(
            stage_key=stage.key,
            stage_name=stage.label,
            status=data.get("status") or PENDING,
            lines=lines,
            start_date=_parse_dt(data.get("start_date")),
            completed_date=_parse_dt(data.get("completed_date")),
        )


@dataclass(frozen=True)
class StageTrack:
    """Ordered stage entries plus the index of the stage currently being worked."""

    entries: tuple[StageProgressEntry, ...]
    current_index: int = 0

    @property
    def current(self) -> StageProgressEntry:
        return self.entries[self.current_index]

    @property
    def current_stage_key(self) -> str:
        return self.current.stage_key

    @property
    def is_last(self) -> bool:
        return self.current_index == len(self.entries) - 1

    @property
    def is_complete(self) -> bool:
        return all(e.status == COMPLETED for e in self.entries)

    @property
    def finished_quantity(self) -> int:
        """Units that cleared the final stage; 0 until every stage is completed."""
        if not self.is_complete:
            return 0
        return self.entries[-1].completed_quantity

    def finished_by_product(self) -> dict:
        if not self.is_complete:
            return {}
        return {l.product_id: l.completed_quantity for l in self.entries[-1].lines}

    @property
    def completed_stage_count(self) -> int:
        return sum(1 for e in self.entries if e.status == COMPLETED)

    @property
    def progress(self) -> int:
        return calculate_percentage(self.completed_stage_count, len(self.entries))

    def to_progress_map(self) -> dict:
        return {e.stage_key: e.to_dict() for e in self.entries}

    def to_allocation_list(self) -> list[dict]:
        return [{"stage_key": e.stage_key, "stage_name": e.stage_name, **e.to_dict()} for e in self.entries]

    @classmethod
    def from_progress_map(
        cls, data: Mapping, current_index: int, stages: Iterable[ProductionStage] = DEFAULT_PRODUCTION_STAGES
    ) -> "StageTrack":
        stages = tuple(stages)
        _check_keys(data.keys(), stages)
        return cls(tuple(StageProgressEntry.from_dict(s, data[s.key]) for s in stages), current_index)

    @classmethod
    def from_allocation_list(
        cls, data: Iterable[Mapping], current_index: int, stages: Iterable[ProductionStage] = DEFAULT_PRODUCTION_STAGES
    ) -> "StageTrack":
        by_key = {row["stage_key"]: row for row in data}
        return cls.from_progress_map(by_key, current_index, stages)


def _check_keys(keys: Iterable[str], stages: tuple[ProductionStage, ...]) -> None:
    known = {s.key for s in stages}
    for key in keys:
        if key not in known:
            raise KeyError(f"Unknown production stage: {key}")
    for s in stages:
        if s.key not in keys:
            raise KeyError(f"Missing production stage: {s.key}")


def _parse_dt(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def start_tracking(
    total_quantity: int,
    products: Mapping[str, int] | None = None,
    *,
    stages: Iterable[ProductionStage] = DEFAULT_PRODUCTION_STAGES,
    now: datetime | None = None,
) -> StageTrack:
    """Fresh track: the first stage holds the whole quantity, the rest wait at zero."""
    stages = tuple(stages)
    if not stages:
        raise ValueError("A production pipeline needs at least one stage")
    now = now or datetime.utcnow()
    if products:
        if sum(products.values()) != total_quantity:
            raise StageProgressError("Product quantities must sum to the total quantity")
        first_lines = tuple(ProductLine(pid, allocated_quantity=qty) for pid, qty in products.items())
    else:
        first_lines = (ProductLine(UNSPLIT, allocated_quantity=total_quantity),)
    idle_lines = tuple(ProductLine(l.product_id) for l in first_lines)

    entries = []
    for index, stage in enumerate(stages):
        if index == 0:
            entries.append(StageProgressEntry(stage.key, stage.label, IN_PROGRESS, first_lines, start_date=now))
        else:
            entries.append(StageProgressEntry(stage.key, stage.label, PENDING, idle_lines))
    return StageTrack(tuple(entries), 0)


def _per_line(entry: StageProgressEntry, value, what: str) -> dict:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        known = {l.product_id for l in entry.lines}
        for pid in value:
            if pid not in known:
                raise StageProgressError(f"Product {pid} is not part of this {entry.stage_name} stage")
        return {pid: int(q) for pid, q in value.items()}
    if entry.is_split:
        raise StageProgressError(f"{what.capitalize()} quantity must be given per product")
    return {UNSPLIT: int(value)}


def record_completion(track: StageTrack, completed=None, rejected=None, *, now: datetime | None = None) -> StageTrack:
    """Set the completed (and rejected) quantity of the current stage.

    `completed`/`rejected` are absolute quantities: an int for entities without a
    product breakdown, otherwise a mapping of product id to quantity. Products not
    named keep their previous figures.
    """
    entry = track.current
    if entry.status == COMPLETED:
        raise StageProgressError(f"Stage '{entry.stage_name}' is already completed")
    if entry.status != IN_PROGRESS:
        raise StageProgressError(f"Stage '{entry.stage_name}' has not started")

    done_by = _per_line(entry, completed, "completed")
    scrap_by = _per_line(entry, rejected, "rejected")

    lines = []
    for line in entry.lines:
        done = done_by.get(line.product_id, line.completed_quantity)
        scrap = scrap_by.get(line.product_id, line.rejected_quantity)
        label = f"product {line.product_id}" if line.product_id is not UNSPLIT else entry.stage_name
        if done < 0 or scrap < 0:
            raise StageProgressError(f"Quantities for {label} cannot be negative")
        if done + scrap > line.allocated_quantity:
            raise StageProgressError(
                f"Completed ({done}) plus rejected ({scrap}) for {label} exceeds allocated quantity "
                f"({line.allocated_quantity})"
            )
        lines.append(replace(line, completed_quantity=done, rejected_quantity=scrap))

    updated = replace(entry, lines=tuple(lines))
    if updated.can_move_next:
        updated = replace(updated, status=COMPLETED, completed_date=now or datetime.utcnow())
    return _with_entry(track, track.current_index, updated)


def can_move_next(track: StageTrack) -> bool:
    return track.current.can_move_next and not track.is_last


def advance(track: StageTrack, *, now: datetime | None = None) -> StageTrack:
    """Move to the next stage, handing the completed units forward.

    The next stage is allocated what the current stage completed, product by
    product; rejected units stop here.
    """
    entry = track.current
    if not entry.can_move_next:
        raise StageProgressError(
            f"Cannot move to next stage. Current stage must be 100% complete. "
            f"Completed: {entry.completed_quantity + entry.rejected_quantity}/{entry.allocated_quantity}"
        )
    if track.is_last:
        raise StageProgressError(f"'{entry.stage_name}' is the final stage")
    if entry.completed_quantity == 0:
        raise StageProgressError(f"No completed units to hand off from '{entry.stage_name}'")

    nxt = track.entries[track.current_index + 1]
    lines = tuple(ProductLine(l.product_id, allocated_quantity=l.completed_quantity) for l in entry.lines)
    nxt = replace(nxt, status=IN_PROGRESS, lines=lines, start_date=now or datetime.utcnow(), completed_date=None)
    moved = _with_entry(track, track.current_index + 1, nxt)
    return replace(moved, current_index=track.current_index + 1)


def _with_entry(track: StageTrack, index: int, entry: StageProgressEntry) -> StageTrack:
    entries = list(track.entries)
    entries[index] = entry
    return replace(track, entries=tuple(entries))
