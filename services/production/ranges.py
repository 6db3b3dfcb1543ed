from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BatchRange:
    """Closed, 1-based unit interval [start, end] inside a job card's quantity space."""

    start: int
    end: int

    @property
    def quantity(self) -> int:
        return quantity_of(self)

    def to_dict(self) -> dict:
        return {"from": self.start, "to": self.end}

    def __str__(self) -> str:
        return format_range(self)


def is_well_formed(r: BatchRange | None) -> bool:
    if r is None:
        return False
    if isinstance(r.start, bool) or isinstance(r.end, bool):
        return False
    if not isinstance(r.start, int) or not isinstance(r.end, int):
        return False
    return r.start >= 1 and r.end >= r.start


def ranges_overlap(a: BatchRange, b: BatchRange) -> bool:
    # Unit-granular: [1,5] and [5,10] share unit 5.
    return a.start <= b.end and b.start <= a.end


def quantity_of(r: BatchRange) -> int:
    return r.end - r.start + 1


def format_range(r: BatchRange) -> str:
    return f"{r.start}-{r.end}"
