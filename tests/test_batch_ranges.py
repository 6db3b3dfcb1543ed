import pytest

from services.production.batch_ranges import (
    BatchSlot,
    calculate_assigned_quantity,
    calculate_remaining_quantity,
    find_range_for_quantity,
    find_range_gaps,
    get_batch_statistics,
    get_next_available_range,
    validate_batch_range,
    validate_complete_coverage,
)
from services.production.ranges import BatchRange


def slot(n, start, end, status="active"):
    return BatchSlot(n, BatchRange(start, end), status)


def test_rejects_overlapping_range_and_names_the_batch():
    existing = [slot(1, 1, 100), slot(2, 101, 200)]
    result = validate_batch_range(BatchRange(150, 250), existing, 1000)
    assert not result.is_valid
    assert result.error == "Range 150-250 overlaps with existing batch #2 (101-200)"
    assert result.suggested_range == BatchRange(201, 301)


def test_accepts_adjacent_range():
    existing = [slot(1, 1, 100), slot(2, 101, 200)]
    assert validate_batch_range(BatchRange(201, 300), existing, 1000).is_valid


def test_bounds_are_checked_before_overlap():
    existing = [slot(1, 1, 100)]
    assert validate_batch_range(BatchRange(0, 10), existing, 100).error == "Range 'from' must be at least 1"
    assert (
        validate_batch_range(BatchRange(10, 5), existing, 100).error
        == "Range 'to' must be greater than or equal to 'from'"
    )
    assert (
        validate_batch_range(BatchRange(50, 150), existing, 100).error
        == "Range 'to' (150) cannot exceed total quantity (100)"
    )


def test_gaps_between_batches():
    batches = [slot(1, 1, 100), slot(2, 201, 300), slot(3, 501, 600)]
    assert find_range_gaps(batches, 1000) == [BatchRange(101, 200), BatchRange(301, 500), BatchRange(601, 1000)]


def test_gaps_with_no_batches_and_full_coverage():
    assert find_range_gaps([], 500) == [BatchRange(1, 500)]
    assert find_range_gaps([slot(1, 1, 250), slot(2, 251, 500)], 500) == []


def test_gaps_ignore_unranged_batches_and_sort_input():
    batches = [slot(2, 301, 400), BatchSlot(9, None), slot(1, 1, 100)]
    assert find_range_gaps(batches, 400) == [BatchRange(101, 300)]


def test_nested_range_does_not_open_a_gap():
    batches = [slot(1, 1, 500), slot(2, 10, 20), slot(3, 501, 600)]
    assert find_range_gaps(batches, 600) == []


def test_next_available_range_clips_to_request():
    batches = [slot(1, 1, 100), slot(2, 201, 300)]
    assert get_next_available_range(batches, 1000) == BatchRange(101, 200)
    assert get_next_available_range(batches, 1000, 50) == BatchRange(101, 150)
    assert get_next_available_range([slot(1, 1, 10)], 10) is None


def test_range_for_quantity_skips_small_gaps():
    batches = [slot(1, 1, 100), slot(2, 151, 300)]
    assert find_range_for_quantity(batches, 1000, 200) == BatchRange(301, 500)
    assert find_range_for_quantity(batches, 1000, 50) == BatchRange(101, 150)
    assert find_range_for_quantity(batches, 400, 200) is None


def test_quantity_equivalence():
    batches = [slot(1, 1, 100), slot(2, 201, 300), slot(3, 501, 600)]
    gaps = find_range_gaps(batches, 1000)
    assert calculate_assigned_quantity(batches) == 300
    assert calculate_remaining_quantity(1000, batches) == 700
    assert sum(g.quantity for g in gaps) == calculate_remaining_quantity(1000, batches)


def test_complete_coverage():
    full = [slot(1, 1, 100), slot(2, 101, 200), slot(3, 201, 300)]
    assert validate_complete_coverage(full, 300).is_valid

    missing_middle = [full[0], full[2]]
    result = validate_complete_coverage(missing_middle, 300)
    assert not result.is_valid
    assert result.error == "Gap between batch #1 (ends at 100) and batch #3 (starts at 201)"
    assert result.suggested_range == BatchRange(101, 200)


def test_coverage_reports_edges_and_overlap():
    assert validate_complete_coverage([], 100).error == "No batches assigned"
    assert validate_complete_coverage([slot(1, 11, 100)], 100).error.startswith("Gap at start")
    assert validate_complete_coverage([slot(1, 1, 90)], 100).error.startswith("Gap at end")
    overlap = validate_complete_coverage([slot(1, 1, 60), slot(2, 50, 100)], 100)
    assert overlap.error.startswith("Overlap between batch #1")
    assert "no unit range" in validate_complete_coverage([BatchSlot(4, None)], 100).error


def test_batch_statistics():
    batches = [slot(1, 1, 100, "completed"), slot(2, 101, 300), slot(3, 301, 400, "cancelled")]
    stats = get_batch_statistics(batches)
    assert stats["total"] == 3
    assert stats["completed"] == 1
    assert stats["cancelled"] == 1
    assert stats["total_quantity"] == 300
    assert stats["completed_quantity"] == 100
    assert stats["remaining_quantity"] == 200
    assert round(stats["completion_percentage"], 2) == 33.33


def test_next_available_range_rejects_non_positive_request():
    batches = [slot(1, 1, 100)]
    for bad in (0, -5):
        with pytest.raises(ValueError):
            get_next_available_range(batches, 1000, bad)


def test_allocator_leaves_its_input_untouched():
    batches = [slot(3, 501, 600), BatchSlot(9, None), slot(1, 1, 100), slot(2, 201, 300)]
    before = list(batches)

    find_range_gaps(batches, 1000)
    get_next_available_range(batches, 1000, 50)
    find_range_for_quantity(batches, 1000, 150)
    validate_batch_range(BatchRange(150, 250), batches, 1000)
    validate_complete_coverage(batches, 1000)
    calculate_remaining_quantity(1000, batches)
    get_batch_statistics(batches)

    assert batches == before
