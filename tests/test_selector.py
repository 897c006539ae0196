from __future__ import annotations

import pytest

from gribslicer.data.index import IndexEntry
from gribslicer.data.selector import RecordSelector
from gribslicer.exceptions import SelectionEmpty


def _entries():
    return {
        12: [
            IndexEntry("tp", 2, 12, 0, 10),
            IndexEntry("msl", None, 12, 10, 20),
            IndexEntry("tp", None, 12, 30, 10),
        ],
        6: [
            IndexEntry("tp", 1, 6, 0, 50),
            IndexEntry("2t", 1, 6, 50, 50),
            IndexEntry("tp", None, 6, 100, 50),
        ],
        18: [],
    }


def test_select_filters_and_orders(make_run) -> None:
    run = make_run(variables=("tp",))
    result = RecordSelector(run).select(_entries())

    keys = [(t.lead_time, t.member, t.variable) for t in result.tasks]
    assert keys == [(6, 0, "tp"), (6, 1, "tp"), (12, 0, "tp"), (12, 2, "tp")]
    assert result.members() == [0, 1, 2]
    assert result.empty_variables == []


def test_task_carries_inclusive_range_header(make_run) -> None:
    run = make_run()
    task = RecordSelector(run).select({6: [IndexEntry("tp", 3, 6, 100, 50)]}).tasks[0]

    assert task.byte_range == (100, 150)
    assert task.range_header == "bytes=100-149"
    assert task.source_url.endswith("20251012000000-6h-enfo-ef.grib2")
    assert task.destination.parts[-3:] == ("slices", "EN03", "tp_6h.grib2")


def test_single_member_scope(make_run) -> None:
    control = RecordSelector(make_run(member=0)).select(_entries())
    assert {t.member for t in control.tasks} == {0}
    assert [t.lead_time for t in control.tasks] == [6, 12]

    perturbed = RecordSelector(make_run(member=1)).select(_entries())
    assert [(t.lead_time, t.variable) for t in perturbed.tasks] == [(6, "tp")]


def test_duplicate_records_keep_first(make_run) -> None:
    entries = {6: [IndexEntry("tp", 1, 6, 0, 10), IndexEntry("tp", 1, 6, 10, 10)]}
    (task,) = RecordSelector(make_run()).select(entries).tasks
    assert task.offset == 0


def test_unmatched_variable_is_reported(make_run) -> None:
    run = make_run(variables=("tp", "10u"))
    result = RecordSelector(run).select(_entries())

    assert result.empty_variables == ["10u"]
    assert {t.variable for t in result.tasks} == {"tp"}


def test_unmatched_variable_in_strict_mode(make_run) -> None:
    run = make_run(variables=("tp", "10u"), fail_on_empty_selection=True)
    with pytest.raises(SelectionEmpty) as excinfo:
        RecordSelector(run).select(_entries())
    assert excinfo.value.variables == ("10u",)


def test_no_entries_at_all(make_run) -> None:
    result = RecordSelector(make_run()).select({0: [], 6: []})
    assert result.tasks == []
    assert result.empty_variables == ["tp"]
