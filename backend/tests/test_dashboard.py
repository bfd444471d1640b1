from datetime import date

from progression.core.errors import MODULE_LOCKED_REASON
from progression.schemas.dashboard import LearnerModule
from progression.services.dashboard import (
    build_dashboard,
    deadline_for,
    format_progress,
    is_missed,
    module_progress,
    normalize_progress,
    sort_modules,
)


def _m(name: str, **fields) -> LearnerModule:
    return LearnerModule.model_validate({"name": name, **fields})


def test_normalize_progress_accepts_fractions_and_percentages():
    assert normalize_progress(None) == 0.0
    assert normalize_progress(0) == 0.0
    assert normalize_progress(0.5) == 50.0
    assert normalize_progress(1) == 100.0
    assert normalize_progress(33.333) == 33.33


def test_completed_with_partial_stored_progress_keeps_stored_value():
    assert module_progress(_m("A", progress={"status": "Completed", "progress": 80})) == 80.0
    assert module_progress(_m("B", progress={"status": "Completed", "progress": 1.0})) == 100.0
    assert module_progress(_m("C")) == 0.0


def test_format_progress():
    assert format_progress(0) == "0%"
    assert format_progress(66.5) == "67%"
    assert format_progress(100.0) == "100%"


def test_sort_puts_ordered_first():
    modules = [_m("U1"), _m("O2", order=2), _m("U2", order=None), _m("O1", order=1)]
    assert [m.id for m in sort_modules(modules)] == ["O1", "O2", "U1", "U2"]


def test_deadline_is_start_plus_duration():
    m = _m("A", duration=10, progress={"status": "In Progress", "started_on": "2024-01-25"})
    assert deadline_for(m) == "2024-02-04"
    assert deadline_for(_m("B", duration=10)) is None
    assert deadline_for(_m("C", duration=5, progress={"status": "In Progress", "started_on": "not a date"})) is None


def test_build_dashboard_locks_and_stats():
    modules = [
        _m("B", name1="Second", assignment_based="Department", department="Sales", order=2),
        _m("A", name1="First", assignment_based="Department", department="Sales", order=1,
           progress={"status": "In Progress", "progress": 0.25}),
        _m("X", name1="Other", progress={"status": "Completed", "progress": 100}),
    ]
    result = build_dashboard(modules)

    assert [m.module_id for m in result.modules] == ["A", "B", "X"]
    a, b, x = result.modules
    assert not a.is_locked
    assert a.progress == 25.0
    assert a.progress_label == "25%"
    assert b.is_locked
    assert b.lock_reason == MODULE_LOCKED_REASON
    assert b.status == "Not Started"
    assert not x.is_locked

    assert result.stats.total_modules == 3
    assert result.stats.completed_modules == 1
    assert result.stats.in_progress_modules == 1
    assert result.stats.not_started_modules == 1
    assert result.stats.average_progress == 41.67


def test_empty_dashboard():
    result = build_dashboard([])
    assert result.modules == []
    assert result.stats.average_progress == 0.0


def test_learner_duration_wins_over_module_duration():
    m = _m("A", duration=10, progress={"status": "In Progress", "started_on": "2024-01-25", "module_duration": 3})
    assert deadline_for(m) == "2024-01-28"
    m = _m("B", progress={"status": "In Progress", "started_on": "2024-01-25", "module_duration": 5})
    assert deadline_for(m) == "2024-01-30"


def test_missed_only_when_past_due_and_not_completed():
    started = {"started_on": "2024-01-01", "module_duration": 7}
    running = _m("A", progress={"status": "In Progress", **started})
    done = _m("B", progress={"status": "Completed", **started})

    assert is_missed(running, today=date(2024, 1, 9))
    assert not is_missed(running, today=date(2024, 1, 8))
    assert not is_missed(done, today=date(2024, 3, 1))
    assert not is_missed(_m("C", duration=7), today=date(2030, 1, 1))


def test_build_dashboard_flags_missed_modules():
    modules = [_m("A", progress={"status": "In Progress", "started_on": "2024-01-01", "module_duration": 7})]
    result = build_dashboard(modules, today=date(2024, 2, 1))
    assert result.modules[0].missed
    assert result.modules[0].deadline == "2024-01-08"
