from __future__ import annotations

from datetime import date, datetime, timedelta

from progression.schemas.dashboard import DashboardModule, DashboardResponse, DashboardStats, LearnerModule
from progression.schemas.tree import ProgressStatus
from progression.services.access import module_lock_state


def normalize_progress(value: float | None) -> float:
    """Stored progress is either a fraction (0-1] or a percentage; always return a percentage."""
    if not value:
        return 0.0
    if 0 < value <= 1.0:
        return round(value * 100, 2)
    return round(value, 2)


def module_progress(m: LearnerModule) -> float:
    if m.progress is None:
        return 0.0
    pct = normalize_progress(m.progress.progress)
    # a Completed status alone does not round a partial stored value up to 100
    if m.progress.status == ProgressStatus.completed:
        return 100.0 if pct >= 100 else pct
    return pct


def format_progress(value: float) -> str:
    return f"{int(value + 0.5)}%"


def _status(m: LearnerModule) -> ProgressStatus:
    return m.progress.status if m.progress else ProgressStatus.not_started


def sort_modules(modules: list[LearnerModule]) -> list[LearnerModule]:
    """Ordered modules (order > 0) ascending first, then unordered ones in API order."""
    ordered = sorted((m for m in modules if m.is_ordered), key=lambda m: m.order)
    unordered = [m for m in modules if not m.is_ordered]
    return ordered + unordered


def due_date(m: LearnerModule) -> date | None:
    """Start date plus the duration in days; the learner's own duration wins over the module's."""
    if m.progress is None or not m.progress.started_on:
        return None
    duration = m.progress.module_duration or m.duration
    if not duration:
        return None
    try:
        started = datetime.fromisoformat(str(m.progress.started_on)).date()
    except ValueError:
        return None
    return started + timedelta(days=int(duration))


def deadline_for(m: LearnerModule) -> str | None:
    due = due_date(m)
    return due.isoformat() if due else None


def is_missed(m: LearnerModule, today: date | None = None) -> bool:
    """Past due and not yet completed. Display only, never locks."""
    if _status(m) == ProgressStatus.completed:
        return False
    due = due_date(m)
    return due is not None and due < (today or date.today())


def progress_stats(modules: list[LearnerModule]) -> DashboardStats:
    total = len(modules)
    completed = sum(1 for m in modules if _status(m) == ProgressStatus.completed)
    in_progress = sum(1 for m in modules if _status(m) == ProgressStatus.in_progress)
    not_started = sum(1 for m in modules if _status(m) == ProgressStatus.not_started)
    average = round(sum(module_progress(m) for m in modules) / total, 2) if total else 0.0
    return DashboardStats(
        total_modules=total,
        completed_modules=completed,
        in_progress_modules=in_progress,
        not_started_modules=not_started,
        average_progress=average,
    )


def build_dashboard(modules: list[LearnerModule], today: date | None = None) -> DashboardResponse:
    peers = [(m, _status(m)) for m in modules]
    items: list[DashboardModule] = []
    for m in sort_modules(modules):
        lock = module_lock_state(m, _status(m), peers)
        pct = module_progress(m)
        items.append(
            DashboardModule(
                module_id=m.id,
                title=m.title,
                status=_status(m).value,
                progress=pct,
                progress_label=format_progress(pct),
                order=m.order,
                department=m.department,
                is_locked=lock.is_locked,
                lock_reason=lock.lock_reason,
                deadline=deadline_for(m),
                missed=is_missed(m, today),
            )
        )
    return DashboardResponse(modules=items, stats=progress_stats(modules))
