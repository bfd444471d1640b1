from __future__ import annotations

import math
from typing import Iterable

from progression.schemas.progress import CompletionData, CurrentPosition, ProgressRecord
from progression.schemas.tree import ProgressStatus
from progression.services.tree import TreeIndex


def progress_percent(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    # half-up rounding
    return max(0, min(100, math.floor(100 * completed / total + 0.5)))


def _completed_lessons(index: TreeIndex, completed_chapters: set[str]) -> list[str]:
    # A lesson with no chapters never counts as complete.
    return [
        lesson.id
        for lesson in index.lessons
        if lesson.chapters and all(c.id in completed_chapters for c in lesson.chapters)
    ]


def _build(
    index: TreeIndex,
    completed: set[str],
    in_progress: list[str],
    current_position: CurrentPosition | None,
) -> CompletionData:
    ordered = [cid for cid in index.all_chapter_ids() if cid in completed]
    return CompletionData(
        completed_lessons=_completed_lessons(index, completed),
        completed_chapters=ordered,
        in_progress_chapters=[cid for cid in in_progress if cid not in completed],
        current_position=current_position,
        total_lessons=index.total_lessons,
        total_chapters=index.total_chapters,
        overall_progress=progress_percent(len(ordered), index.total_chapters),
    )


def _saturated(index: TreeIndex) -> CompletionData:
    chapters = index.all_chapter_ids()
    return CompletionData(
        completed_lessons=index.all_lesson_ids(),
        completed_chapters=chapters,
        in_progress_chapters=[],
        current_position=None,
        total_lessons=index.total_lessons,
        total_chapters=len(chapters),
        overall_progress=100,
    )


def _positional(index: TreeIndex, record: ProgressRecord) -> CompletionData:
    completed: set[str] = set()
    in_progress: list[str] = []
    reached_current = False

    for lesson in index.lessons:
        for chapter in lesson.chapters:
            if chapter.id == record.current_chapter:
                in_progress.append(chapter.id)
                reached_current = True
            elif not reached_current:
                completed.add(chapter.id)

    if not reached_current:
        # current_chapter absent or unknown: nothing can be inferred
        completed.clear()

    current = None
    if reached_current and record.current_chapter:
        current = CurrentPosition(type="Chapter", reference_id=record.current_chapter)
    return _build(index, completed, in_progress, current)


def _authoritative(index: TreeIndex, facts: CompletionData) -> CompletionData:
    # Ids missing from the tree are dropped rather than trusted.
    completed = {cid for cid in facts.completed_chapters if index.has_chapter(cid)}
    in_progress = [cid for cid in facts.in_progress_chapters if index.has_chapter(cid)]
    return _build(index, completed, in_progress, facts.current_position)


def compute(
    index: TreeIndex,
    record: ProgressRecord,
    facts: CompletionData | None = None,
) -> CompletionData:
    """
    Derive CompletionData for one learner and module.

    Priority:
      1) module record is Completed -> everything complete, 100%
      2) non-empty authoritative facts from the completion API
      3) positional walk up to record.current_chapter
    """
    if record.is_completed:
        return _saturated(index)
    if facts is not None and not facts.is_empty():
        return _authoritative(index, facts)
    if record.status == ProgressStatus.not_started:
        return _build(index, set(), [], None)
    return _positional(index, record)


def with_completed(index: TreeIndex, data: CompletionData, chapter_ids: Iterable[str]) -> CompletionData:
    """Return `data` with extra chapters marked complete; never removes a completed chapter."""
    extra = {cid for cid in chapter_ids if index.has_chapter(cid)}
    if not extra or extra.issubset(data.completed_chapters):
        return data
    completed = set(data.completed_chapters) | extra
    return _build(index, completed, list(data.in_progress_chapters), data.current_position)


def with_position(index: TreeIndex, data: CompletionData, chapter_id: str | None) -> CompletionData:
    """Point `data` at the chapter the learner is on, unless it is already complete."""
    if not index.has_chapter(chapter_id) or chapter_id in data.completed_chapters:
        return data
    cp = data.current_position
    if cp is not None and cp.type == "Chapter" and cp.reference_id == chapter_id:
        if chapter_id in data.in_progress_chapters:
            return data
    return data.model_copy(
        update={
            "current_position": CurrentPosition(type="Chapter", reference_id=chapter_id),
            "in_progress_chapters": [chapter_id] + [c for c in data.in_progress_chapters if c != chapter_id],
        }
    )
