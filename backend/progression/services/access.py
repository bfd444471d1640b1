from __future__ import annotations

from typing import Iterable

from progression.core.errors import LESSON_LOCKED_REASON, MODULE_LOCKED_REASON
from progression.schemas.progress import CompletionData, ModuleLockState, ProgressRecord
from progression.schemas.tree import AssignmentKind, Module, ProgressStatus
from progression.services.tree import TreeIndex


def module_lock_state(
    module: Module,
    status: ProgressStatus,
    peers: Iterable[tuple[Module, ProgressStatus]],
) -> ModuleLockState:
    """
    Department-ordered modules unlock one after another: a module is locked while any
    Department module of the same department with a smaller positive order is not Completed.
    """
    if status == ProgressStatus.completed:
        return ModuleLockState()
    if module.assignment_based != AssignmentKind.department or not module.is_ordered:
        return ModuleLockState()

    for other, other_status in peers:
        if other.id == module.id:
            continue
        if other.assignment_based != AssignmentKind.department or not other.is_ordered:
            continue
        if other.department != module.department:
            continue
        if other.order < module.order and other_status != ProgressStatus.completed:
            return ModuleLockState(is_locked=True, lock_reason=MODULE_LOCKED_REASON)
    return ModuleLockState()


class AccessPredicate:
    """
    Answers "may the learner open this lesson / chapter?".

    Everything derived from the inputs is computed once in __init__; calls are cheap
    and side-effect free. Unknown ids are never accessible.
    """

    def __init__(
        self,
        index: TreeIndex,
        data: CompletionData,
        record: ProgressRecord,
        *,
        cursor_chapter: str | None = None,
        module_lock: ModuleLockState | None = None,
    ):
        self.index = index
        self.review_mode = record.is_completed
        self.module_lock = module_lock if (module_lock and not self.review_mode) else ModuleLockState()

        self._completed_lessons = set(data.completed_lessons)
        self._completed_chapters = set(data.completed_chapters)

        first_lesson = index.first_lesson()
        first_chapter = index.first_chapter()
        self.first_lesson = first_lesson.id if first_lesson else None
        self.first_chapter = first_chapter.id if first_chapter else None

        self.current_chapter = self._current_chapter(data, cursor_chapter)
        self.current_lesson = index.lesson_of(self.current_chapter)

        self.next_lesson: str | None = None
        self.next_lesson_first_chapter: str | None = None
        for lesson in index.lessons:
            if lesson.id not in self._completed_lessons:
                self.next_lesson = lesson.id
                self.next_lesson_first_chapter = lesson.chapters[0].id if lesson.chapters else None
                break

    def _current_chapter(self, data: CompletionData, cursor_chapter: str | None) -> str | None:
        cp = data.current_position
        candidates = [
            cp.reference_id if cp is not None and cp.type == "Chapter" else None,
            data.in_progress_chapters[0] if data.in_progress_chapters else None,
            cursor_chapter,
        ]
        for cid in candidates:
            if self.index.has_chapter(cid):
                return cid
        return None

    def lesson_unlocked(self, lesson_id: str) -> bool:
        if not self.index.has_lesson(lesson_id):
            return False
        if self.review_mode:
            return True
        if self.module_lock.is_locked:
            return False
        return (
            lesson_id == self.first_lesson
            or lesson_id in self._completed_lessons
            or lesson_id == self.next_lesson
            or (self.current_lesson is not None and lesson_id == self.current_lesson)
        )

    def chapter_unlocked(self, lesson_id: str | None, chapter_id: str) -> bool:
        owner = self.index.lesson_of(chapter_id)
        if owner is None or (lesson_id is not None and lesson_id != owner):
            return False
        if self.review_mode:
            return True
        if self.module_lock.is_locked:
            return False
        return (
            chapter_id == self.first_chapter
            or chapter_id in self._completed_chapters
            or chapter_id == self.current_chapter
            or (owner == self.next_lesson and chapter_id == self.next_lesson_first_chapter)
            or owner in self._completed_lessons
        )

    def __call__(self, lesson_id: str, chapter_id: str | None = None) -> bool:
        if chapter_id is None:
            return self.lesson_unlocked(lesson_id)
        return self.chapter_unlocked(lesson_id, chapter_id)

    def reason(self, lesson_id: str, chapter_id: str | None = None) -> str | None:
        """Locked message for the target, or None when it is open."""
        if self(lesson_id, chapter_id):
            return None
        if self.module_lock.is_locked:
            return self.module_lock.lock_reason
        return LESSON_LOCKED_REASON


def build_access_predicate(
    index: TreeIndex,
    data: CompletionData,
    record: ProgressRecord,
    *,
    cursor_chapter: str | None = None,
    module_lock: ModuleLockState | None = None,
) -> AccessPredicate:
    return AccessPredicate(index, data, record, cursor_chapter=cursor_chapter, module_lock=module_lock)
