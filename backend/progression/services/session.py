from __future__ import annotations

import asyncio
import logging

from progression.core.errors import (
    AccessDenied,
    CompletionRefused,
    FetchFailure,
    InconsistentData,
    ProgressionError,
)
from progression.schemas.progress import (
    ChapterState,
    GateResult,
    LessonState,
    ModuleLockState,
    ModuleView,
    Position,
    ProgressRecord,
)
from progression.schemas.tree import AssignmentKind, ProgressStatus
from progression.services.access import AccessPredicate, build_access_predicate, module_lock_state
from progression.services.backend import LmsBackend
from progression.services.progress_store import ProgressStore
from progression.services.quiz_gate import check_completion
from progression.services.reconciler import OptimisticReconciler
from progression.services.resume import resolve
from progression.services.tree import TreeIndex

logger = logging.getLogger("progression.session")


class ModuleSession:
    """
    One learner working through one module.

    Navigation methods re-check access before touching any state and issue
    progress writes in the background; the view is recomputed on demand.
    """

    def __init__(self, backend: LmsBackend, user: str, module_id: str, **store_options):
        self.backend = backend
        self.user = user
        self.module_id = module_id
        self.store = ProgressStore(backend, user, module_id, **store_options)
        self.reconciler = OptimisticReconciler(self.store)

        self.cursor: Position | None = None
        self.reviewing = False
        self.module_lock = ModuleLockState()
        self.last_gate: GateResult | None = None

    # --- state -----------------------------------------------------------

    @property
    def index(self) -> TreeIndex:
        return self.store.require_index()

    @property
    def record(self) -> ProgressRecord:
        return self.store.record

    @property
    def started(self) -> bool:
        return self.record.status != ProgressStatus.not_started

    @property
    def completed(self) -> bool:
        return self.record.is_completed

    def _cursor_chapter(self) -> str | None:
        if self.cursor is None:
            return None
        hit = self.index.at(self.cursor)
        return hit[1].id if hit else None

    def access(self) -> AccessPredicate:
        return build_access_predicate(
            self.index,
            self.store.completion,
            self.record,
            cursor_chapter=self._cursor_chapter(),
            module_lock=self.module_lock,
        )

    # --- lifecycle -------------------------------------------------------

    async def load(self) -> ModuleView:
        await self.store.load()
        await self._load_module_lock()
        self.cursor = resolve(self.index, self.record, self.store.completion)
        if self.cursor is None and self.started:
            self.cursor = self.index.first_position()
        return self.view()

    async def _load_module_lock(self) -> None:
        module = self.store.module
        if module is None or module.assignment_based != AssignmentKind.department or not module.is_ordered:
            return
        try:
            peers = await self.backend.fetch_learner_modules(self.user)
        except FetchFailure as e:
            logger.warning("module list unavailable, skipping module lock for %s: %s", self.module_id, e)
            return
        self.module_lock = module_lock_state(
            module,
            self.record.status,
            [(m, m.progress.status if m.progress else ProgressStatus.not_started) for m in peers],
        )

    async def start(self) -> ModuleView:
        if self.started:
            return self.view()
        self._ensure_unlocked()
        await self.backend.start_module(self.user, self.module_id)
        first = self.index.first_position()
        hit = self.index.at(first) if first else None
        self.store.set_record(
            self.record.model_copy(
                update={
                    "status": ProgressStatus.in_progress,
                    "current_lesson": hit[0].id if hit else None,
                    "current_chapter": hit[1].id if hit else None,
                }
            )
        )
        self.cursor = first
        return self.view()

    def close(self) -> None:
        self.store.close()

    # --- navigation ------------------------------------------------------

    def _ensure_unlocked(self) -> None:
        if self.module_lock.is_locked and not self.completed:
            raise AccessDenied(self.module_lock.lock_reason or "")

    def _ensure_started(self) -> Position:
        if not self.started:
            raise ProgressionError("module has not been started", error_code="not_started")
        if self.cursor is None:
            self.cursor = self.index.first_position()
        if self.cursor is None:
            raise InconsistentData(f"module {self.module_id!r} has no chapters")
        return self.cursor

    def _move_to(self, pos: Position) -> None:
        self.cursor = pos
        if self.completed or self.reviewing:
            return
        lesson, chapter = self.index.at(pos)
        self.store.set_record(
            self.record.model_copy(
                update={
                    "status": ProgressStatus.in_progress,
                    "current_lesson": lesson.id,
                    "current_chapter": chapter.id,
                }
            )
        )
        self.reconciler.write_position(lesson.id, chapter.id, ProgressStatus.in_progress)

    async def next(self) -> ModuleView:
        if self.reviewing:
            pos = self._ensure_started()
            following = self.index.step(pos, 1)
            if following is None:
                self.reviewing = False
            else:
                self.cursor = following
            return self.view()

        if self.completed:
            return self.view()

        pos = self._ensure_started()
        lesson, chapter = self.index.at(pos)
        predicate = self.access()
        if not predicate(lesson.id, chapter.id):
            raise AccessDenied(predicate.reason(lesson.id, chapter.id) or "")

        if self.index.is_terminal(pos):
            gate = await check_completion(self.index, self.backend.fetch_attempt, self.user)
            self.last_gate = gate
            if not gate.all_completed:
                raise CompletionRefused(gate.incomplete_titles)
            # one Completed write covers both the chapter and the module
            self.reconciler.patch(chapter.id, lesson.id)
            self.store.set_record(self.record.model_copy(update={"status": ProgressStatus.completed}))
            self.reconciler.write_position(lesson.id, chapter.id, ProgressStatus.completed)
            logger.info("module %s completed by %s", self.module_id, self.user)
            return self.view()

        self.reconciler.apply_chapter_completion(chapter.id, lesson.id)
        following = self.index.step(pos, 1)
        if following is not None:
            self._move_to(following)
        return self.view()

    async def previous(self) -> ModuleView:
        pos = self._ensure_started()
        earlier = self.index.step(pos, -1)
        if earlier is not None:
            self._move_to(earlier)
        return self.view()

    async def jump(self, lesson_id: str, chapter_id: str | None = None) -> ModuleView:
        index = self.index
        lesson = index.lesson(lesson_id)
        if lesson is None:
            raise InconsistentData(f"lesson {lesson_id!r} not in module {self.module_id!r}")
        if chapter_id is not None and index.lesson_of(chapter_id) != lesson_id:
            raise InconsistentData(f"chapter {chapter_id!r} not in lesson {lesson_id!r}")
        if not self.started:
            raise ProgressionError("module has not been started", error_code="not_started")

        predicate = self.access()
        if not predicate(lesson_id, chapter_id):
            raise AccessDenied(predicate.reason(lesson_id, chapter_id) or "")

        target = chapter_id or (lesson.chapters[0].id if lesson.chapters else None)
        if target is None:
            raise InconsistentData(f"lesson {lesson_id!r} has no chapters")
        self._move_to(index.require_chapter(target))
        return self.view()

    def review(self) -> ModuleView:
        if not self.completed:
            raise ProgressionError("only completed modules can be reviewed", error_code="not_completed")
        self.reviewing = True
        self.cursor = self.index.first_position()
        return self.view()

    # --- view ------------------------------------------------------------

    def view(self) -> ModuleView:
        index = self.index
        data = self.store.completion
        predicate = self.access()
        completed_chapters = set(data.completed_chapters)
        in_progress = set(data.in_progress_chapters)
        completed_lessons = set(data.completed_lessons)

        lessons = [
            LessonState(
                lesson_id=lesson.id,
                title=lesson.title,
                unlocked=predicate(lesson.id),
                completed=lesson.id in completed_lessons,
                chapters=[
                    ChapterState(
                        chapter_id=chapter.id,
                        title=chapter.title,
                        unlocked=predicate(lesson.id, chapter.id),
                        completed=chapter.id in completed_chapters,
                        in_progress=chapter.id in in_progress,
                    )
                    for chapter in lesson.chapters
                ],
            )
            for lesson in index.lessons
        ]
        module = index.module
        return ModuleView(
            module_id=module.id,
            title=module.title,
            status=self.record.status,
            started=self.started,
            reviewing=self.reviewing,
            completion=data,
            resume=resolve(index, self.record, data),
            cursor=self.cursor,
            is_locked=predicate.module_lock.is_locked,
            lock_reason=predicate.module_lock.lock_reason,
            lessons=lessons,
        )


class SessionRegistry:
    """At most one live session per learner x module in this process."""

    def __init__(self, backend: LmsBackend):
        self.backend = backend
        self._sessions: dict[tuple[str, str], ModuleSession] = {}
        self._opening: dict[tuple[str, str], asyncio.Task] = {}

    def get(self, user: str, module_id: str) -> ModuleSession | None:
        return self._sessions.get((user, module_id))

    async def open(self, user: str, module_id: str) -> ModuleSession:
        """Return the live session, loading it first; concurrent callers share one load."""
        key = (user, module_id)
        existing = self._sessions.get(key)
        if existing is not None:
            return existing
        pending = self._opening.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._load(key))
            self._opening[key] = pending
            pending.add_done_callback(lambda t: self._opening.pop(key, None))
        return await asyncio.shield(pending)

    async def _load(self, key: tuple[str, str]) -> ModuleSession:
        session = ModuleSession(self.backend, *key)
        await session.load()
        self._sessions[key] = session
        return session

    def close(self, user: str, module_id: str) -> bool:
        session = self._sessions.pop((user, module_id), None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()
