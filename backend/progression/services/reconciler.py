from __future__ import annotations

import asyncio
import logging
from typing import Coroutine

from progression.core.errors import WriteFailure
from progression.schemas.progress import CompletionData
from progression.schemas.tree import ProgressStatus
from progression.services.completion import progress_percent
from progression.services.progress_store import ProgressStore

logger = logging.getLogger("progression.reconciler")


class OptimisticReconciler:
    """
    Applies chapter completions locally before the server confirms them.

    The local patch only ever adds; the refresh scheduled after each write
    replaces it with the authoritative recompute.
    """

    def __init__(self, store: ProgressStore):
        self.store = store
        self._writes: set[asyncio.Task] = set()
        self._last_write: asyncio.Task | None = None
        self.last_write_error: WriteFailure | None = None

    def patch(self, chapter_id: str, lesson_id: str) -> CompletionData | None:
        """Local, synchronous half of a completion. Returns None when nothing changed."""
        index = self.store.require_index()
        data = self.store.completion
        if chapter_id in data.completed_chapters or not index.has_chapter(chapter_id):
            return None

        completed = list(data.completed_chapters) + [chapter_id]
        completed_lessons = list(data.completed_lessons)
        lesson = index.lesson(lesson_id)
        if (
            lesson is not None
            and lesson.id not in completed_lessons
            and lesson.chapters
            and {c.id for c in lesson.chapters}.issubset(completed)
        ):
            completed_lessons.append(lesson.id)

        patched = data.model_copy(
            update={
                "completed_chapters": completed,
                "completed_lessons": completed_lessons,
                "in_progress_chapters": [c for c in data.in_progress_chapters if c != chapter_id],
                "overall_progress": progress_percent(len(completed), data.total_chapters or index.total_chapters),
            }
        )
        self.store.apply_patch(patched)
        return patched

    def apply_chapter_completion(self, chapter_id: str, lesson_id: str) -> bool:
        """
        Mark a chapter complete: patch now, write in the background, then refresh.
        Returns False for a duplicate (already complete) so no second write is issued.
        """
        if self.patch(chapter_id, lesson_id) is None:
            return False
        self._spawn(self._write_then_refresh(lesson_id, chapter_id, ProgressStatus.completed))
        return True

    def write_position(self, lesson_id: str, chapter_id: str, status: ProgressStatus) -> asyncio.Task:
        """Fire-and-forget progress write with no local completion patch."""
        return self._spawn(self._write(lesson_id, chapter_id, status))

    async def _write(self, lesson_id: str, chapter_id: str, status: ProgressStatus) -> bool:
        try:
            await self.store.backend.write_progress(
                self.store.user, self.store.module_id, lesson_id, chapter_id, status
            )
        except WriteFailure as e:
            # local state stands; the next successful refresh reconciles it
            self.last_write_error = e
            logger.warning(
                "progress write failed for %s/%s chapter=%s status=%s: %s",
                self.store.user,
                self.store.module_id,
                chapter_id,
                status.value,
                e,
            )
            return False
        return True

    async def _write_then_refresh(self, lesson_id: str, chapter_id: str, status: ProgressStatus) -> None:
        await self._write(lesson_id, chapter_id, status)
        self.store.schedule_refresh()

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        # writes reach the server in the order the learner triggered them
        previous = self._last_write

        async def _ordered() -> None:
            if previous is not None and not previous.done():
                await asyncio.wait([previous])
            await coro

        task = asyncio.get_running_loop().create_task(_ordered())
        self._last_write = task
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)
        return task

    async def wait_idle(self) -> None:
        while self._writes:
            await asyncio.gather(*list(self._writes), return_exceptions=True)
        await self.store.wait_idle()
