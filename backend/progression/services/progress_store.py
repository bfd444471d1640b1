from __future__ import annotations

import asyncio
import logging
from typing import Coroutine

from progression.core.config import settings
from progression.core.errors import FetchFailure
from progression.schemas.progress import CompletionData, ProgressRecord
from progression.schemas.tree import Module, ProgressStatus
from progression.services.backend import LmsBackend
from progression.services.completion import compute, with_completed, with_position
from progression.services.tree import TreeIndex

logger = logging.getLogger("progression.store")


class ProgressStore:
    """
    Owned state for one learner x module session: the tree, the progress record,
    the last authoritative completion facts and the derived CompletionData.

    `completion` never loses a chapter within a session unless the module is reset
    externally (record comes back Not Started).
    """

    def __init__(
        self,
        backend: LmsBackend,
        user: str,
        module_id: str,
        *,
        retry_delay: float | None = None,
        max_attempts: int | None = None,
    ):
        self.backend = backend
        self.user = user
        self.module_id = module_id
        self.retry_delay = settings.refresh_retry_delay_seconds if retry_delay is None else retry_delay
        self.max_attempts = settings.refresh_max_attempts if max_attempts is None else max_attempts

        self.module: Module | None = None
        self.index: TreeIndex | None = None
        self.record = ProgressRecord()
        self.facts: CompletionData | None = None
        self.completion = CompletionData()
        self.stale = True

        self._floor: set[str] = set()
        self._generation = 0
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def loaded(self) -> bool:
        return self.index is not None

    def require_index(self) -> TreeIndex:
        if self.index is None:
            raise RuntimeError("progress store used before load()")
        return self.index

    async def load(self) -> None:
        """Fetch tree and record (fatal on failure), then completion facts (non-fatal)."""
        module, record = await asyncio.gather(
            self.backend.fetch_module_tree(self.module_id),
            self.backend.fetch_progress_record(self.user, self.module_id),
        )
        self.module = module
        self.index = TreeIndex(module)
        self.record = record
        self.recompute()

        if not await self.refresh():
            self.schedule_refresh(retry=True)

    def recompute(self) -> CompletionData:
        index = self.require_index()
        if self.record.status == ProgressStatus.not_started:
            self._floor.clear()
        data = compute(index, self.record, self.facts)
        data = with_completed(index, data, self._floor)
        self._floor.update(data.completed_chapters)
        if self.record.status == ProgressStatus.in_progress:
            # the record moves on every navigation; server facts may still point at an older chapter
            data = with_position(index, data, self.record.current_chapter)
        self.completion = data
        return data

    def set_record(self, record: ProgressRecord) -> CompletionData:
        self.record = record
        return self.recompute()

    def apply_patch(self, data: CompletionData) -> None:
        """Install an optimistic snapshot; it stands until the next authoritative refresh."""
        self._floor.update(data.completed_chapters)
        self.completion = data

    def invalidate(self) -> None:
        """Forget the authoritative facts; derived state falls back to the record alone."""
        self.facts = None
        self.stale = True
        if self.index is not None:
            self.recompute()

    async def refresh(self) -> bool:
        """Re-fetch authoritative completion facts. Returns False when the fetch failed."""
        self.require_index()
        self._generation += 1
        generation = self._generation
        try:
            facts = await self.backend.fetch_completion_data(self.user, self.module_id)
        except FetchFailure as e:
            logger.warning("completion data fetch failed for %s/%s: %s", self.user, self.module_id, e)
            return False
        if generation != self._generation:
            # a newer refresh was started while this one was in flight
            return True
        self.facts = facts
        self.stale = False
        self.recompute()
        return True

    async def _refresh_with_retry(self) -> None:
        for attempt in range(max(1, self.max_attempts)):
            if self._closed:
                return
            if await self.refresh():
                return
            await asyncio.sleep(self.retry_delay * (attempt + 1))
        logger.warning("giving up on completion data for %s/%s", self.user, self.module_id)

    def schedule_refresh(self, *, retry: bool = False) -> asyncio.Task | None:
        if self._closed:
            return None
        coro = self._refresh_with_retry() if retry else self.refresh()
        return self._spawn(coro)

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Stop scheduling refreshes and cancel pending ones."""
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
