"""Contract for the remote document API the progression engine reads from and writes to."""

from __future__ import annotations

from typing import Protocol

from progression.schemas.dashboard import LearnerModule
from progression.schemas.progress import AttemptRecord, CompletionData, ProgressRecord
from progression.schemas.tree import Module, ProgressStatus
from progression.services.quiz_gate import AttemptKind


class LmsBackend(Protocol):
    async def fetch_module_tree(self, module_id: str) -> Module:
        ...

    async def fetch_progress_record(self, user: str, module_id: str) -> ProgressRecord:
        ...

    async def fetch_completion_data(self, user: str, module_id: str) -> CompletionData:
        ...

    async def write_progress(
        self,
        user: str,
        module_id: str,
        lesson: str,
        chapter: str,
        status: ProgressStatus,
    ) -> None:
        ...

    async def fetch_attempt(self, kind: AttemptKind, item_id: str, user: str) -> AttemptRecord | None:
        ...

    async def start_module(self, user: str, module_id: str) -> None:
        ...

    async def fetch_learner_modules(self, user: str) -> list[LearnerModule]:
        ...

    async def ping(self) -> bool:
        ...
