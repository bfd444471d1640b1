from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from progression.schemas.progress import ProgressRecord
from progression.schemas.tree import Module


class LearnerModule(Module):
    """A module as listed on the learner dashboard, with the learner's progress attached."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    progress: ProgressRecord | None = None
    image: str | None = None
    short_text: str | None = None


class DashboardModule(BaseModel):
    module_id: str
    title: str | None
    status: str
    progress: float
    progress_label: str
    order: int
    department: str | None
    is_locked: bool = False
    lock_reason: str | None = None
    deadline: str | None = None
    missed: bool = False


class DashboardStats(BaseModel):
    total_modules: int
    completed_modules: int
    in_progress_modules: int
    not_started_modules: int
    average_progress: float


class DashboardResponse(BaseModel):
    modules: list[DashboardModule] = Field(default_factory=list)
    stats: DashboardStats
