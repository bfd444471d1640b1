from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator

from progression.schemas.tree import ProgressStatus


class ProgressRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: ProgressStatus = ProgressStatus.not_started
    current_lesson: str | None = None
    current_chapter: str | None = None
    started_on: str | None = None
    completed_on: str | None = None
    progress: float | None = None
    module_duration: int | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _status_default(cls, v: object) -> object:
        return ProgressStatus.not_started if v in (None, "") else v

    @field_validator("current_lesson", "current_chapter", "module_duration", mode="before")
    @classmethod
    def _blank_is_none(cls, v: object) -> object:
        return v or None

    @property
    def is_completed(self) -> bool:
        return self.status == ProgressStatus.completed


class CurrentPosition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    reference_id: str
    start_time: str | None = None


class CompletionData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    completed_lessons: list[str] = []
    completed_chapters: list[str] = []
    in_progress_chapters: list[str] = []
    current_position: CurrentPosition | None = None
    total_lessons: int = 0
    total_chapters: int = 0
    overall_progress: int = 0

    def is_empty(self) -> bool:
        return not (self.completed_lessons or self.completed_chapters or self.in_progress_chapters)


class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    lesson_index: int
    chapter_index: int


class AttemptRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    score: int | float | str | None = None
    max_score: int | float | None = None
    score_added: bool = False


class ScoreEntry(BaseModel):
    title: str
    score: int | float
    max_score: int | float | None
    type: str


class GateResult(BaseModel):
    all_completed: bool
    scores: list[ScoreEntry] = []
    incomplete_titles: list[str] = []


class ModuleLockState(BaseModel):
    is_locked: bool = False
    lock_reason: str | None = None


class ChapterState(BaseModel):
    chapter_id: str
    title: str | None
    unlocked: bool
    completed: bool
    in_progress: bool


class LessonState(BaseModel):
    lesson_id: str
    title: str | None
    unlocked: bool
    completed: bool
    chapters: list[ChapterState]


class ModuleView(BaseModel):
    module_id: str
    title: str | None
    status: ProgressStatus
    started: bool
    reviewing: bool
    completion: CompletionData
    resume: Position | None
    cursor: Position | None
    is_locked: bool = False
    lock_reason: str | None = None
    lessons: list[LessonState]


class JumpRequest(BaseModel):
    lesson_id: str
    chapter_id: str | None = None
