from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

QUIZ = "Quiz"
QUESTION_ANSWER = "Question Answer"
GATED_CONTENT_TYPES = (QUIZ, QUESTION_ANSWER)


class AssignmentKind(str, enum.Enum):
    everyone = "Everyone"
    department = "Department"
    manual = "Manual"


class ProgressStatus(str, enum.Enum):
    not_started = "Not Started"
    in_progress = "In Progress"
    completed = "Completed"


class _DocModel(BaseModel):
    # Remote documents key everything by `name`; accept either spelling.
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class Content(_DocModel):
    id: str = Field(alias="name")
    content_type: str | None = None
    content_reference: str | None = None
    title: str | None = None


class Chapter(_DocModel):
    id: str = Field(alias="name")
    title: str | None = None
    contents: tuple[Content, ...] = ()


class Lesson(_DocModel):
    id: str = Field(alias="name")
    title: str | None = Field(default=None, alias="lesson_name")
    chapters: tuple[Chapter, ...] = ()


class Module(_DocModel):
    id: str = Field(alias="name")
    title: str | None = Field(default=None, alias="name1")
    description: str | None = None
    lessons: tuple[Lesson, ...] = ()
    assignment_based: AssignmentKind = AssignmentKind.everyone
    department: str | None = None
    order: int = 0
    duration: int | None = None

    @field_validator("order", mode="before")
    @classmethod
    def _order_default(cls, v: object) -> object:
        return 0 if v in (None, "") else v

    @field_validator("assignment_based", mode="before")
    @classmethod
    def _assignment_default(cls, v: object) -> object:
        return AssignmentKind.everyone if v in (None, "") else v

    @property
    def is_ordered(self) -> bool:
        return self.order > 0
