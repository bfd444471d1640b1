from __future__ import annotations

from progression.core.errors import InconsistentData
from progression.schemas.progress import Position
from progression.schemas.tree import GATED_CONTENT_TYPES, Chapter, Content, Lesson, Module


class TreeIndex:
    """
    Read-only lookup tables over a module's lesson -> chapter -> content tree.
    Unknown ids resolve to None; callers treat that as "ignore this signal".
    """

    def __init__(self, module: Module):
        self.module = module
        self._positions: dict[str, Position] = {}
        self._chapter_lesson: dict[str, str] = {}
        self._lessons: dict[str, Lesson] = {}

        for li, lesson in enumerate(module.lessons):
            self._lessons.setdefault(lesson.id, lesson)
            for ci, chapter in enumerate(lesson.chapters):
                if chapter.id in self._positions:
                    continue
                self._positions[chapter.id] = Position(lesson_index=li, chapter_index=ci)
                self._chapter_lesson[chapter.id] = lesson.id

    @property
    def lessons(self) -> tuple[Lesson, ...]:
        return self.module.lessons

    @property
    def total_lessons(self) -> int:
        return len(self.module.lessons)

    @property
    def total_chapters(self) -> int:
        return sum(len(lesson.chapters) for lesson in self.module.lessons)

    def all_chapter_ids(self) -> list[str]:
        return [c.id for lesson in self.module.lessons for c in lesson.chapters]

    def all_lesson_ids(self) -> list[str]:
        return [lesson.id for lesson in self.module.lessons]

    def has_chapter(self, chapter_id: str | None) -> bool:
        return bool(chapter_id) and chapter_id in self._positions

    def has_lesson(self, lesson_id: str | None) -> bool:
        return bool(lesson_id) and lesson_id in self._lessons

    def lesson(self, lesson_id: str | None) -> Lesson | None:
        if not lesson_id:
            return None
        return self._lessons.get(lesson_id)

    def locate(self, chapter_id: str | None) -> Position | None:
        if not chapter_id:
            return None
        return self._positions.get(chapter_id)

    def require_chapter(self, chapter_id: str) -> Position:
        pos = self.locate(chapter_id)
        if pos is None:
            raise InconsistentData(f"chapter {chapter_id!r} not in module {self.module.id!r}")
        return pos

    def lesson_of(self, chapter_id: str | None) -> str | None:
        if not chapter_id:
            return None
        return self._chapter_lesson.get(chapter_id)

    def at(self, pos: Position) -> tuple[Lesson, Chapter] | None:
        if not (0 <= pos.lesson_index < len(self.module.lessons)):
            return None
        lesson = self.module.lessons[pos.lesson_index]
        if not (0 <= pos.chapter_index < len(lesson.chapters)):
            return None
        return lesson, lesson.chapters[pos.chapter_index]

    def first_lesson(self) -> Lesson | None:
        return self.module.lessons[0] if self.module.lessons else None

    def first_chapter(self) -> Chapter | None:
        for lesson in self.module.lessons:
            if lesson.chapters:
                return lesson.chapters[0]
        return None

    def first_position(self) -> Position | None:
        first = self.first_chapter()
        return self.locate(first.id) if first else None

    def is_terminal(self, pos: Position) -> bool:
        """True for the last chapter of the last lesson that has chapters."""
        for li in range(len(self.module.lessons) - 1, -1, -1):
            chapters = self.module.lessons[li].chapters
            if chapters:
                return pos.lesson_index == li and pos.chapter_index == len(chapters) - 1
        return False

    def step(self, pos: Position, delta: int) -> Position | None:
        """Move one chapter forward (delta=1) or back (delta=-1), crossing lesson borders."""
        ordered = [
            Position(lesson_index=li, chapter_index=ci)
            for li, lesson in enumerate(self.module.lessons)
            for ci in range(len(lesson.chapters))
        ]
        try:
            idx = ordered.index(pos)
        except ValueError:
            return None
        target = idx + delta
        if 0 <= target < len(ordered):
            return ordered[target]
        return None

    def gated_contents(self) -> list[tuple[Chapter, Content]]:
        out: list[tuple[Chapter, Content]] = []
        for lesson in self.module.lessons:
            for chapter in lesson.chapters:
                for content in chapter.contents:
                    if content.content_type in GATED_CONTENT_TYPES:
                        out.append((chapter, content))
        return out
