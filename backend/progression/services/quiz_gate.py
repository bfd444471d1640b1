from __future__ import annotations

import asyncio
import enum
import logging
from typing import Awaitable, Callable

from progression.schemas.progress import AttemptRecord, GateResult, ScoreEntry
from progression.schemas.tree import QUIZ, Chapter, Content
from progression.services.tree import TreeIndex

logger = logging.getLogger("progression.quiz_gate")


class AttemptKind(str, enum.Enum):
    quiz = "Quiz"
    question_answer = "Question Answer"


AttemptLookup = Callable[[AttemptKind, str, str], Awaitable[AttemptRecord | None]]


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _title(chapter: Chapter, content: Content) -> str:
    return str(content.title or content.content_reference or chapter.title or content.id)


async def check_completion(index: TreeIndex, lookup: AttemptLookup, user: str) -> GateResult:
    """
    Every Quiz needs a scored attempt, every Question Answer needs an attempt record.
    Question Answer scores are reported only once graded (score_added).
    """
    items = index.gated_contents()
    if not items:
        return GateResult(all_completed=True)

    async def _fetch(content: Content) -> AttemptRecord | None:
        kind = AttemptKind.quiz if content.content_type == QUIZ else AttemptKind.question_answer
        return await lookup(kind, content.content_reference or content.id, user)

    attempts = await asyncio.gather(*(_fetch(content) for _, content in items))

    scores: list[ScoreEntry] = []
    incomplete: list[str] = []
    for (chapter, content), attempt in zip(items, attempts):
        title = _title(chapter, content)
        if content.content_type == QUIZ:
            if attempt is None or not _is_number(attempt.score):
                incomplete.append(title)
                continue
            scores.append(ScoreEntry(title=title, score=attempt.score, max_score=attempt.max_score, type=QUIZ))
        else:
            if attempt is None:
                incomplete.append(title)
                continue
            if attempt.score_added and _is_number(attempt.score):
                scores.append(
                    ScoreEntry(
                        title=title,
                        score=attempt.score,
                        max_score=attempt.max_score,
                        type=content.content_type or "Question Answer",
                    )
                )

    if incomplete:
        logger.info("completion gate: %d of %d items incomplete", len(incomplete), len(items))
    return GateResult(all_completed=not incomplete, scores=scores, incomplete_titles=incomplete)
