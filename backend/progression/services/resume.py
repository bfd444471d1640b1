from __future__ import annotations

from typing import Callable

from progression.schemas.progress import CompletionData, Position, ProgressRecord
from progression.services.tree import TreeIndex

Resolver = Callable[[TreeIndex, ProgressRecord, CompletionData], Position | None]


def _from_record(index: TreeIndex, record: ProgressRecord, data: CompletionData) -> Position | None:
    # Written on every navigation, so this is the freshest signal.
    return index.locate(record.current_chapter)


def _from_in_progress(index: TreeIndex, record: ProgressRecord, data: CompletionData) -> Position | None:
    if not data.in_progress_chapters:
        return None
    return index.locate(data.in_progress_chapters[0])


def _from_current_position(index: TreeIndex, record: ProgressRecord, data: CompletionData) -> Position | None:
    cp = data.current_position
    if cp is None or cp.type != "Chapter":
        return None
    return index.locate(cp.reference_id)


RESOLVERS: tuple[Resolver, ...] = (
    _from_record,
    _from_in_progress,
    _from_current_position,
)


def resolve(index: TreeIndex, record: ProgressRecord, data: CompletionData) -> Position | None:
    """
    Position a returning learner should land on.

    None means either the module is Completed (route to the completion view)
    or no signal matched (start from the beginning).
    """
    if record.is_completed:
        return None
    for resolver in RESOLVERS:
        pos = resolver(index, record, data)
        if pos is not None:
            return pos
    return None
