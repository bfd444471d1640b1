from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from progression.core.deps import get_backend, get_sessions
from progression.core.security import get_current_learner
from progression.schemas.progress import GateResult, JumpRequest, ModuleView
from progression.services.backend import LmsBackend
from progression.services.quiz_gate import check_completion
from progression.services.session import ModuleSession, SessionRegistry

router = APIRouter(prefix="/learner/modules", tags=["learner"])


def _module_id(value: str) -> str:
    mid = (value or "").strip()
    if not mid:
        raise HTTPException(status_code=400, detail="invalid module_id")
    return mid


async def _session(module_id: str, learner: str, sessions: SessionRegistry) -> ModuleSession:
    return await sessions.open(learner, _module_id(module_id))


@router.get("/{module_id}", response_model=ModuleView)
async def module_state(
    module_id: str,
    learner: str = Depends(get_current_learner),
    sessions: SessionRegistry = Depends(get_sessions),
):
    session = await _session(module_id, learner, sessions)
    return session.view()


@router.post("/{module_id}/start", response_model=ModuleView)
async def start_module(
    module_id: str,
    learner: str = Depends(get_current_learner),
    sessions: SessionRegistry = Depends(get_sessions),
):
    session = await _session(module_id, learner, sessions)
    return await session.start()


@router.post("/{module_id}/next", response_model=ModuleView)
async def next_chapter(
    module_id: str,
    learner: str = Depends(get_current_learner),
    sessions: SessionRegistry = Depends(get_sessions),
):
    session = await _session(module_id, learner, sessions)
    return await session.next()


@router.post("/{module_id}/previous", response_model=ModuleView)
async def previous_chapter(
    module_id: str,
    learner: str = Depends(get_current_learner),
    sessions: SessionRegistry = Depends(get_sessions),
):
    session = await _session(module_id, learner, sessions)
    return await session.previous()


@router.post("/{module_id}/jump", response_model=ModuleView)
async def jump(
    module_id: str,
    body: JumpRequest,
    learner: str = Depends(get_current_learner),
    sessions: SessionRegistry = Depends(get_sessions),
):
    session = await _session(module_id, learner, sessions)
    return await session.jump(body.lesson_id, body.chapter_id)


@router.post("/{module_id}/review", response_model=ModuleView)
async def review(
    module_id: str,
    learner: str = Depends(get_current_learner),
    sessions: SessionRegistry = Depends(get_sessions),
):
    session = await _session(module_id, learner, sessions)
    return session.review()


@router.post("/{module_id}/refresh", response_model=ModuleView)
async def refresh(
    module_id: str,
    learner: str = Depends(get_current_learner),
    sessions: SessionRegistry = Depends(get_sessions),
):
    session = await _session(module_id, learner, sessions)
    session.store.invalidate()
    await session.store.refresh()
    return session.view()


@router.get("/{module_id}/gate", response_model=GateResult)
async def completion_gate(
    module_id: str,
    learner: str = Depends(get_current_learner),
    sessions: SessionRegistry = Depends(get_sessions),
    backend: LmsBackend = Depends(get_backend),
):
    session = await _session(module_id, learner, sessions)
    return await check_completion(session.index, backend.fetch_attempt, learner)


@router.delete("/{module_id}/session")
def close_session(
    module_id: str,
    learner: str = Depends(get_current_learner),
    sessions: SessionRegistry = Depends(get_sessions),
):
    closed = sessions.close(learner, _module_id(module_id))
    return {"ok": True, "closed": closed}
