from __future__ import annotations

from fastapi import APIRouter, Depends

from progression.core.deps import get_backend
from progression.core.security import get_current_learner
from progression.schemas.dashboard import DashboardResponse
from progression.services.backend import LmsBackend
from progression.services.dashboard import build_dashboard

router = APIRouter(prefix="/learner", tags=["dashboard"])


@router.get("/dashboard", response_model=DashboardResponse)
async def learner_dashboard(
    learner: str = Depends(get_current_learner),
    backend: LmsBackend = Depends(get_backend),
):
    modules = await backend.fetch_learner_modules(learner)
    return build_dashboard(modules)
