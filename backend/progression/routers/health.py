from fastapi import APIRouter, Depends, HTTPException

from progression.core.deps import get_backend
from progression.core.errors import FetchFailure
from progression.services.backend import LmsBackend

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/health/live")
def live():
    return {"status": "live"}


@router.get("/health/ready")
async def ready(backend: LmsBackend = Depends(get_backend)):
    try:
        ok = await backend.ping()
    except FetchFailure as e:
        raise HTTPException(status_code=503, detail="lms not ready") from e
    if not ok:
        raise HTTPException(status_code=503, detail="lms not ready")
    return {"status": "ready"}
