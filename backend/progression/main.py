import uuid
import time
import json
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from progression.core.config import settings
from progression.core.errors import (
    AccessDenied,
    CompletionRefused,
    FetchFailure,
    InconsistentData,
    ProgressionError,
    WriteFailure,
)
from progression.routers import dashboard, health, learner
from progression.services.backend import LmsBackend
from progression.services.frappe import FrappeClient
from progression.services.session import SessionRegistry

_STATUS_BY_CODE = {
    "not_started": 409,
    "not_completed": 409,
}


def _status_for(exc: ProgressionError) -> int:
    if isinstance(exc, AccessDenied):
        return 403
    if isinstance(exc, CompletionRefused):
        return 409
    if isinstance(exc, (FetchFailure, WriteFailure)):
        return 502
    if isinstance(exc, InconsistentData):
        return 404
    return _STATUS_BY_CODE.get(exc.error_code, 400)


def create_app(backend: LmsBackend | None = None) -> FastAPI:
    logging.basicConfig(
        level=str(settings.log_level or "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    app = FastAPI(title="Progression Engine API", version="1.0.0")

    logger = logging.getLogger("progression")
    logging.getLogger("httpx").setLevel(logging.WARNING)

    allow_origins = [o.strip() for o in str(settings.cors_allow_origins or "").split(",") if o.strip()]
    if "*" in allow_origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS must not include '*' when allow_credentials=true")

    is_prod = (settings.app_env or "").strip().lower() in {"prod", "production"}

    if backend is None:
        backend = FrappeClient()
    app.state.backend = backend
    app.state.sessions = SessionRegistry(backend)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        t0 = time.perf_counter()
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = rid
        status_code: int | None = None
        try:
            response = await call_next(request)
            status_code = int(getattr(response, "status_code", 0) or 0)
        except Exception:
            status_code = 500
            raise
        finally:
            dur_ms = int((time.perf_counter() - t0) * 1000)
            path = request.url.path
            if not path.startswith("/health"):
                logger.info(
                    json.dumps(
                        {
                            "ts": datetime.now(timezone.utc).isoformat(),
                            "rid": rid,
                            "user_id": getattr(request.state, "user_id", None),
                            "method": request.method,
                            "path": path,
                            "status": status_code,
                            "duration_ms": dur_ms,
                        },
                        ensure_ascii=False,
                    )
                )
        response.headers["X-Request-ID"] = rid
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        if is_prod:
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        return response

    def _request_id(request: Request) -> str | None:
        rid = getattr(getattr(request, "state", None), "request_id", None)
        rid = str(rid or "").strip()
        return rid or None

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        rid = _request_id(request)
        detail = exc.detail
        if isinstance(detail, dict):
            error_code = str(detail.get("error_code") or "http_error")
            error_message = str(detail.get("error_message") or detail.get("detail") or "request failed")
        else:
            error_code = "forbidden" if int(exc.status_code) == 403 else "unauthorized" if int(exc.status_code) == 401 else "http_error"
            error_message = str(detail or "request failed")

        payload = {
            "ok": False,
            "error_code": error_code,
            "error_message": error_message,
            "request_id": rid,
        }
        return JSONResponse(status_code=int(exc.status_code), content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(ProgressionError)
    async def progression_error_handler(request: Request, exc: ProgressionError):
        rid = _request_id(request)
        status_code = _status_for(exc)
        payload = {
            "ok": False,
            "error_code": exc.error_code,
            "error_message": exc.error_message,
            "request_id": rid,
        }
        if isinstance(exc, AccessDenied):
            payload["reason"] = exc.reason
        elif isinstance(exc, CompletionRefused):
            payload["incomplete_titles"] = exc.incomplete_titles
        elif isinstance(exc, FetchFailure):
            # upstream detail stays in the log
            logger.warning("upstream read failed rid=%s op=%s: %s", rid, exc.operation, exc.error_message)
            payload["error_message"] = "Failed to load module data. Please try again."
        elif isinstance(exc, WriteFailure):
            logger.warning("upstream write failed rid=%s op=%s: %s", rid, exc.operation, exc.error_message)
            payload["error_message"] = "Failed to save progress. Please try again."
        return JSONResponse(status_code=status_code, content=payload)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        rid = _request_id(request)
        logger.exception("unhandled exception", extra={"rid": rid})
        return JSONResponse(
            status_code=500,
            content={
                "ok": False,
                "error_code": "internal_error",
                "error_message": "internal server error",
                "request_id": rid,
            },
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"] if is_prod else ["*"],
        allow_headers=["content-type", "x-request-id", "x-learner"] if is_prod else ["*"],
    )

    app.include_router(health.router)
    app.include_router(learner.router)
    app.include_router(dashboard.router)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        app.state.sessions.close_all()
        aclose = getattr(app.state.backend, "aclose", None)
        if aclose is not None:
            await aclose()

    return app


app = create_app()
