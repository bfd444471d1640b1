from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from progression.core.config import settings
from progression.core.dedup import RequestDeduplicator
from progression.core.errors import FetchFailure, WriteFailure
from progression.schemas.dashboard import LearnerModule
from progression.schemas.progress import AttemptRecord, CompletionData, ProgressRecord
from progression.schemas.tree import Module, ProgressStatus
from progression.services.quiz_gate import AttemptKind

logger = logging.getLogger("progression.frappe")


def _unwrap(payload: Any) -> Any:
    # Frappe wraps method results in {"message": ...}; LMS methods nest theirs under "data".
    if isinstance(payload, dict) and "message" in payload:
        payload = payload["message"]
    if isinstance(payload, dict) and "data" in payload:
        payload = payload["data"]
    return payload


def _error_of(payload: Any) -> str | None:
    if isinstance(payload, dict):
        err = payload.get("error") or payload.get("exc_type")
        if err:
            return str(err)
    return None


class FrappeClient:
    """Async client for the LMS document API (Frappe `/api/method/...` endpoints)."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_prefix: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        dedup: RequestDeduplicator | None = None,
    ):
        self.api_prefix = (api_prefix or settings.lms_api_prefix).strip(".")
        headers = {"Accept": "application/json"}
        if settings.lms_api_key and settings.lms_api_secret:
            headers["Authorization"] = f"token {settings.lms_api_key}:{settings.lms_api_secret}"

        timeout = httpx.Timeout(
            connect=float(settings.lms_timeout_connect),
            read=float(settings.lms_timeout_read),
            write=float(settings.lms_timeout_read),
            pool=float(settings.lms_timeout_connect),
        )
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.lms_base_url).rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self.dedup = dedup or RequestDeduplicator(default_ttl=settings.module_dedup_ttl_seconds)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _path(self, method: str) -> str:
        return f"/api/method/{self.api_prefix}.{method}"

    async def _get(self, method: str, params: dict[str, Any], *, ttl: float) -> Any:
        async def _do() -> Any:
            try:
                r = await self._client.get(self._path(method), params=params)
                r.raise_for_status()
                payload = r.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("GET %s failed: %s", method, e)
                raise FetchFailure(method, str(e) or type(e).__name__) from e
            data = _unwrap(payload)
            err = _error_of(data)
            if err:
                raise FetchFailure(method, err)
            return data

        return await self.dedup.run(method, params, _do, ttl=ttl)

    async def _post(self, method: str, body: dict[str, Any]) -> Any:
        try:
            r = await self._client.post(self._path(method), json=body)
            r.raise_for_status()
            payload = r.json() if r.content else {}
        except (httpx.HTTPError, ValueError) as e:
            raise WriteFailure(method, str(e) or type(e).__name__) from e
        data = _unwrap(payload)
        err = _error_of(data)
        if err:
            raise WriteFailure(method, err)
        return data

    # --- reads -----------------------------------------------------------

    async def fetch_module_tree(self, module_id: str) -> Module:
        method = "module_management.get_learner_module_by_id"
        data = await self._get(method, {"module_id": module_id}, ttl=settings.module_dedup_ttl_seconds)
        if isinstance(data, dict) and isinstance(data.get("module"), dict):
            data = data["module"]
        try:
            return Module.model_validate(data)
        except ValidationError as e:
            raise FetchFailure(method, "malformed module payload") from e

    async def fetch_progress_record(self, user: str, module_id: str) -> ProgressRecord:
        method = "progress_tracking.get_learner_progress"
        data = await self._get(
            method, {"user": user, "module": module_id}, ttl=settings.progress_dedup_ttl_seconds
        )
        if isinstance(data, dict) and isinstance(data.get("module"), dict):
            data = data["module"]
        if isinstance(data, dict) and "progress" in data and isinstance(data["progress"], (dict, type(None))):
            data = data["progress"]
        if not data:
            return ProgressRecord()
        try:
            return ProgressRecord.model_validate(data)
        except ValidationError as e:
            raise FetchFailure(method, "malformed progress payload") from e

    async def fetch_completion_data(self, user: str, module_id: str) -> CompletionData:
        method = "progress_tracking.get_completion_data"
        data = await self._get(
            method, {"user": user, "module": module_id}, ttl=settings.progress_dedup_ttl_seconds
        )
        if not data:
            return CompletionData()
        try:
            return CompletionData.model_validate(data)
        except ValidationError as e:
            raise FetchFailure(method, "malformed completion payload") from e

    async def fetch_attempt(self, kind: AttemptKind, item_id: str, user: str) -> AttemptRecord | None:
        if kind == AttemptKind.quiz:
            method, params = "quiz_qa_progress.get_quiz_progress", {"user": user, "quiz_id": item_id}
        else:
            method, params = "quiz_qa_progress.get_qa_progress", {"user": user, "question_answer": item_id}
        data = await self._get(method, params, ttl=settings.progress_dedup_ttl_seconds)
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            return None
        try:
            return AttemptRecord.model_validate(data)
        except ValidationError as e:
            raise FetchFailure(method, "malformed attempt payload") from e

    async def fetch_learner_modules(self, user: str) -> list[LearnerModule]:
        method = "module_management.get_learner_module_data"
        data = await self._get(
            method, {"user": user, "limit": 100, "offset": 0}, ttl=settings.module_dedup_ttl_seconds
        )
        rows = data.get("modules", []) if isinstance(data, dict) else (data or [])
        try:
            return [LearnerModule.model_validate(row) for row in rows]
        except ValidationError as e:
            raise FetchFailure(method, "malformed module list payload") from e

    # --- writes ----------------------------------------------------------

    async def write_progress(
        self,
        user: str,
        module_id: str,
        lesson: str,
        chapter: str,
        status: ProgressStatus,
    ) -> None:
        await self._post(
            "progress_tracking.update_learner_progress",
            {"user": user, "module": module_id, "lesson": lesson, "chapter": chapter, "status": status.value},
        )

    async def start_module(self, user: str, module_id: str) -> None:
        await self._post("progress_tracking.add_learner_progress", {"user": user, "module": module_id})

    async def ping(self) -> bool:
        try:
            r = await self._client.get("/api/method/ping")
            r.raise_for_status()
            payload = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise FetchFailure("ping", str(e) or type(e).__name__) from e
        return _unwrap(payload) == "pong"
