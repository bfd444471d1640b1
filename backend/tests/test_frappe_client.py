import json

import httpx
import pytest

from progression.core.errors import FetchFailure, WriteFailure
from progression.schemas.tree import AssignmentKind, ProgressStatus
from progression.services.frappe import FrappeClient
from progression.services.quiz_gate import AttemptKind

PREFIX = "novel_lms.novel_lms.api"


def _client(handler) -> FrappeClient:
    return FrappeClient(base_url="http://lms.test", api_prefix=PREFIX, transport=httpx.MockTransport(handler))


def _method(request: httpx.Request) -> str:
    return request.url.path.removeprefix(f"/api/method/{PREFIX}.")


@pytest.mark.asyncio
async def test_fetch_module_tree_unwraps_message_and_data():
    def handler(request):
        assert _method(request) == "module_management.get_learner_module_by_id"
        assert request.url.params["module_id"] == "MOD-1"
        return httpx.Response(
            200,
            json={
                "message": {
                    "success": True,
                    "data": {
                        "name": "MOD-1",
                        "name1": "Onboarding",
                        "assignment_based": "Department",
                        "department": "Sales",
                        "order": 2,
                        "lessons": [{"name": "L1", "lesson_name": "Basics", "chapters": [{"name": "C1", "title": "Intro"}]}],
                    },
                }
            },
        )

    client = _client(handler)
    module = await client.fetch_module_tree("MOD-1")
    await client.aclose()

    assert module.title == "Onboarding"
    assert module.assignment_based == AssignmentKind.department
    assert module.lessons[0].chapters[0].id == "C1"


@pytest.mark.asyncio
async def test_fetch_progress_record_reads_nested_progress():
    def handler(request):
        assert request.url.params["user"] == "u@example.com"
        return httpx.Response(
            200,
            json={"message": {"data": {"module": {"name": "MOD-1", "progress": {"status": "In Progress", "current_chapter": "C2"}}}}},
        )

    client = _client(handler)
    record = await client.fetch_progress_record("u@example.com", "MOD-1")
    assert record.status == ProgressStatus.in_progress
    assert record.current_chapter == "C2"


@pytest.mark.asyncio
async def test_missing_progress_is_not_started():
    client = _client(lambda request: httpx.Response(200, json={"message": {"data": {"module": {"progress": None}}}}))
    record = await client.fetch_progress_record("u", "MOD-1")
    assert record.status == ProgressStatus.not_started


@pytest.mark.asyncio
async def test_fetch_completion_data():
    def handler(request):
        assert _method(request) == "progress_tracking.get_completion_data"
        return httpx.Response(
            200,
            json={
                "message": {
                    "success": True,
                    "data": {
                        "completed_lessons": [],
                        "completed_chapters": ["C1"],
                        "in_progress_chapters": ["C2"],
                        "current_position": {"type": "Chapter", "reference_id": "C2"},
                        "total_lessons": 1,
                        "total_chapters": 2,
                        "overall_progress": 50,
                    },
                }
            },
        )

    data = await _client(handler).fetch_completion_data("u", "MOD-1")
    assert data.completed_chapters == ["C1"]
    assert data.current_position.reference_id == "C2"


@pytest.mark.asyncio
async def test_http_error_is_fetch_failure():
    client = _client(lambda request: httpx.Response(500, json={"exc_type": "ServerError"}))
    with pytest.raises(FetchFailure) as exc:
        await client.fetch_completion_data("u", "MOD-1")
    assert exc.value.operation == "progress_tracking.get_completion_data"


@pytest.mark.asyncio
async def test_api_error_payload_is_fetch_failure():
    client = _client(lambda request: httpx.Response(200, json={"message": {"success": False, "error": "Module not found"}}))
    with pytest.raises(FetchFailure):
        await client.fetch_module_tree("MOD-X")


@pytest.mark.asyncio
async def test_malformed_payload_is_fetch_failure():
    client = _client(lambda request: httpx.Response(200, json={"message": {"data": {"lessons": "nope"}}}))
    with pytest.raises(FetchFailure):
        await client.fetch_module_tree("MOD-1")


@pytest.mark.asyncio
async def test_fetch_attempt_routes_by_kind():
    seen = []

    def handler(request):
        seen.append((_method(request), dict(request.url.params)))
        if _method(request).endswith("get_quiz_progress"):
            return httpx.Response(200, json={"message": {"data": [{"name": "QP-1", "score": 9, "max_score": 10}]}})
        return httpx.Response(200, json={"message": {"data": []}})

    client = _client(handler)
    quiz = await client.fetch_attempt(AttemptKind.quiz, "QZ-1", "u")
    qa = await client.fetch_attempt(AttemptKind.question_answer, "QA-1", "u")

    assert quiz is not None and quiz.score == 9
    assert qa is None
    assert seen[0] == ("quiz_qa_progress.get_quiz_progress", {"user": "u", "quiz_id": "QZ-1"})
    assert seen[1] == ("quiz_qa_progress.get_qa_progress", {"user": "u", "question_answer": "QA-1"})


@pytest.mark.asyncio
async def test_fetch_learner_modules():
    def handler(request):
        assert request.url.params["limit"] == "100"
        return httpx.Response(
            200,
            json={"message": {"data": {"modules": [{"name": "A", "order": 1, "progress": {"status": "Completed", "progress": 1}}]}}},
        )

    modules = await _client(handler).fetch_learner_modules("u")
    assert [m.id for m in modules] == ["A"]
    assert modules[0].progress.status == ProgressStatus.completed


@pytest.mark.asyncio
async def test_write_progress_posts_json():
    bodies = []

    def handler(request):
        assert request.method == "POST"
        assert _method(request) == "progress_tracking.update_learner_progress"
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"message": {"success": True}})

    await _client(handler).write_progress("u", "MOD-1", "L1", "C1", ProgressStatus.completed)
    assert bodies == [{"user": "u", "module": "MOD-1", "lesson": "L1", "chapter": "C1", "status": "Completed"}]


@pytest.mark.asyncio
async def test_write_failure():
    client = _client(lambda request: httpx.Response(503))
    with pytest.raises(WriteFailure):
        await client.write_progress("u", "MOD-1", "L1", "C1", ProgressStatus.in_progress)
    with pytest.raises(WriteFailure):
        await client.start_module("u", "MOD-1")


@pytest.mark.asyncio
async def test_ping():
    client = _client(lambda request: httpx.Response(200, json={"message": "pong"}))
    assert await client.ping()
