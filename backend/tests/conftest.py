import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from progression.core.errors import FetchFailure, WriteFailure
from progression.main import create_app
from progression.schemas.dashboard import LearnerModule
from progression.schemas.progress import AttemptRecord, CompletionData, CurrentPosition, ProgressRecord
from progression.schemas.tree import Module, ProgressStatus
from progression.services.quiz_gate import AttemptKind

LEARNER = "learner@example.com"


def make_module(module_id: str = "MOD-1", *, gated: bool = False, **extra) -> Module:
    """Two lessons with two chapters each; optionally a quiz and a question answer in lesson 2."""
    c3_contents = []
    c4_contents = []
    if gated:
        c3_contents = [{"name": "CNT-QA", "content_type": "Question Answer", "content_reference": "QA-1", "title": "Reflection"}]
        c4_contents = [{"name": "CNT-QZ", "content_type": "Quiz", "content_reference": "QZ-1", "title": "Final quiz"}]
    payload = {
        "name": module_id,
        "name1": f"Module {module_id}",
        "lessons": [
            {
                "name": "L1",
                "lesson_name": "Basics",
                "chapters": [
                    {"name": "C1", "title": "Intro", "contents": [{"name": "CNT-1", "content_type": "Text Content"}]},
                    {"name": "C2", "title": "Setup"},
                ],
            },
            {
                "name": "L2",
                "lesson_name": "Advanced",
                "chapters": [
                    {"name": "C3", "title": "Deep dive", "contents": c3_contents},
                    {"name": "C4", "title": "Wrap up", "contents": c4_contents},
                ],
            },
        ],
    }
    payload.update(extra)
    return Module.model_validate(payload)


class FakeBackend:
    """In-memory LmsBackend that behaves like the document API for one or more learners."""

    def __init__(self):
        self.modules: dict[str, Module] = {}
        self.records: dict[tuple[str, str], ProgressRecord] = {}
        self.facts: dict[tuple[str, str], CompletionData] = {}
        self.attempts: dict[tuple[AttemptKind, str], AttemptRecord] = {}
        self.learner_modules: list[LearnerModule] = []

        self.writes: list[tuple[str, str, ProgressStatus]] = []
        self.started: list[tuple[str, str]] = []
        self.calls: dict[str, int] = {}
        self.fail: set[str] = set()

    def add_module(self, module: Module) -> Module:
        self.modules[module.id] = module
        return module

    def set_record(self, user: str, module_id: str, **fields) -> ProgressRecord:
        record = ProgressRecord.model_validate(fields)
        self.records[(user, module_id)] = record
        return record

    def set_facts(self, user: str, module_id: str, **fields) -> CompletionData:
        data = CompletionData.model_validate(fields)
        self.facts[(user, module_id)] = data
        return data

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1
        if name in self.fail:
            if name in {"write_progress", "start_module"}:
                raise WriteFailure(name, "simulated outage")
            raise FetchFailure(name, "simulated outage")

    async def fetch_module_tree(self, module_id: str) -> Module:
        self._count("fetch_module_tree")
        if module_id not in self.modules:
            raise FetchFailure("fetch_module_tree", f"module {module_id} not found")
        return self.modules[module_id]

    async def fetch_progress_record(self, user: str, module_id: str) -> ProgressRecord:
        self._count("fetch_progress_record")
        return self.records.get((user, module_id), ProgressRecord())

    async def fetch_completion_data(self, user: str, module_id: str) -> CompletionData:
        self._count("fetch_completion_data")
        return self.facts.get((user, module_id), CompletionData())

    async def write_progress(self, user, module_id, lesson, chapter, status):
        self._count("write_progress")
        self.writes.append((lesson, chapter, status))

        key = (user, module_id)
        facts = self.facts.get(key, CompletionData())
        completed = list(facts.completed_chapters)
        in_progress = [c for c in facts.in_progress_chapters if c != chapter]
        if status == ProgressStatus.completed:
            if chapter not in completed:
                completed.append(chapter)
        elif chapter not in completed:
            in_progress = [chapter]
        self.facts[key] = facts.model_copy(
            update={
                "completed_chapters": completed,
                "in_progress_chapters": in_progress,
                "current_position": CurrentPosition(type="Chapter", reference_id=chapter),
            }
        )

        record = self.records.get(key, ProgressRecord())
        all_chapters = [c.id for lesson_ in self.modules[module_id].lessons for c in lesson_.chapters]
        record_status = ProgressStatus.in_progress
        if record.is_completed or set(all_chapters).issubset(completed):
            record_status = ProgressStatus.completed
        self.records[key] = record.model_copy(
            update={"status": record_status, "current_lesson": lesson, "current_chapter": chapter}
        )

    async def fetch_attempt(self, kind, item_id, user):
        self._count("fetch_attempt")
        return self.attempts.get((kind, item_id))

    async def start_module(self, user: str, module_id: str) -> None:
        self._count("start_module")
        self.started.append((user, module_id))
        self.records[(user, module_id)] = ProgressRecord(status=ProgressStatus.in_progress)

    async def fetch_learner_modules(self, user: str) -> list[LearnerModule]:
        self._count("fetch_learner_modules")
        return list(self.learner_modules)

    async def ping(self) -> bool:
        self._count("ping")
        return True


@pytest.fixture()
def backend():
    fake = FakeBackend()
    fake.add_module(make_module())
    return fake


@pytest.fixture()
def client(backend):
    app = create_app(backend=backend)
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def learner_headers():
    return {"X-Learner": LEARNER}
