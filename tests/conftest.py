from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import exam_repo
from app.main import app
from app.models.assessment import MULTIPLE_CHOICE, SINGLE_CHOICE, Assessment, Question
from app.models.attempt import Attempt
from app.services import token_service
from app.services.task_queue import InMemoryTaskQueue, task_queue

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

ADMIN = "exam-admin"
PARTICIPANT = "participant-1"


@pytest.fixture(autouse=True)
def reset_exam_repo() -> None:
    """Drop every assessment, attempt and answer between tests."""
    exam_repo.clear()


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    if isinstance(task_queue, InMemoryTaskQueue):
        task_queue.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = PARTICIPANT,
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth(username: str = PARTICIPANT, roles: list[str] | None = None) -> dict:
    return {"Authorization": f"Bearer {mint_token(username, roles)}"}


def admin_auth(username: str = ADMIN) -> dict:
    return auth(username, ["admin"])


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


class Seeded:
    """Handles to a seeded assessment: one single and one multiple choice.

    Q1 (single_choice, negative_marks=-2): A correct 3 pts, B wrong
    Q2 (multiple_choice, negative_marks=-4): A 2 pts, B 3 pts, C wrong
    """

    def __init__(
        self, assessment: Assessment, q1: Question, q2: Question, attempt: Attempt
    ) -> None:
        self.assessment = assessment
        self.q1 = q1
        self.q2 = q2
        self.attempt = attempt

    def opt(self, question: Question, label: str):
        return next(o.id for o in question.options if o.label == label)


def seed_exam(
    *,
    starts_at: int | None = None,
    ends_at: int | None = None,
    participant_id: str = PARTICIPANT,
    admin_id: str = ADMIN,
) -> Seeded:
    """Create a published, currently running assessment with one assigned attempt."""
    now = int(time.time())
    starts_at = now - 60 if starts_at is None else starts_at
    ends_at = now + 3600 if ends_at is None else ends_at

    assessment = Assessment.new(
        admin_id=admin_id, title="Algebra", starts_at=starts_at, ends_at=ends_at
    )
    q1 = Question.new(
        assessment_id=assessment.id,
        prompt="2 + 2?",
        type=SINGLE_CHOICE,
        negative_marks=-2,
        options=[("A", True, 3), ("B", False, 0)],
    )
    q2 = Question.new(
        assessment_id=assessment.id,
        prompt="Primes?",
        type=MULTIPLE_CHOICE,
        negative_marks=-4,
        options=[("A", True, 2), ("B", True, 3), ("C", False, 0)],
    )
    attempt = Attempt.new(participant_id=participant_id, assessment_id=assessment.id)

    async def _seed() -> None:
        await exam_repo.add_assessment(assessment)
        await exam_repo.add_question(q1)
        await exam_repo.add_question(q2)
        await exam_repo.set_published(assessment.id)
        await exam_repo.add_attempt(attempt)

    asyncio.run(_seed())
    return Seeded(assessment, q1, q2, attempt)


@pytest.fixture
def seeded() -> Seeded:
    return seed_exam()
