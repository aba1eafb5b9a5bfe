"""Participant flow over HTTP: start, answer, finalize, score."""

from __future__ import annotations

import asyncio
import logging
import time

import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import exam_repo
from app.core.config import SETTINGS
from app.services.task_queue import task_queue
from tests.conftest import PARTICIPANT, Seeded, admin_auth, auth, seed_exam


def _answer(client: TestClient, seeded: Seeded, question, *labels, user=PARTICIPANT):
    return client.put(
        f"/v1/attempts/{seeded.attempt.id}/answers",
        json={
            "question_id": str(question.id),
            "option_ids": [str(seeded.opt(question, label)) for label in labels],
        },
        headers=auth(user),
    )


def test_full_attempt_flow(client: TestClient, seeded: Seeded) -> None:
    resp = client.post(f"/v1/attempts/{seeded.attempt.id}/start", headers=auth())
    assert resp.status_code == 200
    assert resp.json()["status"] == "on-going"

    assert _answer(client, seeded, seeded.q1, "A").status_code == 200
    resp = _answer(client, seeded, seeded.q2, "A", "B")
    assert resp.status_code == 200
    assert len(resp.json()["option_ids"]) == 2

    resp = client.post(f"/v1/attempts/{seeded.attempt.id}/finalize", headers=auth())
    assert resp.status_code == 200
    assert resp.json() == {
        "attempt_id": str(seeded.attempt.id),
        "status": "completed",
        "score": 3 + 5,
    }

    resp = client.get(f"/v1/attempts/{seeded.attempt.id}/score", headers=auth())
    assert resp.status_code == 200
    assert resp.json()["score"] == 8


def test_wrong_multiple_choice_costs_negative_marks(
    client: TestClient, seeded: Seeded
) -> None:
    _answer(client, seeded, seeded.q2, "A", "C")
    resp = client.post(f"/v1/attempts/{seeded.attempt.id}/finalize", headers=auth())
    assert resp.json()["score"] == -4


def test_answers_after_finalize_are_rejected(
    client: TestClient, seeded: Seeded
) -> None:
    client.post(f"/v1/attempts/{seeded.attempt.id}/finalize", headers=auth())
    resp = _answer(client, seeded, seeded.q1, "A")
    assert resp.status_code == 422
    assert resp.json()["detail"] == "Exam already submitted"


def test_second_finalize_is_rejected(client: TestClient, seeded: Seeded) -> None:
    client.post(f"/v1/attempts/{seeded.attempt.id}/finalize", headers=auth())
    resp = client.post(f"/v1/attempts/{seeded.attempt.id}/finalize", headers=auth())
    assert resp.status_code == 422


def test_single_choice_with_two_options_is_rejected(
    client: TestClient, seeded: Seeded
) -> None:
    resp = _answer(client, seeded, seeded.q1, "A", "B")
    assert resp.status_code == 422


def test_resubmitting_identical_answer_is_idempotent(
    client: TestClient, seeded: Seeded
) -> None:
    first = _answer(client, seeded, seeded.q2, "B", "A")
    second = _answer(client, seeded, seeded.q2, "B", "A")
    assert first.json() == second.json()

    stored = asyncio.run(
        exam_repo.get_stored_answers(seeded.attempt.id, seeded.q2.id)
    )
    assert len(stored) == 2


def test_empty_selection_clears_question(client: TestClient, seeded: Seeded) -> None:
    _answer(client, seeded, seeded.q1, "A")
    resp = _answer(client, seeded, seeded.q1)
    assert resp.status_code == 200
    assert resp.json()["option_ids"] == []


def test_unknown_option_is_404(client: TestClient, seeded: Seeded) -> None:
    resp = client.put(
        f"/v1/attempts/{seeded.attempt.id}/answers",
        json={
            "question_id": str(seeded.q1.id),
            "option_ids": [str(seeded.opt(seeded.q2, "A"))],
        },
        headers=auth(),
    )
    assert resp.status_code == 404


def test_other_user_cannot_touch_attempt(client: TestClient, seeded: Seeded) -> None:
    intruder = auth("intruder")
    assert (
        client.post(
            f"/v1/attempts/{seeded.attempt.id}/start", headers=intruder
        ).status_code
        == 403
    )
    assert _answer(client, seeded, seeded.q1, "A", user="intruder").status_code == 403
    assert (
        client.post(
            f"/v1/attempts/{seeded.attempt.id}/finalize", headers=intruder
        ).status_code
        == 403
    )


def test_answer_after_window_is_forbidden(client: TestClient) -> None:
    now = int(time.time())
    seeded = seed_exam(starts_at=now - 7200, ends_at=now - 3600)
    resp = _answer(client, seeded, seeded.q1, "A")
    assert resp.status_code == 403
    assert "allowed time window" in resp.json()["detail"]


def test_start_after_window_is_rejected(client: TestClient) -> None:
    now = int(time.time())
    seeded = seed_exam(starts_at=now - 7200, ends_at=now - 3600)
    resp = client.post(f"/v1/attempts/{seeded.attempt.id}/start", headers=auth())
    assert resp.status_code == 422


def test_finalize_before_start_is_rejected(client: TestClient) -> None:
    now = int(time.time())
    seeded = seed_exam(starts_at=now + 3600, ends_at=now + 7200)
    resp = client.post(f"/v1/attempts/{seeded.attempt.id}/finalize", headers=auth())
    assert resp.status_code == 422
    assert resp.json()["detail"] == "Exam is not started yet"


def test_finalize_after_window_end_still_scores(client: TestClient) -> None:
    now = int(time.time())
    seeded = seed_exam(starts_at=now - 7200, ends_at=now - 3600)
    resp = client.post(f"/v1/attempts/{seeded.attempt.id}/finalize", headers=auth())
    assert resp.status_code == 200
    assert resp.json()["score"] == 0


def test_score_before_finalize_is_rejected(client: TestClient, seeded: Seeded) -> None:
    resp = client.get(f"/v1/attempts/{seeded.attempt.id}/score", headers=auth())
    assert resp.status_code == 422


def test_owner_admin_reads_participant_score(
    client: TestClient, seeded: Seeded
) -> None:
    _answer(client, seeded, seeded.q1, "B")
    client.post(f"/v1/attempts/{seeded.attempt.id}/finalize", headers=auth())
    resp = client.get(f"/v1/attempts/{seeded.attempt.id}/score", headers=admin_auth())
    assert resp.status_code == 200
    assert resp.json()["score"] == -2


def test_unknown_attempt_is_404(client: TestClient) -> None:
    resp = client.post(
        "/v1/attempts/00000000-0000-0000-0000-000000000000/start", headers=auth()
    )
    assert resp.status_code == 404


def test_attempt_endpoints_require_auth(client: TestClient, seeded: Seeded) -> None:
    resp = client.post(f"/v1/attempts/{seeded.attempt.id}/start")
    assert resp.status_code == 401


def test_mark_for_review(client: TestClient, seeded: Seeded) -> None:
    resp = client.patch(
        f"/v1/attempts/{seeded.attempt.id}/review",
        json={"is_marked": True},
        headers=auth(),
    )
    assert resp.status_code == 200
    assert resp.json()["is_marked"] is True


def test_finalize_enqueues_result_notification(
    client: TestClient, seeded: Seeded
) -> None:
    _answer(client, seeded, seeded.q1, "A")
    client.post(f"/v1/attempts/{seeded.attempt.id}/finalize", headers=auth())

    task = asyncio.run(task_queue.dequeue(SETTINGS.results_queue))
    assert task is not None
    assert task.payload == {
        "attempt_id": str(seeded.attempt.id),
        "assessment_id": str(seeded.assessment.id),
        "participant_id": PARTICIPANT,
        "score": 3,
    }


def test_rejected_finalize_enqueues_nothing(client: TestClient, seeded: Seeded) -> None:
    client.post(f"/v1/attempts/{seeded.attempt.id}/finalize", headers=auth("intruder"))
    length = asyncio.run(task_queue.queue_length(SETTINGS.results_queue))
    assert length == 0


def test_rejection_is_logged_with_error_and_status(
    client: TestClient, seeded: Seeded, caplog: pytest.LogCaptureFixture
) -> None:
    client.post(f"/v1/attempts/{seeded.attempt.id}/finalize", headers=auth())
    with caplog.at_level(logging.WARNING, logger="app.api.dependencies"):
        resp = client.post(f"/v1/attempts/{seeded.attempt.id}/finalize", headers=auth())

    assert resp.status_code == 422
    messages = [r.getMessage() for r in caplog.records]
    assert (
        "Request rejected: Exam already submitted (InvalidStateError -> 422)"
        in messages
    )
