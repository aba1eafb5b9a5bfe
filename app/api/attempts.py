"""Participant-facing attempt endpoints.

  POST  /v1/attempts/{attempt_id}/start     pending -> on-going
  PUT   /v1/attempts/{attempt_id}/answers   replace one question's selection
  POST  /v1/attempts/{attempt_id}/finalize  -> completed, score stored
  GET   /v1/attempts/{attempt_id}/score
  PATCH /v1/attempts/{attempt_id}/review    flag the attempt for review

A successful finalize also queues a result notification for the worker.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, Field

from app.api.dependencies import ExamRepoDep, UserDep, raise_http
from app.core.config import SETTINGS
from app.models.attempt import Answer, Attempt
from app.services import attempt_service
from app.services.errors import ExamServiceError
from app.services.task_queue import enqueue_and_track, task_queue

router = APIRouter(prefix="/v1/attempts", tags=["attempts"])


class AttemptOut(BaseModel):
    id: UUID
    assessment_id: UUID
    participant_id: str
    status: str
    score: int | None
    is_marked: bool

    @classmethod
    def from_attempt(cls, attempt: Attempt) -> AttemptOut:
        return cls(
            id=attempt.id,
            assessment_id=attempt.assessment_id,
            participant_id=attempt.participant_id,
            status=attempt.status,
            score=attempt.score,
            is_marked=attempt.is_marked,
        )


class AnswerIn(BaseModel):
    question_id: UUID
    option_ids: list[UUID] = Field(default_factory=list)


class AnswersOut(BaseModel):
    question_id: UUID
    option_ids: list[UUID]

    @classmethod
    def from_answers(cls, question_id: UUID, answers: list[Answer]) -> AnswersOut:
        return cls(question_id=question_id, option_ids=[a.option_id for a in answers])


class FinalizeOut(BaseModel):
    attempt_id: UUID
    status: str
    score: int


class ScoreOut(BaseModel):
    attempt_id: UUID
    score: int


class ReviewIn(BaseModel):
    is_marked: bool


@router.post("/{attempt_id}/start", response_model=AttemptOut)
async def start_attempt(
    attempt_id: UUID, principal: UserDep, repo: ExamRepoDep
) -> AttemptOut:
    try:
        attempt = await attempt_service.start_attempt(repo, principal, attempt_id)
    except ExamServiceError as e:
        raise_http(e)
    return AttemptOut.from_attempt(attempt)


@router.put("/{attempt_id}/answers", response_model=AnswersOut)
async def submit_answer(
    attempt_id: UUID, body: AnswerIn, principal: UserDep, repo: ExamRepoDep
) -> AnswersOut:
    try:
        stored = await attempt_service.submit_answer(
            repo, principal, attempt_id, body.question_id, body.option_ids
        )
    except ExamServiceError as e:
        raise_http(e)
    return AnswersOut.from_answers(body.question_id, stored)


@router.post("/{attempt_id}/finalize", response_model=FinalizeOut)
async def finalize_attempt(
    attempt_id: UUID, principal: UserDep, repo: ExamRepoDep
) -> FinalizeOut:
    try:
        attempt = await attempt_service.finalize_attempt(repo, principal, attempt_id)
    except ExamServiceError as e:
        raise_http(e)

    await enqueue_and_track(
        task_queue,
        SETTINGS.results_queue,
        {
            "attempt_id": str(attempt.id),
            "assessment_id": str(attempt.assessment_id),
            "participant_id": attempt.participant_id,
            "score": attempt.score,
        },
    )
    return FinalizeOut(attempt_id=attempt.id, status=attempt.status, score=attempt.score)


@router.get("/{attempt_id}/score", response_model=ScoreOut)
async def get_score(attempt_id: UUID, principal: UserDep, repo: ExamRepoDep) -> ScoreOut:
    try:
        score = await attempt_service.get_score(repo, principal, attempt_id)
    except ExamServiceError as e:
        raise_http(e)
    return ScoreOut(attempt_id=attempt_id, score=score)


@router.patch("/{attempt_id}/review", response_model=AttemptOut)
async def mark_for_review(
    attempt_id: UUID, body: ReviewIn, principal: UserDep, repo: ExamRepoDep
) -> AttemptOut:
    try:
        attempt = await attempt_service.mark_for_review(
            repo, principal, attempt_id, body.is_marked
        )
    except ExamServiceError as e:
        raise_http(e)
    return AttemptOut.from_attempt(attempt)
