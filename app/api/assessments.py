"""Assessment authoring endpoints (admin) plus read access for participants.

  POST   /v1/assessments                          create (admin)
  GET    /v1/assessments/{id}                     owner or assigned participant
  POST   /v1/assessments/{id}/questions           bulk add while a draft
  POST   /v1/assessments/{id}/publish
  DELETE /v1/assessments/{id}                     not while running
  POST   /v1/assessments/{id}/participants        assign -> pending attempt
  GET    /v1/assessments/{id}/results             after the window closes

Correct answers and option points are only shown to the owning admin.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Response, status
from pydantic import BaseModel, Field, model_validator

from app.api.attempts import AttemptOut
from app.api.dependencies import AdminDep, ExamRepoDep, UserDep, raise_http
from app.models.assessment import Assessment, Question, QuestionType
from app.services import assessment_service
from app.services.assessment_service import QuestionDraft
from app.services.errors import ExamServiceError

router = APIRouter(prefix="/v1/assessments", tags=["assessments"])


class AssessmentIn(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    starts_at: int
    ends_at: int

    @model_validator(mode="after")
    def _window_is_ordered(self) -> AssessmentIn:
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class OptionIn(BaseModel):
    label: str = Field(min_length=1)
    is_correct: bool = False
    points: Annotated[int, Field(ge=0)] = 0


class QuestionIn(BaseModel):
    prompt: str = Field(min_length=1)
    type: QuestionType = "single_choice"
    negative_marks: Annotated[int, Field(le=0)] = 0
    options: list[OptionIn] = Field(min_length=1)


class QuestionsIn(BaseModel):
    questions: list[QuestionIn] = Field(min_length=1)


class OptionOut(BaseModel):
    id: UUID
    label: str
    is_correct: bool | None = None
    points: int | None = None


class QuestionOut(BaseModel):
    id: UUID
    prompt: str
    type: str
    negative_marks: int
    options: list[OptionOut]

    @classmethod
    def from_question(cls, question: Question, *, reveal: bool) -> QuestionOut:
        return cls(
            id=question.id,
            prompt=question.prompt,
            type=question.type,
            negative_marks=question.negative_marks,
            options=[
                OptionOut(
                    id=o.id,
                    label=o.label,
                    is_correct=o.is_correct if reveal else None,
                    points=o.points if reveal else None,
                )
                for o in question.options
            ],
        )


class AssessmentOut(BaseModel):
    id: UUID
    admin_id: str
    title: str
    starts_at: int
    ends_at: int
    is_published: bool
    questions: list[QuestionOut] = Field(default_factory=list)

    @classmethod
    def from_assessment(
        cls,
        assessment: Assessment,
        questions: list[Question] | None = None,
        *,
        reveal: bool = True,
    ) -> AssessmentOut:
        return cls(
            id=assessment.id,
            admin_id=assessment.admin_id,
            title=assessment.title,
            starts_at=assessment.starts_at,
            ends_at=assessment.ends_at,
            is_published=assessment.is_published,
            questions=[
                QuestionOut.from_question(q, reveal=reveal) for q in questions or []
            ],
        )


class ParticipantIn(BaseModel):
    participant_id: str = Field(min_length=1, max_length=320)


class ResultOut(BaseModel):
    attempt_id: UUID
    participant_id: str
    status: str
    score: int | None


@router.post(
    "", response_model=AssessmentOut, status_code=status.HTTP_201_CREATED
)
async def create_assessment(
    body: AssessmentIn, principal: AdminDep, repo: ExamRepoDep
) -> AssessmentOut:
    try:
        assessment = await assessment_service.create_assessment(
            repo, principal, body.title, body.starts_at, body.ends_at
        )
    except ExamServiceError as e:
        raise_http(e)
    return AssessmentOut.from_assessment(assessment)


@router.get("/{assessment_id}", response_model=AssessmentOut)
async def get_assessment(
    assessment_id: UUID, principal: UserDep, repo: ExamRepoDep
) -> AssessmentOut:
    try:
        assessment, questions = await assessment_service.get_assessment(
            repo, principal, assessment_id
        )
    except ExamServiceError as e:
        raise_http(e)
    return AssessmentOut.from_assessment(
        assessment, questions, reveal=principal.is_owner_of(assessment)
    )


@router.post(
    "/{assessment_id}/questions",
    response_model=list[QuestionOut],
    status_code=status.HTTP_201_CREATED,
)
async def add_questions(
    assessment_id: UUID, body: QuestionsIn, principal: AdminDep, repo: ExamRepoDep
) -> list[QuestionOut]:
    drafts = [
        QuestionDraft(
            prompt=q.prompt,
            type=q.type,
            negative_marks=q.negative_marks,
            options=[(o.label, o.is_correct, o.points) for o in q.options],
        )
        for q in body.questions
    ]
    try:
        questions = await assessment_service.add_questions(
            repo, principal, assessment_id, drafts
        )
    except ExamServiceError as e:
        raise_http(e)
    return [QuestionOut.from_question(q, reveal=True) for q in questions]


@router.post("/{assessment_id}/publish", response_model=AssessmentOut)
async def publish_assessment(
    assessment_id: UUID, principal: AdminDep, repo: ExamRepoDep
) -> AssessmentOut:
    try:
        assessment = await assessment_service.publish(repo, principal, assessment_id)
    except ExamServiceError as e:
        raise_http(e)
    return AssessmentOut.from_assessment(assessment)


@router.delete("/{assessment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assessment(
    assessment_id: UUID, principal: AdminDep, repo: ExamRepoDep
) -> Response:
    try:
        await assessment_service.delete_assessment(repo, principal, assessment_id)
    except ExamServiceError as e:
        raise_http(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{assessment_id}/participants",
    response_model=AttemptOut,
    status_code=status.HTTP_201_CREATED,
)
async def assign_participant(
    assessment_id: UUID, body: ParticipantIn, principal: AdminDep, repo: ExamRepoDep
) -> AttemptOut:
    try:
        attempt = await assessment_service.assign_participant(
            repo, principal, assessment_id, body.participant_id
        )
    except ExamServiceError as e:
        raise_http(e)
    return AttemptOut.from_attempt(attempt)


@router.get("/{assessment_id}/results", response_model=list[ResultOut])
async def get_results(
    assessment_id: UUID, principal: AdminDep, repo: ExamRepoDep
) -> list[ResultOut]:
    try:
        attempts = await assessment_service.get_results(repo, principal, assessment_id)
    except ExamServiceError as e:
        raise_http(e)
    return [
        ResultOut(
            attempt_id=a.id,
            participant_id=a.participant_id,
            status=a.status,
            score=a.score,
        )
        for a in attempts
    ]
