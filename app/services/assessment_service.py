"""Assessment authoring and administration.

Owning admins create an assessment, add questions while it is a draft,
publish it, assign participants (one pending attempt each) and read the
results once the window has closed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from uuid import UUID

from app.models.assessment import SINGLE_CHOICE, Assessment, Question, QuestionType
from app.models.attempt import Attempt
from app.models.principal import Principal
from app.repos.exam_repo import ExamRepo
from app.services.attempt_service import backfill_score
from app.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.services.exam_window import has_ended, is_within, now_ts

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QuestionDraft:
    prompt: str
    type: QuestionType
    negative_marks: int
    options: list[tuple[str, bool, int]]  # (label, is_correct, points)


async def _load_owned(
    repo: ExamRepo, principal: Principal, assessment_id: UUID
) -> Assessment:
    assessment = await repo.get_assessment(assessment_id)
    if assessment is None:
        raise NotFoundError("Assessment not found")
    if not principal.is_owner_of(assessment):
        logger.warning(
            "Assessment access denied: user=%s assessment=%s",
            principal.user_id,
            assessment_id,
        )
        raise ForbiddenError("User not match")
    return assessment


async def create_assessment(
    repo: ExamRepo, principal: Principal, title: str, starts_at: int, ends_at: int
) -> Assessment:
    if not principal.is_admin():
        raise ForbiddenError("Only admins can create assessments")
    if ends_at <= starts_at:
        raise ValidationError("ends_at must be after starts_at")

    assessment = Assessment.new(
        admin_id=principal.user_id, title=title, starts_at=starts_at, ends_at=ends_at
    )
    async with repo.transaction():
        await repo.add_assessment(assessment)
    logger.info("Assessment created: id=%s admin=%s", assessment.id, principal.user_id)
    return assessment


async def get_assessment(
    repo: ExamRepo, principal: Principal, assessment_id: UUID
) -> tuple[Assessment, list[Question]]:
    """Owner admin or an assigned participant may read the assessment."""
    assessment = await repo.get_assessment(assessment_id)
    if assessment is None:
        raise NotFoundError("Assessment not found")
    if not principal.is_owner_of(assessment):
        if await repo.find_attempt(assessment_id, principal.user_id) is None:
            raise ForbiddenError("User not match")
    return assessment, await repo.list_questions(assessment_id)


async def add_questions(
    repo: ExamRepo,
    principal: Principal,
    assessment_id: UUID,
    drafts: list[QuestionDraft],
) -> list[Question]:
    """Add questions in bulk; all of them land or none do."""
    assessment = await _load_owned(repo, principal, assessment_id)
    if assessment.is_published:
        raise InvalidStateError("Assessment is already published")

    for draft in drafts:
        if not draft.options:
            raise ValidationError("A question needs at least one option")
        correct = sum(1 for _label, is_correct, _points in draft.options if is_correct)
        if draft.type == SINGLE_CHOICE and correct != 1:
            raise ValidationError(
                "A single choice question must have exactly one correct option"
            )

    questions = [
        Question.new(
            assessment_id=assessment.id,
            prompt=draft.prompt,
            type=draft.type,
            negative_marks=draft.negative_marks,
            options=draft.options,
        )
        for draft in drafts
    ]
    async with repo.transaction():
        for question in questions:
            await repo.add_question(question)

    logger.info("Questions added: assessment=%s count=%d", assessment.id, len(questions))
    return questions


async def publish(
    repo: ExamRepo, principal: Principal, assessment_id: UUID
) -> Assessment:
    assessment = await _load_owned(repo, principal, assessment_id)
    if assessment.is_published:
        return assessment
    if not await repo.list_questions(assessment.id):
        raise InvalidStateError("Can not publish an assessment without questions")
    async with repo.transaction():
        updated = await repo.set_published(assessment.id)
    if updated is None:
        raise NotFoundError("Assessment not found")
    logger.info("Assessment published: id=%s", assessment.id)
    return updated


async def delete_assessment(
    repo: ExamRepo, principal: Principal, assessment_id: UUID, *, now: int | None = None
) -> None:
    now = now_ts() if now is None else now
    assessment = await _load_owned(repo, principal, assessment_id)
    if is_within(assessment.starts_at, assessment.ends_at, now):
        raise InvalidStateError("Can not delete a running assessment")
    async with repo.transaction():
        await repo.delete_assessment(assessment.id)
    logger.info("Assessment deleted: id=%s", assessment.id)


async def assign_participant(
    repo: ExamRepo, principal: Principal, assessment_id: UUID, participant_id: str
) -> Attempt:
    assessment = await _load_owned(repo, principal, assessment_id)
    attempt = Attempt.new(participant_id=participant_id, assessment_id=assessment.id)
    try:
        async with repo.transaction():
            await repo.add_attempt(attempt)
    except ValueError:
        raise ConflictError("Participant already assigned") from None
    logger.info(
        "Participant assigned: assessment=%s participant=%s",
        assessment.id,
        participant_id,
    )
    return attempt


async def get_results(
    repo: ExamRepo, principal: Principal, assessment_id: UUID, *, now: int | None = None
) -> list[Attempt]:
    """Every attempt of the assessment with its score.

    Only available once the window has closed.  Completed attempts that
    were never scored get their score written now.
    """
    now = now_ts() if now is None else now
    assessment = await _load_owned(repo, principal, assessment_id)
    if not has_ended(assessment.ends_at, now):
        raise InvalidStateError("Results are available after the exam ends")

    results = []
    for attempt in await repo.list_attempts(assessment.id):
        if attempt.is_completed and attempt.score is None:
            score = await backfill_score(repo, attempt)
            attempt = replace(attempt, score=score)
        results.append(attempt)
    return results
