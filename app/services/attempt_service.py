"""Attempt lifecycle: start, answer, finalize, read score.

    pending --start--> on-going --finalize--> completed
       |                                         ^
       +---------------- finalize ---------------+

completed is terminal.  Every operation validates identity, status and the
assessment's time window before writing anything.  Finalize locks and
re-reads the attempt inside its transaction; finding it already completed
there means another finalize won, and nothing is written.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace
from uuid import UUID

from app.core.metrics import (
    ANSWER_WRITES,
    ATTEMPT_SCORE,
    ATTEMPT_TRANSITIONS,
    FINALIZE_CONFLICTS,
)
from app.models.assessment import SINGLE_CHOICE, Assessment
from app.models.attempt import COMPLETED, ON_GOING, PENDING, Answer, Attempt
from app.models.principal import Principal
from app.repos.exam_repo import ExamRepo
from app.services.answer_reconciliation import reconcile
from app.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from app.services.exam_window import has_ended, has_started, is_within, now_ts
from app.services.scoring import score_attempt

logger = logging.getLogger(__name__)


async def _load_own_attempt(
    repo: ExamRepo, principal: Principal, attempt_id: UUID
) -> Attempt:
    attempt = await repo.get_attempt(attempt_id)
    if attempt is None:
        raise NotFoundError("Attempt not found")
    if not principal.is_participant_of(attempt):
        logger.warning(
            "Attempt access denied: user=%s attempt=%s", principal.user_id, attempt_id
        )
        raise ForbiddenError("Can not access another participant's attempt")
    return attempt


async def _load_assessment(repo: ExamRepo, assessment_id: UUID) -> Assessment:
    assessment = await repo.get_assessment(assessment_id)
    if assessment is None:
        raise NotFoundError("Assessment not found")
    return assessment


async def start_attempt(
    repo: ExamRepo, principal: Principal, attempt_id: UUID, *, now: int | None = None
) -> Attempt:
    now = now_ts() if now is None else now
    attempt = await _load_own_attempt(repo, principal, attempt_id)
    if attempt.is_completed:
        raise InvalidStateError("Exam already submitted")

    assessment = await _load_assessment(repo, attempt.assessment_id)
    if not is_within(assessment.starts_at, assessment.ends_at, now):
        logger.warning("Start rejected outside window: attempt=%s", attempt.id)
        raise InvalidStateError("Exam is not open")

    if attempt.status == ON_GOING:
        return attempt

    async with repo.transaction():
        rows = await repo.update_attempt_status(attempt.id, attempt.status, ON_GOING)

    if rows == 0:
        # Someone else moved it first; report whatever it is now.
        current = await repo.get_attempt(attempt.id)
        if current is None:
            raise NotFoundError("Attempt not found")
        if current.is_completed:
            raise InvalidStateError("Exam already submitted")
        return current

    ATTEMPT_TRANSITIONS.labels(to_status=ON_GOING).inc()
    logger.info("Attempt started: attempt=%s user=%s", attempt.id, principal.user_id)
    return replace(attempt, status=ON_GOING)


async def submit_answer(
    repo: ExamRepo,
    principal: Principal,
    attempt_id: UUID,
    question_id: UUID,
    option_ids: Iterable[UUID],
    *,
    now: int | None = None,
) -> list[Answer]:
    """Make the stored selection for one question equal option_ids.

    Returns the answers stored for that question afterwards.  Calling it
    again with the same option_ids writes nothing.
    """
    now = now_ts() if now is None else now
    attempt = await _load_own_attempt(repo, principal, attempt_id)
    if attempt.is_completed:
        logger.warning("Answer rejected, attempt already completed: %s", attempt.id)
        raise InvalidStateError("Exam already submitted")

    question = await repo.get_question_with_options(question_id)
    if question is None or question.assessment_id != attempt.assessment_id:
        raise NotFoundError("Question not found")

    desired = list(dict.fromkeys(option_ids))
    if any(option_id not in question.option_ids for option_id in desired):
        raise NotFoundError("Option not found for this question")

    assessment = await _load_assessment(repo, attempt.assessment_id)
    if not is_within(assessment.starts_at, assessment.ends_at, now):
        logger.warning("Answer rejected outside window: attempt=%s", attempt.id)
        raise ForbiddenError(
            "You can only submit answers within the allowed time window"
        )

    if question.type == SINGLE_CHOICE and len(desired) > 1:
        raise InvalidStateError("A single choice question takes at most one option")

    async with repo.transaction():
        current = await repo.get_attempt(attempt.id, for_update=True)
        if current is None:
            raise NotFoundError("Attempt not found")
        if current.is_completed:
            raise InvalidStateError("Exam already submitted")

        previous = await repo.get_stored_answers(attempt.id, question.id)
        delta = reconcile(previous, desired, question.option_ids & set(desired))
        if delta.to_delete:
            await repo.delete_answers(delta.to_delete)
        if delta.to_insert:
            await repo.insert_answers(
                Answer.new(
                    attempt_id=attempt.id, question_id=question.id, option_id=option_id
                )
                for option_id in delta.to_insert
            )
        stored = await repo.get_stored_answers(attempt.id, question.id)

    ANSWER_WRITES.labels(operation="insert").inc(len(delta.to_insert))
    ANSWER_WRITES.labels(operation="delete").inc(len(delta.to_delete))
    logger.info(
        "Answer saved: attempt=%s question=%s inserted=%d deleted=%d",
        attempt.id,
        question.id,
        len(delta.to_insert),
        len(delta.to_delete),
    )
    return stored


async def finalize_attempt(
    repo: ExamRepo, principal: Principal, attempt_id: UUID, *, now: int | None = None
) -> Attempt:
    """Freeze the attempt and store its score.  Returns the completed attempt."""
    now = now_ts() if now is None else now
    attempt = await _load_own_attempt(repo, principal, attempt_id)
    if attempt.is_completed:
        raise InvalidStateError("Exam already submitted")

    assessment = await _load_assessment(repo, attempt.assessment_id)
    if not has_started(assessment.starts_at, now):
        raise InvalidStateError("Exam is not started yet")

    async with repo.transaction():
        # Locked before the sheets are read so no answer lands between
        # scoring and the status change.
        current = await repo.get_attempt(attempt.id, for_update=True)
        if current is None:
            raise NotFoundError("Attempt not found")
        rows = 0
        if not current.is_completed:
            sheets = await repo.get_all_questions_with_options_and_answers(
                assessment.id, attempt.id
            )
            score = score_attempt(sheets)
            rows = await repo.update_attempt_status(
                attempt.id, current.status, COMPLETED
            )
            if rows == 0 and current.status == PENDING:
                # started since the read; on-going is the only other way out
                rows = await repo.update_attempt_status(
                    attempt.id, ON_GOING, COMPLETED
                )
        if rows == 0:
            FINALIZE_CONFLICTS.inc()
            logger.warning("Finalize lost race: attempt=%s", attempt.id)
            raise ConflictError("Attempt was already submitted by another request")
        await repo.set_attempt_score(attempt.id, score)

    ATTEMPT_TRANSITIONS.labels(to_status=COMPLETED).inc()
    ATTEMPT_SCORE.observe(score)
    logger.info(
        "Attempt finalized: attempt=%s user=%s score=%d",
        attempt.id,
        principal.user_id,
        score,
        extra={"attempt_id": str(attempt.id), "assessment_id": str(assessment.id)},
    )
    return replace(current, status=COMPLETED, score=score)


async def backfill_score(repo: ExamRepo, attempt: Attempt) -> int:
    """Score a completed attempt that has no stored score yet.

    The write only lands while the score is still null, so a concurrent
    backfill cannot overwrite it; the stored value is returned either way.
    """
    async with repo.transaction():
        sheets = await repo.get_all_questions_with_options_and_answers(
            attempt.assessment_id, attempt.id
        )
        score = score_attempt(sheets)
        rows = await repo.backfill_attempt_score(attempt.id, score)

    if rows == 0:
        current = await repo.get_attempt(attempt.id)
        if current is None or current.score is None:
            raise InvalidStateError("Attempt not completed")
        return current.score

    ATTEMPT_SCORE.observe(score)
    logger.info("Score backfilled: attempt=%s score=%d", attempt.id, score)
    return score


async def get_score(
    repo: ExamRepo, principal: Principal, attempt_id: UUID, *, now: int | None = None
) -> int:
    """Return the stored score; never recomputes one that exists.

    The participant sees it once the attempt is completed.  The owning
    admin may also read it, and after the assessment has ended an
    unscored completed attempt is scored on the spot.
    """
    now = now_ts() if now is None else now
    attempt = await repo.get_attempt(attempt_id)
    if attempt is None:
        raise NotFoundError("Attempt not found")

    if principal.is_participant_of(attempt):
        if not attempt.is_completed or attempt.score is None:
            raise InvalidStateError("Attempt not completed")
        return attempt.score

    assessment = await _load_assessment(repo, attempt.assessment_id)
    if not principal.is_owner_of(assessment):
        logger.warning(
            "Score access denied: user=%s attempt=%s", principal.user_id, attempt_id
        )
        raise ForbiddenError("Can not access another participant's attempt")
    if not attempt.is_completed:
        raise InvalidStateError("Attempt not completed")
    if attempt.score is not None:
        return attempt.score
    if not has_ended(assessment.ends_at, now):
        raise InvalidStateError("Attempt not completed")
    return await backfill_score(repo, attempt)


async def mark_for_review(
    repo: ExamRepo, principal: Principal, attempt_id: UUID, is_marked: bool
) -> Attempt:
    attempt = await _load_own_attempt(repo, principal, attempt_id)
    if attempt.is_completed:
        raise InvalidStateError("Exam already submitted")
    async with repo.transaction():
        current = await repo.get_attempt(attempt.id, for_update=True)
        if current is not None and current.is_completed:
            raise InvalidStateError("Exam already submitted")
        updated = await repo.set_attempt_marked(attempt.id, is_marked)
    if updated is None:
        raise NotFoundError("Attempt not found")
    return updated
