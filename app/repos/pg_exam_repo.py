"""PostgreSQL implementation of ExamRepo."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import AnswerRow, AssessmentRow, AttemptRow, OptionRow, QuestionRow
from app.models.assessment import Assessment, Option, Question
from app.models.attempt import (
    COMPLETED,
    Answer,
    Attempt,
    AttemptStatus,
    QuestionSheet,
)


class PgExamRepo:
    """Satisfies the ExamRepo Protocol using PostgreSQL via SQLAlchemy.

    Bound to one request-scoped session.  Reads outside transaction()
    run in the transaction the session autobegins; transaction() commits
    that one first and then opens its own, which is committed when the
    block exits, so a write is durable once the block has returned.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._session.in_transaction():
            await self._session.commit()
        async with self._session.begin():
            yield

    # --- assessments / questions ---

    async def get_assessment(self, assessment_id: UUID) -> Assessment | None:
        stmt = select(AssessmentRow).where(AssessmentRow.id == assessment_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_assessment(row)

    async def add_assessment(self, assessment: Assessment) -> None:
        row = AssessmentRow(
            id=assessment.id,
            admin_id=assessment.admin_id,
            title=assessment.title,
            starts_at=assessment.starts_at,
            ends_at=assessment.ends_at,
            is_published=assessment.is_published,
        )
        self._session.add(row)
        await self._session.flush()

    async def set_published(self, assessment_id: UUID) -> Assessment | None:
        stmt = (
            update(AssessmentRow)
            .where(AssessmentRow.id == assessment_id)
            .values(is_published=True)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_assessment(assessment_id)

    async def delete_assessment(self, assessment_id: UUID) -> bool:
        # questions, options, attempts and answers go with it (ON DELETE CASCADE)
        stmt = delete(AssessmentRow).where(AssessmentRow.id == assessment_id)
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def add_question(self, question: Question) -> None:
        count_stmt = (
            select(func.count())
            .select_from(QuestionRow)
            .where(QuestionRow.assessment_id == question.assessment_id)
        )
        position = (await self._session.execute(count_stmt)).scalar_one()
        self._session.add(
            QuestionRow(
                id=question.id,
                assessment_id=question.assessment_id,
                prompt=question.prompt,
                type=question.type,
                negative_marks=question.negative_marks,
                position=position,
            )
        )
        # questions must exist before their options reference them
        await self._session.flush()
        self._session.add_all(
            OptionRow(
                id=option.id,
                question_id=question.id,
                label=option.label,
                is_correct=option.is_correct,
                points=option.points,
                position=i,
            )
            for i, option in enumerate(question.options)
        )
        await self._session.flush()

    async def list_questions(self, assessment_id: UUID) -> list[Question]:
        stmt = (
            select(QuestionRow)
            .where(QuestionRow.assessment_id == assessment_id)
            .order_by(QuestionRow.position)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        options = await self._options_by_question([r.id for r in rows])
        return [_row_to_question(r, options.get(r.id, ())) for r in rows]

    async def get_question_with_options(self, question_id: UUID) -> Question | None:
        stmt = select(QuestionRow).where(QuestionRow.id == question_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        options = await self._options_by_question([row.id])
        return _row_to_question(row, options.get(row.id, ()))

    async def _options_by_question(
        self, question_ids: list[UUID]
    ) -> dict[UUID, tuple[Option, ...]]:
        if not question_ids:
            return {}
        stmt = (
            select(OptionRow)
            .where(OptionRow.question_id.in_(question_ids))
            .order_by(OptionRow.question_id, OptionRow.position)
        )
        grouped: dict[UUID, list[Option]] = {}
        for row in (await self._session.execute(stmt)).scalars():
            grouped.setdefault(row.question_id, []).append(_row_to_option(row))
        return {qid: tuple(opts) for qid, opts in grouped.items()}

    # --- attempts ---

    async def get_attempt(
        self, attempt_id: UUID, *, for_update: bool = False
    ) -> Attempt | None:
        stmt = select(AttemptRow).where(AttemptRow.id == attempt_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_attempt(row)

    async def find_attempt(
        self, assessment_id: UUID, participant_id: str
    ) -> Attempt | None:
        stmt = select(AttemptRow).where(
            AttemptRow.assessment_id == assessment_id,
            AttemptRow.participant_id == participant_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_attempt(row)

    async def list_attempts(self, assessment_id: UUID) -> list[Attempt]:
        stmt = (
            select(AttemptRow)
            .where(AttemptRow.assessment_id == assessment_id)
            .order_by(AttemptRow.participant_id)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_attempt(r) for r in rows]

    async def add_attempt(self, attempt: Attempt) -> None:
        row = AttemptRow(
            id=attempt.id,
            participant_id=attempt.participant_id,
            assessment_id=attempt.assessment_id,
            status=attempt.status,
            score=attempt.score,
            is_marked=attempt.is_marked,
        )
        try:
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()
        except IntegrityError:
            raise ValueError("attempt already exists") from None

    async def update_attempt_status(
        self, attempt_id: UUID, from_status: AttemptStatus, to_status: AttemptStatus
    ) -> int:
        """Conditional transition; returns 0 when the status has moved on."""
        stmt = (
            update(AttemptRow)
            .where(AttemptRow.id == attempt_id)
            .where(AttemptRow.status == from_status)
            .values(status=to_status)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def set_attempt_score(self, attempt_id: UUID, score: int) -> None:
        stmt = update(AttemptRow).where(AttemptRow.id == attempt_id).values(score=score)
        await self._session.execute(stmt)

    async def backfill_attempt_score(self, attempt_id: UUID, score: int) -> int:
        stmt = (
            update(AttemptRow)
            .where(AttemptRow.id == attempt_id)
            .where(AttemptRow.status == COMPLETED)
            .where(AttemptRow.score.is_(None))
            .values(score=score)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def set_attempt_marked(
        self, attempt_id: UUID, is_marked: bool
    ) -> Attempt | None:
        stmt = (
            update(AttemptRow)
            .where(AttemptRow.id == attempt_id)
            .values(is_marked=is_marked)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_attempt(attempt_id)

    # --- answers ---

    async def get_stored_answers(
        self, attempt_id: UUID, question_id: UUID
    ) -> list[Answer]:
        stmt = select(AnswerRow).where(
            AnswerRow.attempt_id == attempt_id,
            AnswerRow.question_id == question_id,
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_answer(r) for r in rows]

    async def get_all_questions_with_options_and_answers(
        self, assessment_id: UUID, attempt_id: UUID
    ) -> list[QuestionSheet]:
        questions = await self.list_questions(assessment_id)
        stmt = select(AnswerRow).where(AnswerRow.attempt_id == attempt_id)
        answers: dict[UUID, list[Answer]] = {}
        for row in (await self._session.execute(stmt)).scalars():
            answers.setdefault(row.question_id, []).append(_row_to_answer(row))
        return [
            QuestionSheet(question=q, answers=tuple(answers.get(q.id, ())))
            for q in questions
        ]

    async def insert_answers(self, answers: Iterable[Answer]) -> None:
        self._session.add_all(
            AnswerRow(
                id=a.id,
                attempt_id=a.attempt_id,
                question_id=a.question_id,
                option_id=a.option_id,
            )
            for a in answers
        )
        await self._session.flush()

    async def delete_answers(self, answer_ids: Iterable[UUID]) -> None:
        ids = list(answer_ids)
        if not ids:
            return
        await self._session.execute(delete(AnswerRow).where(AnswerRow.id.in_(ids)))


def _row_to_assessment(row: AssessmentRow) -> Assessment:
    return Assessment(
        id=row.id,
        admin_id=row.admin_id,
        title=row.title,
        starts_at=row.starts_at,
        ends_at=row.ends_at,
        is_published=row.is_published,
    )


def _row_to_option(row: OptionRow) -> Option:
    return Option(
        id=row.id,
        question_id=row.question_id,
        label=row.label,
        is_correct=row.is_correct,
        points=row.points,
    )


def _row_to_question(row: QuestionRow, options: tuple[Option, ...]) -> Question:
    return Question(
        id=row.id,
        assessment_id=row.assessment_id,
        prompt=row.prompt,
        type=row.type,  # type: ignore[arg-type]
        negative_marks=row.negative_marks,
        options=options,
    )


def _row_to_attempt(row: AttemptRow) -> Attempt:
    return Attempt(
        id=row.id,
        participant_id=row.participant_id,
        assessment_id=row.assessment_id,
        status=row.status,  # type: ignore[arg-type]
        score=row.score,
        is_marked=row.is_marked,
    )


def _row_to_answer(row: AnswerRow) -> Answer:
    return Answer(
        id=row.id,
        attempt_id=row.attempt_id,
        question_id=row.question_id,
        option_id=row.option_id,
    )
