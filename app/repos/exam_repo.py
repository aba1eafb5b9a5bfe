from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.models.assessment import Assessment, Question
from app.models.attempt import (
    COMPLETED,
    Answer,
    Attempt,
    AttemptStatus,
    QuestionSheet,
)


class ExamRepo(Protocol):
    def transaction(self) -> AbstractAsyncContextManager[None]: ...

    # --- assessments / questions ---
    async def get_assessment(self, assessment_id: UUID) -> Assessment | None: ...
    async def add_assessment(self, assessment: Assessment) -> None: ...
    async def set_published(self, assessment_id: UUID) -> Assessment | None: ...
    async def delete_assessment(self, assessment_id: UUID) -> bool: ...
    async def add_question(self, question: Question) -> None: ...
    async def list_questions(self, assessment_id: UUID) -> list[Question]: ...
    async def get_question_with_options(
        self, question_id: UUID
    ) -> Question | None: ...

    # --- attempts ---
    async def get_attempt(
        self, attempt_id: UUID, *, for_update: bool = False
    ) -> Attempt | None: ...
    async def find_attempt(
        self, assessment_id: UUID, participant_id: str
    ) -> Attempt | None: ...
    async def list_attempts(self, assessment_id: UUID) -> list[Attempt]: ...
    async def add_attempt(self, attempt: Attempt) -> None: ...
    async def update_attempt_status(
        self, attempt_id: UUID, from_status: AttemptStatus, to_status: AttemptStatus
    ) -> int: ...
    async def set_attempt_score(self, attempt_id: UUID, score: int) -> None: ...
    async def backfill_attempt_score(self, attempt_id: UUID, score: int) -> int: ...
    async def set_attempt_marked(
        self, attempt_id: UUID, is_marked: bool
    ) -> Attempt | None: ...

    # --- answers ---
    async def get_stored_answers(
        self, attempt_id: UUID, question_id: UUID
    ) -> list[Answer]: ...
    async def get_all_questions_with_options_and_answers(
        self, assessment_id: UUID, attempt_id: UUID
    ) -> list[QuestionSheet]: ...
    async def insert_answers(self, answers: Iterable[Answer]) -> None: ...
    async def delete_answers(self, answer_ids: Iterable[UUID]) -> None: ...


class InMemoryExamRepo:
    """Dict-backed ExamRepo used when no DATABASE_URL is configured.

    transaction() serializes writers on an asyncio.Lock and restores a
    snapshot of every table if the block raises, so a failed or abandoned
    unit of work leaves nothing behind.  Not reentrant.
    """

    def __init__(self) -> None:
        self.clear()

    def clear(self) -> None:
        self._assessments: dict[UUID, Assessment] = {}
        self._questions: dict[UUID, Question] = {}
        self._attempts: dict[UUID, Attempt] = {}
        self._answers: dict[UUID, Answer] = {}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self._lock:
            snapshot = (
                dict(self._assessments),
                dict(self._questions),
                dict(self._attempts),
                dict(self._answers),
            )
            try:
                yield
            except BaseException:
                (
                    self._assessments,
                    self._questions,
                    self._attempts,
                    self._answers,
                ) = snapshot
                raise

    # --- assessments / questions ---

    async def get_assessment(self, assessment_id: UUID) -> Assessment | None:
        return self._assessments.get(assessment_id)

    async def add_assessment(self, assessment: Assessment) -> None:
        if assessment.id in self._assessments:
            raise ValueError("assessment already exists")
        self._assessments[assessment.id] = assessment

    async def set_published(self, assessment_id: UUID) -> Assessment | None:
        existing = self._assessments.get(assessment_id)
        if existing is None:
            return None
        updated = replace(existing, is_published=True)
        self._assessments[assessment_id] = updated
        return updated

    async def delete_assessment(self, assessment_id: UUID) -> bool:
        if self._assessments.pop(assessment_id, None) is None:
            return False
        attempt_ids = {
            a.id for a in self._attempts.values() if a.assessment_id == assessment_id
        }
        self._answers = {
            k: v for k, v in self._answers.items() if v.attempt_id not in attempt_ids
        }
        for attempt_id in attempt_ids:
            del self._attempts[attempt_id]
        self._questions = {
            k: v
            for k, v in self._questions.items()
            if v.assessment_id != assessment_id
        }
        return True

    async def add_question(self, question: Question) -> None:
        if question.id in self._questions:
            raise ValueError("question already exists")
        self._questions[question.id] = question

    async def list_questions(self, assessment_id: UUID) -> list[Question]:
        return [
            q for q in self._questions.values() if q.assessment_id == assessment_id
        ]

    async def get_question_with_options(self, question_id: UUID) -> Question | None:
        return self._questions.get(question_id)

    # --- attempts ---

    async def get_attempt(
        self, attempt_id: UUID, *, for_update: bool = False
    ) -> Attempt | None:
        # for_update is a row-lock hint for SQL stores; transaction() already
        # serializes writers here.
        return self._attempts.get(attempt_id)

    async def find_attempt(
        self, assessment_id: UUID, participant_id: str
    ) -> Attempt | None:
        for attempt in self._attempts.values():
            if (
                attempt.assessment_id == assessment_id
                and attempt.participant_id == participant_id
            ):
                return attempt
        return None

    async def list_attempts(self, assessment_id: UUID) -> list[Attempt]:
        return [a for a in self._attempts.values() if a.assessment_id == assessment_id]

    async def add_attempt(self, attempt: Attempt) -> None:
        if await self.find_attempt(attempt.assessment_id, attempt.participant_id):
            raise ValueError("attempt already exists")
        self._attempts[attempt.id] = attempt

    async def update_attempt_status(
        self, attempt_id: UUID, from_status: AttemptStatus, to_status: AttemptStatus
    ) -> int:
        existing = self._attempts.get(attempt_id)
        if existing is None or existing.status != from_status:
            return 0
        self._attempts[attempt_id] = replace(existing, status=to_status)
        return 1

    async def set_attempt_score(self, attempt_id: UUID, score: int) -> None:
        existing = self._attempts.get(attempt_id)
        if existing is None:
            raise KeyError("attempt not found")
        self._attempts[attempt_id] = replace(existing, score=score)

    async def backfill_attempt_score(self, attempt_id: UUID, score: int) -> int:
        existing = self._attempts.get(attempt_id)
        if existing is None or existing.status != COMPLETED or existing.score is not None:
            return 0
        self._attempts[attempt_id] = replace(existing, score=score)
        return 1

    async def set_attempt_marked(
        self, attempt_id: UUID, is_marked: bool
    ) -> Attempt | None:
        existing = self._attempts.get(attempt_id)
        if existing is None:
            return None
        updated = replace(existing, is_marked=is_marked)
        self._attempts[attempt_id] = updated
        return updated

    # --- answers ---

    async def get_stored_answers(
        self, attempt_id: UUID, question_id: UUID
    ) -> list[Answer]:
        return [
            a
            for a in self._answers.values()
            if a.attempt_id == attempt_id and a.question_id == question_id
        ]

    async def get_all_questions_with_options_and_answers(
        self, assessment_id: UUID, attempt_id: UUID
    ) -> list[QuestionSheet]:
        sheets = []
        for question in await self.list_questions(assessment_id):
            answers = await self.get_stored_answers(attempt_id, question.id)
            sheets.append(QuestionSheet(question=question, answers=tuple(answers)))
        return sheets

    async def insert_answers(self, answers: Iterable[Answer]) -> None:
        for answer in answers:
            duplicate = any(
                a.attempt_id == answer.attempt_id
                and a.question_id == answer.question_id
                and a.option_id == answer.option_id
                for a in self._answers.values()
            )
            if duplicate:
                raise ValueError("answer already exists")
            self._answers[answer.id] = answer

    async def delete_answers(self, answer_ids: Iterable[UUID]) -> None:
        for answer_id in answer_ids:
            self._answers.pop(answer_id, None)
