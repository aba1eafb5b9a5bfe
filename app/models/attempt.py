from __future__ import annotations

from dataclasses import dataclass
from typing import Literal
from uuid import UUID, uuid4

from app.models.assessment import Question

AttemptStatus = Literal["pending", "on-going", "completed"]

PENDING: AttemptStatus = "pending"
ON_GOING: AttemptStatus = "on-going"
COMPLETED: AttemptStatus = "completed"


@dataclass(frozen=True, slots=True)
class Attempt:
    """One participant's run through one assessment.

    Status only moves forward: pending -> on-going -> completed.
    score stays None until finalization writes it.
    """

    id: UUID
    participant_id: str
    assessment_id: UUID
    status: AttemptStatus = PENDING
    score: int | None = None
    is_marked: bool = False

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED

    @staticmethod
    def new(*, participant_id: str, assessment_id: UUID) -> Attempt:
        return Attempt(
            id=uuid4(), participant_id=participant_id, assessment_id=assessment_id
        )


@dataclass(frozen=True, slots=True)
class Answer:
    """A single selected option for (attempt, question)."""

    id: UUID
    attempt_id: UUID
    question_id: UUID
    option_id: UUID

    @staticmethod
    def new(*, attempt_id: UUID, question_id: UUID, option_id: UUID) -> Answer:
        return Answer(
            id=uuid4(),
            attempt_id=attempt_id,
            question_id=question_id,
            option_id=option_id,
        )


@dataclass(frozen=True, slots=True)
class QuestionSheet:
    """A question, its options and the answers one attempt stored for it."""

    question: Question
    answers: tuple[Answer, ...] = ()
