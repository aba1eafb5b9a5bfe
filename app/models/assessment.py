from __future__ import annotations

from dataclasses import dataclass
from typing import Literal
from uuid import UUID, uuid4

QuestionType = Literal["single_choice", "multiple_choice"]

SINGLE_CHOICE: QuestionType = "single_choice"
MULTIPLE_CHOICE: QuestionType = "multiple_choice"


@dataclass(frozen=True, slots=True)
class Assessment:
    """Authored exam definition: a time window plus its questions.

    starts_at / ends_at are UTC epoch seconds.  admin_id is the JWT subject
    of the administrator who created it.
    """

    id: UUID
    admin_id: str
    title: str
    starts_at: int
    ends_at: int
    is_published: bool = False

    @staticmethod
    def new(*, admin_id: str, title: str, starts_at: int, ends_at: int) -> Assessment:
        return Assessment(
            id=uuid4(),
            admin_id=admin_id,
            title=title,
            starts_at=starts_at,
            ends_at=ends_at,
        )


@dataclass(frozen=True, slots=True)
class Option:
    id: UUID
    question_id: UUID
    label: str
    is_correct: bool = False
    points: int = 0  # awarded when selected and correct

    @staticmethod
    def new(
        *, question_id: UUID, label: str, is_correct: bool = False, points: int = 0
    ) -> Option:
        return Option(
            id=uuid4(),
            question_id=question_id,
            label=label,
            is_correct=is_correct,
            points=points,
        )


@dataclass(frozen=True, slots=True)
class Question:
    """A question together with its options (the unit the graders work on)."""

    id: UUID
    assessment_id: UUID
    prompt: str
    type: QuestionType = SINGLE_CHOICE
    negative_marks: int = 0  # <= 0, applied on an incorrect response
    options: tuple[Option, ...] = ()

    @property
    def option_ids(self) -> frozenset[UUID]:
        return frozenset(o.id for o in self.options)

    def find_option(self, option_id: UUID) -> Option | None:
        for option in self.options:
            if option.id == option_id:
                return option
        return None

    @staticmethod
    def new(
        *,
        assessment_id: UUID,
        prompt: str,
        type: QuestionType = SINGLE_CHOICE,
        negative_marks: int = 0,
        options: list[tuple[str, bool, int]] | None = None,
    ) -> Question:
        """Build a question and its options in one go.

        options is a list of (label, is_correct, points) tuples.
        """
        question_id = uuid4()
        built = tuple(
            Option.new(
                question_id=question_id,
                label=label,
                is_correct=is_correct,
                points=points,
            )
            for label, is_correct, points in (options or [])
        )
        return Question(
            id=question_id,
            assessment_id=assessment_id,
            prompt=prompt,
            type=type,
            negative_marks=negative_marks,
            options=built,
        )
