"""Turn a participant's desired selection into a minimal storage delta.

Given what is stored for one (attempt, question) and what the participant
wants selected now, compute which options to insert and which answer rows
to delete.  Unchanged selections are never re-created, so applying the
delta and reconciling again with the same input yields an empty delta.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from app.models.attempt import Answer


@dataclass(frozen=True, slots=True)
class AnswerDelta:
    to_insert: tuple[UUID, ...] = ()  # option ids
    to_delete: tuple[UUID, ...] = ()  # answer ids

    @property
    def is_empty(self) -> bool:
        return not self.to_insert and not self.to_delete


def reconcile(
    previous: Iterable[Answer],
    desired_option_ids: Iterable[UUID],
    valid_option_ids: Iterable[UUID],
) -> AnswerDelta:
    """Compute the insert/delete delta for one question.

    previous: answers currently stored for the (attempt, question).
    desired_option_ids: options the participant wants selected.
    valid_option_ids: the desired options that were validated against the
        question; anything stored outside this set is no longer wanted.

    An empty desired set clears the question.
    """
    valid = frozenset(valid_option_ids)

    kept: set[UUID] = set()
    to_delete: list[UUID] = []
    for answer in previous:
        # A second row for an already-kept option is a duplicate; drop it.
        if answer.option_id not in valid or answer.option_id in kept:
            to_delete.append(answer.id)
        else:
            kept.add(answer.option_id)

    # dict.fromkeys de-duplicates while keeping the caller's order
    to_insert = [
        option_id
        for option_id in dict.fromkeys(desired_option_ids)
        if option_id in valid and option_id not in kept
    ]

    return AnswerDelta(to_insert=tuple(to_insert), to_delete=tuple(to_delete))
