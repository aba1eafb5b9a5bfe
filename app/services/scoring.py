"""Scoring rules per question type.

single_choice
    no answer           -> 0
    more than one       -> negative_marks (malformed, treated as wrong)
    one correct option  -> that option's points
    one wrong option    -> negative_marks

multiple_choice
    any wrong option selected -> negative_marks, no partial credit
    otherwise                 -> sum of the selected options' points
                                 (0 when nothing is selected)

The total is the plain sum; negative marks are applied as given, so a
total can go below zero.  Nothing here touches storage.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from app.models.assessment import SINGLE_CHOICE
from app.models.attempt import QuestionSheet

logger = logging.getLogger(__name__)


def score_question(sheet: QuestionSheet) -> int:
    question = sheet.question
    answers = sheet.answers

    if question.type == SINGLE_CHOICE:
        if not answers:
            return 0
        if len(answers) > 1:
            logger.warning(
                "single_choice question=%s has %d stored answers",
                question.id,
                len(answers),
            )
            return question.negative_marks
        selected = question.find_option(answers[0].option_id)
        if selected is not None and selected.is_correct:
            return selected.points
        return question.negative_marks

    marks = 0
    for answer in answers:
        selected = question.find_option(answer.option_id)
        if selected is None:
            continue
        if not selected.is_correct:
            return question.negative_marks
        marks += selected.points
    return marks


def score_attempt(sheets: Iterable[QuestionSheet]) -> int:
    return sum(score_question(sheet) for sheet in sheets)
