"""Attempt state machine tests, driven against the in-memory repo.

Every call passes `now` explicitly; the seeded window is [1000, 2000].
"""

from __future__ import annotations

import asyncio
from uuid import UUID, uuid4

import pytest
from prometheus_client import REGISTRY

from app.models.assessment import MULTIPLE_CHOICE, SINGLE_CHOICE, Assessment, Question
from app.models.attempt import COMPLETED, ON_GOING, PENDING, Attempt
from app.models.principal import Principal
from app.repos.exam_repo import InMemoryExamRepo
from app.services import attempt_service
from app.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)

START, END = 1000, 2000
DURING = 1500
BEFORE = 900
AFTER = 2100

STUDENT = Principal(user_id="student", roles=frozenset({"user"}))
OTHER = Principal(user_id="someone-else", roles=frozenset({"user"}))
OWNER = Principal(user_id="owner", roles=frozenset({"admin"}))
OTHER_ADMIN = Principal(user_id="other-admin", roles=frozenset({"admin"}))


class Exam:
    def __init__(self, repo: InMemoryExamRepo) -> None:
        self.repo = repo
        self.assessment = Assessment.new(
            admin_id=OWNER.user_id, title="T", starts_at=START, ends_at=END
        )
        self.single = Question.new(
            assessment_id=self.assessment.id,
            prompt="single",
            type=SINGLE_CHOICE,
            negative_marks=-2,
            options=[("A", True, 3), ("B", False, 0)],
        )
        self.multi = Question.new(
            assessment_id=self.assessment.id,
            prompt="multi",
            type=MULTIPLE_CHOICE,
            negative_marks=-4,
            options=[("A", True, 2), ("B", True, 3), ("C", False, 0)],
        )
        self.attempt = Attempt.new(
            participant_id=STUDENT.user_id, assessment_id=self.assessment.id
        )

    async def seed(self) -> Exam:
        await self.repo.add_assessment(self.assessment)
        await self.repo.add_question(self.single)
        await self.repo.add_question(self.multi)
        await self.repo.add_attempt(self.attempt)
        return self

    def opt(self, question: Question, label: str) -> UUID:
        return next(o.id for o in question.options if o.label == label)


def _run(scenario):
    async def _main():
        exam = await Exam(InMemoryExamRepo()).seed()
        return await scenario(exam)

    return asyncio.run(_main())


def _sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


# ---- start ----


def test_start_moves_pending_to_on_going() -> None:
    async def scenario(exam: Exam):
        attempt = await attempt_service.start_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )
        stored = await exam.repo.get_attempt(exam.attempt.id)
        return attempt, stored

    attempt, stored = _run(scenario)
    assert attempt.status == ON_GOING
    assert stored.status == ON_GOING


def test_start_twice_returns_the_same_attempt() -> None:
    async def scenario(exam: Exam):
        await attempt_service.start_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )
        return await attempt_service.start_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )

    assert _run(scenario).status == ON_GOING


@pytest.mark.parametrize("now", [BEFORE, START, END, AFTER])
def test_start_outside_window_is_rejected(now: int) -> None:
    async def scenario(exam: Exam):
        with pytest.raises(InvalidStateError):
            await attempt_service.start_attempt(
                exam.repo, STUDENT, exam.attempt.id, now=now
            )
        return await exam.repo.get_attempt(exam.attempt.id)

    assert _run(scenario).status == PENDING


def test_start_by_another_user_is_forbidden() -> None:
    async def scenario(exam: Exam):
        with pytest.raises(ForbiddenError):
            await attempt_service.start_attempt(
                exam.repo, OTHER, exam.attempt.id, now=DURING
            )

    _run(scenario)


def test_start_unknown_attempt_is_not_found() -> None:
    async def scenario(exam: Exam):
        with pytest.raises(NotFoundError):
            await attempt_service.start_attempt(exam.repo, STUDENT, uuid4(), now=DURING)

    _run(scenario)


# ---- submit answer ----


def test_submit_answer_stores_selection() -> None:
    async def scenario(exam: Exam):
        await attempt_service.start_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )
        return await attempt_service.submit_answer(
            exam.repo,
            STUDENT,
            exam.attempt.id,
            exam.multi.id,
            [exam.opt(exam.multi, "A"), exam.opt(exam.multi, "B")],
            now=DURING,
        ), exam

    stored, exam = _run(scenario)
    assert {a.option_id for a in stored} == {
        exam.opt(exam.multi, "A"),
        exam.opt(exam.multi, "B"),
    }


def test_resubmitting_same_selection_writes_nothing() -> None:
    async def scenario(exam: Exam):
        options = [exam.opt(exam.multi, "A")]
        first = await attempt_service.submit_answer(
            exam.repo, STUDENT, exam.attempt.id, exam.multi.id, options, now=DURING
        )
        before = _sample("exam_answer_writes_total", {"operation": "insert"})
        second = await attempt_service.submit_answer(
            exam.repo, STUDENT, exam.attempt.id, exam.multi.id, options, now=DURING
        )
        after = _sample("exam_answer_writes_total", {"operation": "insert"})
        return first, second, after - before

    first, second, inserted = _run(scenario)
    assert [a.id for a in first] == [a.id for a in second]
    assert inserted == 0


def test_changing_selection_replaces_only_the_difference() -> None:
    async def scenario(exam: Exam):
        a, b, c = (exam.opt(exam.multi, x) for x in "ABC")
        first = await attempt_service.submit_answer(
            exam.repo, STUDENT, exam.attempt.id, exam.multi.id, [a, b], now=DURING
        )
        second = await attempt_service.submit_answer(
            exam.repo, STUDENT, exam.attempt.id, exam.multi.id, [b, c], now=DURING
        )
        return first, second, b

    first, second, b = _run(scenario)
    kept_first = next(x for x in first if x.option_id == b)
    kept_second = next(x for x in second if x.option_id == b)
    assert kept_first.id == kept_second.id
    assert len(second) == 2


def test_empty_selection_clears_question() -> None:
    async def scenario(exam: Exam):
        await attempt_service.submit_answer(
            exam.repo,
            STUDENT,
            exam.attempt.id,
            exam.single.id,
            [exam.opt(exam.single, "A")],
            now=DURING,
        )
        return await attempt_service.submit_answer(
            exam.repo, STUDENT, exam.attempt.id, exam.single.id, [], now=DURING
        )

    assert _run(scenario) == []


def test_single_choice_rejects_two_options_before_storing() -> None:
    async def scenario(exam: Exam):
        with pytest.raises(InvalidStateError):
            await attempt_service.submit_answer(
                exam.repo,
                STUDENT,
                exam.attempt.id,
                exam.single.id,
                [exam.opt(exam.single, "A"), exam.opt(exam.single, "B")],
                now=DURING,
            )
        return await exam.repo.get_stored_answers(exam.attempt.id, exam.single.id)

    assert _run(scenario) == []


def test_option_from_another_question_is_not_found() -> None:
    async def scenario(exam: Exam):
        with pytest.raises(NotFoundError):
            await attempt_service.submit_answer(
                exam.repo,
                STUDENT,
                exam.attempt.id,
                exam.single.id,
                [exam.opt(exam.multi, "A")],
                now=DURING,
            )

    _run(scenario)


def test_question_from_another_assessment_is_not_found() -> None:
    async def scenario(exam: Exam):
        stranger = Question.new(
            assessment_id=uuid4(), prompt="x", options=[("A", True, 1)]
        )
        await exam.repo.add_question(stranger)
        with pytest.raises(NotFoundError):
            await attempt_service.submit_answer(
                exam.repo,
                STUDENT,
                exam.attempt.id,
                stranger.id,
                [stranger.options[0].id],
                now=DURING,
            )

    _run(scenario)


@pytest.mark.parametrize("now", [BEFORE, END, AFTER])
def test_answer_outside_window_is_forbidden(now: int) -> None:
    async def scenario(exam: Exam):
        with pytest.raises(ForbiddenError, match="allowed time window"):
            await attempt_service.submit_answer(
                exam.repo,
                STUDENT,
                exam.attempt.id,
                exam.single.id,
                [exam.opt(exam.single, "A")],
                now=now,
            )

    _run(scenario)


def test_answer_on_someone_elses_attempt_is_forbidden() -> None:
    async def scenario(exam: Exam):
        with pytest.raises(ForbiddenError):
            await attempt_service.submit_answer(
                exam.repo,
                OTHER,
                exam.attempt.id,
                exam.single.id,
                [exam.opt(exam.single, "A")],
                now=DURING,
            )

    _run(scenario)


def test_no_answers_after_completion() -> None:
    async def scenario(exam: Exam):
        await attempt_service.finalize_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )
        with pytest.raises(InvalidStateError):
            await attempt_service.submit_answer(
                exam.repo,
                STUDENT,
                exam.attempt.id,
                exam.single.id,
                [exam.opt(exam.single, "A")],
                now=DURING,
            )
        return await exam.repo.get_stored_answers(exam.attempt.id, exam.single.id)

    assert _run(scenario) == []


# ---- finalize ----


def test_finalize_scores_and_completes() -> None:
    async def scenario(exam: Exam):
        await attempt_service.start_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )
        await attempt_service.submit_answer(
            exam.repo,
            STUDENT,
            exam.attempt.id,
            exam.single.id,
            [exam.opt(exam.single, "A")],
            now=DURING,
        )
        await attempt_service.submit_answer(
            exam.repo,
            STUDENT,
            exam.attempt.id,
            exam.multi.id,
            [exam.opt(exam.multi, "A"), exam.opt(exam.multi, "C")],
            now=DURING,
        )
        result = await attempt_service.finalize_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )
        return result, await exam.repo.get_attempt(exam.attempt.id)

    result, stored = _run(scenario)
    assert result.status == COMPLETED
    assert result.score == 3 - 4
    assert stored.score == -1
    assert stored.status == COMPLETED


def test_finalize_from_pending_is_allowed() -> None:
    async def scenario(exam: Exam):
        return await attempt_service.finalize_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )

    result = _run(scenario)
    assert result.status == COMPLETED
    assert result.score == 0


def test_finalize_after_window_end_is_allowed() -> None:
    async def scenario(exam: Exam):
        return await attempt_service.finalize_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=AFTER
        )

    assert _run(scenario).status == COMPLETED


def test_finalize_before_start_is_rejected() -> None:
    async def scenario(exam: Exam):
        with pytest.raises(InvalidStateError, match="not started yet"):
            await attempt_service.finalize_attempt(
                exam.repo, STUDENT, exam.attempt.id, now=BEFORE
            )
        return await exam.repo.get_attempt(exam.attempt.id)

    assert _run(scenario).status == PENDING


def test_finalize_twice_is_rejected_and_score_kept() -> None:
    async def scenario(exam: Exam):
        await attempt_service.finalize_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )
        with pytest.raises(InvalidStateError):
            await attempt_service.finalize_attempt(
                exam.repo, STUDENT, exam.attempt.id, now=DURING
            )
        return await exam.repo.get_attempt(exam.attempt.id)

    assert _run(scenario).score == 0


def test_finalize_by_another_user_is_forbidden() -> None:
    async def scenario(exam: Exam):
        with pytest.raises(ForbiddenError):
            await attempt_service.finalize_attempt(
                exam.repo, OTHER, exam.attempt.id, now=DURING
            )

    _run(scenario)


class _InterleavingRepo(InMemoryExamRepo):
    """Yields to the loop after every attempt read so two callers interleave."""

    async def get_attempt(self, attempt_id, *, for_update=False):
        attempt = await super().get_attempt(attempt_id, for_update=for_update)
        await asyncio.sleep(0)
        return attempt


def test_concurrent_finalize_lets_exactly_one_win() -> None:
    async def main():
        exam = await Exam(_InterleavingRepo()).seed()
        before = _sample("exam_finalize_conflicts_total")
        results = await asyncio.gather(
            attempt_service.finalize_attempt(
                exam.repo, STUDENT, exam.attempt.id, now=DURING
            ),
            attempt_service.finalize_attempt(
                exam.repo, STUDENT, exam.attempt.id, now=DURING
            ),
            return_exceptions=True,
        )
        after = _sample("exam_finalize_conflicts_total")
        return results, await exam.repo.get_attempt(exam.attempt.id), after - before

    results, stored, conflicts = asyncio.run(main())
    winners = [r for r in results if isinstance(r, Attempt)]
    losers = [r for r in results if isinstance(r, ConflictError)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert conflicts == 1
    assert stored.status == COMPLETED
    assert stored.score == winners[0].score


class _StartsDuringScoringRepo(InMemoryExamRepo):
    """Moves the attempt pending -> on-going while finalize reads the sheets."""

    async def get_all_questions_with_options_and_answers(
        self, assessment_id, attempt_id
    ):
        await self.update_attempt_status(attempt_id, PENDING, ON_GOING)
        return await super().get_all_questions_with_options_and_answers(
            assessment_id, attempt_id
        )


def test_finalize_survives_a_start_in_between() -> None:
    async def main():
        exam = await Exam(_StartsDuringScoringRepo()).seed()
        before = _sample("exam_finalize_conflicts_total")
        result = await attempt_service.finalize_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )
        after = _sample("exam_finalize_conflicts_total")
        return result, await exam.repo.get_attempt(exam.attempt.id), after - before

    result, stored, conflicts = asyncio.run(main())
    assert result.status == COMPLETED
    assert stored.status == COMPLETED
    assert stored.score == 0
    assert conflicts == 0


def test_finalize_during_a_start_is_not_a_conflict() -> None:
    async def main():
        exam = await Exam(_InterleavingRepo()).seed()
        return await asyncio.gather(
            attempt_service.start_attempt(
                exam.repo, STUDENT, exam.attempt.id, now=DURING
            ),
            attempt_service.finalize_attempt(
                exam.repo, STUDENT, exam.attempt.id, now=DURING
            ),
            return_exceptions=True,
        ), await exam.repo.get_attempt(exam.attempt.id)

    (_started, finalized), stored = asyncio.run(main())
    assert not isinstance(finalized, ConflictError)
    assert isinstance(finalized, Attempt)
    assert stored.status == COMPLETED
    assert stored.score == 0


def test_score_matches_answers_written_alongside_finalize() -> None:
    async def main():
        exam = await Exam(_InterleavingRepo()).seed()
        submitted, finalized = await asyncio.gather(
            attempt_service.submit_answer(
                exam.repo,
                STUDENT,
                exam.attempt.id,
                exam.single.id,
                [exam.opt(exam.single, "A")],
                now=DURING,
            ),
            attempt_service.finalize_attempt(
                exam.repo, STUDENT, exam.attempt.id, now=DURING
            ),
            return_exceptions=True,
        )
        answers = await exam.repo.get_stored_answers(exam.attempt.id, exam.single.id)
        stored = await exam.repo.get_attempt(exam.attempt.id)
        return submitted, finalized, answers, stored

    submitted, finalized, answers, stored = asyncio.run(main())
    assert isinstance(finalized, Attempt)
    assert stored.status == COMPLETED
    if isinstance(submitted, InvalidStateError):
        assert answers == []
        assert stored.score == 0
    else:
        assert len(answers) == 1
        assert stored.score == 3


# ---- score ----


def test_participant_reads_stored_score() -> None:
    async def scenario(exam: Exam):
        await attempt_service.submit_answer(
            exam.repo,
            STUDENT,
            exam.attempt.id,
            exam.single.id,
            [exam.opt(exam.single, "A")],
            now=DURING,
        )
        await attempt_service.finalize_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )
        return await attempt_service.get_score(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )

    assert _run(scenario) == 3


def test_score_before_completion_is_rejected() -> None:
    async def scenario(exam: Exam):
        with pytest.raises(InvalidStateError):
            await attempt_service.get_score(
                exam.repo, STUDENT, exam.attempt.id, now=DURING
            )

    _run(scenario)


def test_score_is_not_recomputed_after_questions_change() -> None:
    async def scenario(exam: Exam):
        await attempt_service.submit_answer(
            exam.repo,
            STUDENT,
            exam.attempt.id,
            exam.single.id,
            [exam.opt(exam.single, "A")],
            now=DURING,
        )
        await attempt_service.finalize_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )
        extra = Question.new(
            assessment_id=exam.assessment.id, prompt="late", options=[("A", True, 50)]
        )
        await exam.repo.add_question(extra)
        return await attempt_service.get_score(
            exam.repo, STUDENT, exam.attempt.id, now=AFTER
        )

    assert _run(scenario) == 3


def test_owner_backfills_missing_score_after_end() -> None:
    async def scenario(exam: Exam):
        await attempt_service.submit_answer(
            exam.repo,
            STUDENT,
            exam.attempt.id,
            exam.multi.id,
            [exam.opt(exam.multi, "A"), exam.opt(exam.multi, "B")],
            now=DURING,
        )
        # completed without a score, as left behind by an interrupted finalize
        await exam.repo.update_attempt_status(exam.attempt.id, PENDING, COMPLETED)
        score = await attempt_service.get_score(
            exam.repo, OWNER, exam.attempt.id, now=AFTER
        )
        return score, await exam.repo.get_attempt(exam.attempt.id)

    score, stored = _run(scenario)
    assert score == 5
    assert stored.score == 5


def test_owner_gets_no_backfill_before_end() -> None:
    async def scenario(exam: Exam):
        await exam.repo.update_attempt_status(exam.attempt.id, PENDING, COMPLETED)
        with pytest.raises(InvalidStateError):
            await attempt_service.get_score(
                exam.repo, OWNER, exam.attempt.id, now=DURING
            )

    _run(scenario)


def test_other_admin_cannot_read_score() -> None:
    async def scenario(exam: Exam):
        await attempt_service.finalize_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )
        with pytest.raises(ForbiddenError):
            await attempt_service.get_score(
                exam.repo, OTHER_ADMIN, exam.attempt.id, now=AFTER
            )

    _run(scenario)


# ---- review flag ----


def test_mark_for_review_toggles_flag() -> None:
    async def scenario(exam: Exam):
        marked = await attempt_service.mark_for_review(
            exam.repo, STUDENT, exam.attempt.id, True
        )
        unmarked = await attempt_service.mark_for_review(
            exam.repo, STUDENT, exam.attempt.id, False
        )
        return marked, unmarked

    marked, unmarked = _run(scenario)
    assert marked.is_marked is True
    assert unmarked.is_marked is False


def test_mark_for_review_after_completion_is_rejected() -> None:
    async def scenario(exam: Exam):
        await attempt_service.finalize_attempt(
            exam.repo, STUDENT, exam.attempt.id, now=DURING
        )
        with pytest.raises(InvalidStateError):
            await attempt_service.mark_for_review(
                exam.repo, STUDENT, exam.attempt.id, True
            )

    _run(scenario)
