import asyncio
import uuid
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select, update

from dailyq.web.crud import (
    AnswerOperations,
    BannedTermOperations,
    ConflictError,
    ForbiddenError,
    InputValidationError,
    NotFoundError,
    SocialGraphOperations,
    TimelineOperations,
)
from dailyq.web.models import Answer

from helpers import jst

DAY = date(2024, 5, 1)


@pytest.fixture
async def q1(make_user, make_question, publish_question):
    await make_user("alice")
    await make_user("bob")
    question = await make_question("What did you have for breakfast?")
    await publish_question(question, DAY, jst(2024, 5, 1, 10, 0))
    return question


@pytest.fixture
def answers(session, settings):
    return AnswerOperations(session, settings)


class TestSubmitAnswer:
    async def test_on_time_answer(self, answers, q1):
        answer = await answers.submit_answer(
            user_id="alice", question_id=q1.id, text="Toast", now=jst(2024, 5, 1, 10, 5)
        )

        assert answer.active_date == DAY
        assert answer.is_on_time is True
        assert answer.late_minutes == 0
        assert answer.rendered_text == "Toast"
        assert answer.is_flagged is False

    async def test_late_answer_counts_minutes_past_the_window(self, answers, q1):
        answer = await answers.submit_answer(
            user_id="alice", question_id=q1.id, text="Rice", now=jst(2024, 5, 1, 10, 45, 30)
        )

        assert answer.is_on_time is False
        assert answer.late_minutes == 15

    async def test_answer_seconds_past_the_window_is_late(self, answers, q1):
        answer = await answers.submit_answer(
            user_id="alice", question_id=q1.id, text="Miso", now=jst(2024, 5, 1, 10, 30, 59)
        )

        assert answer.is_on_time is False
        assert answer.late_minutes == 0

    async def test_banned_terms_are_masked_but_raw_text_is_kept(self, session, answers, q1):
        await BannedTermOperations(session).add_term("  Darn ")

        answer = await answers.submit_answer(
            user_id="alice", question_id=q1.id, text="darn good eggs", now=jst(2024, 5, 1, 10, 1)
        )

        assert answer.is_flagged is True
        assert answer.rendered_text == "**** good eggs"
        assert answer.raw_text == "darn good eggs"
        assert answer.flag_reason == "Banned terms detected: darn"

    @pytest.mark.parametrize("text", ["", "   ", "x" * 81, "www.example.com"])
    async def test_invalid_text(self, answers, q1, text):
        with pytest.raises(InputValidationError) as exc_info:
            await answers.submit_answer(user_id="alice", question_id=q1.id, text=text, now=jst(2024, 5, 1, 10, 5))

        assert exc_info.value.code == "validation_error"

    async def test_other_question_is_rejected(self, answers, q1):
        with pytest.raises(ForbiddenError) as exc_info:
            await answers.submit_answer(
                user_id="alice", question_id=uuid.uuid4(), text="Hi", now=jst(2024, 5, 1, 10, 5)
            )

        assert exc_info.value.code == "wrong_question"

    async def test_yesterdays_question_is_rejected_today(self, answers, q1):
        with pytest.raises(ForbiddenError) as exc_info:
            await answers.submit_answer(
                user_id="alice", question_id=q1.id, text="Late", now=jst(2024, 5, 2, 9, 0)
            )

        assert exc_info.value.code == "wrong_question"

    async def test_unpublished_question_is_rejected(self, answers, make_user, make_question, publish_question):
        await make_user("alice")
        question = await make_question()
        await publish_question(question, DAY, None)

        with pytest.raises(ForbiddenError) as exc_info:
            await answers.submit_answer(
                user_id="alice", question_id=question.id, text="Early", now=jst(2024, 5, 1, 9, 0)
            )

        assert exc_info.value.code == "wrong_question"

    async def test_concurrent_double_submit_stores_one_answer(self, session, session_factory, settings, q1):
        async def submit(text):
            async with session_factory() as s:
                return await AnswerOperations(s, settings).submit_answer(
                    user_id="alice", question_id=q1.id, text=text, now=jst(2024, 5, 1, 10, 5)
                )

        results = await asyncio.gather(submit("one"), submit("two"), return_exceptions=True)

        stored = [r for r in results if isinstance(r, Answer)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(stored) == 1
        assert len(conflicts) == 1
        assert conflicts[0].code == "already_answered"

        count = await session.execute(select(func.count()).select_from(Answer))
        assert count.scalar_one() == 1


class TestSoftDelete:
    async def test_only_owner_may_delete(self, answers, q1):
        answer = await answers.submit_answer(user_id="alice", question_id=q1.id, text="Tea", now=jst(2024, 5, 1, 10, 5))

        with pytest.raises(ForbiddenError) as exc_info:
            await answers.soft_delete_answer(answer_id=answer.id, user_id="bob")

        assert exc_info.value.code == "not_owner"

    async def test_unknown_answer(self, answers):
        with pytest.raises(NotFoundError):
            await answers.soft_delete_answer(answer_id=uuid.uuid4(), user_id="alice")

    async def test_delete_twice_and_restore_twice(self, answers, q1):
        answer = await answers.submit_answer(user_id="alice", question_id=q1.id, text="Tea", now=jst(2024, 5, 1, 10, 5))

        deleted = await answers.soft_delete_answer(answer_id=answer.id, user_id="alice")
        assert deleted.is_deleted is True
        assert deleted.deleted_at is not None

        with pytest.raises(ConflictError) as exc_info:
            await answers.soft_delete_answer(answer_id=answer.id, user_id="alice")
        assert exc_info.value.code == "already_deleted"

        restored = await answers.restore_answer(answer_id=answer.id, user_id="alice")
        assert restored.is_deleted is False
        assert restored.deleted_at is None

        with pytest.raises(ConflictError) as exc_info:
            await answers.restore_answer(answer_id=answer.id, user_id="alice")
        assert exc_info.value.code == "not_deleted"

    async def test_restore_keeps_content_and_reactions(self, session, answers, q1):
        answer = await answers.submit_answer(user_id="alice", question_id=q1.id, text="Tea", now=jst(2024, 5, 1, 10, 5))
        await session.execute(update(Answer).where(Answer.id == answer.id).values(reaction_count=3))
        await session.commit()

        await answers.soft_delete_answer(answer_id=answer.id, user_id="alice")
        restored = await answers.restore_answer(answer_id=answer.id, user_id="alice")

        assert restored.reaction_count == 3
        assert restored.rendered_text == "Tea"
        assert restored.is_on_time is True


class TestAnswerHistory:
    async def test_newest_first_with_cursor(self, answers, make_user, make_question, publish_question):
        await make_user("alice")
        days = [DAY + timedelta(days=i) for i in range(3)]
        for day in days:
            question = await make_question(f"Question for {day}")
            await publish_question(question, day, jst(day.year, day.month, day.day, 10))
            await answers.submit_answer(
                user_id="alice",
                question_id=question.id,
                text=f"Answer {day}",
                now=jst(day.year, day.month, day.day, 11),
            )

        history = await answers.get_answer_history("alice")
        assert [answer.active_date for answer, _ in history] == list(reversed(days))
        assert history[0][1] == f"Question for {days[-1]}"

        older = await answers.get_answer_history("alice", before=days[-1])
        assert [answer.active_date for answer, _ in older] == [days[1], days[0]]

    async def test_deleted_answers_only_with_flag(self, answers, q1):
        answer = await answers.submit_answer(user_id="alice", question_id=q1.id, text="Tea", now=jst(2024, 5, 1, 10, 5))
        await answers.soft_delete_answer(answer_id=answer.id, user_id="alice")

        assert await answers.get_answer_history("alice") == []
        history = await answers.get_answer_history("alice", include_deleted=True)
        assert history[0][0].is_deleted is True


async def test_answer_delete_restore_scenario(session, session_factory, settings, answers, q1):
    """Answer, resubmit, delete, resubmit again, restore, then check a follower's feed."""
    await SocialGraphOperations(session).follow("bob", "alice")
    timeline = TimelineOperations(session_factory, settings)

    answer = await answers.submit_answer(
        user_id="alice", question_id=q1.id, text="Natto", now=jst(2024, 5, 1, 10, 5)
    )
    assert (answer.is_on_time, answer.late_minutes) == (True, 0)

    with pytest.raises(ConflictError) as exc_info:
        await answers.submit_answer(user_id="alice", question_id=q1.id, text="Again", now=jst(2024, 5, 1, 10, 6))
    assert exc_info.value.code == "already_answered"

    await answers.soft_delete_answer(answer_id=answer.id, user_id="alice", now=jst(2024, 5, 1, 10, 7))
    assert (await timeline.get_timeline("bob", active_date=DAY)).entries == []

    with pytest.raises(ConflictError) as exc_info:
        await answers.submit_answer(user_id="alice", question_id=q1.id, text="Again", now=jst(2024, 5, 1, 10, 8))
    assert exc_info.value.code == "deleted_exists"

    await answers.restore_answer(answer_id=answer.id, user_id="alice")

    page = await timeline.get_timeline("bob", active_date=DAY)
    assert [entry.answer.id for entry in page.entries] == [answer.id]
    assert page.entries[0].answer.rendered_text == "Natto"
    assert page.entries[0].is_own is False


class TestFlaggedAnswerReview:
    @pytest.fixture
    async def flagged(self, session, answers, q1):
        await BannedTermOperations(session).add_term("darn")
        return await answers.submit_answer(
            user_id="alice", question_id=q1.id, text="darn toast", now=jst(2024, 5, 1, 10, 3)
        )

    async def test_flagged_answers_start_pending(self, answers, flagged):
        assert flagged.flag_status == "pending"
        assert [a.id for a in await answers.list_flagged_answers()] == [flagged.id]
        assert [a.id for a in await answers.list_flagged_answers(status="pending")] == [flagged.id]
        assert await answers.list_flagged_answers(status="removed") == []

    async def test_clean_answers_are_not_queued(self, answers, q1):
        clean = await answers.submit_answer(
            user_id="bob", question_id=q1.id, text="Rice", now=jst(2024, 5, 1, 10, 3)
        )

        assert clean.flag_status is None
        assert await answers.list_flagged_answers() == []

    async def test_approve_keeps_answer_visible(self, answers, flagged):
        reviewed = await answers.review_flagged_answer(flagged.id, decision="approved")

        assert reviewed.flag_status == "approved"
        assert reviewed.reviewed_at is not None
        assert reviewed.is_deleted is False

        with pytest.raises(ConflictError) as exc_info:
            await answers.review_flagged_answer(flagged.id, decision="removed")
        assert exc_info.value.code == "already_reviewed"

    async def test_removal_hides_answer_and_blocks_restore(self, answers, flagged):
        removed = await answers.review_flagged_answer(flagged.id, decision="removed")

        assert removed.is_deleted is True
        assert removed.deleted_at is not None
        assert await answers.get_answer_history("alice") == []

        with pytest.raises(ForbiddenError) as exc_info:
            await answers.restore_answer(answer_id=flagged.id, user_id="alice")
        assert exc_info.value.code == "removed_by_moderator"

    async def test_unflagged_answer_cannot_be_reviewed(self, answers, q1):
        clean = await answers.submit_answer(
            user_id="bob", question_id=q1.id, text="Rice", now=jst(2024, 5, 1, 10, 3)
        )

        with pytest.raises(ConflictError) as exc_info:
            await answers.review_flagged_answer(clean.id, decision="approved")
        assert exc_info.value.code == "not_flagged"

    async def test_review_errors(self, answers, flagged):
        with pytest.raises(InputValidationError):
            await answers.review_flagged_answer(flagged.id, decision="maybe")
        with pytest.raises(NotFoundError):
            await answers.review_flagged_answer(uuid.uuid4(), decision="approved")
        with pytest.raises(InputValidationError):
            await answers.list_flagged_answers(status="bogus")
