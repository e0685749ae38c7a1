import uuid
from datetime import date

import pytest

from dailyq.scheduler.jobs import SchedulingError, select_and_schedule
from dailyq.web.crud import ConflictError, InputValidationError, NotFoundError, QuestionOperations

DAY = date(2024, 5, 1)


@pytest.fixture
def questions(session):
    return QuestionOperations(session)


class TestSubmitQuestion:
    async def test_submission_waits_for_review(self, questions):
        submission = await questions.submit_question(user_id="alice", text="  Tea or coffee?  ")

        assert submission.status == "pending"
        assert submission.submitted_by == "alice"
        assert submission.text == "Tea or coffee?"
        assert [q.id for q in await questions.list_submissions()] == [submission.id]

    @pytest.mark.parametrize("text", ["", "   ", "x" * 201])
    async def test_rejects_blank_or_long_text(self, questions, text):
        with pytest.raises(InputValidationError):
            await questions.submit_question(user_id="alice", text=text)

    async def test_admin_questions_are_not_submissions(self, questions, make_question):
        await make_question("Admin authored")

        assert await questions.list_submissions(status=None) == []

    async def test_pending_submission_is_never_scheduled(self, session, settings, questions):
        await questions.submit_question(user_id="alice", text="Tea or coffee?")

        with pytest.raises(SchedulingError):
            await select_and_schedule(session, settings, today=DAY)


class TestReviewSubmission:
    async def test_approval_enters_the_selection_pool(self, session, settings, questions):
        submission = await questions.submit_question(user_id="alice", text="Tea or coffee?")

        approved = await questions.review_submission(
            submission.id, decision="approved", text="Tea or coffee, and why?", category="food"
        )

        assert approved.status == "approved"
        assert approved.text == "Tea or coffee, and why?"
        assert approved.category == "food"

        daily, created = await select_and_schedule(session, settings, today=DAY)
        assert created is True
        assert daily.question_id == submission.id

    async def test_rejection_keeps_text(self, questions):
        submission = await questions.submit_question(user_id="alice", text="Tea or coffee?")

        rejected = await questions.review_submission(submission.id, decision="rejected", text="ignored")

        assert rejected.status == "rejected"
        assert rejected.text == "Tea or coffee?"
        assert await questions.list_submissions() == []
        assert [q.id for q in await questions.list_submissions(status="rejected")] == [submission.id]

    async def test_second_review_conflicts(self, questions):
        submission = await questions.submit_question(user_id="alice", text="Tea or coffee?")
        await questions.review_submission(submission.id, decision="approved")

        with pytest.raises(ConflictError) as exc_info:
            await questions.review_submission(submission.id, decision="rejected")

        assert exc_info.value.code == "already_reviewed"

    async def test_unknown_or_admin_question(self, questions, make_question):
        admin_question = await make_question("Admin authored")

        with pytest.raises(NotFoundError):
            await questions.review_submission(uuid.uuid4(), decision="approved")
        with pytest.raises(NotFoundError):
            await questions.review_submission(admin_question.id, decision="approved")

    async def test_unknown_decision(self, questions):
        submission = await questions.submit_question(user_id="alice", text="Tea or coffee?")

        with pytest.raises(InputValidationError):
            await questions.review_submission(submission.id, decision="removed")
