"""Database operations for the Daily Question service.

Each ``*Operations`` class wraps one aggregate and is bound to an
``AsyncSession``. Business rules that guard a write (ownership, block
masking, one answer per day) live next to the write they guard, and every
invariant that must survive concurrent writers is backed by a constraint
or a conditional UPDATE rather than by the pre-check alone.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar
from uuid import UUID

from sqlalchemy import select, update, delete, func, desc, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dailyq.shared.clock import calculate_timeliness, local_today, utcnow
from dailyq.shared.config import Settings, get_settings
from dailyq.shared.moderation import filter_content, find_text_problem
from dailyq.web.models import (
    FLAG_REVIEW_STATUSES,
    PUSH_PLATFORMS,
    QUESTION_STATUSES,
    SELECTABLE_QUESTION_STATUSES,
    Answer,
    BannedTerm,
    BlockEdge,
    DailyQuestion,
    FollowEdge,
    PushDestination,
    Question,
    Reaction,
    User,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DatabaseOperationError(Exception):
    """Base exception for database operations."""

    code = "database_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class NotFoundError(DatabaseOperationError):
    """Raised when a requested resource is not found (or must look that way)."""

    code = "not_found"


class ConflictError(DatabaseOperationError):
    """Raised when stored state already satisfies or contradicts a request."""

    code = "conflict"


class ForbiddenError(DatabaseOperationError):
    """Raised when the caller may not act on an existing resource."""

    code = "forbidden"


class InputValidationError(DatabaseOperationError):
    """Raised for malformed or oversized input."""

    code = "validation_error"


def validate_answer_text(text: Optional[str], max_length: int) -> None:
    """Raise InputValidationError if the text cannot be stored as an answer."""
    problem = find_text_problem(text, max_length)
    if problem is not None:
        raise InputValidationError(problem)


class QuestionOperations:
    """Question bank management."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_question(self, question_id: UUID) -> Optional[Question]:
        try:
            result = await self.session.execute(
                select(Question).where(Question.id == question_id)
            )
            return result.scalar_one_or_none()

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get question: {e}") from e

    async def list_questions(
        self,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> List[Question]:
        try:
            query = select(Question).order_by(desc(Question.created_at)).limit(limit)
            if status is not None:
                query = query.where(Question.status == status)

            result = await self.session.execute(query)
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to list questions: {e}") from e

    async def get_selectable_questions(self) -> List[Question]:
        """Questions eligible for daily selection, regardless of last use."""
        try:
            result = await self.session.execute(
                select(Question)
                .where(Question.status.in_(SELECTABLE_QUESTION_STATUSES))
                .order_by(Question.created_at)
            )
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get selectable questions: {e}") from e

    async def create_question(
        self,
        *,
        text: str,
        category: Optional[str] = None,
        status: str = "admin",
    ) -> Question:
        if not text or not text.strip():
            raise InputValidationError("Question text is required")
        if status not in QUESTION_STATUSES:
            raise InputValidationError(f"Unknown question status: {status}")

        try:
            question = Question(text=text.strip(), category=category, status=status)
            self.session.add(question)
            await self.session.commit()
            await self.session.refresh(question)
            return question

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to create question: {e}") from e

    async def submit_question(
        self,
        *,
        user_id: str,
        text: str,
        category: Optional[str] = None,
        max_length: int = 200,
    ) -> Question:
        """Propose a question; it waits in ``pending`` until an admin reviews it."""
        text = (text or "").strip()
        if not text:
            raise InputValidationError("Question text is required")
        if len(text) > max_length:
            raise InputValidationError(f"Questions must be {max_length} characters or less")

        try:
            question = Question(
                text=text,
                category=category,
                status="pending",
                submitted_by=user_id,
            )
            self.session.add(question)
            await self.session.commit()
            await self.session.refresh(question)
            return question

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to submit question: {e}") from e

    async def list_submissions(
        self,
        status: Optional[str] = "pending",
        limit: int = 50,
    ) -> List[Question]:
        """User-proposed questions, newest first. ``status=None`` lists all."""
        try:
            query = (
                select(Question)
                .where(Question.submitted_by.is_not(None))
                .order_by(desc(Question.created_at))
                .limit(limit)
            )
            if status is not None:
                query = query.where(Question.status == status)

            result = await self.session.execute(query)
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to list question submissions: {e}") from e

    async def review_submission(
        self,
        question_id: UUID,
        *,
        decision: str,
        text: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Question:
        """Approve (optionally editing) or reject a pending submission.

        Approval moves the question into the selectable pool.
        """
        if decision not in ("approved", "rejected"):
            raise InputValidationError("Decision must be 'approved' or 'rejected'")

        question = await self.get_question(question_id)
        if question is None or question.submitted_by is None:
            raise NotFoundError("Submission not found")
        if question.status != "pending":
            raise ConflictError(
                f"Submission was already {question.status}", code="already_reviewed"
            )

        values: Dict[str, object] = {"status": decision, "updated_at": utcnow()}
        if decision == "approved":
            if text is not None and text.strip():
                values["text"] = text.strip()
            if category is not None:
                values["category"] = category

        try:
            result = await self.session.execute(
                update(Question)
                .where(Question.id == question_id, Question.status == "pending")
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to review submission: {e}") from e

        if result.rowcount == 0:
            raise ConflictError("Submission was already reviewed", code="already_reviewed")

        await self.session.refresh(question)
        return question


class DailyQuestionOperations:
    """Reads and state transitions for the per-day question record."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    async def get_daily_question(self, active_date: date) -> Optional[DailyQuestion]:
        try:
            result = await self.session.execute(
                select(DailyQuestion).where(DailyQuestion.active_date == active_date)
            )
            return result.scalar_one_or_none()

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get daily question: {e}") from e

    async def create_daily_question(
        self,
        *,
        active_date: date,
        question: Question,
        scheduled_publish_time: time,
        is_manual: bool = False,
    ) -> Tuple[DailyQuestion, bool]:
        """Insert the day's row unless one already exists.

        Returns:
            (daily_question, created). When another writer got there first the
            existing row is returned with ``created=False``.
        """
        existing = await self.get_daily_question(active_date)
        if existing is not None:
            return existing, False

        try:
            daily = DailyQuestion(
                active_date=active_date,
                question=question,
                scheduled_publish_time=scheduled_publish_time,
                is_manual=is_manual,
            )
            self.session.add(daily)
            question.last_used_on = active_date
            await self.session.commit()

        except IntegrityError:
            await self.session.rollback()
            logger.info(f"Daily question for {active_date} was created concurrently")
            existing = await self.get_daily_question(active_date)
            if existing is None:
                raise DatabaseOperationError(
                    f"Daily question for {active_date} vanished after a conflicting insert"
                )
            return existing, False

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to create daily question: {e}") from e

        return await self.get_daily_question(active_date), True

    async def set_daily_question(
        self,
        *,
        active_date: date,
        question_id: UUID,
        scheduled_publish_time: Optional[time] = None,
    ) -> DailyQuestion:
        """Administrator override for a day that has no question yet."""
        question = await QuestionOperations(self.session).get_question(question_id)
        if question is None:
            raise NotFoundError("Question not found")

        daily, created = await self.create_daily_question(
            active_date=active_date,
            question=question,
            scheduled_publish_time=scheduled_publish_time or self.settings.publish_window_start,
            is_manual=True,
        )
        if not created:
            raise ConflictError(
                f"A question is already scheduled for {active_date}",
                code="already_scheduled",
            )
        return daily

    async def mark_published(self, active_date: date, published_at: datetime) -> bool:
        """Scheduled -> Published, exactly once.

        Returns:
            True if this call performed the transition, False if the row was
            already published (or missing).
        """
        try:
            result = await self.session.execute(
                update(DailyQuestion)
                .where(
                    DailyQuestion.active_date == active_date,
                    DailyQuestion.published_at.is_(None),
                )
                .values(published_at=published_at, updated_at=published_at)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
            return result.rowcount == 1

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to publish daily question: {e}") from e

    async def list_published(
        self,
        before: date,
        limit: int = 30,
    ) -> List[DailyQuestion]:
        """Published days strictly before ``before``, newest first."""
        try:
            result = await self.session.execute(
                select(DailyQuestion)
                .where(
                    DailyQuestion.active_date < before,
                    DailyQuestion.published_at.is_not(None),
                )
                .order_by(desc(DailyQuestion.active_date))
                .limit(limit)
            )
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to list past questions: {e}") from e


class BannedTermOperations:
    """Moderator-managed banned terms."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_terms(self) -> List[str]:
        try:
            result = await self.session.execute(select(BannedTerm.term).order_by(BannedTerm.term))
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to load banned terms: {e}") from e

    async def add_term(self, term: str) -> str:
        normalized = (term or "").strip().lower()
        if not normalized:
            raise InputValidationError("Term is required")

        try:
            self.session.add(BannedTerm(term=normalized))
            await self.session.commit()
            return normalized

        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(f"Term already banned: {normalized}", code="duplicate_term") from e

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to add banned term: {e}") from e

    async def remove_term(self, term: str) -> None:
        normalized = (term or "").strip().lower()
        try:
            result = await self.session.execute(
                delete(BannedTerm).where(BannedTerm.term == normalized)
            )
            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to remove banned term: {e}") from e

        if result.rowcount == 0:
            raise NotFoundError(f"Term not found: {normalized}")


class AnswerOperations:
    """Answer submission pipeline, soft delete and restore."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    async def get_answer(self, answer_id: UUID) -> Answer:
        try:
            result = await self.session.execute(select(Answer).where(Answer.id == answer_id))
            answer = result.scalar_one_or_none()

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get answer: {e}") from e

        if answer is None:
            raise NotFoundError("Answer not found")
        return answer

    async def find_user_answer(self, user_id: str, question_id: UUID) -> Optional[Answer]:
        """The user's answer to a question, live or soft-deleted."""
        try:
            result = await self.session.execute(
                select(Answer).where(
                    Answer.user_id == user_id,
                    Answer.question_id == question_id,
                )
            )
            return result.scalar_one_or_none()

        except Exception as e:
            raise DatabaseOperationError(f"Failed to look up answer: {e}") from e

    async def submit_answer(
        self,
        *,
        user_id: str,
        question_id: UUID,
        text: str,
        now: Optional[datetime] = None,
    ) -> Answer:
        """Record the user's single answer to today's published question.

        Raises:
            InputValidationError: empty, too long, or contains a URL
            ForbiddenError: not today's question, or today's question is unpublished
            ConflictError: ``already_answered`` or ``deleted_exists``
        """
        validate_answer_text(text, self.settings.max_answer_length)

        now = now or utcnow()
        today = local_today(self.settings.tz, now)

        daily = await DailyQuestionOperations(self.session, self.settings).get_daily_question(today)
        if daily is None or daily.question_id != question_id or not daily.is_published:
            raise ForbiddenError(
                "You can only answer today's published question",
                code="wrong_question",
            )

        existing = await self.find_user_answer(user_id, question_id)
        if existing is not None:
            if existing.is_deleted:
                raise ConflictError(
                    "You deleted your answer to this question; restore it instead of answering again",
                    code="deleted_exists",
                )
            raise ConflictError("You have already answered this question", code="already_answered")

        timeliness = calculate_timeliness(daily.published_at, now, self.settings.on_time_minutes)
        terms = await BannedTermOperations(self.session).list_terms()
        verdict = filter_content(text, terms)

        if verdict.is_flagged:
            logger.info(f"Answer by {user_id} for {today} flagged: {verdict.reason}")

        try:
            answer = Answer(
                user_id=user_id,
                question_id=question_id,
                active_date=today,
                raw_text=text,
                rendered_text=verdict.rendered_text,
                is_flagged=verdict.is_flagged,
                flag_reason=verdict.reason,
                flag_status="pending" if verdict.is_flagged else None,
                is_on_time=timeliness.is_on_time,
                late_minutes=timeliness.late_minutes,
                created_at=now,
            )
            self.session.add(answer)
            await self.session.commit()
            return answer

        except IntegrityError as e:
            # A concurrent submission from the same user won the unique key
            await self.session.rollback()
            raise ConflictError(
                "You have already answered this question", code="already_answered"
            ) from e

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to submit answer: {e}") from e

    async def _get_owned_answer(self, answer_id: UUID, user_id: str, action: str) -> Answer:
        answer = await self.get_answer(answer_id)
        if answer.user_id != user_id:
            raise ForbiddenError(f"You can only {action} your own answers", code="not_owner")
        return answer

    async def soft_delete_answer(
        self,
        *,
        answer_id: UUID,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> Answer:
        answer = await self._get_owned_answer(answer_id, user_id, "delete")
        if answer.is_deleted:
            raise ConflictError("This answer is already deleted", code="already_deleted")

        now = now or utcnow()
        try:
            result = await self.session.execute(
                update(Answer)
                .where(Answer.id == answer_id, Answer.is_deleted.is_(False))
                .values(is_deleted=True, deleted_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to delete answer: {e}") from e

        if result.rowcount == 0:
            raise ConflictError("This answer is already deleted", code="already_deleted")

        await self.session.refresh(answer)
        return answer

    async def restore_answer(self, *, answer_id: UUID, user_id: str) -> Answer:
        answer = await self._get_owned_answer(answer_id, user_id, "restore")
        if not answer.is_deleted:
            raise ConflictError("This answer is not deleted", code="not_deleted")
        if answer.flag_status == "removed":
            raise ForbiddenError(
                "This answer was removed by a moderator", code="removed_by_moderator"
            )

        try:
            result = await self.session.execute(
                update(Answer)
                .where(
                    Answer.id == answer_id,
                    Answer.is_deleted.is_(True),
                    or_(Answer.flag_status.is_(None), Answer.flag_status != "removed"),
                )
                .values(is_deleted=False, deleted_at=None, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to restore answer: {e}") from e

        if result.rowcount == 0:
            raise ConflictError("This answer is not deleted", code="not_deleted")

        await self.session.refresh(answer)
        return answer

    async def get_answer_history(
        self,
        user_id: str,
        *,
        before: Optional[date] = None,
        limit: int = 20,
        include_deleted: bool = False,
    ) -> List[Tuple[Answer, str]]:
        """A user's answers with their question text, newest day first."""
        try:
            query = (
                select(Answer, Question.text)
                .join(Question, Answer.question_id == Question.id)
                .where(Answer.user_id == user_id)
                .order_by(desc(Answer.active_date))
                .limit(limit)
            )
            if before is not None:
                query = query.where(Answer.active_date < before)
            if not include_deleted:
                query = query.where(Answer.is_deleted.is_(False))

            result = await self.session.execute(query)
            return [(row[0], row[1]) for row in result.all()]

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get answer history: {e}") from e

    async def list_flagged_answers(
        self,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[Answer]:
        """Answers the content filter flagged, newest first."""
        if status is not None and status not in FLAG_REVIEW_STATUSES:
            raise InputValidationError(f"Unknown review status: {status}")

        try:
            query = (
                select(Answer)
                .where(Answer.is_flagged.is_(True))
                .order_by(desc(Answer.created_at))
                .limit(limit)
            )
            if status is not None:
                query = query.where(Answer.flag_status == status)

            result = await self.session.execute(query)
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to list flagged answers: {e}") from e

    async def review_flagged_answer(
        self,
        answer_id: UUID,
        *,
        decision: str,
        now: Optional[datetime] = None,
    ) -> Answer:
        """Resolve a flagged answer.

        ``approved`` leaves the answer visible. ``removed`` hides it like a
        soft delete, and its owner can no longer restore it.
        """
        if decision not in ("approved", "removed"):
            raise InputValidationError("Decision must be 'approved' or 'removed'")

        answer = await self.get_answer(answer_id)
        if not answer.is_flagged:
            raise ConflictError("This answer was not flagged", code="not_flagged")
        if answer.flag_status not in (None, "pending"):
            raise ConflictError(
                f"This answer was already {answer.flag_status}", code="already_reviewed"
            )

        now = now or utcnow()
        values: Dict[str, object] = {"flag_status": decision, "reviewed_at": now, "updated_at": now}
        if decision == "removed":
            values["is_deleted"] = True
            values["deleted_at"] = answer.deleted_at or now

        try:
            result = await self.session.execute(
                update(Answer)
                .where(
                    Answer.id == answer_id,
                    or_(Answer.flag_status.is_(None), Answer.flag_status == "pending"),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to review answer: {e}") from e

        if result.rowcount == 0:
            raise ConflictError("This answer was already reviewed", code="already_reviewed")

        logger.info(f"Flagged answer {answer_id} {decision}")
        await self.session.refresh(answer)
        return answer


class SocialGraphOperations:
    """Follow and block edges."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_followee_ids(self, user_id: str) -> Set[str]:
        try:
            result = await self.session.execute(
                select(FollowEdge.followee_id).where(FollowEdge.follower_id == user_id)
            )
            return set(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to load follows: {e}") from e

    async def get_blocked_user_ids(self, user_id: str) -> Set[str]:
        """Users with a block edge to or from ``user_id``."""
        try:
            blocked_by_me = await self.session.execute(
                select(BlockEdge.blocked_id).where(BlockEdge.blocker_id == user_id)
            )
            blocked_me = await self.session.execute(
                select(BlockEdge.blocker_id).where(BlockEdge.blocked_id == user_id)
            )
            return set(blocked_by_me.scalars().all()) | set(blocked_me.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to load blocks: {e}") from e

    async def is_blocked_between(self, user_a: str, user_b: str) -> bool:
        try:
            result = await self.session.execute(
                select(BlockEdge.blocker_id)
                .where(
                    or_(
                        and_(BlockEdge.blocker_id == user_a, BlockEdge.blocked_id == user_b),
                        and_(BlockEdge.blocker_id == user_b, BlockEdge.blocked_id == user_a),
                    )
                )
                .limit(1)
            )
            return result.scalar_one_or_none() is not None

        except Exception as e:
            raise DatabaseOperationError(f"Failed to check blocks: {e}") from e

    async def is_following(self, follower_id: str, followee_id: str) -> bool:
        try:
            result = await self.session.execute(
                select(FollowEdge.follower_id).where(
                    FollowEdge.follower_id == follower_id,
                    FollowEdge.followee_id == followee_id,
                )
            )
            return result.scalar_one_or_none() is not None

        except Exception as e:
            raise DatabaseOperationError(f"Failed to check follow: {e}") from e

    async def follow(self, follower_id: str, followee_id: str) -> None:
        if follower_id == followee_id:
            raise InputValidationError("Cannot follow yourself", code="self_follow")

        await UserOperations(self.session).get_visible_user(follower_id, followee_id)

        if await self.is_following(follower_id, followee_id):
            raise ConflictError("Already following this user", code="already_following")

        try:
            self.session.add(FollowEdge(follower_id=follower_id, followee_id=followee_id))
            await self.session.commit()

        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError("Already following this user", code="already_following") from e

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to follow user: {e}") from e

    async def unfollow(self, follower_id: str, followee_id: str) -> None:
        try:
            result = await self.session.execute(
                delete(FollowEdge).where(
                    FollowEdge.follower_id == follower_id,
                    FollowEdge.followee_id == followee_id,
                )
            )
            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to unfollow user: {e}") from e

        if result.rowcount == 0:
            raise NotFoundError("Not following this user")

    async def block(self, blocker_id: str, blocked_id: str) -> None:
        """Block a user and drop follow edges in both directions."""
        if blocker_id == blocked_id:
            raise InputValidationError("Cannot block yourself", code="self_block")

        if await UserOperations(self.session).get_user(blocked_id) is None:
            raise NotFoundError("User not found")

        try:
            self.session.add(BlockEdge(blocker_id=blocker_id, blocked_id=blocked_id))
            await self.session.execute(
                delete(FollowEdge).where(
                    or_(
                        and_(FollowEdge.follower_id == blocker_id, FollowEdge.followee_id == blocked_id),
                        and_(FollowEdge.follower_id == blocked_id, FollowEdge.followee_id == blocker_id),
                    )
                )
            )
            await self.session.commit()

        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError("Already blocked this user", code="already_blocked") from e

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to block user: {e}") from e

        logger.info(f"{blocker_id} blocked {blocked_id}")

    async def unblock(self, blocker_id: str, blocked_id: str) -> None:
        try:
            result = await self.session.execute(
                delete(BlockEdge).where(
                    BlockEdge.blocker_id == blocker_id,
                    BlockEdge.blocked_id == blocked_id,
                )
            )
            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to unblock user: {e}") from e

        if result.rowcount == 0:
            raise NotFoundError("User is not blocked")

    async def list_blocked_users(self, blocker_id: str) -> List[User]:
        try:
            result = await self.session.execute(
                select(User)
                .join(BlockEdge, BlockEdge.blocked_id == User.user_id)
                .where(BlockEdge.blocker_id == blocker_id)
                .order_by(desc(BlockEdge.created_at))
            )
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to list blocks: {e}") from e

    async def list_followers(self, user_id: str, limit: int = 100) -> List[User]:
        try:
            result = await self.session.execute(
                select(User)
                .join(FollowEdge, FollowEdge.follower_id == User.user_id)
                .where(FollowEdge.followee_id == user_id)
                .order_by(desc(FollowEdge.created_at))
                .limit(limit)
            )
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to list followers: {e}") from e

    async def list_following(self, user_id: str, limit: int = 100) -> List[User]:
        try:
            result = await self.session.execute(
                select(User)
                .join(FollowEdge, FollowEdge.followee_id == User.user_id)
                .where(FollowEdge.follower_id == user_id)
                .order_by(desc(FollowEdge.created_at))
                .limit(limit)
            )
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to list following: {e}") from e

    async def count_edges(self, user_id: str) -> Tuple[int, int]:
        """Returns (follower_count, following_count)."""
        try:
            followers = await self.session.execute(
                select(func.count()).select_from(FollowEdge).where(FollowEdge.followee_id == user_id)
            )
            following = await self.session.execute(
                select(func.count()).select_from(FollowEdge).where(FollowEdge.follower_id == user_id)
            )
            return followers.scalar_one(), following.scalar_one()

        except Exception as e:
            raise DatabaseOperationError(f"Failed to count follows: {e}") from e


class UserOperations:
    """Read access to user profiles, with block masking."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user(self, user_id: str) -> Optional[User]:
        try:
            result = await self.session.execute(select(User).where(User.user_id == user_id))
            return result.scalar_one_or_none()

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get user: {e}") from e

    async def get_users(self, user_ids: Iterable[str]) -> Dict[str, User]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        try:
            result = await self.session.execute(select(User).where(User.user_id.in_(ids)))
            return {user.user_id: user for user in result.scalars().all()}

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get users: {e}") from e

    async def create_user(
        self,
        *,
        user_id: str,
        username: str,
        display_name: str,
        bio: Optional[str] = None,
        profile_image_url: Optional[str] = None,
        is_private: bool = False,
    ) -> User:
        try:
            user = User(
                user_id=user_id,
                username=username,
                display_name=display_name,
                bio=bio,
                profile_image_url=profile_image_url,
                is_private=is_private,
            )
            self.session.add(user)
            await self.session.commit()
            return user

        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(f"User already exists: {username}", code="duplicate_user") from e

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to create user: {e}") from e

    async def get_visible_user(self, viewer_id: str, target_id: str) -> User:
        """Load ``target_id`` as seen by ``viewer_id``.

        A block in either direction is reported exactly like a missing user.
        """
        user = await self.get_user(target_id)
        if user is None:
            raise NotFoundError("User not found")

        if viewer_id != target_id and await SocialGraphOperations(self.session).is_blocked_between(
            viewer_id, target_id
        ):
            raise NotFoundError("User not found")

        return user

    async def get_visible_answers(
        self,
        viewer_id: str,
        target_id: str,
        *,
        before: Optional[date] = None,
        limit: int = 20,
    ) -> List[Tuple[Answer, str]]:
        """Another user's live answers, honouring blocks and private accounts."""
        user = await self.get_visible_user(viewer_id, target_id)
        is_own = viewer_id == target_id

        if not is_own and user.is_private:
            if not await SocialGraphOperations(self.session).is_following(viewer_id, target_id):
                raise ForbiddenError("This account is private", code="private_account")

        return await AnswerOperations(self.session).get_answer_history(
            target_id,
            before=before,
            limit=limit,
            include_deleted=is_own,
        )


class ReactionOperations:
    """Reaction ledger with a denormalised counter on the answer."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_reaction(self, *, answer_id: UUID, reactor_id: str) -> Answer:
        answer = await AnswerOperations(self.session).get_answer(answer_id)
        if answer.is_deleted:
            raise NotFoundError("Answer not found")

        if answer.user_id == reactor_id:
            raise InputValidationError("Cannot react to your own answer", code="self_reaction")

        if await SocialGraphOperations(self.session).is_blocked_between(answer.user_id, reactor_id):
            raise NotFoundError("Answer not found")

        if await self.has_reacted(answer_id, reactor_id):
            raise ConflictError("You have already reacted to this answer", code="duplicate_reaction")

        try:
            self.session.add(Reaction(answer_id=answer_id, reactor_user_id=reactor_id))
            await self.session.flush()
            await self.session.execute(
                update(Answer)
                .where(Answer.id == answer_id)
                .values(reaction_count=func.coalesce(Answer.reaction_count, 0) + 1)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()

        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(
                "You have already reacted to this answer", code="duplicate_reaction"
            ) from e

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to add reaction: {e}") from e

        await self.session.refresh(answer)
        return answer

    async def remove_reaction(self, *, answer_id: UUID, reactor_id: str) -> None:
        if not await self.has_reacted(answer_id, reactor_id):
            raise NotFoundError("Reaction not found")

        try:
            deleted = await self.session.execute(
                delete(Reaction).where(
                    Reaction.answer_id == answer_id,
                    Reaction.reactor_user_id == reactor_id,
                )
            )
            if deleted.rowcount == 0:
                # A concurrent removal already took the row and its decrement
                await self.session.rollback()
                return

            decremented = await self.session.execute(
                update(Answer)
                .where(Answer.id == answer_id, Answer.reaction_count > 0)
                .values(reaction_count=Answer.reaction_count - 1)
                .execution_options(synchronize_session=False)
            )
            if decremented.rowcount == 0:
                logger.debug(f"Reaction count for {answer_id} already at zero")

            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to remove reaction: {e}") from e

    async def has_reacted(self, answer_id: UUID, reactor_id: str) -> bool:
        try:
            result = await self.session.execute(
                select(Reaction.answer_id).where(
                    Reaction.answer_id == answer_id,
                    Reaction.reactor_user_id == reactor_id,
                )
            )
            return result.scalar_one_or_none() is not None

        except Exception as e:
            raise DatabaseOperationError(f"Failed to check reaction: {e}") from e

    async def get_reacted_answer_ids(
        self,
        reactor_id: str,
        answer_ids: Sequence[UUID],
    ) -> Set[UUID]:
        if not answer_ids:
            return set()
        try:
            result = await self.session.execute(
                select(Reaction.answer_id).where(
                    Reaction.reactor_user_id == reactor_id,
                    Reaction.answer_id.in_(list(answer_ids)),
                )
            )
            return set(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to load reactions: {e}") from e


class PushDestinationOperations:
    """Device tokens for daily question notifications."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def register(self, *, user_id: str, token: str, platform: str) -> PushDestination:
        if not token or not token.strip():
            raise InputValidationError("token is required")
        if platform not in PUSH_PLATFORMS:
            raise InputValidationError('platform must be "ios" or "android"')

        try:
            result = await self.session.execute(
                select(PushDestination).where(PushDestination.token == token)
            )
            destination = result.scalar_one_or_none()

            # A token moves with the device when another account signs in on it
            if destination is None:
                destination = PushDestination(token=token, user_id=user_id, platform=platform)
                self.session.add(destination)
            else:
                destination.user_id = user_id
                destination.platform = platform

            await self.session.commit()
            return destination

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to register push token: {e}") from e

    async def unregister(self, *, user_id: str, token: str) -> None:
        try:
            result = await self.session.execute(
                delete(PushDestination).where(
                    PushDestination.token == token,
                    PushDestination.user_id == user_id,
                )
            )
            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            raise DatabaseOperationError(f"Failed to unregister push token: {e}") from e

        if result.rowcount == 0:
            raise NotFoundError("Push token not found")

    async def list_all(self) -> List[PushDestination]:
        try:
            result = await self.session.execute(select(PushDestination).order_by(PushDestination.token))
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to load push tokens: {e}") from e


@dataclass
class TimelineEntry:
    answer: Answer
    author: Optional[User]
    has_reacted: bool
    is_own: bool


@dataclass
class TimelinePage:
    active_date: date
    question: Optional[Question]
    entries: List[TimelineEntry]


def select_timeline_answers(
    answers: Iterable[Answer],
    *,
    viewer_id: str,
    followee_ids: Set[str],
    blocked_ids: Set[str],
    limit: int,
) -> List[Answer]:
    """Filter a day's answers for one viewer and rank them.

    Keeps live answers that are the viewer's own or written by someone the
    viewer follows with no block either way. On-time answers come first,
    then earliest ``created_at``. The limit is applied after sorting.
    """
    visible = [
        answer
        for answer in answers
        if not answer.is_deleted
        and (
            answer.user_id == viewer_id
            or (answer.user_id in followee_ids and answer.user_id not in blocked_ids)
        )
    ]
    visible.sort(key=lambda answer: (not answer.is_on_time, answer.created_at))
    return visible[:limit]


class TimelineOperations:
    """Per-viewer feed assembly.

    Independent lookups run concurrently, each on its own session, and are
    only combined once all of them have completed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    async def _read(self, reader: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async with self.session_factory() as session:
            return await reader(session)

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            limit = self.settings.timeline_default_limit
        return max(1, min(limit, self.settings.timeline_max_limit))

    async def _load_day_answers(self, active_date: date) -> List[Answer]:
        async def reader(session: AsyncSession) -> List[Answer]:
            try:
                result = await session.execute(
                    select(Answer).where(
                        Answer.active_date == active_date,
                        Answer.is_deleted.is_(False),
                    )
                )
                return list(result.scalars().all())
            except Exception as e:
                raise DatabaseOperationError(f"Failed to scan answers: {e}") from e

        return await self._read(reader)

    async def get_timeline(
        self,
        viewer_id: str,
        *,
        active_date: Optional[date] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TimelinePage:
        if active_date is None:
            active_date = local_today(self.settings.tz, now)
        limit = self.clamp_limit(limit)

        followee_ids, blocked_ids, daily, day_answers = await asyncio.gather(
            self._read(lambda s: SocialGraphOperations(s).get_followee_ids(viewer_id)),
            self._read(lambda s: SocialGraphOperations(s).get_blocked_user_ids(viewer_id)),
            self._read(lambda s: DailyQuestionOperations(s, self.settings).get_daily_question(active_date)),
            self._load_day_answers(active_date),
        )

        if daily is None or not daily.is_published:
            return TimelinePage(active_date=active_date, question=None, entries=[])

        answers = select_timeline_answers(
            day_answers,
            viewer_id=viewer_id,
            followee_ids=followee_ids,
            blocked_ids=blocked_ids,
            limit=limit,
        )

        if not answers:
            return TimelinePage(active_date=active_date, question=daily.question, entries=[])

        answer_ids = [answer.id for answer in answers]
        reacted_ids, authors = await asyncio.gather(
            self._read(lambda s: ReactionOperations(s).get_reacted_answer_ids(viewer_id, answer_ids)),
            self._read(lambda s: UserOperations(s).get_users(answer.user_id for answer in answers)),
        )

        entries = [
            TimelineEntry(
                answer=answer,
                author=authors.get(answer.user_id),
                has_reacted=answer.id in reacted_ids,
                is_own=answer.user_id == viewer_id,
            )
            for answer in answers
        ]
        return TimelinePage(active_date=active_date, question=daily.question, entries=entries)
