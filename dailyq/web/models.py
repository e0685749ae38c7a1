"""Database models for the Daily Question service."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean
from sqlalchemy import CheckConstraint, Index, UniqueConstraint
from sqlalchemy import Date, Time
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import Uuid
from sqlalchemy.orm import Mapped, relationship
from sqlalchemy.orm import mapped_column

from dailyq.shared.clock import utcnow
from dailyq.shared.database import Base, UTCDateTime

QUESTION_STATUSES = ("approved", "admin", "pending", "rejected")
SELECTABLE_QUESTION_STATUSES = ("approved", "admin")
FLAG_REVIEW_STATUSES = ("pending", "approved", "removed")
PUSH_PLATFORMS = ("ios", "android")


class User(Base):
    """Public profile of a registered user.

    Rows are written by the identity service; this service only reads them
    to build author snippets and profile pages.
    """

    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        doc="Identity provider subject ID",
    )
    username: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        doc="Unique handle chosen by the user",
    )
    display_name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        doc="Name shown next to answers",
    )
    bio: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Free-form profile text",
    )
    profile_image_url: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        doc="Public URL of the profile image",
    )
    is_private: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Whether only followers may list this user's answers",
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("is_private", False)
        super().__init__(**kwargs)

    def snippet(self) -> dict:
        """Author information attached to feed items."""
        return {
            "user_id": self.user_id,
            "username": self.username,
            "display_name": self.display_name,
            "profile_image_url": self.profile_image_url,
        }

    def __repr__(self) -> str:
        return f"<User(user_id='{self.user_id}', username='{self.username}')>"


class Question(Base):
    """Entry in the question bank."""

    __tablename__ = "questions"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        doc="Unique question identifier",
    )
    text: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        doc="Question shown to every user on the day it is published",
    )
    category: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        doc="Optional grouping label",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="approved",
        index=True,
        doc="Review status; only approved and admin questions are scheduled",
    )
    last_used_on: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
        doc="Most recent day this question was the daily question",
    )
    submitted_by: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        doc="User who proposed the question; null for admin-authored entries",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('approved', 'admin', 'pending', 'rejected')",
            name="ck_questions_status",
        ),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("status", "approved")
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<Question(id={self.id}, status='{self.status}')>"


class DailyQuestion(Base):
    """The question chosen for one calendar day.

    Moves through Unscheduled -> Scheduled -> Published. ``question_id``
    and ``scheduled_publish_time`` are fixed when the row is created;
    ``published_at`` is written exactly once.
    """

    __tablename__ = "daily_questions"

    active_date: Mapped[date] = mapped_column(
        Date,
        primary_key=True,
        doc="Calendar day in the home timezone",
    )
    question_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("questions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        doc="Question selected for the day",
    )
    scheduled_publish_time: Mapped[time] = mapped_column(
        Time,
        nullable=False,
        doc="Local time-of-day after which the question may be published",
    )
    published_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the question became visible; never changes once set",
    )
    is_manual: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Whether an administrator picked the question",
    )

    question: Mapped["Question"] = relationship("Question", lazy="joined")

    def __init__(self, **kwargs):
        kwargs.setdefault("is_manual", False)
        super().__init__(**kwargs)

    @property
    def is_published(self) -> bool:
        return self.published_at is not None

    def __repr__(self) -> str:
        status = "published" if self.is_published else "scheduled"
        return f"<DailyQuestion(date={self.active_date}, status='{status}')>"


class Answer(Base):
    """A user's answer to the daily question.

    At most one row exists per (user, question) and per (day, user). Rows
    are soft-deleted only; a deleted row blocks a new submission until the
    owner restores it.
    """

    __tablename__ = "answers"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        doc="Unique answer identifier",
    )
    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="Author of the answer",
    )
    question_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("questions.id", ondelete="RESTRICT"),
        nullable=False,
        doc="Question being answered",
    )
    active_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        doc="Day the question was published for",
    )

    # Content
    raw_text: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        doc="Text exactly as submitted",
    )
    rendered_text: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        doc="Text shown to other users; banned terms masked",
    )
    is_flagged: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Whether moderation found banned terms",
    )
    flag_reason: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        doc="Human-readable list of detected terms",
    )
    flag_status: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        doc="Moderation review state of a flagged answer",
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When a moderator reviewed the flagged answer",
    )

    # Timeliness, computed once at creation
    is_on_time: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        doc="Submitted within the on-time window after publication",
    )
    late_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Whole minutes beyond the on-time window",
    )

    # Soft delete
    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Hidden by its owner",
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the owner hid the answer",
    )

    reaction_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Denormalised number of reactions",
    )

    __table_args__ = (
        UniqueConstraint("active_date", "user_id", name="uq_answers_date_user"),
        UniqueConstraint("user_id", "question_id", name="uq_answers_user_question"),
        Index("ix_answers_active_date", "active_date"),
        Index("ix_answers_user_date", "user_id", "active_date"),
        CheckConstraint("reaction_count >= 0", name="ck_answers_reaction_count_non_negative"),
        CheckConstraint("late_minutes >= 0", name="ck_answers_late_minutes_non_negative"),
        CheckConstraint(
            "flag_status IS NULL OR flag_status IN ('pending', 'approved', 'removed')",
            name="ck_answers_flag_status",
        ),
        Index("ix_answers_flagged", "is_flagged", "flag_status"),
    )

    def __init__(self, **kwargs):
        now = utcnow()
        kwargs.setdefault("created_at", now)
        kwargs.setdefault("updated_at", kwargs["created_at"])
        kwargs.setdefault("is_flagged", False)
        kwargs.setdefault("is_deleted", False)
        kwargs.setdefault("late_minutes", 0)
        kwargs.setdefault("reaction_count", 0)
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        status = "deleted" if self.is_deleted else "live"
        return f"<Answer(id={self.id}, user_id='{self.user_id}', date={self.active_date}, status='{status}')>"


class Reaction(Base):
    """One user's reaction to one answer."""

    __tablename__ = "reactions"

    answer_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("answers.id", ondelete="CASCADE"),
        primary_key=True,
        doc="Answer reacted to",
    )
    reactor_user_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        doc="User who reacted",
    )

    __table_args__ = (
        Index("ix_reactions_reactor", "reactor_user_id"),
    )

    def __repr__(self) -> str:
        return f"<Reaction(answer_id={self.answer_id}, reactor='{self.reactor_user_id}')>"


class FollowEdge(Base):
    """Directed follow relationship."""

    __tablename__ = "follows"

    follower_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        doc="User who follows",
    )
    followee_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        doc="User being followed",
    )

    __table_args__ = (
        Index("ix_follows_followee", "followee_id"),
        CheckConstraint("follower_id <> followee_id", name="ck_follows_no_self"),
    )


class BlockEdge(Base):
    """Directed block relationship. Visibility checks treat it symmetrically."""

    __tablename__ = "blocks"

    blocker_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        doc="User who blocked",
    )
    blocked_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        doc="User who was blocked",
    )

    __table_args__ = (
        Index("ix_blocks_blocked", "blocked_id"),
        CheckConstraint("blocker_id <> blocked_id", name="ck_blocks_no_self"),
    )


class PushDestination(Base):
    """Device token registered for daily question notifications."""

    __tablename__ = "push_destinations"

    token: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        doc="Push gateway device token",
    )
    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        doc="Owner of the device",
    )
    platform: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        doc="ios or android",
    )

    __table_args__ = (
        CheckConstraint("platform IN ('ios', 'android')", name="ck_push_destinations_platform"),
    )


class BannedTerm(Base):
    """Term masked in answers. Stored lower-cased."""

    __tablename__ = "banned_terms"

    term: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
        doc="Literal term matched case-insensitively",
    )
