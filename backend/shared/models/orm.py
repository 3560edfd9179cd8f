"""
SQLAlchemy 2.0 ORM models for the verification store.
Maps the existing `jobs` and `submissions` tables; schema management lives elsewhere.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from shared.models.enums import (
    AdminVerification,
    FinalDecision,
    JobStatus,
    MatchVerdict,
    ProcessingStatus,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class JobORM(Base):
    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    user_email: Mapped[str] = mapped_column(String(320), nullable=False)
    file_name: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(40), nullable=False, default=JobStatus.QUEUED.value)
    total_submissions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_submissions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )

    submissions: Mapped[list["SubmissionORM"]] = relationship(back_populates="job")


class SubmissionORM(Base):
    __tablename__ = "submissions"
    __table_args__ = (
        Index("idx_submissions_job_status", "job_id", "processing_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[str] = mapped_column(String(40), ForeignKey("jobs.job_id"), nullable=False)
    roll_number: Mapped[str] = mapped_column(String(64), nullable=False)
    student_name: Mapped[str] = mapped_column(Text, nullable=False)
    coursera_link: Mapped[Optional[str]] = mapped_column(Text)
    linkedin_link: Mapped[Optional[str]] = mapped_column(Text)

    # Duplicate flags and automatic verdicts
    coursera_link_duplicate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    linkedin_link_duplicate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    student_match_auto: Mapped[str] = mapped_column(String(10), nullable=False, default=MatchVerdict.PENDING.value)
    course_match_auto: Mapped[str] = mapped_column(String(10), nullable=False, default=MatchVerdict.PENDING.value)
    student_match_reason: Mapped[Optional[str]] = mapped_column(Text)
    course_match_reason: Mapped[Optional[str]] = mapped_column(Text)

    # Scraped evidence shown to reviewers
    scraped_coursera_name: Mapped[Optional[str]] = mapped_column(Text)
    scraped_coursera_project: Mapped[Optional[str]] = mapped_column(Text)
    scraped_linkedin_name: Mapped[Optional[str]] = mapped_column(Text)
    scraped_linkedin_text: Mapped[Optional[str]] = mapped_column(Text)

    # Review UI fields (read-only to the pipeline)
    admin_student_verification: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AdminVerification.NOT_REVIEWED.value
    )
    admin_course_verification: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AdminVerification.NOT_REVIEWED.value
    )
    admin_override: Mapped[Optional[str]] = mapped_column(Text)

    final_decision: Mapped[str] = mapped_column(String(10), nullable=False, default=FinalDecision.PENDING.value)
    processing_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProcessingStatus.PENDING.value
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )

    job: Mapped["JobORM"] = relationship(back_populates="submissions")
