"""Conversation thread and message models."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Integer, Boolean, Index
from sqlalchemy.orm import relationship

from tutor.database import Base


class Thread(Base):
    __tablename__ = "ai_threads"
    __table_args__ = (
        Index("ix_ai_threads_scope", "user_id", "course_id", "lesson_id", "updated_at"),
    )

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(128), nullable=False)
    course_id = Column(String(64), nullable=False, default="")
    lesson_id = Column(String(64), nullable=False, default="")  # "" = course-level chat
    title = Column(String(60), nullable=False, default="Lesson chat")
    message_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    last_message_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    messages = relationship(
        "Message",
        back_populates="thread",
        cascade="all, delete-orphan",
        order_by="Message.seq",
    )


class Message(Base):
    __tablename__ = "ai_messages"

    # Ids are u_<token> / a_<token> when the client sent an idempotency token.
    thread_id = Column(String(64), ForeignKey("ai_threads.id"), primary_key=True)
    id = Column(String(160), primary_key=True, default=lambda: str(uuid.uuid4()))
    seq = Column(Integer, nullable=False)
    role = Column(String(20), nullable=False)  # user | assistant | system
    content = Column(Text, nullable=False)
    user_id = Column(String(128), nullable=False)
    course_id = Column(String(64), nullable=False, default="")
    lesson_id = Column(String(64), nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    # Assistant-only fields
    model = Column(String(120), nullable=True)
    input_tokens = Column(Integer, nullable=True)
    output_tokens = Column(Integer, nullable=True)
    total_tokens = Column(Integer, nullable=True)
    sources = Column(Text, nullable=True)         # JSON list
    citations = Column(Text, nullable=True)       # JSON list of "<docId>#<index>"
    citation_meta = Column(Text, nullable=True)   # JSON list
    mode = Column(String(20), nullable=True)
    policy_applied = Column(Text, nullable=True)  # JSON
    confidence = Column(String(10), nullable=True)
    needs_more_context = Column(Boolean, nullable=True)
    clarifying_question = Column(Text, nullable=True)
    pdf_unreadable = Column(Boolean, nullable=True)

    thread = relationship("Thread", back_populates="messages")
