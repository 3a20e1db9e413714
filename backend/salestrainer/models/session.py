# backend/salestrainer/models/session.py

from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, Float, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from salestrainer.database import Base


class SalesSession(Base):
    __tablename__ = "sales_sessions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # External-facing token handed to the client in the `ready` event
    session_token = Column(String(64), unique=True, index=True, nullable=False)

    mode = Column(String(20), nullable=False)
    difficulty = Column(String(20), nullable=True)  # only meaningful for user_sells
    user_name = Column(String(100), nullable=True)

    current_phase = Column(String(20), nullable=False, server_default="greeting")

    # Write-once: undetermined -> sale_made | no_sale | abandoned
    outcome = Column(String(20), nullable=False, server_default="undetermined", index=True)
    sale_confirmed = Column(Boolean, nullable=True)

    started_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    messages = relationship(
        "Message",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )
    analytics = relationship(
        "SessionAnalytics",
        back_populates="session",
        uselist=False,
        cascade="all, delete-orphan",
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sales_sessions.id", ondelete="CASCADE"), nullable=False, index=True)

    role = Column(String(20), nullable=False)  # user / assistant
    content = Column(Text, nullable=False)
    phase = Column(String(20), nullable=False)  # snapshot at finalization time

    created_at = Column(DateTime, nullable=False)

    session = relationship("SalesSession", back_populates="messages")


class SessionAnalytics(Base):
    """Per-session counters and the last classifier verdict (analytics only)."""
    __tablename__ = "session_analytics"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sales_sessions.id", ondelete="CASCADE"), unique=True, nullable=False)

    user_turns = Column(Integer, nullable=False, server_default="0")
    assistant_turns = Column(Integer, nullable=False, server_default="0")
    classifier_calls = Column(Integer, nullable=False, server_default="0")

    last_verdict = Column(String(20), nullable=True)
    last_confidence = Column(Float, nullable=True)
    last_reasoning = Column(Text, nullable=True)
    last_key_phrase = Column(Text, nullable=True)

    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    session = relationship("SalesSession", back_populates="analytics")
