"""SQLAlchemy ORM models for the interactive session store."""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, Optional

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from helperapp.utils.time_utils import now_utc


class Base(DeclarativeBase):
    """Declarative base for the session tables."""


class InteractiveGameSession(Base):
    """One row per wagering session; the single source of truth for ownership."""

    __tablename__ = "interactive_game_sessions"

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(
        String(32), default="pending_claim", nullable=False
    )
    game_type: Mapped[str] = mapped_column(String(32), nullable=False)
    stake_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    final_payout: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    state: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    initiator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    initiator_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    opponent_id: Mapped[Optional[str]] = mapped_column(String(64))
    opponent_name: Mapped[Optional[str]] = mapped_column(String(255))
    channel_ref: Mapped[str] = mapped_column(String(128), nullable=False)
    helper_bot_id: Mapped[Optional[str]] = mapped_column(String(128))
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=now_utc, nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=now_utc, nullable=False
    )

    __table_args__ = (
        Index("ix_interactive_sessions_status_created", "status", "created_at"),
    )


__all__ = ["Base", "InteractiveGameSession"]
