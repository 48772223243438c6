"""Durable storage for review cards."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy import case, or_, update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from ..core.exceptions import StaleCardError
from ..models.card import DUE_PRIORITY, CardStatus, ReviewLog, SRSCard

logger = logging.getLogger(__name__)

# Columns rewritten by reviews and suspension changes
MUTABLE_FIELDS = (
    "status",
    "ease_factor",
    "interval",
    "repetitions",
    "lapses",
    "next_review",
    "last_reviewed",
    "total_reviews",
    "correct_reviews",
    "tags_json",
)


class CardStore(Protocol):
    def add(self, card: SRSCard) -> SRSCard: ...

    def get(self, card_id: str) -> SRSCard | None: ...

    def update(self, card: SRSCard, expected_version: int, review: ReviewLog | None = None) -> SRSCard:
        """Persist ``card`` iff its stored version still equals ``expected_version``.

        The card write and the optional review log are one transaction.
        Raises ``StaleCardError`` when another writer got there first.
        """
        ...

    def due(self, user_id: str, now: datetime, limit: int) -> list[SRSCard]: ...

    def new(self, user_id: str, limit: int) -> list[SRSCard]: ...

    def active(self, user_id: str) -> list[SRSCard]: ...

    def history(self, card_id: str, limit: int) -> list[ReviewLog]: ...


class SqlCardStore:
    """CardStore backed by a SQLModel engine."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def add(self, card: SRSCard) -> SRSCard:
        with Session(self._engine) as session:
            session.add(card)
            session.commit()
            session.refresh(card)
        return card

    def get(self, card_id: str) -> SRSCard | None:
        with Session(self._engine) as session:
            return session.get(SRSCard, card_id)

    def update(self, card: SRSCard, expected_version: int, review: ReviewLog | None = None) -> SRSCard:
        table = SRSCard.__table__
        values = {name: getattr(card, name) for name in MUTABLE_FIELDS}
        values["version"] = expected_version + 1
        statement = (
            update(table)
            .where(table.c.id == card.id, table.c.version == expected_version)
            .values(**values)
        )
        with Session(self._engine) as session:
            result = session.connection().execute(statement)
            if result.rowcount != 1:
                session.rollback()
                logger.warning("Rejected stale write to card %s (version %d)", card.id, expected_version)
                raise StaleCardError(card.id, expected_version)
            if review is not None:
                session.add(review)
            session.commit()
        card.version = expected_version + 1
        return card

    def due(self, user_id: str, now: datetime, limit: int) -> list[SRSCard]:
        priority = case(
            *((SRSCard.status == status, rank) for status, rank in DUE_PRIORITY.items()),
            else_=len(DUE_PRIORITY),
        )
        statement = (
            select(SRSCard)
            .where(
                SRSCard.user_id == user_id,
                SRSCard.status != CardStatus.SUSPENDED,
                or_(SRSCard.next_review.is_(None), SRSCard.next_review <= now),
            )
            .order_by(priority, SRSCard.next_review.asc().nulls_first(), SRSCard.created_at)
            .limit(limit)
        )
        with Session(self._engine) as session:
            return list(session.exec(statement).all())

    def new(self, user_id: str, limit: int) -> list[SRSCard]:
        statement = (
            select(SRSCard)
            .where(SRSCard.user_id == user_id, SRSCard.status == CardStatus.NEW)
            .order_by(SRSCard.created_at)
            .limit(limit)
        )
        with Session(self._engine) as session:
            return list(session.exec(statement).all())

    def active(self, user_id: str) -> list[SRSCard]:
        statement = select(SRSCard).where(
            SRSCard.user_id == user_id,
            SRSCard.status != CardStatus.SUSPENDED,
        )
        with Session(self._engine) as session:
            return list(session.exec(statement).all())

    def history(self, card_id: str, limit: int) -> list[ReviewLog]:
        statement = (
            select(ReviewLog)
            .where(ReviewLog.card_id == card_id)
            .order_by(ReviewLog.reviewed_at.desc(), ReviewLog.id.desc())
            .limit(limit)
        )
        with Session(self._engine) as session:
            return list(session.exec(statement).all())
