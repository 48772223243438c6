"""Review card and review log tables."""

from __future__ import annotations

import json
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlmodel import Field, SQLModel

LEECH_TAG = "leech"


class CardStatus(StrEnum):
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"
    SUSPENDED = "suspended"


# Order in which due cards surface
DUE_PRIORITY: dict[CardStatus, int] = {
    CardStatus.RELEARNING: 0,
    CardStatus.LEARNING: 1,
    CardStatus.REVIEW: 2,
    CardStatus.NEW: 3,
}


class SRSCard(SQLModel, table=True):
    __tablename__ = "srs_cards"

    id: str = Field(primary_key=True)
    user_id: str = Field(index=True)

    type: str
    front_json: str = Field(default="null")
    back_json: str = Field(default="null")
    source_type: str = Field(default="custom")
    source_id: str = Field(default="custom")
    level: str = Field(default="A1")
    tags_json: str = Field(default="[]")

    # Scheduling state
    status: CardStatus = Field(default=CardStatus.NEW, index=True)
    ease_factor: float = Field(default=2.5)
    interval: float = Field(default=0.0)  # days; fractional while in learning steps
    repetitions: int = Field(default=0)
    lapses: int = Field(default=0)
    next_review: datetime | None = Field(default=None, index=True)
    last_reviewed: datetime | None = Field(default=None)

    total_reviews: int = Field(default=0)
    correct_reviews: int = Field(default=0)

    # Optimistic concurrency token, bumped on every write
    version: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def front(self) -> Any:
        return json.loads(self.front_json)

    @property
    def back(self) -> Any:
        return json.loads(self.back_json)

    @property
    def tags(self) -> list[str]:
        return json.loads(self.tags_json) if self.tags_json else []

    @property
    def is_leech(self) -> bool:
        return LEECH_TAG in self.tags


class ReviewLog(SQLModel, table=True):
    """One row per processed review."""

    __tablename__ = "srs_review_logs"

    id: int | None = Field(default=None, primary_key=True)
    card_id: str = Field(foreign_key="srs_cards.id", index=True)
    user_id: str = Field(index=True)

    quality: int
    time_spent: int = Field(default=0)  # informational only
    status_before: CardStatus
    status_after: CardStatus
    interval: float
    ease_factor: float
    reviewed_at: datetime = Field(default_factory=datetime.utcnow)


class VocabularyEntry(SQLModel):
    """A vocabulary item that expands into a set of review cards."""

    french: str
    english: str
    ipa: str = ""
    example: str = ""
    level: str = "A1"
