"""Spaced repetition engine: card lifecycle, review processing and reporting."""

from __future__ import annotations

import json
import logging
import re
import uuid
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from ..core.config import SchedulerSettings
from ..core.exceptions import CardNotFoundError, CardSuspendedError, ValidationError
from ..models.card import LEECH_TAG, CardStatus, ReviewLog, SRSCard, VocabularyEntry
from .card_store import CardStore
from .scheduling import SchedulingState, is_leech, is_success, next_review_at, round_half_up, transition

logger = logging.getLogger(__name__)

CLOZE_GAP = "[...]"
RETENTION_WINDOW = timedelta(days=7)


def _queue_limit(limit: int | None, default: int) -> int:
    if limit is None:
        return default
    if limit < 1:
        raise ValidationError(f"limit must be at least 1, got {limit}")
    return limit


@dataclass
class ReviewResult:
    card: SRSCard
    next_review: datetime
    interval_days: float


@dataclass
class StudyStats:
    new_count: int
    learning_count: int
    review_count: int
    due_today: int
    retention_7_days: int
    average_ease: float


@dataclass
class ForecastDay:
    date: str
    new_cards: int
    review_cards: int


class SRSEngine:
    """SM-2 scheduler over an injected card store.

    The engine holds no card state between calls; every operation is a
    read (and at most one versioned write) against ``store``.
    """

    def __init__(
        self,
        store: CardStore,
        settings: SchedulerSettings | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.store = store
        self.settings = settings or SchedulerSettings()
        self._clock = clock

    # ------------------------------------------------------------------
    # Card lifecycle
    # ------------------------------------------------------------------

    def create_card(
        self,
        user_id: str,
        type: str,
        front: Any,
        back: Any,
        source_type: str = "custom",
        source_id: str = "custom",
        level: str = "A1",
        tags: Iterable[str] | None = None,
    ) -> SRSCard:
        if front is None or back is None:
            raise ValidationError("Card front and back are required")

        now = self._clock()
        card = SRSCard(
            id=f"card_{uuid.uuid4().hex}",
            user_id=user_id,
            type=type,
            front_json=json.dumps(front, ensure_ascii=False),
            back_json=json.dumps(back, ensure_ascii=False),
            source_type=source_type,
            source_id=source_id,
            level=level,
            tags_json=json.dumps(list(dict.fromkeys(tags or [])), ensure_ascii=False),
            status=CardStatus.NEW,
            ease_factor=self.settings.starting_ease,
            interval=0.0,
            next_review=now,
            created_at=now,
        )
        card = self.store.add(card)
        logger.info("Created %s card %s for user %s", type, card.id, user_id)
        return card

    def create_vocabulary_cards(self, user_id: str, vocabulary_id: str, entry: VocabularyEntry) -> list[SRSCard]:
        """Production, recognition, listening and (with an example) cloze cards."""

        def make(card_type: str, front: dict, back: dict, skill: str) -> SRSCard:
            return self.create_card(
                user_id,
                card_type,
                front,
                back,
                source_type="vocabulary",
                source_id=vocabulary_id,
                level=entry.level,
                tags=["vocabulary", skill],
            )

        cards = [
            make("l1_to_l2", {"text": entry.english, "hint": entry.ipa}, {"text": entry.french, "audio": True}, "production"),
            make("l2_to_l1", {"text": entry.french, "audio": True}, {"text": entry.english}, "recognition"),
            make(
                "audio_recognition",
                {"audio": True, "text": "🔊 Listen"},
                {"text": f"{entry.french} - {entry.english}"},
                "listening",
            ),
        ]
        if entry.example:
            cloze = re.sub(re.escape(entry.french), CLOZE_GAP, entry.example, count=1, flags=re.IGNORECASE)
            cards.append(make("cloze", {"text": cloze}, {"text": entry.french, "context": entry.example}, "context"))
        return cards

    def get_card(self, card_id: str) -> SRSCard:
        card = self.store.get(card_id)
        if card is None:
            raise CardNotFoundError(card_id)
        return card

    # ------------------------------------------------------------------
    # Queues
    # ------------------------------------------------------------------

    def get_due_cards(self, user_id: str, limit: int | None = None) -> list[SRSCard]:
        """Due cards, relearning first, then learning, review and new."""
        limit = _queue_limit(limit, self.settings.default_due_limit)
        return self.store.due(user_id, self._clock(), limit)

    def get_new_cards(self, user_id: str, limit: int | None = None) -> list[SRSCard]:
        return self.store.new(user_id, _queue_limit(limit, self.settings.default_new_limit))

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def process_review(self, card_id: str, quality: int, time_spent: int = 0) -> ReviewResult:
        """
        Grade one recall attempt and reschedule the card.

        quality: 0-5, validated by the caller. Grades below 3 are lapses.
        time_spent: seconds on the card; logged, never used for scheduling.
        """
        card = self.get_card(card_id)
        if card.status == CardStatus.SUSPENDED:
            raise CardSuspendedError(card_id)

        now = self._clock()
        before = SchedulingState.of(card)
        after = transition(before, quality, self.settings)
        next_review = next_review_at(after, now, self.settings)
        expected_version = card.version

        card.status = after.status
        card.ease_factor = after.ease_factor
        card.interval = after.interval
        card.repetitions = after.repetitions
        card.lapses = after.lapses
        card.next_review = next_review
        card.last_reviewed = now
        card.total_reviews += 1
        if is_success(quality):
            card.correct_reviews += 1

        became_leech = is_leech(after.lapses, self.settings) and not card.is_leech
        if became_leech:
            card.tags_json = json.dumps(card.tags + [LEECH_TAG], ensure_ascii=False)

        log = ReviewLog(
            card_id=card.id,
            user_id=card.user_id,
            quality=quality,
            time_spent=time_spent,
            status_before=before.status,
            status_after=after.status,
            interval=after.interval,
            ease_factor=after.ease_factor,
            reviewed_at=now,
        )
        card = self.store.update(card, expected_version, review=log)

        if before.status != after.status:
            logger.info("Card %s moved %s -> %s", card.id, before.status, after.status)
        if became_leech:
            logger.info("Card %s marked as leech after %d lapses", card.id, after.lapses)
        logger.debug(
            "Reviewed card %s: quality=%d interval=%s ease=%.2f next=%s",
            card.id, quality, after.interval, after.ease_factor, next_review.isoformat(),
        )
        return ReviewResult(card=card, next_review=next_review, interval_days=after.interval)

    def get_review_history(self, card_id: str, limit: int = 50) -> list[ReviewLog]:
        self.get_card(card_id)
        return self.store.history(card_id, _queue_limit(limit, 50))

    # ------------------------------------------------------------------
    # Suspension
    # ------------------------------------------------------------------

    def suspend_card(self, card_id: str) -> None:
        card = self.get_card(card_id)
        expected_version = card.version
        card.status = CardStatus.SUSPENDED
        self.store.update(card, expected_version)
        logger.info("Suspended card %s", card_id)

    def unsuspend_card(self, card_id: str) -> None:
        """Return a card to review, due immediately.

        The pre-suspension status is not restored. Ease is kept, but an
        interval under one day (a card suspended while learning) is raised
        to 1 so the card satisfies the review-state interval floor.
        """
        card = self.get_card(card_id)
        expected_version = card.version
        card.status = CardStatus.REVIEW
        card.interval = max(1, card.interval)
        card.next_review = self._clock()
        self.store.update(card, expected_version)
        logger.info("Unsuspended card %s", card_id)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_stats(self, user_id: str) -> StudyStats:
        now = self._clock()
        cards = self.store.active(user_id)
        counts = Counter(card.status for card in cards)
        due_today = sum(1 for card in cards if card.next_review is None or card.next_review <= now)

        if cards:
            mean_ease = sum(card.ease_factor for card in cards) / len(cards)
            average_ease = round_half_up(mean_ease * 100) / 100
        else:
            average_ease = self.settings.starting_ease

        window_start = now - RETENTION_WINDOW
        recent = [
            card
            for card in cards
            if card.last_reviewed is not None and card.last_reviewed >= window_start and card.total_reviews > 0
        ]
        total = sum(card.total_reviews for card in recent)
        correct = sum(card.correct_reviews for card in recent)
        retention = round_half_up(correct / total * 100) if total else 0

        return StudyStats(
            new_count=counts[CardStatus.NEW],
            learning_count=counts[CardStatus.LEARNING],
            review_count=counts[CardStatus.REVIEW],
            due_today=due_today,
            retention_7_days=retention,
            average_ease=average_ease,
        )

    def get_forecast(self, user_id: str, days: int | None = None) -> list[ForecastDay]:
        """Cards coming due on each of the next ``days`` UTC calendar days, today first."""
        days = days or self.settings.default_forecast_days
        today = self._clock().replace(hour=0, minute=0, second=0, microsecond=0)
        scheduled = [card for card in self.store.active(user_id) if card.next_review is not None]

        forecast = []
        for offset in range(days):
            start = today + timedelta(days=offset)
            end = start + timedelta(days=1)
            landing = [card for card in scheduled if start <= card.next_review < end]
            new_cards = sum(1 for card in landing if card.status == CardStatus.NEW)
            forecast.append(
                ForecastDay(date=start.date().isoformat(), new_cards=new_cards, review_cards=len(landing) - new_cards)
            )
        return forecast
