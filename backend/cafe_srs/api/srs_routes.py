import math
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..core.config import get_config
from ..core.exceptions import CardNotFoundError
from ..models.card import ReviewLog, SRSCard, VocabularyEntry
from ..services.srs_engine import SRSEngine
from .deps import get_srs_engine, get_user_id


class CreateCardRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = ""
    front: Any = None
    back: Any = None
    source_type: str = Field("custom", alias="sourceType")
    source_id: str = Field("custom", alias="sourceId")
    level: str = "A1"
    tags: list[str] = Field(default_factory=list)


class VocabularyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    vocabulary_id: str = Field(alias="vocabularyId")
    french: str
    english: str
    ipa: str = ""
    example: str = ""
    level: str = "A1"


class ReviewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    card_id: str = Field("", alias="cardId")
    quality: int | None = None
    time_spent: int = Field(0, ge=0, alias="timeSpent")


def difficulty_label(ease_factor: float, lapses: int) -> str:
    if lapses >= 5:
        return "very_hard"
    if ease_factor < 1.5 or lapses >= 3:
        return "hard"
    if ease_factor < 2.0:
        return "medium"
    return "easy"


def create_srs_router() -> APIRouter:
    router = APIRouter(prefix="/api/srs", tags=["srs"])
    cfg = get_config()
    limiter = Limiter(key_func=get_remote_address)

    def _owned_card(engine: SRSEngine, card_id: str, user_id: str) -> SRSCard:
        card = engine.get_card(card_id)
        if card.user_id != user_id:
            # Other users' cards are indistinguishable from missing ones
            raise CardNotFoundError(card_id)
        return card

    # ------------------------------------------------------------------
    # Queues
    # ------------------------------------------------------------------

    @router.get("/due")
    async def get_due_cards(
        limit: int | None = Query(None, ge=1),
        types: str | None = None,
        user_id: str = Depends(get_user_id),
        engine: SRSEngine = Depends(get_srs_engine),
    ) -> dict[str, Any]:
        cards = engine.get_due_cards(user_id, limit)
        if types:
            wanted = {t.strip() for t in types.split(",") if t.strip()}
            cards = [c for c in cards if c.type in wanted]

        stats = engine.get_stats(user_id)
        estimated_minutes = math.ceil(len(cards) * cfg.scheduler.seconds_per_card / 60)
        return {
            "cards": [
                {**_card_summary(c), "difficulty": difficulty_label(c.ease_factor, c.lapses)} for c in cards
            ],
            "newCount": stats.new_count,
            "reviewCount": stats.review_count,
            "learningCount": stats.learning_count,
            "estimatedMinutes": estimated_minutes,
        }

    @router.get("/new")
    async def get_new_cards(
        limit: int | None = Query(None, ge=1),
        user_id: str = Depends(get_user_id),
        engine: SRSEngine = Depends(get_srs_engine),
    ) -> dict[str, Any]:
        cards = engine.get_new_cards(user_id, limit)
        return {"cards": [_card_summary(c) for c in cards], "total": len(cards)}

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    @router.post("/review")
    @limiter.limit(cfg.rate_limit.review)
    async def review_card(
        request: Request,
        body: ReviewRequest,
        user_id: str = Depends(get_user_id),
        engine: SRSEngine = Depends(get_srs_engine),
    ) -> dict[str, Any]:
        if not body.card_id or body.quality is None:
            raise HTTPException(status_code=400, detail="Card ID and quality required")
        if not 0 <= body.quality <= 5:
            raise HTTPException(status_code=400, detail="Quality must be between 0 and 5")

        _owned_card(engine, body.card_id, user_id)
        result = engine.process_review(body.card_id, body.quality, body.time_spent)
        stats = engine.get_stats(user_id)
        return {
            "card": {
                "id": result.card.id,
                "status": result.card.status,
                "easeFactor": result.card.ease_factor,
                "interval": result.interval_days,
                "tags": result.card.tags,
            },
            "nextReviewAt": result.next_review.isoformat(),
            "stats": {
                "cardsReviewed": result.card.total_reviews,
                "cardsRemaining": stats.due_today,
                "correctRate": stats.retention_7_days,
            },
        }

    @router.get("/card/{card_id}/history")
    async def get_review_history(
        card_id: str,
        limit: int = Query(50, ge=1),
        user_id: str = Depends(get_user_id),
        engine: SRSEngine = Depends(get_srs_engine),
    ) -> list[dict[str, Any]]:
        _owned_card(engine, card_id, user_id)
        return [_review_to_dict(r) for r in engine.get_review_history(card_id, limit)]

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @router.get("/stats")
    async def get_stats(
        user_id: str = Depends(get_user_id),
        engine: SRSEngine = Depends(get_srs_engine),
    ) -> dict[str, Any]:
        stats = engine.get_stats(user_id)
        return {
            "newCount": stats.new_count,
            "learningCount": stats.learning_count,
            "reviewCount": stats.review_count,
            "dueToday": stats.due_today,
            "retention7Days": stats.retention_7_days,
            "averageEase": stats.average_ease,
        }

    @router.get("/forecast")
    async def get_forecast(
        days: int | None = None,
        user_id: str = Depends(get_user_id),
        engine: SRSEngine = Depends(get_srs_engine),
    ) -> dict[str, Any]:
        if days is not None and not 1 <= days <= 365:
            raise HTTPException(status_code=400, detail="days must be 1-365")
        forecast = engine.get_forecast(user_id, days)
        return {
            "forecast": [
                {"date": d.date, "newCards": d.new_cards, "reviewCards": d.review_cards} for d in forecast
            ]
        }

    # ------------------------------------------------------------------
    # Card management
    # ------------------------------------------------------------------

    @router.post("/card", status_code=201)
    @limiter.limit(cfg.rate_limit.create)
    async def create_card(
        request: Request,
        body: CreateCardRequest,
        user_id: str = Depends(get_user_id),
        engine: SRSEngine = Depends(get_srs_engine),
    ) -> dict[str, Any]:
        if not body.type or not body.front or not body.back:
            raise HTTPException(status_code=400, detail="Type, front, and back are required")
        card = engine.create_card(
            user_id,
            body.type,
            body.front,
            body.back,
            source_type=body.source_type or "custom",
            source_id=body.source_id or "custom",
            level=body.level or "A1",
            tags=body.tags,
        )
        return {
            "id": card.id,
            "type": card.type,
            "status": card.status,
            "createdAt": card.created_at.isoformat(),
        }

    @router.post("/vocabulary", status_code=201)
    @limiter.limit(cfg.rate_limit.create)
    async def create_vocabulary_cards(
        request: Request,
        body: VocabularyRequest,
        user_id: str = Depends(get_user_id),
        engine: SRSEngine = Depends(get_srs_engine),
    ) -> dict[str, Any]:
        entry = VocabularyEntry(
            french=body.french,
            english=body.english,
            ipa=body.ipa,
            example=body.example,
            level=body.level,
        )
        cards = engine.create_vocabulary_cards(user_id, body.vocabulary_id, entry)
        return {"cards": [_card_summary(c) for c in cards], "total": len(cards)}

    @router.post("/card/{card_id}/suspend")
    async def suspend_card(
        card_id: str,
        user_id: str = Depends(get_user_id),
        engine: SRSEngine = Depends(get_srs_engine),
    ) -> dict[str, str]:
        _owned_card(engine, card_id, user_id)
        engine.suspend_card(card_id)
        return {"message": "Card suspended"}

    @router.post("/card/{card_id}/unsuspend")
    async def unsuspend_card(
        card_id: str,
        user_id: str = Depends(get_user_id),
        engine: SRSEngine = Depends(get_srs_engine),
    ) -> dict[str, str]:
        _owned_card(engine, card_id, user_id)
        engine.unsuspend_card(card_id)
        return {"message": "Card unsuspended"}

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def _card_summary(card: SRSCard) -> dict[str, Any]:
        return {
            "id": card.id,
            "type": card.type,
            "front": card.front,
            "back": card.back,
            "level": card.level,
            "status": card.status,
            "tags": card.tags,
            "nextReview": card.next_review.isoformat() if card.next_review else None,
        }

    def _review_to_dict(review: ReviewLog) -> dict[str, Any]:
        return {
            "quality": review.quality,
            "timeSpent": review.time_spent,
            "statusBefore": review.status_before,
            "statusAfter": review.status_after,
            "interval": review.interval,
            "easeFactor": review.ease_factor,
            "reviewedAt": review.reviewed_at.isoformat(),
        }

    return router
