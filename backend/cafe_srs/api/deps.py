from fastapi import Depends, HTTPException, Request

from ..core.config import get_config
from ..core.db import get_engine
from ..services.card_store import CardStore, SqlCardStore
from ..services.srs_engine import SRSEngine


def get_user_id(request: Request) -> str:
    """Resolve the calling learner. Authentication itself happens upstream."""
    cfg = get_config()

    # When an API token is configured, every call must present it
    if cfg.security.api_token:
        auth = request.headers.get("Authorization", "")
        if not auth.startswith("Bearer ") or auth[7:] != cfg.security.api_token:
            raise HTTPException(401, "Invalid API token")

    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        raise HTTPException(401, "Missing X-User-Id header")
    return user_id


def get_card_store() -> CardStore:
    return SqlCardStore(get_engine())


def get_srs_engine(store: CardStore = Depends(get_card_store)) -> SRSEngine:
    return SRSEngine(store, settings=get_config().scheduler)
