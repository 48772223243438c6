import logging
import re
from functools import lru_cache
from pathlib import Path

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from .config import get_config

logger = logging.getLogger(__name__)


def build_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if "sqlite" in url else {}
    return create_engine(url, echo=False, connect_args=connect_args)


@lru_cache
def get_engine() -> Engine:
    return build_engine(get_config().database.url)


def init_db(engine: Engine) -> None:
    # Import models to register them with SQLModel metadata
    from ..models import card  # noqa: F401

    # Ensure the database directory exists for SQLite
    match = re.search(r"sqlite:///(.+)", str(engine.url))
    if match and match.group(1) != ":memory:":
        db_path = Path(match.group(1))
        db_path.parent.mkdir(parents=True, exist_ok=True)

    SQLModel.metadata.create_all(engine)
    logger.info("Database ready: %s", engine.url.render_as_string(hide_password=True))
