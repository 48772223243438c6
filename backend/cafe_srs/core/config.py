from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator


class SchedulerSettings(BaseModel):
    learning_steps: list[int] = Field(default=[1, 10, 60, 1440], alias="learning_steps")  # minutes
    graduating_interval: int = Field(1, alias="graduating_interval")  # days
    easy_interval: int = Field(4, alias="easy_interval")  # days
    starting_ease: float = Field(2.5, alias="starting_ease")
    minimum_ease: float = Field(1.3, gt=0, alias="minimum_ease")
    easy_bonus: float = Field(1.3, alias="easy_bonus")
    hard_interval_modifier: float = Field(1.2, alias="hard_interval_modifier")
    leech_threshold: int = Field(8, ge=1, alias="leech_threshold")
    default_due_limit: int = Field(50, alias="default_due_limit")
    default_new_limit: int = Field(20, alias="default_new_limit")
    default_forecast_days: int = Field(7, alias="default_forecast_days")
    seconds_per_card: int = Field(10, alias="seconds_per_card")

    @model_validator(mode="after")
    def _check_ease(self) -> SchedulerSettings:
        if self.starting_ease < self.minimum_ease:
            raise ValueError("starting_ease must not be below minimum_ease")
        return self


class LoggingConfig(BaseModel):
    level: str = Field("INFO", alias="level")
    file: str = Field("./backend/logs/app.log", alias="file")


class DatabaseConfig(BaseModel):
    url: str = Field("sqlite:///./backend/data/srs.db", alias="url")


class SecurityConfig(BaseModel):
    api_token: str = Field("", alias="api_token")
    cors_origins: list[str] = Field(
        default=["http://localhost:8081", "http://127.0.0.1:8081"],
        alias="cors_origins",
    )


class RateLimitConfig(BaseModel):
    review: str = Field("120/minute", alias="review")
    create: str = Field("60/minute", alias="create")


class AppConfig(BaseModel):
    scheduler: SchedulerSettings = SchedulerSettings()
    logging: LoggingConfig = LoggingConfig()
    database: DatabaseConfig = DatabaseConfig()
    security: SecurityConfig = SecurityConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as file:
        data = yaml.safe_load(file) or {}
    return data


@lru_cache
def get_config() -> AppConfig:
    candidates = [
        Path(os.getenv("APP_CONFIG_PATH", "")),
        Path("config/config.yaml"),
        Path("backend/config/config.yaml"),
    ]

    config_path = None
    for path in candidates:
        if path and path.exists() and path.is_file():
            config_path = path
            break

    if not config_path:
        # Fall back to the shipped example
        if Path("config/config.example.yaml").exists():
            config_path = Path("config/config.example.yaml")
        elif Path("backend/config/config.example.yaml").exists():
            config_path = Path("backend/config/config.example.yaml")
        else:
            raise FileNotFoundError("Config file not found in config/config.yaml or backend/config/config.yaml")

    raw = _load_yaml(config_path)
    return AppConfig(**raw)
