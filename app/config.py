from __future__ import annotations

import json
from decimal import Decimal
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration (env vars / `.env`)."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_VERSION: str = "1.0.0"
    API_ROOT_PATH: str = ""
    LOG_LEVEL: str = "INFO"

    # Storage
    DATABASE_URL: str = "sqlite:///./settlement.db"
    DB_ECHO: bool = False

    # Resolution sweep
    START_SCHEDULER: bool = True
    RESOLVE_INTERVAL_SEC: float = 60.0

    # Outcome simulation
    WIN_PROBABILITY: float = 0.85
    MIN_PROFIT: float = 0.07
    MAX_PROFIT: float = 0.19
    MIN_LOSS: float = 0.01
    MAX_LOSS: float = 0.05
    # Fixed seed makes outcomes reproducible (local runs / demos only).
    OUTCOME_SEED: Optional[int] = None

    MIN_WAGER: Decimal = Decimal("0.01")

    # Identities (e-mail addresses) allowed to call /admin routes.
    # Comma-separated ("a@x.com,b@y.com") or a JSON list.
    ADMIN_IDENTITIES: str = ""

    @property
    def admin_identities(self) -> frozenset[str]:
        raw = (self.ADMIN_IDENTITIES or "").strip()
        if not raw:
            return frozenset()
        if raw.startswith("["):
            items = json.loads(raw)
        else:
            items = raw.split(",")
        return frozenset(str(x).strip().lower() for x in items if str(x).strip())

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if not 0.0 <= self.WIN_PROBABILITY <= 1.0:
            raise ValueError("WIN_PROBABILITY must be within [0, 1]")
        if not 0.0 <= self.MIN_PROFIT <= self.MAX_PROFIT:
            raise ValueError("profit range must satisfy 0 <= MIN_PROFIT <= MAX_PROFIT")
        # MAX_LOSS above 1 would allow a negative payout.
        if not 0.0 <= self.MIN_LOSS <= self.MAX_LOSS <= 1.0:
            raise ValueError("loss range must satisfy 0 <= MIN_LOSS <= MAX_LOSS <= 1")
        if self.RESOLVE_INTERVAL_SEC <= 0:
            raise ValueError("RESOLVE_INTERVAL_SEC must be positive")
        if self.MIN_WAGER <= 0:
            raise ValueError("MIN_WAGER must be positive")
        return self


settings = Settings()
