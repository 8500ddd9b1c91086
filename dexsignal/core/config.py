# dexsignal/core/config.py
from __future__ import annotations

import logging
from typing import Any, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dexsignal.core.errors import ConfigError

log = logging.getLogger("dexsignal.config")


def _parse_bool(v: Any) -> bool:
    """
    Accepts:
      - bool: True / False
      - str:  "true", "1", "yes", "on" (anything else is False)
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    return str(v).strip().lower() in {"true", "1", "yes", "on"}


class Settings(BaseSettings):
    """Runtime configuration loaded from .env / environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --- Chat transport ---
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_API_BASE_URL: str = "https://api.telegram.org"
    TELEGRAM_POLL_TIMEOUT_SEC: int = 30
    TELEGRAM_POLL_INTERVAL_SEC: float = 2.5

    # --- Mode / scheduling ---
    BOT_MODE: str = "TEST"
    SCAN_ENABLED: bool = True
    SCAN_INTERVAL_SEC: int = 20
    SIM_TICK_SEC: float = 3.0

    # --- Data source ---
    TARGET_CHAIN: str = "solana"
    DEXSCREENER_BASE_URL: str = "https://api.dexscreener.com"
    DEXSCREENER_QUERY: str = "solana"

    # --- Filters ---
    MIN_LIQUIDITY_USD: float = 30000.0
    MIN_VOLUME_M5_USD: float = 50000.0
    MAX_TOKEN_AGE_MIN: float = 30.0
    MAX_MARKETCAP_USD: float = 200000.0

    # --- Simulated position ---
    BUY_AMOUNT_SOL: float = 0.08

    # --- Exit rules ---
    TP1_MULTIPLIER: float = 2.0
    TP1_SELL_PERCENT: float = 80.0
    TP2_MULTIPLIER: float = 5.0
    TRAILING_STOP_PERCENT: float = 30.0
    TIME_STOP_MIN: float = 60.0
    MIN_SELL_OUT_SOL: float = 0.01
    FEE_RATE: float = 0.006
    BREAKEVEN_MULTIPLE: float = 1.05

    # --- Anti-spam / dedup ---
    SIGNAL_COOLDOWN_SEC: int = 25
    DEDUP_TTL_MIN: float = 0.0  # 0 = never evict

    # --- Audit journal / logging ---
    AUDIT_ENABLED: bool = True
    AUDIT_DB_PATH: str = "data/bot.db"
    AUDIT_JSONL_PATH: str = "logs/bot_audit.jsonl"
    LOG_LEVEL: str = "INFO"

    @field_validator("SCAN_ENABLED", "AUDIT_ENABLED", mode="before")
    @classmethod
    def parse_flags(cls, v: Any) -> bool:
        return _parse_bool(v)

    def model_post_init(self, __context: Any) -> None:
        self.BOT_MODE = (self.BOT_MODE or "TEST").upper().strip()
        self.TARGET_CHAIN = (self.TARGET_CHAIN or "solana").lower().strip()
        self.LOG_LEVEL = (self.LOG_LEVEL or "INFO").upper().strip()
        self.TELEGRAM_API_BASE_URL = self.TELEGRAM_API_BASE_URL.rstrip("/")
        self.DEXSCREENER_BASE_URL = self.DEXSCREENER_BASE_URL.rstrip("/")

    def validate_runtime(self) -> List[str]:
        """
        Fail-fast validation. Returns warnings (non-fatal).
        Raises ConfigError for fatal misconfiguration.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if not self.TELEGRAM_BOT_TOKEN.strip():
            errors.append("Missing TELEGRAM_BOT_TOKEN.")

        # Filter thresholds
        for name in (
            "MIN_LIQUIDITY_USD",
            "MIN_VOLUME_M5_USD",
            "MAX_TOKEN_AGE_MIN",
            "MAX_MARKETCAP_USD",
        ):
            if getattr(self, name) < 0:
                errors.append(f"{name} must be >= 0.")

        # Scheduling
        if self.SCAN_INTERVAL_SEC <= 0:
            errors.append("SCAN_INTERVAL_SEC must be > 0.")
        if self.SIM_TICK_SEC <= 0:
            errors.append("SIM_TICK_SEC must be > 0.")
        if self.TELEGRAM_POLL_INTERVAL_SEC <= 0:
            errors.append("TELEGRAM_POLL_INTERVAL_SEC must be > 0.")
        if self.TELEGRAM_POLL_TIMEOUT_SEC < 0:
            errors.append("TELEGRAM_POLL_TIMEOUT_SEC must be >= 0.")
        if self.SIGNAL_COOLDOWN_SEC < 0:
            errors.append("SIGNAL_COOLDOWN_SEC must be >= 0.")
        if self.DEDUP_TTL_MIN < 0:
            errors.append("DEDUP_TTL_MIN must be >= 0.")

        # Position / exit rules
        if self.BUY_AMOUNT_SOL <= 0:
            errors.append("BUY_AMOUNT_SOL must be > 0.")
        if not (0 < self.TP1_SELL_PERCENT <= 100):
            errors.append("TP1_SELL_PERCENT must be in (0, 100].")
        if self.TP1_MULTIPLIER <= 1:
            errors.append("TP1_MULTIPLIER must be > 1.")
        if self.TP2_MULTIPLIER <= self.TP1_MULTIPLIER:
            errors.append("TP2_MULTIPLIER must be greater than TP1_MULTIPLIER.")
        if not (0 <= self.TRAILING_STOP_PERCENT < 100):
            errors.append("TRAILING_STOP_PERCENT must be in [0, 100).")
        if self.TIME_STOP_MIN <= 0:
            errors.append("TIME_STOP_MIN must be > 0.")
        if self.MIN_SELL_OUT_SOL < 0:
            errors.append("MIN_SELL_OUT_SOL must be >= 0.")
        if not (0 <= self.FEE_RATE < 1):
            errors.append("FEE_RATE must be in [0, 1).")
        if self.BREAKEVEN_MULTIPLE < 0:
            errors.append("BREAKEVEN_MULTIPLE must be >= 0.")

        # Warnings
        if self.BOT_MODE != "TEST":
            warnings.append(
                f"BOT_MODE={self.BOT_MODE} is only a label: all trading is simulated, "
                "no orders are ever sent."
            )
        if self.TELEGRAM_POLL_TIMEOUT_SEC > self.SCAN_INTERVAL_SEC * 3:
            warnings.append(
                "TELEGRAM_POLL_TIMEOUT_SEC is much longer than SCAN_INTERVAL_SEC; "
                "commands may feel slow."
            )
        if self.BUY_AMOUNT_SOL * (100 - self.TP1_SELL_PERCENT) / 100 < self.MIN_SELL_OUT_SOL:
            warnings.append(
                "Remainder after TP1 is below MIN_SELL_OUT_SOL at x1; "
                "automatic exits may be suppressed until price rises."
            )

        if errors:
            msg = "Config validation failed:\n" + "\n".join([f"- {e}" for e in errors])
            raise ConfigError(msg)

        return warnings


# Pydantic v2 + postponed annotations safety
Settings.model_rebuild()
settings = Settings()
