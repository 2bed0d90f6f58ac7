"""timemint — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class TimemintSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "TIMEMINT_",
        "extra": "ignore",
    }

    # ── Ownership bootstrap ────────────────────────────────────
    owner_account: str = "0xowner"
    initial_supply: int = 0

    # ── Staking emission channel ───────────────────────────────
    staking_rate_per_second: int = 10
    staking_cap: int = 1_000_000
    staking_address: str = ""
    emission_active: bool = False

    # ── Admin special emission channel ─────────────────────────
    special_rate_per_second: int = 10
    special_cap: int = 1_000_000

    # ── Game reward emission channel ───────────────────────────
    game_rate_per_second: int = 10
    game_cap: int = 1_000_000
    winner_amount: int = 100
    loser_amount: int = 10

    # ── Transfer fees ──────────────────────────────────────────
    fee_percent: int = 0
    fee_recipient: str = ""

    # ── Audit trail (SQL mirror) ───────────────────────────────
    persist_audit: bool = False
    audit_database_url: str = "sqlite:///timemint_audit.db"

    # ── HTTP surface ───────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = TimemintSettings()
