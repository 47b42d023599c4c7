"""
backend/app/config.py

Purpose:
    Central settings loading for the betting market backend.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017/?replicaSet=rs0"
    MONGO_DB: str = "oddsmarket"
    LEDGER_BACKEND: str = "mongo"  # "mongo" | "memory"
    JWT_SECRET: str
    JWT_SECRET_OLD: str = ""  # Set during rotation; cleared after expiry window
    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"

    # Odds engine
    ODDS_ALPHA_DEFAULT: float = 0.5
    ODDS_SMOOTHING_BETA: float = 0.1  # max percentage-point move per placed bet
    UNBACKED_MARKET_ODDS: float = 1000.0
    PRIOR_ODDS_DEFAULT: float = 50.0
    PRIOR_DRAW_ODDS_DEFAULT: float = 20.0

    # Bet placement
    TRUST_CLIENT_ODDS: bool = False
    CLIENT_ODDS_TOLERANCE: float = 0.2  # relative drift allowed for displayed odds
    REJECT_BETS_ON_FINAL_EVENTS: bool = True

    # Ledger store
    TRANSACTION_MAX_ATTEMPTS: int = 20
    TRANSACTION_RETRY_BASE_DELAY_S: float = 0.005
    TRANSACTION_RETRY_MAX_DELAY_S: float = 0.25
    SETTLEMENT_BATCH_SIZE: int = 500

    # Event bus
    EVENT_BUS_ENABLED: bool = True
    EVENT_BUS_QUEUE_MAXSIZE: int = 500
    EVENT_BUS_ERROR_BUFFER_SIZE: int = 50

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    SETTLEMENT_SWEEP_MINUTES: int = 10
    RECONCILIATION_MINUTES: int = 30

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
