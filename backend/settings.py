"""
Module: settings.py
Description: Environment-driven configuration for the FinPersona backend.

Only the HTTP layer reads these values. Analysis services receive them as
explicit arguments.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./finpersona.db")

    # Text generation collaborator
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
    AI_TIMEOUT_SECONDS = _float_env("AI_TIMEOUT_SECONDS", 20.0)

    # Anomaly detection
    CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "₹")
    ANOMALY_HISTORY_DAYS = _int_env("ANOMALY_HISTORY_DAYS", 90)
    ALERT_LOOKBACK_DAYS = _int_env("ALERT_LOOKBACK_DAYS", 30)

    # Snapshot used when a scenario request carries none
    DEFAULT_MONTHLY_INCOME = _float_env("DEFAULT_MONTHLY_INCOME", 50000)
    DEFAULT_MONTHLY_EXPENSES = _float_env("DEFAULT_MONTHLY_EXPENSES", 35000)
    DEFAULT_CURRENT_SAVINGS = _float_env("DEFAULT_CURRENT_SAVINGS", 200000)


settings = Settings()
