import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Database settings
    database_file: Optional[str] = os.getenv("LIBRARY_DB_FILE")

    # Lending policy
    max_active_loans: int = int(os.getenv("MAX_ACTIVE_LOANS", "3"))
    default_loan_days: int = int(os.getenv("DEFAULT_LOAN_DAYS", "14"))
    penalize_late_returns: bool = _flag("PENALIZE_LATE_RETURNS", "True")
    penalty_daily_rate: Decimal = Decimal(os.getenv("PENALTY_DAILY_RATE", "0.50"))
    penalty_days_per_late_day: int = int(os.getenv("PENALTY_DAYS_PER_LATE_DAY", "1"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Lending Catalog")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _flag("DEBUG", "False")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def __post_init__(self) -> None:
        if self.max_active_loans < 1:
            raise ValueError("MAX_ACTIVE_LOANS must be at least 1.")
        if self.default_loan_days < 1:
            raise ValueError("DEFAULT_LOAN_DAYS must be at least 1.")
        if self.penalty_daily_rate < 0:
            raise ValueError("PENALTY_DAILY_RATE cannot be negative.")
        # A late return must open a penalty window of at least one day
        if self.penalty_days_per_late_day < 1:
            raise ValueError("PENALTY_DAYS_PER_LATE_DAY must be at least 1.")


settings = Settings()
