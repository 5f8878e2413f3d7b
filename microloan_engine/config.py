"""Configuration management using Pydantic Settings"""

from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./microloan.db"

    # Service
    service_name: str = "microloan-engine"
    log_level: str = "INFO"

    # Pricing: one nominal monthly rate for both scoring and amortization (24% annual)
    monthly_interest_rate: Decimal = Decimal("0.02")
    scoring_model_version: str = "1.0"

    # Notification sink
    notification_webhook_url: str = "http://localhost:8002/notifications"
    http_timeout_seconds: float = 5.0
    notification_max_retries: int = 3
    notification_backoff_base: float = 0.5  # Exponential backoff base in seconds

    # Application validation limits
    min_loan_amount: float = 1000
    max_loan_amount: float = 50000
    min_term_months: int = 6
    max_term_months: int = 36
    min_applicant_age: int = 18
    max_payment_to_income_ratio: float = 0.50

    # Chart of accounts used for disbursement postings
    portfolio_account: str = "1401 - Loan Portfolio"
    cash_account: str = "1101 - Cash and Banks"
    interest_receivable_account: str = "1402 - Interest Receivable"
    interest_income_account: str = "5101 - Interest Income"


settings = Settings()
