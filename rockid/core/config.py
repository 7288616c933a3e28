from typing import Dict

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "RockID Entitlements"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"  # "development", "staging", "production"

    # Database (PostgreSQL in production, SQLite locally)
    DATABASE_URL: str = "sqlite:///./rockid.db"

    # Caller identity tokens
    SECRET_KEY: str = ""  # Must be set via environment variable
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # RevenueCat webhook authorization (Secret Manager in production)
    REVENUECAT_BEARER_TOKEN: str = ""

    # Entitlement ledger
    NEW_USER_TOKENS: int = 1  # Starting grant on first authentication
    PRODUCT_TOKENS: Dict[str, int] = {
        "rockid_weekly_399": 200,
        "rockid_annual_4999": 4000,
    }
    TRANSACTION_MAX_ATTEMPTS: int = 5

    # Error tracking
    SENTRY_DSN: str = ""

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()
