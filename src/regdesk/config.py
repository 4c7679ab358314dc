from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field("sqlite:///regdesk.db", description="DATABASE_URL")
    api_title: str = Field("Registration Desk", description="API_TITLE")
    bcrypt_rounds: int = Field(12, description="BCRYPT_ROUNDS")
    promotion_requires_owner: bool = Field(True, description="PROMOTION_REQUIRES_OWNER")
    refresh_session_role: bool = Field(False, description="REFRESH_SESSION_ROLE")
    login_rate_limit: str = Field("5/minute", description="LOGIN_RATE_LIMIT")
    log_level: str = Field("INFO", description="LOG_LEVEL")


settings = Settings()
