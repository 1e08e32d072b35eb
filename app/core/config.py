from pydantic_settings import BaseSettings
from typing import List, Union
from pydantic import field_validator, model_validator
import json


# Placeholder secrets that must never reach a running deployment
WEAK_SECRETS = {
    "your-secret-token",
    "your-refresh-token",
    "secret",
    "changeme",
    "change-me",
}

MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # API Settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Auth Service"
    ENVIRONMENT: str = "production"

    # Logging
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    # Database Settings
    POSTGRES_USER: str = "user"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "auth_db"
    DB_AUTO_CREATE: bool = True

    @property
    def DATABASE_URL(self) -> str:
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Redis Settings (ephemeral OTP / lockout state)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_SOCKET_TIMEOUT: float = 5.0
    STATE_STORE_BACKEND: str = "redis"

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # JWT Settings - secrets are required, there is no fallback
    ACCESS_TOKEN_SECRET: str
    REFRESH_TOKEN_SECRET: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    COOKIE_SECURE: bool = True

    # AWS SES Settings
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_SES_FROM_EMAIL: str = "noreply@example.com"
    AWS_SES_FROM_NAME: str = "Auth Service"
    EMAIL_ENABLED: bool = True

    # CORS Settings - can be set as JSON string in .env
    BACKEND_CORS_ORIGINS: Union[List[str], str] = ["http://localhost:3000", "http://localhost:8000"]

    @property
    def DEBUG(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Union[List[str], str]) -> List[str]:
        """Parse CORS origins from JSON string or list"""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not valid JSON, split by comma
                return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("ACCESS_TOKEN_SECRET", "REFRESH_TOKEN_SECRET")
    @classmethod
    def validate_secret(cls, v: str) -> str:
        """Reject missing, short, or placeholder signing secrets."""
        if v.strip().lower() in WEAK_SECRETS:
            raise ValueError("Token secret is a known placeholder value")
        if len(v) < MIN_SECRET_LENGTH:
            raise ValueError(f"Token secret must be at least {MIN_SECRET_LENGTH} characters")
        return v

    @field_validator("STATE_STORE_BACKEND")
    @classmethod
    def validate_state_store_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("redis", "memory"):
            raise ValueError("STATE_STORE_BACKEND must be 'redis' or 'memory'")
        return v

    @model_validator(mode="after")
    def secrets_must_differ(self) -> "Settings":
        if self.ACCESS_TOKEN_SECRET == self.REFRESH_TOKEN_SECRET:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ")
        return self

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
