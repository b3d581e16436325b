from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # project root
ENV_PATH = BASE_DIR / ".env"

load_dotenv(dotenv_path=ENV_PATH)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
    )

    DATABASE_URL: str = "sqlite+aiosqlite:///./autopickup.db"
    DB_ECHO: bool = False
    DB_CREATE_ALL: bool = True

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"
    JWT_ACCESS_MINUTES: int = 720

    # 5 attempts per origin per minute on the redemption endpoints
    PICKUP_RATE_LIMIT_MAX: int = 5
    PICKUP_RATE_LIMIT_WINDOW_SECONDS: int = 60

    CODES_PER_PRODUCT_LIMIT: int = 20
    ORDER_DEFAULT_EXPIRES_DAYS: int = 30

    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"


settings = Settings()
