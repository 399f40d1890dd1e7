from pydantic_settings import BaseSettings, SettingsConfigDict
import os


class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Upper bound for a single store call; keeps a stuck rotation from outliving its request
    DB_STATEMENT_TIMEOUT_MS: int = 5000

    # Expired refresh token purge (runs daily at 01:00 by default)
    TOKEN_PURGE_ENABLED: bool = True
    TOKEN_PURGE_CRON_HOUR: int = 1
    TOKEN_PURGE_CRON_MINUTE: int = 0

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",  # Optional: only used if file exists
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


# Initialize settings with better error handling
try:
    settings = Settings()
except Exception as e:
    missing_vars = []
    if not os.getenv("DATABASE_URL"):
        missing_vars.append("DATABASE_URL")
    if not os.getenv("SECRET_KEY"):
        missing_vars.append("SECRET_KEY")

    if missing_vars:
        error_msg = (
            f"Missing required environment variables: {', '.join(missing_vars)}. "
            "Please set these in your deployment platform's environment variables."
        )
        raise ValueError(error_msg) from e
    raise
