"""Application settings, read from the environment (or a local .env file)."""
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Settings for the task service.

    database_url (env: DATABASE_URL) - PostgreSQL in production, SQLite locally
    log_level (env: LOG_LEVEL)
    log_format (env: LOG_FORMAT) - "text" or "json"
    cors_origins (env: CORS_ORIGINS)
    db_pool_size, db_max_overflow (env: DB_POOL_SIZE, DB_MAX_OVERFLOW) - PostgreSQL only
    sql_echo (env: SQL_ECHO)
    """
    database_url: str = "sqlite:///./tasktrack.db"
    log_level: str = "INFO"
    log_format: str = "text"
    cors_origins: List[str] = ["*"]
    db_pool_size: int = 5
    db_max_overflow: int = 10
    sql_echo: bool = False

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore"
    }

    @property
    def sqlalchemy_database_url(self) -> str:
        # Render/Heroku hand out postgres:// but SQLAlchemy needs postgresql://
        if self.database_url.startswith("postgres://"):
            return self.database_url.replace("postgres://", "postgresql://", 1)
        return self.database_url


settings = Settings()
