"""
Конфигурация приложения
"""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Настройки приложения из переменных окружения"""

    # Database
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "clubledger"
    DB_USER: str = "clubledger"
    DB_PASSWORD: str = ""
    DATABASE_URL: Optional[str] = None

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_KEY: str = "change-me"

    # Finance
    REVENUE_CATEGORY_NAME: str = "Выручка клуба"

    # Salary
    DEFAULT_STANDARD_MONTHLY_SHIFTS: int = 15
    DEFAULT_PLANNED_SHIFTS: int = 20
    DEFAULT_FULL_SHIFT_HOURS: int = 12

    # Club defaults
    DEFAULT_TIMEZONE: str = "Europe/Moscow"
    DEFAULT_DAY_START_HOUR: int = 8
    DEFAULT_NIGHT_START_HOUR: int = 20

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def database_url(self) -> str:
        """URL подключения к базе данных"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"


settings = Settings()
