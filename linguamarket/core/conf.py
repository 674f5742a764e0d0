from functools import lru_cache
from typing import Any, Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from linguamarket.core.path_conf import BASE_PATH


class Settings(BaseSettings):
    """Global settings"""

    model_config = SettingsConfigDict(
        env_file=f'{BASE_PATH}/.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=True,
    )

    # .env environment
    ENVIRONMENT: Literal['dev', 'prod'] = 'dev'

    # FastAPI
    FASTAPI_API_V1_PATH: str = '/api/v1'
    FASTAPI_TITLE: str = 'LinguaMarket'
    FASTAPI_DESCRIPTION: str = 'Language-learning marketplace billing core'
    FASTAPI_DOCS_URL: str = '/docs'
    FASTAPI_REDOC_URL: str = '/redoc'
    FASTAPI_OPENAPI_URL: str | None = '/openapi'

    # .env database
    DATABASE_TYPE: Literal['mysql', 'postgresql', 'sqlite'] = 'postgresql'
    DATABASE_HOST: str = '127.0.0.1'
    DATABASE_PORT: int = 5432
    DATABASE_USER: str = 'postgres'
    DATABASE_PASSWORD: str = ''

    # Database
    DATABASE_ECHO: bool | Literal['debug'] = False
    DATABASE_POOL_ECHO: bool | Literal['debug'] = False
    DATABASE_SCHEMA: str = 'linguamarket'
    DATABASE_CHARSET: str = 'utf8mb4'

    # .env Redis
    REDIS_HOST: str = '127.0.0.1'
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str = ''
    REDIS_USERNAME: str = 'default'
    REDIS_DATABASE: int = 0

    # Redis
    REDIS_TIMEOUT: int = 5

    # .env Token
    TOKEN_SECRET_KEY: str = 'change-me'  # secrets.token_urlsafe(32)

    # Token
    TOKEN_ALGORITHM: str = 'HS256'

    # .env Cron
    CRON_SECRET: str = ''  # Bearer secret expected by scheduler-triggered endpoints

    # Stripe
    STRIPE_SECRET_KEY: str = ''  # sk_...
    STRIPE_PUBLISHABLE_KEY: str = ''  # pk_...
    STRIPE_WEBHOOK_SECRET: str = ''  # whsec_...
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    STRIPE_DEFAULT_CURRENCY: str = 'usd'

    # Billing
    BILLING_ENABLED: bool = True
    ADMIN_SETTINGS_CACHE_TTL_SECONDS: int = 60
    ADMIN_SETTINGS_REDIS_KEY: str = 'linguamarket:admin_settings:payment_approval'
    # Hours after which unpaid PENDING_PAYMENT enrollments may be released.
    # Unset means enrollments are never released automatically.
    PENDING_ENROLLMENT_TTL_HOURS: int | None = None

    # Datetime
    DATETIME_TIMEZONE: str = 'UTC'
    DATETIME_FORMAT: str = '%Y-%m-%d %H:%M:%S'

    # Log
    LOG_FORMAT: str = '<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</> | <lvl>{level: <8}</> | <lvl>{message}</>'

    # Log (console)
    LOG_STD_LEVEL: str = 'INFO'

    # Log (file)
    LOG_FILE_ENABLED: bool = False
    LOG_FILE_ACCESS_LEVEL: str = 'INFO'
    LOG_FILE_ERROR_LEVEL: str = 'ERROR'
    LOG_ACCESS_FILENAME: str = 'linguamarket_access.log'
    LOG_ERROR_FILENAME: str = 'linguamarket_error.log'

    @model_validator(mode='before')
    @classmethod
    def check_env(cls, values: Any) -> Any:
        """Check environment variables"""
        if values.get('ENVIRONMENT') == 'prod':
            # FastAPI
            values['FASTAPI_OPENAPI_URL'] = None

        return values

    @property
    def database_url(self) -> str:
        if self.DATABASE_TYPE == 'sqlite':
            return f'sqlite+aiosqlite:///{BASE_PATH}/{self.DATABASE_SCHEMA}.db'
        if self.DATABASE_TYPE == 'mysql':
            return (
                f'mysql+asyncmy://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}@{self.DATABASE_HOST}:'
                f'{self.DATABASE_PORT}/{self.DATABASE_SCHEMA}?charset={self.DATABASE_CHARSET}'
            )
        return (
            f'postgresql+asyncpg://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}@{self.DATABASE_HOST}:'
            f'{self.DATABASE_PORT}/{self.DATABASE_SCHEMA}'
        )


@lru_cache
def get_settings() -> Settings:
    """Get the global settings singleton"""
    return Settings()


# Global settings instance
settings = get_settings()
