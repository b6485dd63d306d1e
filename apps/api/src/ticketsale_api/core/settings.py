from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_REFERRAL_THANK_YOU_TEMPLATE = (
    "Thanks for your referral. You earned {points} point(s) ({amount_gbp} GBP) "
    "after {referred_email} paid."
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    service_name: str = "ticketsale-api"
    version: str = "0.1.0"
    log_level: str = "INFO"
    database_url: str = "sqlite+aiosqlite:///./ticketsale.db"
    redis_url: str = "redis://localhost:6379/0"

    # Short-lived caches (checkout links, sale drafts)
    cache_backend: Literal["memory", "redis"] = "memory"
    checkout_link_ttl_seconds: int = 24 * 60 * 60
    sale_draft_ttl_seconds: int = 15 * 60

    # Token and secret material
    checkout_token_secret: str = "change-me"
    checkout_token_ttl_seconds: int = 60 * 60
    session_token_secret: str = "change-me"
    encryption_key: str = "change-me"
    checkout_base_url: str = "http://localhost:8000/checkout"

    # Webhook intake
    webhook_queue_concurrency: int = Field(default=2, ge=1)

    # Referral rewards
    referral_thank_you_template: str = DEFAULT_REFERRAL_THANK_YOU_TEMPLATE

    # Answer keys masked in audit logs and staff summaries
    sensitive_answer_keys: Annotated[list[str], NoDecode] = Field(default_factory=list)

    @field_validator("sensitive_answer_keys", mode="before")
    @classmethod
    def _parse_key_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
