"""
Configuration

Environment-driven settings for the server, the record store and the
delivery subsystem. Every variable is prefixed with ``FEDIBOX_``.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration sourced from environment variables."""

    model_config = SettingsConfigDict(env_prefix="FEDIBOX_")

    # Instance identity
    DOMAIN: str = "localhost"
    SCHEME: str = Field("https", pattern=r"^https?$")

    # Record store (PostgreSQL or CockroachDB)
    DATABASE_URL: str = "postgresql://root@localhost:26257/fedibox?sslmode=disable"
    DATABASE_POOL_SIZE: PositiveInt = 10

    # Federation delivery
    RABBITMQ_URL: Optional[str] = None
    DELIVERY_TIMEOUT: PositiveFloat = 10.0
    DELIVERY_MAX_ATTEMPTS: PositiveInt = 3
    DELIVERY_BACKOFF_SECONDS: PositiveFloat = 30.0
    USER_AGENT: str = "fedibox/0.1.0"

    # Collections
    OUTBOX_PAGE_SIZE: PositiveInt = 20

    LOG_LEVEL: str = "INFO"

    @property
    def base_url(self) -> str:
        return f"{self.SCHEME}://{self.DOMAIN}"

    def actor_iri(self, name: str) -> str:
        """IRI of the local actor called ``name``."""
        return f"{self.base_url}/u/{name}"

    def outbox_iri(self, name: str) -> str:
        return f"{self.base_url}/outbox/{name}"

    def is_local(self, iri: str) -> bool:
        return iri == self.base_url or iri.startswith(f"{self.base_url}/")


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
