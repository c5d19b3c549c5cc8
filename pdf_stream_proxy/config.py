from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .cache import DEFAULT_MAX_SIZE_BYTES, DEFAULT_TTL_SECONDS


class ProxySettings(BaseSettings):
    """Configuration for the PDF streaming proxy."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    cache_max_bytes: int = Field(
        default=DEFAULT_MAX_SIZE_BYTES,
        gt=0,
        validation_alias="PDF_PROXY_CACHE_MAX_BYTES",
    )
    cache_ttl_seconds: float = Field(
        default=DEFAULT_TTL_SECONDS,
        gt=0,
        validation_alias="PDF_PROXY_CACHE_TTL_SECONDS",
    )
    head_timeout: float = Field(
        default=10.0,
        gt=0,
        validation_alias="PDF_PROXY_HEAD_TIMEOUT",
    )
    get_timeout: float = Field(
        default=30.0,
        gt=0,
        validation_alias="PDF_PROXY_GET_TIMEOUT",
    )
    cache_control: str = Field(
        default="public, max-age=300",
        validation_alias="PDF_PROXY_CACHE_CONTROL",
    )
    error_page_max_bytes: int = Field(
        default=1000,
        ge=0,
        validation_alias="PDF_PROXY_ERROR_PAGE_MAX_BYTES",
    )
    allowed_hosts: str | None = Field(
        default=None,
        validation_alias="PDF_PROXY_ALLOWED_HOSTS",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias="PDF_PROXY_LOG_LEVEL",
    )

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def _normalise_allowed_hosts(cls, value: object) -> str | None:
        if value is None:
            return None
        if isinstance(value, (list, tuple, set, frozenset)):
            value = ",".join(str(v) for v in value)
        if isinstance(value, str):
            hosts = [h.strip().lower() for h in value.split(",") if h.strip()]
            return ",".join(hosts) or None
        msg = "Invalid allowed hosts format"
        raise ValueError(msg)

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def allowed_host_set(self) -> frozenset[str] | None:
        """Hosts the proxy may fetch from, or ``None`` when unrestricted."""
        if not self.allowed_hosts:
            return None
        return frozenset(self.allowed_hosts.split(","))


def load_settings_from_env() -> ProxySettings:
    """Load proxy settings from environment variables.

    Returns:
        ProxySettings instance populated from environment variables.
    """
    return ProxySettings()
