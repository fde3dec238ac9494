"""Configuration module for the OIDC relying-party helper.

Two layers:

- ``ProviderConfig``: the immutable, validated options a provider is built
  from (metadata URL, client credentials, cache TTL, leeway).
- ``Settings``: Pydantic v2 Settings that load those options (plus logging,
  HTTP and cache backend options) from defaults, a YAML/TOML file and
  ``OIDC_RP_*`` environment variables.

Configuration priority (later overrides earlier):
1. Built-in defaults
2. Configuration file (YAML/TOML)
3. Environment variables
4. Command-line arguments
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Literal
from urllib.parse import urlsplit

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from oidc_rp.domain.exceptions import (
    BadUrlError,
    IllegalSchemeError,
    MissingOptionError,
    NegativeCacheDurationError,
    NegativeLeewayError,
)

DEFAULT_CACHE_DURATION_SECONDS = 86400
DEFAULT_LEEWAY_SECONDS = 10


@dataclass(frozen=True)
class ProviderConfig:
    """Validated, immutable provider options.

    Attributes:
        metadata_url: OIDC discovery document URL (https unless overridden)
        client_id: OAuth client ID (expected ID token audience)
        client_secret: OAuth client secret
        redirect_uri: Redirect URI registered with the provider
        cache_duration_seconds: TTL for cached discovery/JWKS documents
        leeway_seconds: Clock-skew tolerance for exp/nbf/iat
        allow_insecure_scheme: Accept plain http metadata URLs (lab use only)

    Raises:
        MissingOptionError: If metadata_url is empty
        BadUrlError: If metadata_url has no scheme or host
        IllegalSchemeError: If the scheme is not https (or http when allowed)
        NegativeCacheDurationError: If cache_duration_seconds < 0
        NegativeLeewayError: If leeway_seconds < 0

    Example:
        config = ProviderConfig(
            metadata_url="https://tenant.b2clogin.com/tenant/v2.0/.well-known/openid-configuration",
            client_id="my-client-id",
            client_secret="my-client-secret",
            redirect_uri="https://app.example.com/callback",
        )
    """

    metadata_url: str
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""
    cache_duration_seconds: int = DEFAULT_CACHE_DURATION_SECONDS
    leeway_seconds: int = DEFAULT_LEEWAY_SECONDS
    allow_insecure_scheme: bool = False

    def __post_init__(self) -> None:
        if not self.metadata_url:
            raise MissingOptionError(
                "Required options not defined: metadata_url",
                context={"option": "metadata_url"},
            )

        if self.cache_duration_seconds < 0:
            raise NegativeCacheDurationError(
                "Cache duration has to be a non-negative integer",
                context={"cache_duration_seconds": self.cache_duration_seconds},
            )

        if self.leeway_seconds < 0:
            raise NegativeLeewayError(
                "Leeway has to be a non-negative integer",
                context={"leeway_seconds": self.leeway_seconds},
            )

        self._validate_metadata_url()

    def _validate_metadata_url(self) -> None:
        try:
            parts = urlsplit(self.metadata_url)
        except ValueError as e:
            raise BadUrlError(f"Metadata URL is invalid: {self.metadata_url}") from e

        if not parts.scheme or not parts.netloc:
            raise BadUrlError(f"Metadata URL is invalid: {self.metadata_url}")

        scheme = parts.scheme.lower()
        allowed = {"https", "http"} if self.allow_insecure_scheme else {"https"}
        if scheme not in allowed:
            raise IllegalSchemeError(
                f"Metadata URL must use https: {self.metadata_url}",
                context={"scheme": scheme, "allow_insecure_scheme": self.allow_insecure_scheme},
            )


class Settings(BaseSettings):
    """Application configuration with sensible defaults.

    Example:
        # Load from environment only
        settings = Settings()

        # Override specific values
        settings = Settings(metadata_url="https://idp.example.com/.well-known/openid-configuration")
        provider_config = settings.to_provider_config()
    """

    model_config = SettingsConfigDict(
        env_prefix="OIDC_RP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown fields
    )

    # ========================================
    # Logging
    # ========================================

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    log_format: Literal["json", "text"] = Field(default="json", description="Log output format")

    # ========================================
    # Provider
    # ========================================

    metadata_url: str | None = Field(
        default=None, description="OIDC discovery (well-known metadata) URL"
    )

    client_id: str = Field(default="", description="OAuth client ID")

    client_secret: str = Field(default="", description="OAuth client secret")

    redirect_uri: str = Field(default="", description="Registered redirect URI")

    cache_duration_seconds: int = Field(
        default=DEFAULT_CACHE_DURATION_SECONDS,
        ge=0,
        description="TTL for cached discovery and JWKS documents",
    )

    leeway_seconds: int = Field(
        default=DEFAULT_LEEWAY_SECONDS, ge=0, description="Clock-skew tolerance for ID tokens"
    )

    allow_insecure_scheme: bool = Field(
        default=False,
        description="Allow a plain http metadata URL (lab environments only)",
    )

    # ========================================
    # HTTP & Cache
    # ========================================

    http_timeout_seconds: float = Field(
        default=10.0, gt=0.0, le=120.0, description="Timeout for discovery/JWKS/token requests"
    )

    cache_backend: Literal["memory", "redis"] = Field(
        default="memory", description="Cache store backend"
    )

    redis_url: str | None = Field(default=None, description="Redis URL for the redis backend")

    redis_key_prefix: str = Field(default="oidc-rp:", description="Redis key prefix")

    # ========================================
    # Validators
    # ========================================

    @model_validator(mode="after")
    def validate_cache_backend(self) -> "Settings":
        """Validate cache backend configuration."""
        if self.cache_backend == "redis" and not self.redis_url:
            raise ValueError("cache_backend 'redis' requires redis_url")
        return self

    # ========================================
    # Helper Methods
    # ========================================

    def to_provider_config(self) -> ProviderConfig:
        """Build the immutable provider options from these settings.

        Raises:
            MissingOptionError: If metadata_url is not configured
            ConfigurationError: If the options are otherwise invalid
        """
        if not self.metadata_url:
            raise MissingOptionError(
                "Required options not defined: metadata_url",
                context={"option": "metadata_url"},
            )
        return ProviderConfig(
            metadata_url=self.metadata_url,
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            cache_duration_seconds=self.cache_duration_seconds,
            leeway_seconds=self.leeway_seconds,
            allow_insecure_scheme=self.allow_insecure_scheme,
        )

    def to_dict(self) -> dict:
        """Convert settings to dictionary, masking secrets."""
        data = self.model_dump()
        if data.get("client_secret"):
            data["client_secret"] = "***REDACTED***"
        return data


# ========================================
# Global Settings Instance
# ========================================

_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton).

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Set global settings instance.

    Args:
        settings: Settings instance to use globally
    """
    global _settings
    _settings = settings


def load_settings_from_file(config_file: Path | str) -> Settings:
    """Load settings from YAML or TOML configuration file.

    Args:
        config_file: Path to configuration file

    Returns:
        Settings instance loaded from file

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file format is invalid

    Example:
        settings = load_settings_from_file("config/b2c.yaml")
        set_settings(settings)
    """
    config_path = Path(config_file)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    if suffix in [".yaml", ".yml"]:
        import yaml

        with open(config_path) as f:
            config_data = yaml.safe_load(f) or {}
    elif suffix == ".toml":
        import tomllib

        with open(config_path, "rb") as f:
            config_data = tomllib.load(f)
    else:
        raise ValueError(f"Unsupported config file format: {suffix}. Use .yaml, .yml, or .toml")

    return Settings(**config_data)
