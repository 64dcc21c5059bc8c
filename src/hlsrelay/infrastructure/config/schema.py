"""Pydantic configuration models with validation."""

from __future__ import annotations

from typing import Any, Literal, Optional
from urllib.parse import urlsplit

from pydantic import (
    AliasChoices,
    AliasPath,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from hlsrelay.domain.entities import RefererCandidate, RefererRule, origin_of
from hlsrelay.infrastructure.config.defaults import (
    DEFAULT_REFERER_CANDIDATES,
    DEFAULT_REFERER_RULES,
    DEFAULT_USER_AGENT,
)

Environment = Literal["dev", "test", "prod"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]


def _require_absolute_url(value: str, field_name: str) -> str:
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"{field_name} must be an absolute http(s) URL: {value!r}")
    return value


class RefererRuleConfig(BaseModel):
    """One hostname-pattern rule (YAML: ``relay.referer_rules[]``)."""

    referer: str = Field(description="Referer sent for matching hostnames.")
    patterns: list[str] = Field(
        description="Substrings tested against the lower-cased target hostname.",
    )

    @field_validator("referer")
    @classmethod
    def _validate_referer(cls, v: str) -> str:
        return _require_absolute_url(v, "referer")

    @field_validator("patterns")
    @classmethod
    def _normalize_patterns(cls, v: list[str]) -> list[str]:
        patterns = [p.strip().lower() for p in v if p and p.strip()]
        if not patterns:
            raise ValueError("referer rule needs at least one pattern")
        return patterns


class RelayConfig(BaseModel):
    """Stream relay behavior (YAML section ``relay``).

    ``referer_rules`` order is significant: the first rule whose pattern
    occurs in the hostname wins, so broader patterns must come after the
    specific ones they would otherwise shadow.
    """

    public_base_url: Optional[str] = Field(
        default=None,
        description=(
            "Base URL used in rewritten playlist URIs. "
            "Unset = relative URIs (or request-derived, see absolute_playlist_urls)."
        ),
    )
    absolute_playlist_urls: bool = Field(
        default=False,
        description=(
            "Derive an absolute base from X-Forwarded-Proto/Host "
            "when public_base_url is unset."
        ),
    )
    default_referer: str = Field(
        default="https://megacloud.blog/",
        description="Referer used when no rule matches the hostname.",
    )
    referer_rules: list[RefererRuleConfig] = Field(
        default_factory=lambda: [
            RefererRuleConfig.model_validate(r) for r in DEFAULT_REFERER_RULES
        ],
        description="Ordered hostname-pattern table.",
    )
    referer_candidates: list[str] = Field(
        default_factory=lambda: list(DEFAULT_REFERER_CANDIDATES),
        description=(
            "Ordered retry referers. The target's own origin is always "
            "tried last."
        ),
    )
    delegate_base_url: Optional[str] = Field(
        default=None,
        description="Primary backend delegate base URL (tried before direct fetch).",
    )
    delegate_timeout_seconds: float = Field(
        default=25.0,
        description="Timeout for the delegate attempt in seconds.",
    )
    segment_max_age_seconds: int = Field(
        default=3600,
        description="Cache-Control max-age for binary pass-through responses.",
    )
    preflight_max_age_seconds: int = Field(
        default=86400,
        description="Access-Control-Max-Age for OPTIONS responses.",
    )

    @field_validator("default_referer")
    @classmethod
    def _validate_default_referer(cls, v: str) -> str:
        return _require_absolute_url(v, "default_referer")

    @field_validator("referer_candidates")
    @classmethod
    def _validate_candidates(cls, v: list[str]) -> list[str]:
        return [_require_absolute_url(c, "referer_candidates") for c in v]

    @field_validator("public_base_url", "delegate_base_url")
    @classmethod
    def _validate_base_urls(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return _require_absolute_url(v.strip(), "base url").rstrip("/")

    @field_validator("delegate_timeout_seconds")
    @classmethod
    def _validate_delegate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("delegate_timeout_seconds must be > 0")
        return v

    @field_validator("segment_max_age_seconds", "preflight_max_age_seconds")
    @classmethod
    def _validate_max_age(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max age must be >= 0")
        return v

    def build_rules(self) -> tuple[RefererRule, ...]:
        """Immutable rule table for the referer resolver."""
        return tuple(
            RefererRule(referer=r.referer, patterns=tuple(r.patterns))
            for r in self.referer_rules
        )

    def build_candidates(self) -> tuple[RefererCandidate, ...]:
        """Immutable candidate list (without the per-target last resort)."""
        return tuple(
            RefererCandidate(referer=c, origin=origin_of(c))
            for c in self.referer_candidates
        )


class AppConfig(BaseModel):
    """Validated relay configuration, built once at startup.

    Accepts both the sectioned YAML shape (``http.timeout_seconds``) and
    flat names (``http_timeout_seconds``).  Environment variables are not
    read here; ``load_config`` merges them in as a separate layer.
    """

    # General
    app_name: str = Field(default="hlsrelay", description="Application name.")
    environment: Environment = Field(
        default="dev",
        description="Runtime environment; prod switches the default log format to json.",
    )

    # HTTP client (YAML section: http.*)
    http_timeout_seconds: float = Field(
        default=25.0,
        validation_alias=AliasChoices(
            "http_timeout_seconds",
            AliasPath("http", "timeout_seconds"),
        ),
        description="Timeout in seconds for every upstream fetch.",
    )
    http_follow_redirects: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "http_follow_redirects",
            AliasPath("http", "follow_redirects"),
        ),
        description="Whether the upstream client follows redirects.",
    )
    http_user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        validation_alias=AliasChoices(
            "http_user_agent",
            AliasPath("http", "user_agent"),
        ),
        description="Browser-like User-Agent sent upstream.",
    )

    # Logging (YAML section: logging.*)
    log_level: LogLevel = Field(
        default="INFO",
        validation_alias=AliasChoices(
            "log_level",
            AliasPath("logging", "level"),
        ),
        description="Log level.",
    )
    log_format: Optional[LogFormat] = Field(
        default=None,
        validation_alias=AliasChoices(
            "log_format",
            AliasPath("logging", "format"),
        ),
        description=(
            "Log renderer format (console/json). If unset, derived from environment."
        ),
    )

    # Relay (YAML section: relay.*)
    relay: RelayConfig = Field(default_factory=RelayConfig)

    @field_validator("http_timeout_seconds")
    @classmethod
    def _validate_http_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("http_timeout_seconds must be > 0")
        return v

    @model_validator(mode="after")
    def _derive_defaults(self) -> "AppConfig":
        if self.log_format is None:
            self.log_format = "json" if self.environment == "prod" else "console"
        return self

    def to_sectioned_dict(self) -> dict[str, Any]:
        """Sectioned dict that round-trips through ``model_validate``."""
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "http": {
                "timeout_seconds": self.http_timeout_seconds,
                "follow_redirects": self.http_follow_redirects,
                "user_agent": self.http_user_agent,
            },
            "logging": {"level": self.log_level, "format": self.log_format},
            "relay": self.relay.model_dump(),
        }


class EnvOverrides(BaseSettings):
    """``HLSRELAY_*`` environment variables, all optional and flat, e.g.

    - HLSRELAY_HTTP_TIMEOUT_SECONDS
    - HLSRELAY_LOG_LEVEL
    - HLSRELAY_DELEGATE_BASE_URL
    - HLSRELAY_PUBLIC_BASE_URL
    """

    model_config = SettingsConfigDict(
        env_prefix="HLSRELAY_",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: Optional[str] = None
    environment: Optional[Environment] = None

    http_timeout_seconds: Optional[float] = None
    http_follow_redirects: Optional[bool] = None
    http_user_agent: Optional[str] = None

    log_level: Optional[LogLevel] = None
    log_format: Optional[LogFormat] = None

    public_base_url: Optional[str] = None
    absolute_playlist_urls: Optional[bool] = None
    delegate_base_url: Optional[str] = None
    delegate_timeout_seconds: Optional[float] = None

    def to_update_dict(self) -> dict[str, Any]:
        """Only the variables that are set."""
        return self.model_dump(exclude_none=True)
