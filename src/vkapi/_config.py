"""
Global configuration for the vkapi SDK.

This module provides a simple configuration system following Convention over Configuration (CoC).
Users can optionally call VKAPI.configure() at application startup to customize defaults.
If not called, sensible defaults are used.

Hierarchy of precedence (highest to lowest):
1. VkApiOptions passed to the VkApi constructor
2. Values set via VKAPI.configure()
3. Environment variables (VKAPI_*) - when allow_env_override=True
4. Hardcoded defaults (in dataclass fields)

Example:
    >>> from vkapi import VKAPI
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> version = VKAPI.config.api.version
    >>>
    >>> # Custom configuration
    >>> VKAPI.configure(
    ...     api={"language": "en"},
    ...     rate_limit={"requests_per_second": 20},
    ...     captcha={"max_recognition_count": 3},
    ... )
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from typing import Any, Self

# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """Raised when an environment variable has an invalid value."""

    def __init__(
        self,
        env_var: str,
        value: str,
        expected_type: str,
        cause: Exception | None = None,
    ):
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        super().__init__(f"Invalid value for {env_var}: '{value}' (expected {expected_type})")
        self.__cause__ = cause


class ConfigValidationError(ValueError):
    """Raised when a configuration value fails validation."""

    def __init__(
        self,
        field: str,
        value: Any,
        message: str,
        section: str | None = None,
    ):
        self.field = field
        self.value = value
        self.section = section
        prefix = f"[{section}] " if section else ""
        super().__init__(f"{prefix}Invalid value for '{field}': {value!r}. {message}")


# =============================================================================
# Environment Variables
# =============================================================================


class EnvVars:
    """
    Utility class for reading environment variables with type conversion.

    Example:
        >>> EnvVars.get("VKAPI_API_REQUEST_TIMEOUT", type_hint=int)
        30
        >>> EnvVars.get("UNDEFINED_VAR")
        None
    """

    @staticmethod
    def get(
        var_name: str,
        type_hint: Any = str,
        converter: Callable[[str], Any] | None = None,
    ) -> Any:
        """
        Read an environment variable with optional type conversion.

        Args:
            var_name: The environment variable name.
            type_hint: Type hint used to infer the converter (ignored if converter is provided).
            converter: Custom converter function (takes precedence over type_hint).

        Returns:
            The converted value, or None if env var is not set/empty.

        Raises:
            ConfigEnvVarError: If the value cannot be converted.
        """
        raw_value = os.environ.get(var_name)
        if not raw_value:
            return None

        actual_converter = converter or EnvVars._infer_converter(type_hint)
        try:
            return actual_converter(raw_value)
        except (ValueError, TypeError) as e:
            raise ConfigEnvVarError(
                env_var=var_name,
                value=raw_value,
                expected_type=type_hint.__name__ if hasattr(type_hint, "__name__") else str(type_hint),
                cause=e,
            ) from e

    @staticmethod
    def _infer_converter(type_hint: Any) -> Callable[[str], Any]:
        """
        Infer converter function from type hint.

        Handles both actual types and string annotations (PEP 563).
        """
        type_str = str(type_hint)

        if type_hint is int or type_str == "int":
            return int
        if type_hint is float or type_str == "float":
            return float
        if type_hint is bool or type_str == "bool":
            return lambda v: v.lower() in ("true", "1", "yes")
        return str


# =============================================================================
# Base Class
# =============================================================================


@dataclass(frozen=True)
class OverridableConfig:
    """
    Base class for immutable configuration dataclasses.

    Provides `.with_overrides()` for creating new instances with partial
    field updates, and `.with_env_vars()` for applying the environment
    variables declared in field metadata.

    Example:
        >>> config = RateLimitConfig()
        >>> custom = config.with_overrides({"requests_per_second": 20})
        >>> custom.requests_per_second
        20
    """

    def with_overrides(self, overrides: dict[str, Any]) -> Self:
        """
        Return a new instance with specified fields overridden.

        None values are ignored, so callers can pass partially filled dicts.

        Raises:
            ValueError: If overrides contains unknown field names.
        """
        if not overrides:
            return self

        valid_fields = {f.name for f in fields(self)}
        invalid_fields = set(overrides.keys()) - valid_fields

        if invalid_fields:
            raise ValueError(
                f"Unknown config fields: {invalid_fields}. "
                f"Valid fields are: {valid_fields}"
            )

        filtered = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **filtered) if filtered else self

    def with_env_vars(self) -> Self:
        """
        Return new instance with environment variables applied.

        Raises:
            ConfigEnvVarError: If an env var has an invalid value.
        """
        overrides: dict[str, Any] = {}
        for f in fields(self):
            env_var = f.metadata.get("env")
            if env_var:
                value = EnvVars.get(
                    var_name=env_var,
                    type_hint=f.type,
                    converter=f.metadata.get("converter"),
                )
                if value is not None:
                    overrides[f.name] = value
        return self.with_overrides(overrides)


def _validate_url(value: str | None, field_name: str, section: str) -> None:
    if value and not (value.startswith("http://") or value.startswith("https://")):
        raise ConfigValidationError(
            field_name, value,
            "Must start with 'http://' or 'https://'.", section=section
        )


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass(frozen=True)
class ApiConfig(OverridableConfig):
    """
    VK API endpoint configuration.

    Attributes:
        base_url: Base URL for method calls (``{base_url}/{method}``).
            Env var: VKAPI_API_BASE_URL

        version: API version sent as the ``v`` parameter.
            Env var: VKAPI_API_VERSION

        request_timeout: HTTP request timeout in seconds, handed to the transport.
            Env var: VKAPI_API_REQUEST_TIMEOUT

        language: Default ``lang`` parameter (e.g. "ru", "en"). None omits it.
            Env var: VKAPI_API_LANGUAGE
    """

    base_url: str = field(default="https://api.vk.com/method", metadata={"env": "VKAPI_API_BASE_URL"})
    version: str = field(default="5.69", metadata={"env": "VKAPI_API_VERSION"})
    request_timeout: int = field(default=30, metadata={"env": "VKAPI_API_REQUEST_TIMEOUT"})
    language: str | None = field(default=None, metadata={"env": "VKAPI_API_LANGUAGE"})

    def validate(self) -> Self:
        """Validate API configuration fields."""
        _validate_url(self.base_url, "base_url", "api")
        if not self.version:
            raise ConfigValidationError(
                "version", self.version,
                "Must not be empty.", section="api"
            )
        if self.request_timeout <= 0:
            raise ConfigValidationError(
                "request_timeout", self.request_timeout,
                "Must be greater than 0.", section="api"
            )
        if self.language is not None:
            from vkapi._models import Language

            valid_languages = tuple(str(lang) for lang in Language)
            if self.language not in valid_languages:
                raise ConfigValidationError(
                    "language", self.language,
                    f"Must be one of: {valid_languages}.", section="api"
                )
        return self


@dataclass(frozen=True)
class AuthConfig(OverridableConfig):
    """
    Credential authorization configuration.

    Attributes:
        oauth_url: Token endpoint for the direct-authorization grant.
            Env var: VKAPI_AUTH_OAUTH_URL

        client_id: Default application ID used when ApiAuthParams has none.
            Env var: VKAPI_AUTH_CLIENT_ID

        client_secret: Default application secret.
            Env var: VKAPI_AUTH_CLIENT_SECRET

        scope: Default comma-separated permissions.
            Env var: VKAPI_AUTH_SCOPE
    """

    oauth_url: str = field(default="https://oauth.vk.com/token", metadata={"env": "VKAPI_AUTH_OAUTH_URL"})
    client_id: int | None = field(default=None, metadata={"env": "VKAPI_AUTH_CLIENT_ID", "converter": int})
    client_secret: str | None = field(default=None, repr=False, metadata={"env": "VKAPI_AUTH_CLIENT_SECRET"})
    scope: str | None = field(default=None, metadata={"env": "VKAPI_AUTH_SCOPE"})

    def validate(self) -> Self:
        """Validate auth configuration fields."""
        _validate_url(self.oauth_url, "oauth_url", "auth")
        if self.client_id is not None and self.client_id < 0:
            raise ConfigValidationError(
                "client_id", self.client_id,
                "Must be >= 0.", section="auth"
            )
        if self.client_secret is not None and self.client_secret == "":
            raise ConfigValidationError(
                "client_secret", self.client_secret,
                "Must not be empty string.", section="auth"
            )
        return self


@dataclass(frozen=True)
class RateLimitConfig(OverridableConfig):
    """
    Client-side rate limiting configuration.

    Attributes:
        requests_per_second: Maximum method calls per second per client.
            Use 0 to disable throttling.
            Env var: VKAPI_RATE_LIMIT_REQUESTS_PER_SECOND
    """

    requests_per_second: float = field(default=3.0, metadata={"env": "VKAPI_RATE_LIMIT_REQUESTS_PER_SECOND"})

    def validate(self) -> Self:
        """Validate rate limit configuration fields."""
        if self.requests_per_second < 0:
            raise ConfigValidationError(
                "requests_per_second", self.requests_per_second,
                "Must be >= 0 (0 disables throttling).", section="rate_limit"
            )
        return self


@dataclass(frozen=True)
class CaptchaConfig(OverridableConfig):
    """
    CAPTCHA handling configuration.

    Attributes:
        max_recognition_count: How many solutions are requested from the
            CaptchaSolver before giving up. The call itself is attempted
            once more than this, since the first attempt carries no answer.
            Env var: VKAPI_CAPTCHA_MAX_RECOGNITION_COUNT
    """

    max_recognition_count: int = field(default=5, metadata={"env": "VKAPI_CAPTCHA_MAX_RECOGNITION_COUNT"})

    def validate(self) -> Self:
        """Validate CAPTCHA configuration fields."""
        if self.max_recognition_count < 0:
            raise ConfigValidationError(
                "max_recognition_count", self.max_recognition_count,
                "Must be >= 0.", section="captcha"
            )
        return self


@dataclass(frozen=True)
class VkApiConfig:
    """
    Global configuration for the vkapi SDK.

    Aggregates all configuration sections. Access via the global
    `VKAPI.config` property.

    Example:
        >>> from vkapi import VKAPI
        >>> VKAPI.config.api.version
        '5.69'
        >>> VKAPI.config.rate_limit.requests_per_second
        3.0
    """

    api: ApiConfig = field(default_factory=ApiConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    captcha: CaptchaConfig = field(default_factory=CaptchaConfig)

    def with_env_vars(self) -> VkApiConfig:
        """Return a new config with VKAPI_* environment variables applied on top."""
        return VkApiConfig(
            api=self.api.with_env_vars(),
            auth=self.auth.with_env_vars(),
            rate_limit=self.rate_limit.with_env_vars(),
            captcha=self.captcha.with_env_vars(),
        )

    def with_section_overrides(
        self,
        *,
        api: dict[str, Any] | None = None,
        auth: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
        captcha: dict[str, Any] | None = None,
    ) -> VkApiConfig:
        """Return a new config with overrides applied to nested sections."""
        return VkApiConfig(
            api=self.api.with_overrides(api or {}),
            auth=self.auth.with_overrides(auth or {}),
            rate_limit=self.rate_limit.with_overrides(rate_limit or {}),
            captcha=self.captcha.with_overrides(captcha or {}),
        )

    def explain_data(self) -> dict[str, list[tuple[str, Any]]]:
        """Return (field, value) pairs per section, secrets masked."""
        result: dict[str, list[tuple[str, Any]]] = {}
        for section_name in ("api", "auth", "rate_limit", "captcha"):
            section_config = getattr(self, section_name)
            entries = []
            for f in fields(section_config):
                value = getattr(section_config, f.name)
                if "secret" in f.name and value:
                    value = "********"
                entries.append((f.name, value))
            result[section_name] = entries
        return result


# =============================================================================
# Global Configuration Singleton
# =============================================================================


class _VKAPI:
    """
    Singleton for SDK configuration.

    Use `VKAPI.configure()` to customize settings and `VKAPI.config`
    to access current configuration.

    Example:
        >>> from vkapi import VKAPI
        >>> VKAPI.configure(rate_limit={"requests_per_second": 20})
        >>> print(VKAPI.config.rate_limit.requests_per_second)
    """

    def __init__(self) -> None:
        """Initialize with defaults and environment variables."""
        self._config: VkApiConfig = VkApiConfig().with_env_vars()

    def configure(
        self,
        *,
        api: dict[str, Any] | None = None,
        auth: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
        captcha: dict[str, Any] | None = None,
        allow_env_override: bool = True,
    ) -> VkApiConfig:
        """
        Configure SDK settings.

        Call at application startup to customize defaults.

        Args:
            api: API endpoint overrides (base_url, version, request_timeout, language).
            auth: Authorization overrides (oauth_url, client_id, client_secret, scope).
            rate_limit: Rate limiting overrides (requests_per_second).
            captcha: CAPTCHA overrides (max_recognition_count).
            allow_env_override: If True (default), env vars are used as fallback
                for fields NOT provided. If False, ignores env vars entirely.

        Returns:
            The configured VkApiConfig instance.

        Raises:
            ValueError: If any dict contains unknown field names.
            ConfigValidationError: If any config value fails validation.
        """
        base = VkApiConfig()
        if allow_env_override:
            base = base.with_env_vars()

        self._config = base.with_section_overrides(
            api=api,
            auth=auth,
            rate_limit=rate_limit,
            captcha=captcha,
        )
        return self.validate()

    @property
    def config(self) -> VkApiConfig:
        """Access current configuration (read-only)."""
        return self._config

    def reset(self) -> VkApiConfig:
        """
        Reset configuration to defaults + env vars.

        Useful for testing to ensure clean state between tests.
        """
        self._config = VkApiConfig().with_env_vars()
        return self.validate()

    def validate(self) -> VkApiConfig:
        """
        Validate current configuration.

        Raises:
            ConfigValidationError: If any config value is invalid.
        """
        self._config.api.validate()
        self._config.auth.validate()
        self._config.rate_limit.validate()
        self._config.captcha.validate()
        return self._config

    def explain(self, output: Callable[[str], None] = print) -> None:
        """
        Print current configuration.

        Args:
            output: Callable to output each line. Defaults to print.
                    Can be used with logging: `VKAPI.explain(logger.info)`
        """
        name_width = 25
        output("VKAPI Configuration:")
        output("=" * 60)
        for section_name, entries in self._config.explain_data().items():
            output(f"[{section_name}]")
            for name, value in entries:
                dots = "." * (name_width - len(name))
                output(f"  {name} {dots} {value}")
        output("=" * 60)

    def __repr__(self) -> str:
        return f"VKAPI(config={self._config!r})"


# Global singleton instance - always reflects current configuration
VKAPI: _VKAPI = _VKAPI()
VKAPI.validate()
