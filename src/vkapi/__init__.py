"""
VK API SDK for Python.

A Python SDK for calling VK API methods with client-side rate limiting,
token lifecycle management and transparent CAPTCHA handling.

Quick Start:
    >>> from vkapi import VkApi, ApiAuthParams
    >>> api = VkApi()
    >>> api.authorize(ApiAuthParams(access_token="...", user_id=1))
    >>> response = api.call("users.get", {"user_ids": "1"})
    >>> print(response[0]["first_name"])

Typed responses:
    >>> @dataclass
    ... class User:
    ...     id: int
    ...     first_name: str
    >>> users = api.call_as("users.get", {"user_ids": "1"}, list[User])

Global Configuration:
    >>> from vkapi import VKAPI
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> version = VKAPI.config.api.version
    >>>
    >>> # Custom configuration
    >>> VKAPI.configure(
    ...     api={"language": "en", "request_timeout": 60},
    ...     auth={"client_id": 123456, "client_secret": "secret"},
    ...     rate_limit={"requests_per_second": 3},
    ...     captcha={"max_recognition_count": 5},
    ... )

Main Classes:
    - VkApi: Client for the VK API.
    - VkApiOptions: Per-client options (fall back to VKAPI.config).
    - ApiAuthParams: Authorization request (credentials or external token).
    - Language: Values accepted by the ``lang`` parameter.
    - TokenState: State of the session token.

CAPTCHA:
    - CaptchaSolver: Abstract base class for CAPTCHA solvers.
    - CaptchaRetryLoop: Bounded retry policy around challenge-producing operations.

Events:
    - VkApiEventListener: Base class for token lifecycle observers.
    - TokenExpiresCallbackListener: Adapter for a plain expiry callback.

Response Handlers:
    - ResponseHandler, ResponseContext, ChainedResponseHandler
    - JsonResponseHandler, TypedResponseHandler, VkResponse

Transport:
    - Transport: Abstract base class for HTTP transports.
    - RequestsTransport: `requests` based transport (default).

Configuration:
    - VKAPI: Global SDK singleton for configuration.
    - VkApiConfig, ApiConfig, AuthConfig, RateLimitConfig, CaptchaConfig
    - ConfigEnvVarError, ConfigValidationError

Errors:
    - VkApiError: Base class of every SDK error.
    - AccessTokenInvalidError, MissingCredentialError, NotRefreshableError,
      InvalidConfigurationError: Local precondition failures.
    - AuthorizationError, NeedValidationError, CaptchaNeededError
    - VkApiMethodInvokeError and one subclass per known VK error code.
    - ResponseDecodeError: A successful response did not match the requested shape.
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("vkapi")

from vkapi._api import VkApi, VkApiOptions
from vkapi._captcha import CaptchaRetryLoop, CaptchaSolver
from vkapi._config import (
    VKAPI,
    ApiConfig,
    AuthConfig,
    CaptchaConfig,
    ConfigEnvVarError,
    ConfigValidationError,
    RateLimitConfig,
    VkApiConfig,
)
from vkapi._errors import (
    AccessDeniedError,
    AccessTokenInvalidError,
    AccessToGroupDeniedError,
    AppDisabledError,
    AuthorizationError,
    CannotAddUserBlacklistedError,
    CaptchaNeededError,
    FloodControlError,
    InternalServerError,
    InvalidConfigurationError,
    InvalidRequestError,
    InvalidSignatureError,
    InvalidUserIdError,
    MissingCredentialError,
    NeedValidationError,
    NotRefreshableError,
    ParameterMissingOrInvalidError,
    PermissionDeniedError,
    ResponseDecodeError,
    TooManyRequestsError,
    UnknownError,
    UnknownMethodError,
    UserDeletedOrBannedError,
    VkApiError,
    VkApiMethodInvokeError,
)
from vkapi._event_listeners import TokenExpiresCallbackListener, VkApiEventListener
from vkapi._handlers import (
    DEFAULT_RESPONSE_HANDLER,
    ChainedResponseHandler,
    JsonResponseHandler,
    ResponseContext,
    ResponseHandler,
    TypedResponseHandler,
    VkResponse,
)
from vkapi._models import (
    ApiAuthParams,
    AuthorizationResult,
    CallStatus,
    CaptchaAnswer,
    CaptchaChallenge,
    Language,
    RemoteCallOutcome,
)
from vkapi._rate_limit import RateLimiter
from vkapi._timer import ExpiryTimer
from vkapi._token import TokenState
from vkapi._transport import RequestsTransport, Transport

__all__ = [
    "__version__",
    # Client
    "VkApi",
    "VkApiOptions",
    "ApiAuthParams",
    "AuthorizationResult",
    "Language",
    "TokenState",
    "RateLimiter",
    "ExpiryTimer",
    # CAPTCHA
    "CaptchaSolver",
    "CaptchaRetryLoop",
    "CaptchaChallenge",
    "CaptchaAnswer",
    "CallStatus",
    "RemoteCallOutcome",
    # Events
    "VkApiEventListener",
    "TokenExpiresCallbackListener",
    # Response Handlers
    "DEFAULT_RESPONSE_HANDLER",
    "ResponseHandler",
    "ResponseContext",
    "ChainedResponseHandler",
    "JsonResponseHandler",
    "TypedResponseHandler",
    "VkResponse",
    # Transport
    "Transport",
    "RequestsTransport",
    # Configuration
    "VKAPI",
    "VkApiConfig",
    "ApiConfig",
    "AuthConfig",
    "RateLimitConfig",
    "CaptchaConfig",
    "ConfigEnvVarError",
    "ConfigValidationError",
    # Errors
    "VkApiError",
    "AccessTokenInvalidError",
    "MissingCredentialError",
    "NotRefreshableError",
    "InvalidConfigurationError",
    "AuthorizationError",
    "NeedValidationError",
    "CaptchaNeededError",
    "ResponseDecodeError",
    "VkApiMethodInvokeError",
    "UnknownError",
    "AppDisabledError",
    "UnknownMethodError",
    "InvalidSignatureError",
    "TooManyRequestsError",
    "PermissionDeniedError",
    "InvalidRequestError",
    "FloodControlError",
    "InternalServerError",
    "AccessDeniedError",
    "UserDeletedOrBannedError",
    "ParameterMissingOrInvalidError",
    "InvalidUserIdError",
    "CannotAddUserBlacklistedError",
    "AccessToGroupDeniedError",
]
