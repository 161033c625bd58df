"""
Exceptions raised by the vkapi SDK.

The hierarchy separates local precondition failures (raised before any
network I/O), authorization failures, and errors reported by the VK API
itself. Errors returned by the API in a well-formed ``{"error": {...}}``
payload are mapped one-to-one from their ``error_code`` to a subclass of
VkApiMethodInvokeError through `error_from_payload()`.

Example:
    >>> from vkapi import VkApi, VkApiMethodInvokeError
    >>> try:
    ...     api.call("friends.add", {"user_id": 1})
    ... except VkApiMethodInvokeError as e:
    ...     print(f"VK error {e.error_code}: {e.message}")
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from vkapi._handlers import ResponseHandler


# =============================================================================
# Base
# =============================================================================


class VkApiError(Exception):
    """
    Base class for every error raised by the SDK.

    Attributes:
        message: Description of the failure.
        cause: The underlying exception, if any.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


# =============================================================================
# Local (precondition) errors
# =============================================================================


class InvalidConfigurationError(VkApiError, ValueError):
    """Raised when a client setting is out of range (e.g. a negative rate limit)."""

    def __init__(self, field: str, value: Any, message: str):
        self.field = field
        self.value = value
        super().__init__(f"Invalid value for '{field}': {value!r}. {message}")


class MissingCredentialError(VkApiError, ValueError):
    """Raised when an externally supplied access token is absent or blank."""

    pass


class NotRefreshableError(VkApiError):
    """
    Raised by `refresh()` when the last authorization did not use login and password.

    There is no credential to replay when the token was supplied externally.
    """

    pass


class AccessTokenInvalidError(VkApiError):
    """
    Raised when a method is called without a valid access token.

    Raised locally before any network interaction when the client is not
    authorized, and also mapped from server error code 5.
    """

    error_code: ClassVar[int] = 5


# =============================================================================
# Authorization errors
# =============================================================================


class AuthorizationError(VkApiError):
    """
    Raised when the credential handshake is rejected (bad login or password).

    Attributes:
        login: The login used in the rejected attempt.
    """

    def __init__(self, message: str, login: str | None = None, cause: Exception | None = None):
        super().__init__(message, cause=cause)
        self.login = login


class NeedValidationError(VkApiError):
    """
    Raised when VK requires (or failed to complete) out-of-band validation.

    Attributes:
        redirect_uri: The validation URL to be completed by the user.
    """

    error_code: ClassVar[int] = 17

    def __init__(self, message: str, redirect_uri: str | None = None):
        super().__init__(message)
        self.redirect_uri = redirect_uri


class CaptchaNeededError(VkApiError):
    """
    Raised when VK demands a solved CAPTCHA and no solution could be provided.

    Surfaced only after the configured recognition attempts are exhausted, or
    immediately when no CaptchaSolver is configured.

    Attributes:
        sid: Identifier of the last unresolved challenge.
        img: URI of the challenge image.
    """

    error_code: ClassVar[int] = 14

    def __init__(self, sid: int, img: str | None = None, message: str | None = None):
        super().__init__(message or f"Captcha needed (sid={sid})")
        self.sid = sid
        self.img = img


# =============================================================================
# Remote protocol errors
# =============================================================================


class VkApiMethodInvokeError(VkApiError):
    """
    Error returned by the VK API for a method call.

    Subclasses declare the `error_code` they represent and are registered
    automatically, so `error_from_payload()` can pick the right type.

    Attributes:
        error_code: The numeric VK error code.
        request_params: Request parameters echoed back by the server.
    """

    error_code: ClassVar[int | None] = None
    _registry: ClassVar[dict[int, type[VkApiMethodInvokeError]]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        code = cls.__dict__.get("error_code")
        if code is not None:
            assert code not in VkApiMethodInvokeError._registry, \
                f"Duplicated VK error code: {code}"
            VkApiMethodInvokeError._registry[code] = cls

    def __init__(
        self,
        message: str,
        error_code: int | None = None,
        request_params: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        if error_code is not None:
            self.error_code = error_code
        self.request_params = request_params or {}

    @classmethod
    def type_for(cls, error_code: int) -> type[VkApiMethodInvokeError]:
        """Return the registered error type for a code, or the base class."""
        return cls._registry.get(error_code, VkApiMethodInvokeError)


class UnknownError(VkApiMethodInvokeError):
    error_code = 1


class AppDisabledError(VkApiMethodInvokeError):
    error_code = 2


class UnknownMethodError(VkApiMethodInvokeError):
    error_code = 3


class InvalidSignatureError(VkApiMethodInvokeError):
    error_code = 4


class TooManyRequestsError(VkApiMethodInvokeError):
    """Server-side rate limit: too many requests per second (code 6)."""

    error_code = 6


class PermissionDeniedError(VkApiMethodInvokeError):
    error_code = 7


class InvalidRequestError(VkApiMethodInvokeError):
    error_code = 8


class FloodControlError(VkApiMethodInvokeError):
    error_code = 9


class InternalServerError(VkApiMethodInvokeError):
    error_code = 10


class AccessDeniedError(VkApiMethodInvokeError):
    error_code = 15


class UserDeletedOrBannedError(VkApiMethodInvokeError):
    error_code = 18


class ParameterMissingOrInvalidError(VkApiMethodInvokeError):
    error_code = 100


class InvalidUserIdError(VkApiMethodInvokeError):
    error_code = 113


class CannotAddUserBlacklistedError(VkApiMethodInvokeError):
    """Raised when adding as a friend a user that is in your blacklist (code 176)."""

    error_code = 176


class AccessToGroupDeniedError(VkApiMethodInvokeError):
    error_code = 203


# =============================================================================
# Decoding errors
# =============================================================================


class ResponseDecodeError(VkApiError):
    """
    Raised when a successful response cannot be decoded into the requested shape.

    Distinct from VkApiMethodInvokeError: the remote call itself succeeded.

    Attributes:
        handler: The response handler that failed, if any.
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        handler: ResponseHandler | None = None,
    ):
        super().__init__(message, cause=cause)
        self.handler = handler


# =============================================================================
# Helpers
# =============================================================================


def error_from_payload(error: dict[str, Any]) -> VkApiError:
    """
    Build the typed exception for an ``error`` object returned by the VK API.

    Codes with a dedicated handling path (5, 14, 17) map to their specific
    exceptions; everything else maps to the VkApiMethodInvokeError subclass
    registered for the code.

    Args:
        error: The value of the top-level ``"error"`` field.

    Returns:
        The exception instance (not raised).
    """
    code = int(error.get("error_code", 0))
    message = str(error.get("error_msg", "Unknown VK API error"))
    params = {
        str(p.get("key")): p.get("value")
        for p in error.get("request_params") or []
        if isinstance(p, dict)
    }

    if code == CaptchaNeededError.error_code:
        return CaptchaNeededError(
            sid=int(error.get("captcha_sid", 0)),
            img=error.get("captcha_img"),
            message=message,
        )
    if code == AccessTokenInvalidError.error_code:
        return AccessTokenInvalidError(message)
    if code == NeedValidationError.error_code:
        return NeedValidationError(message, redirect_uri=error.get("redirect_uri"))

    error_type = VkApiMethodInvokeError.type_for(code)
    return error_type(message, error_code=code, request_params=params)
