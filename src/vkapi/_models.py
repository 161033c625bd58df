"""
Data models for the vkapi SDK.

This module contains the data structures shared by the dispatcher, the token
lifecycle and the transports:

- ApiAuthParams: Authorization request (credentials, external token, proxy, CAPTCHA).
- AuthorizationResult: Outcome of a credential or validation handshake.
- CaptchaChallenge / CaptchaAnswer: A server-issued challenge and its solution.
- RemoteCallOutcome: Tagged outcome of a single raw method invocation.
- Session: Token state owned by a client instance.
- Language: Supported values for the ``lang`` request parameter.
"""

import enum
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from vkapi._errors import CaptchaNeededError, VkApiError, error_from_payload


class Language(enum.StrEnum):
    """Languages accepted by the ``lang`` parameter of the VK API."""
    RU = "ru"
    UK = "uk"
    BE = "be"
    EN = "en"
    ES = "es"
    FI = "fi"
    DE = "de"
    IT = "it"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CaptchaChallenge:
    """
    A human-solvable challenge the server requires before a call can succeed.

    Attributes:
        sid: Challenge identifier, sent back as ``captcha_sid``.
        img: URI of the challenge image.
    """
    sid: int
    img: str | None = None

    def to_error(self) -> CaptchaNeededError:
        return CaptchaNeededError(sid=self.sid, img=self.img)


@dataclass(frozen=True)
class CaptchaAnswer:
    """A solution for a CaptchaChallenge, merged into the next attempt's parameters."""
    sid: int
    key: str

    def to_params(self) -> dict[str, Any]:
        return {"captcha_sid": self.sid, "captcha_key": self.key}


@dataclass
class ApiAuthParams:
    """
    Authorization request.

    Either `login`/`password` (credential authorization) or `access_token`
    (externally supplied token) must be provided. The CAPTCHA fields are
    overwritten between retry attempts and reset once a credential
    authorization completes.

    Attributes:
        application_id: VK application (client) ID.
        login: E-mail or phone number.
        password: Account password.
        client_secret: Application secret for the direct-authorization grant.
        scope: Requested permissions, as a list of names or a bitmask.
        two_factor_authorization: Callable returning the 2FA code when asked.
        captcha_sid: Identifier of the challenge being answered.
        captcha_key: Solution text for `captcha_sid`.
        access_token: Externally supplied token (bypasses the handshake).
        user_id: Owner of the externally supplied token.
        token_expire_time: Seconds until the external token expires (0 = never).
        host: Proxy host.
        port: Proxy port.
        proxy_login: Proxy user name.
        proxy_password: Proxy password.

    Example:
        >>> params = ApiAuthParams(
        ...     application_id=123456,
        ...     login="user@example.com",
        ...     password="secret",
        ...     scope=["friends", "wall"],
        ... )
    """
    application_id: int | None = None
    login: str | None = None
    password: str | None = None
    client_secret: str | None = None
    scope: list[str] | int | None = None
    two_factor_authorization: Callable[[], str] | None = None
    captcha_sid: int | None = None
    captcha_key: str | None = None
    access_token: str | None = None
    user_id: int | None = None
    token_expire_time: int = 0
    host: str | None = None
    port: int | None = None
    proxy_login: str | None = None
    proxy_password: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        assert self.token_expire_time is not None, "token_expire_time cannot be None."
        assert self.application_id is None or self.application_id >= 0, \
            "application_id must be a non-negative number."

    def __repr__(self) -> str:
        # Credentials must never reach logs through repr()
        return (
            f"ApiAuthParams(application_id={self.application_id!r}, login={self.login!r}, "
            f"scope={self.scope!r}, user_id={self.user_id!r}, host={self.host!r})"
        )

    def has_credentials(self) -> bool:
        """Check if both login and password are set."""
        return bool(self.login and self.login.strip() and self.password and self.password.strip())

    def has_access_token(self) -> bool:
        """Check if an external access token was supplied (even if blank)."""
        return self.access_token is not None

    def apply_captcha(self, answer: CaptchaAnswer | None) -> None:
        """Store the answer for the next handshake attempt."""
        if answer is None:
            return
        self.captcha_sid = answer.sid
        self.captcha_key = answer.key

    def reset_captcha(self) -> None:
        self.captcha_sid = None
        self.captcha_key = None

    def current_captcha_answer(self) -> CaptchaAnswer | None:
        """Return the CAPTCHA answer supplied by the caller, if any."""
        if self.captcha_sid is None or not self.captcha_key:
            return None
        return CaptchaAnswer(sid=self.captcha_sid, key=self.captcha_key)


@dataclass(frozen=True)
class AuthorizationResult:
    """
    Outcome of a credential or validation handshake.

    Attributes:
        access_token: Token granted by the server, if any.
        user_id: Owner of the token.
        expires_in: Token lifetime in seconds (0 = never expires).
        captcha: Challenge the server requires before granting a token.
        error: Error description returned by the server.
        validation_url: Redirect URL when the server requires validation.
    """
    access_token: str | None = None
    user_id: int | None = None
    expires_in: int = 0
    captcha: CaptchaChallenge | None = None
    error: str | None = None
    validation_url: str | None = field(default=None)

    @property
    def is_authorized(self) -> bool:
        return bool(self.access_token and self.access_token.strip())

    @classmethod
    def captcha_needed(cls, challenge: CaptchaChallenge) -> "AuthorizationResult":
        return cls(captcha=challenge, error="need_captcha")

    @classmethod
    def failed(cls, error: str, validation_url: str | None = None) -> "AuthorizationResult":
        return cls(error=error, validation_url=validation_url)


class CallStatus(enum.StrEnum):
    """
    Tag of a RemoteCallOutcome.

    Attributes:
        SUCCESS: The server returned a payload.
        CAPTCHA_NEEDED: The server demands a solved challenge before the call can succeed.
        ERROR: The server returned any other error.
    """
    SUCCESS = "SUCCESS"
    CAPTCHA_NEEDED = "CAPTCHA_NEEDED"
    ERROR = "ERROR"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RemoteCallOutcome:
    """
    Tagged outcome of a single raw method invocation.

    Built per call by `classify()`; the CAPTCHA retry loop branches on
    `captcha` instead of catching exceptions.

    Attributes:
        status: The outcome tag.
        raw_json: Raw response text as returned by the transport.
        captcha: The challenge, when status is CAPTCHA_NEEDED.
        error: The typed error, when status is ERROR.
    """
    status: CallStatus
    raw_json: str
    captcha: CaptchaChallenge | None = None
    error: VkApiError | None = None

    def is_success(self) -> bool:
        return self.status == CallStatus.SUCCESS

    def raise_for_error(self) -> None:
        """Raise the typed exception for a non-successful outcome."""
        if self.status == CallStatus.CAPTCHA_NEEDED:
            assert self.captcha is not None, "🌀 Sanity check | CAPTCHA outcome without challenge."
            raise self.captcha.to_error()
        if self.status == CallStatus.ERROR:
            assert self.error is not None, "🌀 Sanity check | ERROR outcome without error."
            raise self.error

    @classmethod
    def classify(cls, raw_json: str) -> "RemoteCallOutcome":
        """
        Classify a raw VK API response.

        A well-formed ``{"error": {...}}`` payload becomes an ERROR outcome with
        the typed exception, except code 14 which becomes CAPTCHA_NEEDED. Any
        other text is a SUCCESS; decoding it is left to the response handlers.

        Args:
            raw_json: Response body returned by the transport.

        Returns:
            The classified outcome.
        """
        try:
            data = json.loads(raw_json) if raw_json else None
        except ValueError:
            data = None

        if not isinstance(data, dict) or not isinstance(data.get("error"), dict):
            return cls(status=CallStatus.SUCCESS, raw_json=raw_json)

        error = error_from_payload(data["error"])
        if isinstance(error, CaptchaNeededError):
            return cls(
                status=CallStatus.CAPTCHA_NEEDED,
                raw_json=raw_json,
                captcha=CaptchaChallenge(sid=error.sid, img=error.img),
            )
        return cls(status=CallStatus.ERROR, raw_json=raw_json, error=error)


@dataclass
class Session:
    """
    Token state of a client instance.

    Mutated exclusively by TokenLifecycle; read by the dispatcher.

    Attributes:
        access_token: Current token, or None when not authorized.
        user_id: Owner of the token.
        expires_at: When the token expires, or None if it never does.
        language: Preferred ``lang`` for method calls.
    """
    access_token: str | None = field(default=None, repr=False)
    user_id: int | None = None
    expires_at: datetime | None = None
    language: Language | None = None

    @property
    def is_authorized(self) -> bool:
        return bool(self.access_token and self.access_token.strip())
