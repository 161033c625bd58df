"""
Token lifecycle of a VkApi client.

TokenLifecycle owns the session token: it acquires it (credential
handshake, out-of-band validation, or an externally supplied token), keeps
the expiry timer armed for it, and replays the credential handshake on
refresh.

States:
    UNAUTHENTICATED -> AUTHENTICATING -> AUTHORIZED
    AUTHORIZED -> AUTHENTICATING -> AUTHORIZED (re-authorization / refresh)

A failed attempt never stores a partial token: the state goes back to
AUTHORIZED if a previous token is still held, otherwise UNAUTHENTICATED.
"""

import enum
import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from vkapi._captcha import CaptchaRetryLoop
from vkapi._errors import (
    AuthorizationError,
    MissingCredentialError,
    NeedValidationError,
    NotRefreshableError,
)
from vkapi._models import ApiAuthParams, AuthorizationResult, CaptchaAnswer, Session
from vkapi._rate_limit import RateLimiter
from vkapi._timer import ExpiryTimer
from vkapi._transport import Transport

logger = logging.getLogger(__name__)


class TokenState(enum.StrEnum):
    """
    State of the session token.

    Attributes:
        UNAUTHENTICATED: No token is held.
        AUTHENTICATING: An authorization attempt is in progress.
        AUTHORIZED: A token is held and calls may be issued.
    """
    UNAUTHENTICATED = "UNAUTHENTICATED"
    AUTHENTICATING = "AUTHENTICATING"
    AUTHORIZED = "AUTHORIZED"

    def __str__(self) -> str:
        return self.value


class TokenLifecycle:
    """
    Manages acquisition, expiry and refresh of the session token.

    The whole authorize/refresh/validate path runs under one re-entrant lock,
    so concurrent re-authorizations cannot interleave their token writes and
    timer re-arms.

    Args:
        session: Token state shared with the dispatcher.
        transport: Performs the handshake and validation requests.
        timer: Expiry timer re-armed on every successful authorization.
        rate_limiter: Stamped on every authorization attempt.
        captcha_loop: Factory for the CAPTCHA retry loop of a handshake.
        on_authorized: Called after every transition into AUTHORIZED.
    """

    # Seconds subtracted from the reported lifetime, to refresh slightly early
    TOKEN_EXPIRY_MARGIN = 10

    def __init__(
        self,
        session: Session,
        transport: Transport,
        timer: ExpiryTimer,
        rate_limiter: RateLimiter,
        captcha_loop: Callable[[str], CaptchaRetryLoop],
        on_authorized: Callable[[], None] | None = None,
    ):
        assert session is not None, "session cannot be None."
        assert transport is not None, "transport cannot be None."
        assert timer is not None, "timer cannot be None."
        assert rate_limiter is not None, "rate_limiter cannot be None."
        assert captcha_loop is not None, "captcha_loop factory cannot be None."

        self._session = session
        self._transport = transport
        self._timer = timer
        self._rate_limiter = rate_limiter
        self._captcha_loop = captcha_loop
        self._on_authorized = on_authorized

        self._state = TokenState.UNAUTHENTICATED
        self._credential_params: ApiAuthParams | None = None
        self._lock = threading.RLock()

    @property
    def state(self) -> TokenState:
        return self._state

    @property
    def is_refreshable(self) -> bool:
        """True if the last successful authorization used login and password."""
        return self._credential_params is not None

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def authorize(self, params: ApiAuthParams) -> None:
        """
        Authorize with credentials or with an externally supplied token.

        Args:
            params: The authorization request.

        Raises:
            MissingCredentialError: If the external token is blank, or neither
                a token nor login and password were supplied.
            AuthorizationError: If the handshake was rejected.
            NeedValidationError: If the server requires validation.
            CaptchaNeededError: If a challenge could not be resolved.
        """
        assert params is not None, "Authorization params cannot be None."

        with self._lock:
            if params.has_access_token():
                self._authorize_with_token(params)
                return

            if not params.has_credentials():
                logger.error("TokenLifecycle | Neither access_token nor login and password were given")
                raise MissingCredentialError(
                    "Either access_token or login and password must be provided."
                )

            if params.host:
                logger.debug("TokenLifecycle | Configuring proxy")
                self._transport.set_proxy(params.host, params.port, params.proxy_login, params.proxy_password)

            self._authorize_with_credentials(params)

    def refresh(self, two_factor_authorization: Callable[[], str] | None = None) -> None:
        """
        Replay the last credential authorization to obtain a new token.

        Args:
            two_factor_authorization: Provider of the 2FA code, used only when
                the last authorization did not store one.

        Raises:
            NotRefreshableError: If the last authorization did not use
                login and password.
        """
        with self._lock:
            params = self._credential_params
            if params is None:
                message = "Cannot refresh the access token: the last authorization did not use login and password"
                logger.error(f"TokenLifecycle | {message}")
                raise NotRefreshableError(message)

            params.two_factor_authorization = params.two_factor_authorization or two_factor_authorization
            logger.info("TokenLifecycle | Refreshing access token...")
            self._authorize_with_credentials(params)

    def validate(self, url: str, phone_number: str | None) -> None:
        """
        Complete an out-of-band validation and store the granted token.

        Raises:
            NeedValidationError: If the validation did not grant a token.
        """
        assert url, "Validation URL cannot be empty."

        with self._lock:
            self._timer.disarm()
            self._state = TokenState.AUTHENTICATING
            try:
                self._rate_limiter.mark()
                result = self._transport.validate(url, phone_number)
                if not result.is_authorized:
                    raise NeedValidationError("Could not pass validation automatically", redirect_uri=url)
            except Exception:
                self._restore_previous_state()
                raise

            logger.info("TokenLifecycle | ✅ Validation completed")
            self._apply(result)

    def close(self) -> None:
        self._timer.disarm()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _authorize_with_token(self, params: ApiAuthParams) -> None:
        token = params.access_token
        if token is None or not token.strip():
            logger.error("TokenLifecycle | Token authorization: the token is blank")
            raise MissingCredentialError("The externally supplied access token is blank.")

        logger.debug("TokenLifecycle | Authorizing with an externally supplied token")
        self._timer.disarm()
        self._rate_limiter.mark()
        self._set_token(token, params.user_id, params.token_expire_time)
        self._credential_params = None
        self._transition_to_authorized()

    def _authorize_with_credentials(self, params: ApiAuthParams) -> None:
        logger.debug(f"TokenLifecycle | Starting credential authorization for '{params.login}'")
        self._timer.disarm()
        self._state = TokenState.AUTHENTICATING
        try:
            loop = self._captcha_loop("auth")
            result = loop.run(
                lambda answer: self._handshake(params, answer),
                initial_answer=params.current_captcha_answer(),
            )
            self._raise_if_rejected(params, result)
        except Exception:
            self._restore_previous_state()
            raise
        finally:
            params.reset_captcha()

        logger.info(f"TokenLifecycle | ✅ Authorized as user {result.user_id}")
        self._credential_params = params
        self._apply(result)

    def _handshake(self, params: ApiAuthParams, answer: CaptchaAnswer | None) -> AuthorizationResult:
        params.apply_captcha(answer)
        self._rate_limiter.mark()
        return self._transport.authorize(params)

    @staticmethod
    def _raise_if_rejected(params: ApiAuthParams, result: AuthorizationResult) -> None:
        if result.is_authorized:
            return
        if result.validation_url:
            logger.error(f"TokenLifecycle | ❌ Validation required for '{params.login}'")
            raise NeedValidationError(
                result.error or "Validation required",
                redirect_uri=result.validation_url,
            )
        message = f"Invalid authorization with {params.login}: {result.error or 'rejected'}"
        logger.error(f"TokenLifecycle | ❌ {message}")
        raise AuthorizationError(message, login=params.login)

    def _apply(self, result: AuthorizationResult) -> None:
        assert result.access_token is not None, "🌀 Sanity check | Authorized result without token."
        lifetime = result.expires_in - self.TOKEN_EXPIRY_MARGIN if result.expires_in > 0 else 0
        self._set_token(result.access_token, result.user_id, lifetime)
        self._transition_to_authorized()

    def _set_token(self, token: str, user_id: int | None, lifetime: float) -> None:
        logger.debug("TokenLifecycle | Setting token properties")
        self._session.access_token = token
        self._session.user_id = user_id
        self._session.expires_at = datetime.now(UTC) + timedelta(seconds=lifetime) if lifetime > 0 else None
        self._timer.arm(lifetime)

    def _transition_to_authorized(self) -> None:
        self._state = TokenState.AUTHORIZED
        if self._on_authorized is not None:
            self._on_authorized()

    def _restore_previous_state(self) -> None:
        if not self._session.is_authorized:
            self._state = TokenState.UNAUTHENTICATED
            return

        self._state = TokenState.AUTHORIZED
        # Keep notifying for the token that is still held
        expires_at = self._session.expires_at
        if expires_at is not None:
            remaining = (expires_at - datetime.now(UTC)).total_seconds()
            self._timer.arm(max(remaining, 0.001))
