"""
VK API client.

VkApi is the entry point of the SDK. It turns "call method X with parameters
Y" into an authorized, rate-limited, CAPTCHA-resilient HTTP round trip, and
owns the token lifecycle of one user session.

Example:
    >>> from vkapi import VkApi, ApiAuthParams
    >>> api = VkApi()
    >>> api.authorize(ApiAuthParams(access_token="...", user_id=1))
    >>> response = api.call("users.get", {"user_ids": "1"})
    >>> print(response[0]["first_name"])
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, TypeVar

from vkapi._captcha import CaptchaRetryLoop, CaptchaSolver
from vkapi._errors import AccessTokenInvalidError, ResponseDecodeError
from vkapi._event_listeners import VkApiEventListener, notify_listeners
from vkapi._handlers import (
    DEFAULT_RESPONSE_HANDLER,
    ResponseContext,
    ResponseHandler,
    TypedResponseHandler,
    VkResponse,
)
from vkapi._models import (
    ApiAuthParams,
    CaptchaAnswer,
    Language,
    RemoteCallOutcome,
    Session,
)
from vkapi._rate_limit import RateLimiter
from vkapi._timer import ExpiryTimer
from vkapi._token import TokenLifecycle, TokenState
from vkapi._transport import Transport, mask_params

if TYPE_CHECKING:
    from vkapi._config import VkApiConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class VkApiOptions:
    """
    Configuration options for the VkApi client.

    Fields set to None will use values from global config (VKAPI.config).

    Attributes:
        base_url: Base URL for method calls.
        version: API version sent as ``v``.
        request_timeout: HTTP request timeout in seconds.
        requests_per_second: Client-side rate limit (0 disables throttling).
        max_captcha_recognition_count: Solutions requested before giving up.
        language: Default ``lang`` parameter.

    Example:
        >>> options = VkApiOptions(requests_per_second=20, language="en")
        >>> api = VkApi(options=options)
    """
    base_url: str | None = None
    version: str | None = None
    request_timeout: int | None = None
    requests_per_second: float | None = None
    max_captcha_recognition_count: int | None = None
    language: str | None = None

    def with_defaults_from(self, cfg: "VkApiConfig") -> "VkApiOptions":
        """
        Returns a new VkApiOptions with None values filled from config.

        Args:
            cfg: The VkApiConfig to use for default values.
        """
        return VkApiOptions(
            base_url=self.base_url if self.base_url is not None else cfg.api.base_url,
            version=self.version if self.version is not None else cfg.api.version,
            request_timeout=self.request_timeout if self.request_timeout is not None else cfg.api.request_timeout,
            requests_per_second=self.requests_per_second if self.requests_per_second is not None else cfg.rate_limit.requests_per_second,
            max_captcha_recognition_count=(
                self.max_captcha_recognition_count
                if self.max_captcha_recognition_count is not None
                else cfg.captcha.max_recognition_count
            ),
            language=self.language if self.language is not None else cfg.api.language,
        )


class VkApi:
    """
    Client for the VK API.

    Features:
        - Credential, validation and external-token authorization.
        - Token expiry notification through VkApiEventListener.
        - Client-side rate limiting shared by all threads using the instance.
        - Transparent CAPTCHA handling when a CaptchaSolver is configured.
        - Untyped (`call`) and typed (`call_as`) decoding of responses.
        - Asynchronous variants that honour the same checks and limits.

    The client is thread-safe. Call `close()` (or use it as a context
    manager) to release the expiry timer.

    Args:
        transport: Transport for HTTP I/O (default: RequestsTransport).
        captcha_solver: Optional CAPTCHA solver. Without one, CAPTCHA demands
            surface immediately as CaptchaNeededError.
        options: Client options; None values fall back to VKAPI.config.
        listeners: Observers of token lifecycle events.
    """

    def __init__(
        self,
        transport: Transport | None = None,
        captcha_solver: CaptchaSolver | None = None,
        options: VkApiOptions | None = None,
        listeners: list[VkApiEventListener] | None = None,
    ):
        from vkapi._config import VKAPI
        resolved_options = (options or VkApiOptions()).with_defaults_from(VKAPI.config)

        if transport is None:
            from vkapi._transport import RequestsTransport
            transport = RequestsTransport()

        assert resolved_options.base_url, "VkApi base_url cannot be empty."
        assert resolved_options.version, "VkApi version cannot be empty."
        assert resolved_options.request_timeout is not None, \
            "🌀 Sanity check | request_timeout must be set after with_defaults_from()"
        assert resolved_options.requests_per_second is not None, \
            "🌀 Sanity check | requests_per_second must be set after with_defaults_from()"
        assert resolved_options.max_captcha_recognition_count is not None, \
            "🌀 Sanity check | max_captcha_recognition_count must be set after with_defaults_from()"

        self.options = resolved_options
        self.base_url = resolved_options.base_url.rstrip("/")
        self.transport = transport
        self.captcha_solver = captcha_solver
        self.max_captcha_recognition_count = resolved_options.max_captcha_recognition_count
        self.listeners: list[VkApiEventListener] = list(listeners or [])

        self._session = Session(
            language=Language(resolved_options.language) if resolved_options.language else None,
        )
        self._rate_limiter = RateLimiter(requests_per_second=resolved_options.requests_per_second)
        self._expiry_timer = ExpiryTimer(on_expire=self._on_token_expires)
        self._token = TokenLifecycle(
            session=self._session,
            transport=self.transport,
            timer=self._expiry_timer,
            rate_limiter=self._rate_limiter,
            captcha_loop=self._new_captcha_loop,
            on_authorized=lambda: notify_listeners(self.listeners, "on_authorized", self),
        )
        logger.debug("VkApi | Initialized")

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_authorized(self) -> bool:
        return self._session.is_authorized

    @property
    def token(self) -> str | None:
        return self._session.access_token

    @property
    def user_id(self) -> int | None:
        return self._session.user_id

    @property
    def token_state(self) -> TokenState:
        return self._token.state

    @property
    def token_expires_at(self) -> datetime | None:
        return self._session.expires_at

    @property
    def requests_per_second(self) -> float:
        return self._rate_limiter.requests_per_second

    @requests_per_second.setter
    def requests_per_second(self, value: float) -> None:
        self._rate_limiter.requests_per_second = value

    def set_rate_limit(self, requests_per_second: float) -> None:
        """
        Set the client-side rate limit.

        Raises:
            InvalidConfigurationError: If the value is negative.
        """
        self._rate_limiter.requests_per_second = requests_per_second

    @property
    def last_invoke_time(self) -> datetime | None:
        return self._rate_limiter.last_invoke_time

    @property
    def time_since_last_invoke(self) -> timedelta | None:
        return self._rate_limiter.time_since_last_invoke

    def set_language(self, language: Language | str | None) -> None:
        self._session.language = Language(language) if language is not None else None

    def get_language(self) -> Language | None:
        return self._session.language

    def add_listener(self, listener: VkApiEventListener) -> None:
        assert listener is not None, "listener cannot be None."
        self.listeners.append(listener)

    def remove_listener(self, listener: VkApiEventListener) -> None:
        self.listeners.remove(listener)

    # -------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------

    def authorize(self, params: ApiAuthParams) -> None:
        """
        Authorize with credentials, or with an externally supplied token.

        Raises:
            MissingCredentialError: If the supplied token is blank.
            AuthorizationError: If the login or password was rejected.
            NeedValidationError: If the server requires validation.
            CaptchaNeededError: If a challenge could not be resolved.
        """
        self._token.authorize(params)

    def refresh(self, two_factor_authorization: Callable[[], str] | None = None) -> None:
        """
        Obtain a new token by replaying the last credential authorization.

        Raises:
            NotRefreshableError: If the last authorization did not use login and password.
        """
        self._token.refresh(two_factor_authorization)

    def validate(self, url: str, phone_number: str | None = None) -> None:
        """
        Complete an out-of-band validation flow.

        Raises:
            NeedValidationError: If the validation did not grant a token.
        """
        self._token.validate(url, phone_number)

    async def authorize_async(self, params: ApiAuthParams) -> None:
        await asyncio.to_thread(self._token.authorize, params)

    async def refresh_async(self, two_factor_authorization: Callable[[], str] | None = None) -> None:
        await asyncio.to_thread(self._token.refresh, two_factor_authorization)

    async def validate_async(self, url: str, phone_number: str | None = None) -> None:
        await asyncio.to_thread(self._token.validate, url, phone_number)

    # -------------------------------------------------------------------------
    # Method calls
    # -------------------------------------------------------------------------

    def invoke(
        self,
        method: str,
        params: Mapping[str, Any] | None = None,
        skip_authorization: bool = False,
    ) -> str:
        """
        Call a VK API method and return the raw response text.

        Args:
            method: Method name, e.g. "users.get".
            params: Method parameters.
            skip_authorization: Allow the call without a token (open methods),
                bypassing the client-side rate limit.

        Returns:
            The raw JSON text.

        Raises:
            AccessTokenInvalidError: If not authorized and skip_authorization is False.
            CaptchaNeededError: If a challenge could not be resolved.
            VkApiMethodInvokeError: If the server returned an error.
            requests.RequestException: If the HTTP request fails.
        """
        prepared = self._prepare(method, params, skip_authorization)
        outcome = self._new_captcha_loop(method).run(
            lambda answer: self._invoke_once(method, prepared, answer, skip_authorization)
        )
        outcome.raise_for_error()
        return outcome.raw_json

    async def invoke_async(
        self,
        method: str,
        params: Mapping[str, Any] | None = None,
        skip_authorization: bool = False,
    ) -> str:
        """Asynchronous variant of `invoke()`."""
        prepared = self._prepare(method, params, skip_authorization)

        async def _attempt(answer: CaptchaAnswer | None) -> RemoteCallOutcome:
            return await self._invoke_once_async(method, prepared, answer, skip_authorization)

        outcome = await self._new_captcha_loop(method).run_async(_attempt)
        outcome.raise_for_error()
        return outcome.raw_json

    def call(
        self,
        method: str,
        params: Mapping[str, Any] | None = None,
        skip_authorization: bool = False,
    ) -> VkResponse:
        """
        Call a method and return an untyped view of its ``"response"`` field.

        Raises:
            ResponseDecodeError: If the response is not a JSON object.
            (plus everything `invoke()` raises)
        """
        raw_json = self.invoke(method, params, skip_authorization)
        value = self._decode(method, raw_json, DEFAULT_RESPONSE_HANDLER)
        return VkResponse(value, raw_json=raw_json)

    async def call_async(
        self,
        method: str,
        params: Mapping[str, Any] | None = None,
        skip_authorization: bool = False,
    ) -> VkResponse:
        """Asynchronous variant of `call()`."""
        raw_json = await self.invoke_async(method, params, skip_authorization)
        value = self._decode(method, raw_json, DEFAULT_RESPONSE_HANDLER)
        return VkResponse(value, raw_json=raw_json)

    def call_as(
        self,
        method: str,
        params: Mapping[str, Any] | None,
        response_type: type[T] | Any,
        skip_authorization: bool = False,
        handler: ResponseHandler | None = None,
    ) -> T:
        """
        Call a method and decode its ``"response"`` field into `response_type`.

        Args:
            response_type: A dataclass, ``list[...]``, ``dict[str, ...]``, or primitive.
            handler: Custom handler replacing the typed decoding.

        Raises:
            ResponseDecodeError: If the payload does not match `response_type`.
            (plus everything `invoke()` raises)
        """
        raw_json = self.invoke(method, params, skip_authorization)
        result: T = self._decode(method, raw_json, handler or TypedResponseHandler(response_type))
        return result

    async def call_as_async(
        self,
        method: str,
        params: Mapping[str, Any] | None,
        response_type: type[T] | Any,
        skip_authorization: bool = False,
        handler: ResponseHandler | None = None,
    ) -> T:
        """Asynchronous variant of `call_as()`."""
        raw_json = await self.invoke_async(method, params, skip_authorization)
        result: T = self._decode(method, raw_json, handler or TypedResponseHandler(response_type))
        return result

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Release the expiry timer. Safe to call more than once."""
        self._token.close()

    def __enter__(self) -> "VkApi":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _new_captcha_loop(self, logger_prefix: str) -> CaptchaRetryLoop:
        return CaptchaRetryLoop(
            solver=self.captcha_solver,
            max_attempts=self.max_captcha_recognition_count,
            logger_prefix=logger_prefix,
        )

    def _prepare(
        self,
        method: str,
        params: Mapping[str, Any] | None,
        skip_authorization: bool,
    ) -> dict[str, Any]:
        assert method, "Method name cannot be empty."

        if not skip_authorization and not self.is_authorized:
            message = f"Method '{method}' cannot be called without authorization"
            logger.error(f"{method} | ❌ {message}")
            raise AccessTokenInvalidError(message)

        prepared = dict(params or {})
        prepared.setdefault("v", self.options.version)
        if "lang" not in prepared and self._session.language is not None:
            prepared["lang"] = str(self._session.language)

        logger.debug(f"{method} | Calling with parameters {mask_params(prepared)}")
        return prepared

    def _request_params(self, prepared: dict[str, Any], answer: CaptchaAnswer | None) -> dict[str, Any]:
        request_params = dict(prepared)
        if self._session.is_authorized and "access_token" not in request_params:
            request_params["access_token"] = self._session.access_token
        if answer is not None:
            request_params.update(answer.to_params())
        return request_params

    def _invoke_once(
        self,
        method: str,
        prepared: dict[str, Any],
        answer: CaptchaAnswer | None,
        skip_authorization: bool,
    ) -> RemoteCallOutcome:
        if not skip_authorization:
            self._rate_limiter.wait()
        else:
            self._rate_limiter.mark()

        raw_json = self.transport.get_json(
            f"{self.base_url}/{method}",
            self._request_params(prepared, answer),
            timeout=self.options.request_timeout or 30,
        )
        return self._classify(method, raw_json)

    async def _invoke_once_async(
        self,
        method: str,
        prepared: dict[str, Any],
        answer: CaptchaAnswer | None,
        skip_authorization: bool,
    ) -> RemoteCallOutcome:
        if not skip_authorization:
            await self._rate_limiter.wait_async()
        else:
            self._rate_limiter.mark()

        raw_json = await asyncio.to_thread(
            self.transport.get_json,
            f"{self.base_url}/{method}",
            self._request_params(prepared, answer),
            self.options.request_timeout or 30,
        )
        return self._classify(method, raw_json)

    @staticmethod
    def _classify(method: str, raw_json: str) -> RemoteCallOutcome:
        outcome = RemoteCallOutcome.classify(raw_json)
        if outcome.error is not None:
            logger.error(f"{method} | ❌ VK API error: {outcome.error}")
        else:
            logger.debug(f"{method} | Response received ({outcome.status})")
        return outcome

    @staticmethod
    def _decode(method: str, raw_json: str, handler: ResponseHandler) -> Any:
        try:
            context = ResponseContext(method=method, raw_json=raw_json, raw_result=raw_json)
            return handler.handle_response(context)
        except Exception as e:
            handler_name = type(handler).__name__
            raise ResponseDecodeError(
                f"{method} | Response handler '{handler_name}' failed: {e}",
                cause=e, handler=handler,
            ) from e

    def _on_token_expires(self) -> None:
        logger.info("VkApi | Access token expired")
        notify_listeners(self.listeners, "on_token_expires", self)
