"""
HTTP transport abstraction for the vkapi SDK.

The dispatcher never talks HTTP directly: it hands method URLs and parameter
maps to a Transport and gets raw response text back. The credential
handshake and out-of-band validation are transport concerns too.

Available implementations:
    - RequestsTransport: `requests.Session` based transport (default).

Example:
    >>> from vkapi._transport import RequestsTransport
    >>> transport = RequestsTransport()
    >>> text = transport.get_json(
    ...     "https://api.vk.com/method/users.get",
    ...     {"user_ids": "1", "v": "5.69"},
    ... )
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, override
from urllib.parse import parse_qs, urlparse

import requests

from vkapi._models import ApiAuthParams, AuthorizationResult, CaptchaChallenge

logger = logging.getLogger(__name__)


def encode_params(params: Mapping[str, Any]) -> dict[str, str]:
    """
    Convert a parameter map into the form values accepted by the VK API.

    None values are dropped, booleans become "1"/"0", and sequences are
    joined with commas.
    """
    encoded: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "1" if value else "0"
        elif isinstance(value, (list, tuple, set, frozenset)):
            encoded[key] = ",".join(str(v) for v in value)
        else:
            encoded[key] = str(value)
    return encoded


def mask_params(params: Mapping[str, Any]) -> str:
    """Render parameters for logging with secrets masked."""
    secret_keys = {"access_token", "password", "client_secret", "captcha_key", "code"}
    return ",".join(
        f"{k}={'***' if k in secret_keys else v}" for k, v in params.items()
    )


# =============================================================================
# Abstract Base Class
# =============================================================================


class Transport(ABC):
    """
    Abstract base class for VK transports.

    Implementations must be thread-safe: a VkApi instance may call them from
    several threads at once.

    Example:
        >>> class FakeTransport(Transport):
        ...     def get_json(self, url, params, timeout=30):
        ...         return '{"response": 1}'
        ...     def authorize(self, params):
        ...         return AuthorizationResult(access_token="token", user_id=1, expires_in=0)
        ...     def validate(self, url, phone_number):
        ...         return AuthorizationResult.failed("not supported")
    """

    @abstractmethod
    def get_json(self, url: str, params: Mapping[str, Any], timeout: int = 30) -> str:
        """
        Send a method call and return the raw response text.

        Raises:
            requests.RequestException: If the HTTP request fails.
        """
        pass

    @abstractmethod
    def authorize(self, params: ApiAuthParams) -> AuthorizationResult:
        """
        Perform the credential handshake.

        A CAPTCHA demand is reported through `AuthorizationResult.captcha`,
        a rejection through `AuthorizationResult.error`.
        """
        pass

    @abstractmethod
    def validate(self, url: str, phone_number: str | None) -> AuthorizationResult:
        """Complete an out-of-band validation flow and return the granted token."""
        pass

    def set_proxy(
        self,
        host: str,
        port: int | None = None,
        login: str | None = None,
        password: str | None = None,
    ) -> None:
        """Route subsequent requests through a forward proxy."""
        raise NotImplementedError(f"{type(self).__name__} does not support proxies.")


# =============================================================================
# requests Implementation
# =============================================================================


class RequestsTransport(Transport):
    """
    Transport using a `requests.Session`.

    Method calls are sent as form-encoded POST requests. Credential
    authorization uses the OAuth direct-authorization grant
    (``grant_type=password``), which needs an application allowed to use it.

    Args:
        oauth_url: Token endpoint. If None, uses VKAPI.config.auth.oauth_url.
        client_id: Default application ID, when ApiAuthParams has none.
        client_secret: Default application secret.
        session: Optional pre-configured session.
    """

    def __init__(
        self,
        oauth_url: str | None = None,
        client_id: int | None = None,
        client_secret: str | None = None,
        session: requests.Session | None = None,
    ):
        from vkapi._config import VKAPI

        cfg = VKAPI.config.auth
        self.oauth_url = oauth_url or cfg.oauth_url
        self.client_id = client_id if client_id is not None else cfg.client_id
        self.client_secret = client_secret or cfg.client_secret
        self.default_scope = cfg.scope
        self.session = session or requests.Session()

        assert self.oauth_url, "oauth_url cannot be empty."

    @override
    def set_proxy(
        self,
        host: str,
        port: int | None = None,
        login: str | None = None,
        password: str | None = None,
    ) -> None:
        assert host, "Proxy host cannot be empty."
        credentials = f"{login}:{password}@" if login else ""
        address = f"{host}:{port}" if port else host
        proxy_url = f"http://{credentials}{address}"
        self.session.proxies.update({"http": proxy_url, "https": proxy_url})
        logger.debug(f"RequestsTransport | Proxy configured: {address}")

    @override
    def get_json(self, url: str, params: Mapping[str, Any], timeout: int = 30) -> str:
        assert url, "URL cannot be empty."
        assert timeout is not None, "Timeout cannot be None."
        assert timeout > 0, "Timeout must be greater than 0."

        response = self.session.post(url, data=encode_params(params), timeout=timeout)
        response.raise_for_status()
        return response.text

    @override
    def authorize(self, params: ApiAuthParams) -> AuthorizationResult:
        data = self._build_auth_form(params)
        payload = self._request_token(data)

        if payload.get("error") == "need_validation" and payload.get("validation_type") in ("2fa_sms", "2fa_app"):
            if params.two_factor_authorization is None:
                return AuthorizationResult.failed(
                    "Two-factor code required but no provider was given",
                    validation_url=payload.get("redirect_uri"),
                )
            data["code"] = params.two_factor_authorization()
            payload = self._request_token(data)

        return self._to_result(payload)

    @override
    def validate(self, url: str, phone_number: str | None) -> AuthorizationResult:
        assert url, "Validation URL cannot be empty."

        query = {"phone": phone_number} if phone_number else None
        response = self.session.get(url, params=query, allow_redirects=True, timeout=30)
        response.raise_for_status()

        # The token is delivered in the fragment of the final redirect
        for candidate in [response.url, *(r.headers.get("Location", "") for r in response.history)]:
            fragment = parse_qs(urlparse(candidate).fragment)
            if "access_token" in fragment:
                return AuthorizationResult(
                    access_token=fragment["access_token"][0],
                    user_id=int(fragment["user_id"][0]) if "user_id" in fragment else None,
                    expires_in=int(fragment.get("expires_in", ["0"])[0]),
                )
        return AuthorizationResult.failed("Validation did not grant an access token", validation_url=url)

    def _build_auth_form(self, params: ApiAuthParams) -> dict[str, Any]:
        scope = params.scope if params.scope is not None else self.default_scope
        data: dict[str, Any] = {
            "grant_type": "password",
            "client_id": params.application_id if params.application_id is not None else self.client_id,
            "client_secret": params.client_secret or self.client_secret,
            "username": params.login,
            "password": params.password,
            "scope": scope,
            "2fa_supported": 1,
            "v": self._api_version(),
        }
        if params.captcha_sid is not None and params.captcha_key:
            data["captcha_sid"] = params.captcha_sid
            data["captcha_key"] = params.captcha_key
        return data

    @staticmethod
    def _api_version() -> str:
        from vkapi._config import VKAPI
        return VKAPI.config.api.version

    def _request_token(self, data: dict[str, Any]) -> dict[str, Any]:
        logger.debug(f"RequestsTransport | Requesting token: {mask_params(data)}")
        response = self.session.post(self.oauth_url, data=encode_params(data), timeout=30)
        # Handshake errors come back as 401 with a JSON body
        try:
            payload = response.json()
        except ValueError:
            response.raise_for_status()
            raise
        if not isinstance(payload, dict):
            response.raise_for_status()
            return {"error": "invalid_response"}
        return payload

    @staticmethod
    def _to_result(payload: dict[str, Any]) -> AuthorizationResult:
        error = payload.get("error")
        if error == "need_captcha":
            return AuthorizationResult.captcha_needed(
                CaptchaChallenge(sid=int(payload.get("captcha_sid", 0)), img=payload.get("captcha_img"))
            )
        if error:
            return AuthorizationResult.failed(
                str(payload.get("error_description") or error),
                validation_url=payload.get("redirect_uri"),
            )
        return AuthorizationResult(
            access_token=payload.get("access_token"),
            user_id=int(payload["user_id"]) if payload.get("user_id") is not None else None,
            expires_in=int(payload.get("expires_in") or 0),
        )
