"""
Event listeners for VkApi token lifecycle events.

Listeners are read-only observers of a VkApi instance: they can react to
events, log, notify or refresh the token, but should not rely on being
called from any particular thread. `on_token_expires` runs on the expiry
timer thread.

Example:
    >>> class RefreshOnExpiry(VkApiEventListener):
    ...     def on_token_expires(self, api):
    ...         api.refresh()
    >>>
    >>> api = VkApi(listeners=[RefreshOnExpiry()])
"""

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, override

if TYPE_CHECKING:
    from vkapi._api import VkApi

logger = logging.getLogger(__name__)


class VkApiEventListener:
    """
    Base class for observing token lifecycle events.

    All methods have default empty implementations, so subclasses only need
    to override the methods they care about. Zero listeners is valid.
    """

    def on_authorized(self, api: "VkApi") -> None:
        """
        Called every time the client transitions into the authorized state.

        Args:
            api: The client that was (re)authorized.
        """
        pass

    def on_token_expires(self, api: "VkApi") -> None:
        """
        Called once when the validity window of the current token elapses.

        Args:
            api: The client whose token expired.
        """
        pass


class TokenExpiresCallbackListener(VkApiEventListener):
    """
    Adapter turning a plain callable into a token-expiry listener.

    Example:
        >>> api.add_listener(TokenExpiresCallbackListener(lambda api: api.refresh()))
    """

    def __init__(self, callback: Callable[["VkApi"], None]):
        assert callback is not None, "callback cannot be None."
        self.callback = callback

    @override
    def on_token_expires(self, api: "VkApi") -> None:
        self.callback(api)


def notify_listeners(
    listeners: list[VkApiEventListener],
    event: str,
    api: "VkApi",
) -> None:
    """
    Invoke `event` on every listener, isolating listener failures.

    A failing listener is logged and never prevents the remaining listeners
    from being notified.
    """
    for listener in listeners:
        try:
            getattr(listener, event)(api)
        except Exception as e:
            logger.error(
                f"VkApi | ❌ Listener '{type(listener).__name__}.{event}' failed: {e}",
                exc_info=logger.isEnabledFor(logging.DEBUG)
            )
