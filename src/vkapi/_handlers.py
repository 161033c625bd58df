"""
Response handlers for VK API method calls.

This module contains the ResponseHandler abstract base class, ResponseContext
dataclass, and concrete implementations for decoding the top-level
``"response"`` field of a successful call.

Available Handlers:
    - JsonResponseHandler: Returns the ``"response"`` field as plain Python values (default).
    - TypedResponseHandler: Decodes the ``"response"`` field into a dataclass or typed shape.
    - ChainedResponseHandler: Chains multiple handlers in sequence.

Module Constants:
    - DEFAULT_RESPONSE_HANDLER: JsonResponseHandler instance (used by default).

Example:
    >>> @dataclass
    ... class User:
    ...     id: int
    ...     first_name: str
    >>> users = api.call_as("users.get", {"user_ids": "1"}, list[User])
    >>> users[0].first_name
    'Pavel'
"""

import dataclasses
import enum
import json
import logging
import types
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, replace
from typing import Any, Union, get_args, get_origin, get_type_hints, override

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResponseContext:
    """
    Context passed to response handlers during processing.

    Attributes:
        method: The invoked VK API method name.
        raw_json: The raw response text as returned by the transport.
        raw_result: The value being processed (starts as `raw_json`).
        handled: Flag indicating if a previous handler has already processed this result.
    """
    method: str
    raw_json: str
    raw_result: Any
    handled: bool = False

    def __post_init__(self) -> None:
        assert self.method, "Method name can not be empty."
        assert self.handled is not None, "Context's handled flag can not be None."

    def with_result(self, result: Any) -> "ResponseContext":
        """Returns a new context with the given result and handled=True."""
        return replace(self, raw_result=result, handled=True)


class ResponseHandler(ABC):
    """
    Abstract base class for response handlers.

    Example:
        >>> class CountHandler(ResponseHandler):
        ...     def handle_response(self, context: ResponseContext) -> Any:
        ...         return context.raw_result["count"]
    """

    @abstractmethod
    def handle_response(self, context: ResponseContext) -> Any:
        """
        Process the result and return the transformed value.

        Note:
            Any exception raised will be wrapped in ResponseDecodeError.
        """
        pass


class ChainedResponseHandler(ResponseHandler):
    """
    Handler that chains multiple handlers in sequence.

    Example:
        >>> handler = ChainedResponseHandler.of([JsonResponseHandler(), CountHandler()])
    """

    def __init__(self, chained_handlers: Sequence[ResponseHandler]):
        self.chained_handlers = chained_handlers

    @override
    def handle_response(self, context: ResponseContext) -> Any:
        """Executes each handler in sequence, passing results through the chain."""
        result = context.raw_result
        for next_handler in self.chained_handlers:
            result = next_handler.handle_response(context)
            context = context.with_result(result)
        return result

    @staticmethod
    def of(handlers: ResponseHandler | Sequence[ResponseHandler]) -> "ChainedResponseHandler":
        return ChainedResponseHandler(
            [handlers] if isinstance(handlers, ResponseHandler) else list(handlers)
        )


class JsonResponseHandler(ResponseHandler):
    """
    Handler that parses the raw JSON and returns its ``"response"`` field.

    Already-parsed results (from a previous handler) are accepted as well.
    A payload without a ``"response"`` field decodes to None.
    """

    @override
    def handle_response(self, context: ResponseContext) -> Any:
        """
        Returns the ``"response"`` field as plain Python values.

        Raises:
            json.JSONDecodeError: If the raw text is not valid JSON.
            TypeError: If the payload is not a JSON object.
        """
        result = context.raw_result
        if context.handled and not isinstance(result, str):
            return result

        try:
            data = json.loads(result)
        except json.JSONDecodeError:
            preview = str(result).strip()[:200]
            logger.warning(f"{context.method} | Response is not valid JSON. Preview: {preview}")
            raise

        if not isinstance(data, dict):
            raise TypeError(
                f"{context.method} | Expected a JSON object, got {type(data).__name__}"
            )
        return data.get("response")


class TypedResponseHandler(ResponseHandler):
    """
    Handler that decodes the ``"response"`` field into a caller-specified shape.

    Supported shapes: dataclasses (nested), ``list[T]``, ``tuple[T, ...]``,
    ``dict[str, T]``, ``T | None``, enums, and the JSON primitives. Unknown
    object keys are ignored; missing keys fall back to the dataclass field
    default or fail.

    Example:
        >>> handler = TypedResponseHandler(list[User])
    """

    def __init__(self, response_type: Any):
        assert response_type is not None, "response_type cannot be None."
        self.response_type = response_type

    @override
    def handle_response(self, context: ResponseContext) -> Any:
        value = context.raw_result
        if not context.handled:
            value = JsonResponseHandler().handle_response(context)
        return decode_value(value, self.response_type, path="response")


def decode_value(value: Any, target: Any, path: str = "$") -> Any:
    """
    Decode a JSON value into `target`.

    Raises:
        TypeError: If the value does not match the target shape.
        ValueError: If an enum value is not recognized.
    """
    if target is Any or target is object:
        return value

    origin = get_origin(target)

    if origin is Union or origin is types.UnionType:
        args = get_args(target)
        if value is None and type(None) in args:
            return None
        errors = []
        for arg in args:
            if arg is type(None):
                continue
            try:
                return decode_value(value, arg, path)
            except (TypeError, ValueError) as e:
                errors.append(str(e))
        raise TypeError(f"{path}: value {value!r} matches none of {target} ({'; '.join(errors)})")

    if origin in (list, set, frozenset) or (origin is tuple and get_args(target)[-1:] == (Ellipsis,)):
        _expect(value, list, path)
        item_type = get_args(target)[0] if get_args(target) else Any
        items = [decode_value(item, item_type, f"{path}[{i}]") for i, item in enumerate(value)]
        return origin(items)

    if origin is dict:
        _expect(value, dict, path)
        _, value_type = get_args(target) or (str, Any)
        return {k: decode_value(v, value_type, f"{path}.{k}") for k, v in value.items()}

    if dataclasses.is_dataclass(target) and isinstance(target, type):
        _expect(value, dict, path)
        hints = get_type_hints(target)
        kwargs: dict[str, Any] = {}
        for f in dataclasses.fields(target):
            if not f.init:
                continue
            if f.name not in value:
                if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                    raise TypeError(f"{path}: missing required field '{f.name}'")
                continue
            kwargs[f.name] = decode_value(value[f.name], hints.get(f.name, Any), f"{path}.{f.name}")
        return target(**kwargs)

    if isinstance(target, type) and issubclass(target, enum.Enum):
        return target(value)

    if target is bool:
        # VK encodes flags as 0/1
        if isinstance(value, bool) or value in (0, 1):
            return bool(value)
        raise TypeError(f"{path}: expected bool, got {value!r}")

    if target is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        raise TypeError(f"{path}: expected float, got {value!r}")

    if target in (int, str, list, dict):
        _expect(value, target, path)
        return value

    raise TypeError(f"{path}: unsupported target type {target!r}")


def _expect(value: Any, expected: type, path: str) -> None:
    if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
        raise TypeError(f"{path}: expected {expected.__name__}, got {type(value).__name__}")


class VkResponse:
    """
    Untyped view of the ``"response"`` field of a successful call.

    Behaves like a read-only mapping or sequence over the decoded value and
    compares equal to the plain Python value it wraps.

    Attributes:
        value: The decoded ``"response"`` value (dict, list, or primitive).
        raw_json: The full raw response text.

    Example:
        >>> response = api.call("users.get", {"user_ids": "1"})
        >>> response[0]["first_name"]
        'Pavel'
    """

    def __init__(self, value: Any, raw_json: str = ""):
        self.value = value
        self.raw_json = raw_json

    def __getitem__(self, key: Any) -> Any:
        return self.value[key]

    def __contains__(self, key: Any) -> bool:
        return self.value is not None and key in self.value

    def __iter__(self) -> Iterator[Any]:
        return iter(self.value if self.value is not None else ())

    def __len__(self) -> int:
        return len(self.value) if self.value is not None else 0

    def __bool__(self) -> bool:
        return bool(self.value)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, VkResponse):
            return bool(self.value == other.value)
        return bool(self.value == other)

    __hash__ = None  # type: ignore[assignment]

    def get(self, key: str, default: Any = None) -> Any:
        if isinstance(self.value, dict):
            return self.value.get(key, default)
        return default

    def __repr__(self) -> str:
        return f"VkResponse({self.value!r})"


# Pre-configured handler instance for the untyped view
DEFAULT_RESPONSE_HANDLER = JsonResponseHandler()
"""Default handler returning the ``"response"`` field as plain Python values."""
