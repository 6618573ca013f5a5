"""Core utility functions shared across modules."""

from __future__ import annotations

import inspect
import json
from typing import Any, Awaitable, TypeVar

T = TypeVar("T")


async def resolve(value: Awaitable[T] | T) -> T:
    """Await ``value`` when it is awaitable, otherwise return it unchanged.

    Transports differ in whether ``publish`` is a coroutine (boto3 wrappers)
    or a plain call (paho, the in-process bus).
    """
    if inspect.isawaitable(value):
        return await value
    return value


def describe(response: Any) -> str:
    """Serialise a store acknowledgement into a compact JSON string."""
    if response is None:
        return ""
    return json.dumps(response, default=str, sort_keys=True, separators=(",", ":"))
