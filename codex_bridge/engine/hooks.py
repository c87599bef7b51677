"""Host application callbacks.

The engine never renders anything itself. It reports guidance texts,
classified errors and retry progress through these optional hooks; a
failing hook is logged and ignored.
"""
from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Union

from .models import ClassifiedError

logger = logging.getLogger(__name__)

# Each hook may be a plain function or a coroutine function.
GuidanceCallback = Callable[[str], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[ClassifiedError], Union[None, Awaitable[None]]]
ProgressCallback = Callable[[str], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class HostHooks:
    """UI hooks supplied by the host; every field is optional."""
    show_guidance: GuidanceCallback | None = None
    show_error: ErrorCallback | None = None
    show_progress: ProgressCallback | None = None


async def fire_hook(callback: Callable[..., Any] | None, *args: Any) -> None:
    """Invoke a hook if set, awaiting it when it returns an awaitable."""
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        # A broken UI callback must not break the engine.
        logger.debug("Host hook %r raised", callback, exc_info=True)
