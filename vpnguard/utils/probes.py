"""Invocation helper for injected probes (plain or async callables)."""

import asyncio
import inspect
from typing import Any, Callable, Optional


class ProbeTimeoutError(TimeoutError):
    """A probe did not answer within its timeout."""

    def __init__(self, probe_name: str, timeout: float):
        super().__init__(f"probe {probe_name} timed out after {timeout}s")
        self.probe_name = probe_name
        self.timeout = timeout


def probe_name(probe: Callable) -> str:
    return getattr(probe, "__name__", None) or type(probe).__name__


async def call_probe(probe: Callable[..., Any], *args, timeout: Optional[float] = None) -> Any:
    """Call ``probe`` and await its result if it returned an awaitable.

    A positive ``timeout`` bounds the awaited part; a hung probe then raises
    ``ProbeTimeoutError`` instead of stalling the caller's cycle.
    """
    result = probe(*args)
    if not inspect.isawaitable(result):
        return result
    if not timeout or timeout <= 0:
        return await result
    try:
        return await asyncio.wait_for(result, timeout=timeout)
    except asyncio.TimeoutError:
        raise ProbeTimeoutError(probe_name(probe), timeout) from None
