"""Tests for the probe invocation helper."""

import asyncio

import pytest

from vpnguard.utils.probes import ProbeTimeoutError, call_probe, probe_name


class TestCallProbe:
    @pytest.mark.asyncio
    async def test_plain_callable(self):
        assert await call_probe(lambda: 42) == 42

    @pytest.mark.asyncio
    async def test_async_callable_with_args(self):
        async def add(a, b):
            return a + b

        assert await call_probe(add, 2, 3, timeout=1.0) == 5

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def hung():
            await asyncio.sleep(10)

        with pytest.raises(ProbeTimeoutError) as excinfo:
            await call_probe(hung, timeout=0.01)
        assert excinfo.value.probe_name == "hung"
        assert isinstance(excinfo.value, TimeoutError)

    @pytest.mark.asyncio
    async def test_zero_timeout_waits(self):
        async def quick():
            await asyncio.sleep(0)
            return "ok"

        assert await call_probe(quick, timeout=0) == "ok"

    @pytest.mark.asyncio
    async def test_exceptions_propagate(self):
        def broken():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await call_probe(broken)

    def test_probe_name_for_callable_object(self):
        class Probe:
            def __call__(self):
                return None

        assert probe_name(Probe()) == "Probe"
