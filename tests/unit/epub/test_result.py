"""Unit tests for Result type."""

import asyncio

import pytest

from epub_export.core.epub.result import Err, Ok, wrap_async_exception, wrap_exception


class TestOk:
    """Test Ok result type."""

    def test_ok_creation(self):
        """Create Ok result."""
        result = Ok(42)
        assert result.value == 42
        assert result.is_ok() is True
        assert result.is_err() is False

    def test_ok_unwrap(self):
        """Unwrap Ok value."""
        assert Ok("success").unwrap() == "success"

    def test_ok_unwrap_or(self):
        """unwrap_or should return value for Ok."""
        assert Ok(42).unwrap_or(0) == 42

    def test_ok_map(self):
        """Map function over Ok value."""
        mapped = Ok(5).map(lambda x: x * 2)

        assert mapped.is_ok()
        assert mapped.unwrap() == 10


class TestErr:
    """Test Err result type."""

    def test_err_creation(self):
        """Create Err result."""
        result = Err("boom")
        assert result.error == "boom"
        assert result.is_ok() is False
        assert result.is_err() is True

    def test_err_unwrap_raises(self):
        """Unwrapping Err raises ValueError."""
        with pytest.raises(ValueError, match="Called unwrap on Err"):
            Err("boom").unwrap()

    def test_err_unwrap_or(self):
        """unwrap_or should return the default for Err."""
        assert Err("boom").unwrap_or(None) is None

    def test_err_map_is_noop(self):
        """Mapping over Err returns the same Err."""
        result = Err("boom")
        assert result.map(lambda x: x * 2) is result


class TestWrappers:
    """Test exception-wrapping decorators."""

    def test_wrap_exception_ok(self):
        """Return values become Ok."""
        @wrap_exception
        def double(x):
            return x * 2

        assert double(4).unwrap() == 8

    def test_wrap_exception_err(self):
        """Exceptions become Err."""
        @wrap_exception
        def fail():
            raise KeyError("missing")

        result = fail()
        assert result.is_err()
        assert isinstance(result.error, KeyError)

    @pytest.mark.asyncio
    async def test_wrap_async_exception(self):
        """Async exceptions become Err."""
        @wrap_async_exception
        async def fail():
            raise RuntimeError("store unavailable")

        result = await fail()
        assert isinstance(result.error, RuntimeError)

    @pytest.mark.asyncio
    async def test_wrap_async_timeout(self):
        """Timeouts are captured like any other error."""
        async def slow():
            await asyncio.sleep(1)

        @wrap_async_exception
        async def lookup():
            return await asyncio.wait_for(slow(), timeout=0.01)

        result = await lookup()
        assert isinstance(result.error, asyncio.TimeoutError)

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        """CancelledError is not swallowed."""
        @wrap_async_exception
        async def wait_forever():
            await asyncio.sleep(10)

        task = asyncio.ensure_future(wait_forever())
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
