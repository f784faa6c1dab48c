"""
Result type for explicit error handling.

Asset lookups and payload decoding return Ok/Err values so that one bad
reference degrades to a warning instead of aborting the resolve pass.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union, Callable

T = TypeVar('T')  # Success type
E = TypeVar('E')  # Error type
R = TypeVar('R')  # Return type for map


@dataclass
class Ok(Generic[T]):
    """Successful result.

    Attributes:
        value: The successful value
    """
    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value (safe for Ok)."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, func: Callable[[T], R]) -> 'Union[Ok[R], Err]':
        """Map function over Ok value."""
        return Ok(func(self.value))


@dataclass
class Err(Generic[E]):
    """Error result.

    Attributes:
        error: The error value
    """
    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> None:
        """Raises ValueError (unsafe for Err)."""
        raise ValueError(f"Called unwrap on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, func: Callable) -> 'Err[E]':
        """No-op for Err."""
        return self


# Type alias for Result
Result = Union[Ok[T], Err[E]]


# === Convenience Functions ===

def wrap_exception(func: Callable[..., T]) -> Callable[..., Union[Ok[T], Err[Exception]]]:
    """Decorator to wrap function exceptions in Result.

    Example:
        @wrap_exception
        def decode(payload: str) -> bytes:
            return base64.b64decode(payload, validate=True)

        result = decode("iVBORw0KGgo=")
        if result.is_ok():
            data = result.unwrap()
    """
    def wrapper(*args, **kwargs) -> Union[Ok[T], Err[Exception]]:
        try:
            return Ok(func(*args, **kwargs))
        except Exception as e:
            return Err(e)
    return wrapper


def wrap_async_exception(
    func: Callable[..., T]
) -> Callable[..., Union[Ok[T], Err[Exception]]]:
    """Decorator for async functions.

    Cancellation (asyncio.CancelledError) is not an Exception subclass and
    still propagates.

    Example:
        @wrap_async_exception
        async def lookup(cache, key):
            return await cache.get_blob(key)

        result = await lookup(cache, key)
        blob = result.unwrap_or(None)
    """
    async def wrapper(*args, **kwargs) -> Union[Ok[T], Err[Exception]]:
        try:
            return Ok(await func(*args, **kwargs))
        except Exception as e:
            return Err(e)
    return wrapper
