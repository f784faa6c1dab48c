"""
Cancellation token threaded through every asynchronous export operation.

A token is cancelled manually, by an optional deadline, or when an external
interruption callback reports True.
"""

import time
from typing import Callable, Optional

from .exceptions import ExportCancelledError


class CancellationToken:
    """Cooperative cancellation signal for one export run."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        check_interruption_callback: Optional[Callable[[], bool]] = None
    ):
        """Initialize token.

        Args:
            timeout: Seconds until the token cancels itself (None = no deadline)
            check_interruption_callback: Returns True when the caller wants
                the export interrupted
        """
        self._cancelled = False
        self._reason: Optional[str] = None
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._check_interruption = check_interruption_callback

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._cancelled:
            self._cancelled = True
            self._reason = reason

    @property
    def is_cancelled(self) -> bool:
        if self._cancelled:
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("deadline exceeded")
        elif self._check_interruption is not None and self._check_interruption():
            self.cancel("interrupted")
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self, phase: Optional[str] = None) -> None:
        """Raise ExportCancelledError when the token is cancelled.

        Args:
            phase: Pipeline phase reported in the exception
        """
        if self.is_cancelled:
            raise ExportCancelledError(
                f"Export cancelled ({self._reason})",
                phase=phase,
                reason=self._reason
            )
