"""Unit tests for the cancellation token."""

import time

import pytest

from epub_export.core.epub.cancellation import CancellationToken
from epub_export.core.epub.exceptions import ExportCancelledError


class TestCancellationToken:
    """Test manual, deadline and callback cancellation."""

    def test_initial_state(self):
        """A fresh token is not cancelled and has no deadline."""
        token = CancellationToken()

        assert token.is_cancelled is False
        assert token.reason is None
        assert token.remaining() is None
        token.raise_if_cancelled()

    def test_manual_cancel(self):
        """cancel() records the first reason only."""
        token = CancellationToken()
        token.cancel("user abort")
        token.cancel("second reason")

        assert token.is_cancelled is True
        assert token.reason == "user abort"

    def test_raise_if_cancelled(self):
        """raise_if_cancelled reports the phase and reason."""
        token = CancellationToken()
        token.cancel("user abort")

        with pytest.raises(ExportCancelledError) as exc_info:
            token.raise_if_cancelled(phase='building')

        assert exc_info.value.phase == 'building'
        assert exc_info.value.reason == "user abort"
        assert "user abort" in str(exc_info.value)

    def test_deadline(self):
        """The token cancels itself once the deadline passes."""
        token = CancellationToken(timeout=0.01)
        assert 0 < token.remaining() <= 0.01

        time.sleep(0.02)

        assert token.is_cancelled is True
        assert token.reason == "deadline exceeded"
        assert token.remaining() == 0.0

    def test_interruption_callback(self):
        """An interruption callback returning True cancels the token."""
        flag = {'stop': False}
        token = CancellationToken(check_interruption_callback=lambda: flag['stop'])
        assert token.is_cancelled is False

        flag['stop'] = True

        assert token.is_cancelled is True
        assert token.reason == "interrupted"
