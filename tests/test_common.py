"""Tests for common module."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from common import ActionResult, backoff_delay, retry_call


def _transient(e):
    return isinstance(e, ConnectionError)


class TestActionResult:
    """Tests for ActionResult dataclass."""

    def test_defaults(self):
        result = ActionResult(success=True)
        assert result.message == ''
        assert result.attempts == 1
        assert result.outputs == {}


class TestBackoffDelay:
    """Tests for exponential backoff."""

    @pytest.mark.parametrize('attempt,expected', [(1, 0.5), (2, 1.0), (3, 2.0), (4, 4.0), (5, 5.0), (9, 5.0)])
    def test_doubles_and_caps(self, attempt, expected):
        assert backoff_delay(attempt, base_delay=0.5, max_delay=5.0) == expected


class TestRetryCall:
    """Tests for retry_call."""

    def test_first_try(self):
        wait = MagicMock()
        assert retry_call(lambda: 'ok', 3, 1.0, 10.0, _transient, wait=wait) == ('ok', 1)
        wait.assert_not_called()

    def test_transient_then_success(self):
        fn = MagicMock(side_effect=[ConnectionError('reset'), ConnectionError('reset'), 'ok'])
        wait = MagicMock(return_value=None)
        result, attempts = retry_call(fn, 5, 1.0, 10.0, _transient, wait=wait)
        assert (result, attempts) == ('ok', 3)
        assert [c.args[0] for c in wait.call_args_list] == [1.0, 2.0]

    def test_terminal_raised_immediately(self):
        fn = MagicMock(side_effect=ValueError('invalid'))
        with pytest.raises(ValueError):
            retry_call(fn, 5, 1.0, 10.0, _transient, wait=MagicMock())
        assert fn.call_count == 1

    def test_attempts_exhausted(self):
        fn = MagicMock(side_effect=ConnectionError('reset'))
        wait = MagicMock(return_value=None)
        with pytest.raises(ConnectionError):
            retry_call(fn, 3, 1.0, 10.0, _transient, wait=wait)
        assert fn.call_count == 3
        assert wait.call_count == 2

    def test_wait_true_aborts(self):
        """A wait function returning True (cancel event set) stops retrying."""
        fn = MagicMock(side_effect=ConnectionError('reset'))
        with pytest.raises(ConnectionError):
            retry_call(fn, 5, 1.0, 10.0, _transient, wait=MagicMock(return_value=True))
        assert fn.call_count == 1

    def test_single_attempt(self):
        fn = MagicMock(side_effect=ConnectionError('reset'))
        with pytest.raises(ConnectionError):
            retry_call(fn, 1, 1.0, 10.0, _transient, wait=MagicMock())
        assert fn.call_count == 1
