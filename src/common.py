"""Common utilities and types for stack orchestration."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Result returned by a single resource action."""
    success: bool
    message: str = ''
    duration: float = 0.0
    attempts: int = 1
    outputs: dict = field(default_factory=dict)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number `attempt` (1-based): base * 2^(attempt-1), capped."""
    return min(max_delay, base_delay * (2 ** (attempt - 1)))


def retry_call(
    fn: Callable[[], Any],
    attempts: int,
    base_delay: float,
    max_delay: float,
    is_transient: Callable[[Exception], bool],
    wait: Optional[Callable[[float], Any]] = None,
    description: str = 'operation',
) -> tuple[Any, int]:
    """Call fn, retrying transient failures with exponential backoff.

    Args:
        fn: Zero-argument callable to invoke
        attempts: Maximum number of calls (>= 1)
        base_delay: Delay after the first failure, in seconds
        max_delay: Upper bound for any single delay
        is_transient: Classifier; non-transient errors are raised immediately
        wait: Sleep function, called with the delay. Returning True aborts
            the retry loop (used with threading.Event.wait for cancellation).
        description: Label used in log messages

    Returns:
        Tuple of (fn result, number of attempts used)

    Raises:
        The last exception raised by fn when it is terminal, when attempts
        are exhausted, or when wait signals abort.
    """
    wait = wait or time.sleep
    attempt = 1
    while True:
        try:
            return fn(), attempt
        except Exception as e:
            if not is_transient(e) or attempt >= attempts:
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(f"{description} failed (attempt {attempt}/{attempts}): {e}; retrying in {delay:.1f}s")
            if wait(delay):
                logger.debug(f"{description}: retry aborted")
                raise
            attempt += 1
