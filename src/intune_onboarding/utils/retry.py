"""
Bounded retry with a fixed delay and a terminal failure code.

Both retry points of the workflow (FileVault password attempts and management
profile convergence polling) go through ``converge``; ``poll_until`` is the
predicate + remediation flavour of it.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from tenacity import RetryError, Retrying, retry_if_result, stop_after_attempt, wait_fixed

from intune_onboarding.errors import ConvergenceError, ErrorCode

logger = logging.getLogger(__name__)


def converge(
    attempt: Callable[[int], bool],
    *,
    attempts: int,
    failure_code: ErrorCode,
    delay: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
) -> int:
    """
    Call ``attempt(n)`` until it returns True, at most ``attempts`` times.

    ``delay`` seconds are slept between attempts (never before the first one).
    Exceptions raised by ``attempt`` are not retried and propagate unchanged.

    Returns:
        The number of attempts it took to succeed.

    Raises:
        ConvergenceError: with ``failure_code`` once the attempts are exhausted.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    counter = {"n": 0}

    def _attempt() -> bool:
        counter["n"] += 1
        return bool(attempt(counter["n"]))

    def _before_sleep(retry_state) -> None:
        logger.info(
            f"{description}: attempt {retry_state.attempt_number}/{attempts} did not succeed, "
            f"retrying in {delay:g}s"
        )

    retryer = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay),
        retry=retry_if_result(lambda ok: not ok),
        sleep=sleep,
        before_sleep=_before_sleep,
    )

    try:
        retryer(_attempt)
    except RetryError:
        logger.error(f"{description}: giving up after {counter['n']} attempts")
        raise ConvergenceError(
            failure_code,
            f"{description} did not succeed after {counter['n']} attempts",
            attempts=counter["n"],
        )
    return counter["n"]


def poll_until(
    predicate: Callable[[], bool],
    remediate: Optional[Callable[[], object]] = None,
    *,
    attempts: int,
    failure_code: ErrorCode,
    delay: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "convergence check",
) -> int:
    """
    Check ``predicate`` right away, then after every ``delay`` re-apply
    ``remediate`` and check again, for at most ``attempts`` checks in total.
    """

    def _check(n: int) -> bool:
        if n > 1 and remediate is not None:
            remediate()
        return predicate()

    return converge(
        _check,
        attempts=attempts,
        failure_code=failure_code,
        delay=delay,
        sleep=sleep,
        description=description,
    )
