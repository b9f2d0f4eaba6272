"""Invoke a host command and wait until the host reports the expected state.

Many Hyper-V cmdlets return before the host has finished applying the
change. Operating on the resource during that window fails at random or
corrupts it, so mutating driver verbs pass a predicate that re-queries the
host and poll it until it holds.
"""

from __future__ import annotations

from typing import Any, Callable

from loguru import logger

from .errors import StabilizationTimeoutError
from .invoker import CmdletArgs, CommandInvoker
from .util import SYSTEM_CLOCK, Clock

log = logger

DEFAULT_TIMEOUT = 600.0
DEFAULT_POLL_INTERVAL = 1.0


def wait_for(
    predicate: Callable[[], bool],
    *,
    timeout: float | None = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    operation: str,
    resource: str | None = None,
    clock: Clock | None = None,
) -> int:
    """Poll ``predicate`` until it returns True.

    The predicate is checked immediately and then every ``poll_interval``
    seconds. The final sleep is clipped to the deadline, so a timeout is
    raised no earlier than ``timeout`` and no later than
    ``timeout + poll_interval``. ``timeout=None`` waits forever.

    Returns:
        int: the number of predicate evaluations.

    Raises:
        StabilizationTimeoutError: if the deadline passes first.
    """
    if poll_interval <= 0:
        raise ValueError('poll_interval must be positive')
    clock = clock or SYSTEM_CLOCK
    start = clock.monotonic()
    deadline = None if timeout is None else start + timeout
    attempts = 0
    while True:
        attempts += 1
        if predicate():
            if attempts > 1:
                log.debug(
                    '{} on {} stabilized after {} polls ({:.1f}s)',
                    operation,
                    resource,
                    attempts,
                    clock.monotonic() - start,
                )
            return attempts
        now = clock.monotonic()
        if deadline is not None and now >= deadline:
            log.error(
                'Timed out waiting for {} on {} after {}s',
                operation,
                resource,
                timeout,
            )
            raise StabilizationTimeoutError(operation, resource, timeout)
        delay = poll_interval
        if deadline is not None:
            delay = min(delay, deadline - now)
        clock.sleep(delay)


def invoke_and_stabilize(
    invoker: CommandInvoker,
    operation: str,
    args: CmdletArgs | None = None,
    predicate: Callable[[], bool] | None = None,
    *,
    timeout: float | None = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    resource: str | None = None,
    clock: Clock | None = None,
) -> list[Any]:
    records = invoker.invoke(operation, args, resource=resource)
    if predicate is not None:
        wait_for(
            predicate,
            timeout=timeout,
            poll_interval=poll_interval,
            operation=operation,
            resource=resource,
            clock=clock,
        )
    return records
