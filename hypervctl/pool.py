"""Bounded, thread-safe pool of reusable execution contexts."""

from __future__ import annotations

import contextlib
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from loguru import logger

from .errors import PoolClosedError, PoolExhaustedError
from .util import SYSTEM_CLOCK, Clock

log = logger


@dataclass
class _Entry:
    context: Any
    created_at: float


@dataclass(frozen=True)
class PoolStats:
    total: int
    idle: int
    in_use: int
    created: int
    recycled: int


class ContextPool:
    """Lend execution contexts to callers, one invocation at a time.

    Contexts are created lazily by ``factory`` (outside the lock, since
    creation is slow) up to ``max_contexts``. A context older than
    ``recycle_interval`` is closed instead of being handed out or put back,
    and a fresh one is created on demand. Idle contexts are also swept on
    every pool access and by a reaper thread started in :meth:`open`, so a
    quiet pool does not keep old processes around. Contexts exposing a false
    ``alive`` attribute are discarded on return.
    """

    def __init__(
        self,
        factory: Callable[[], Any],
        *,
        min_contexts: int = 1,
        max_contexts: int = 4,
        recycle_interval: float | None = 600.0,
        acquire_timeout: float | None = None,
        clock: Clock | None = None,
    ):
        if max_contexts < 1:
            raise ValueError('max_contexts must be at least 1')
        if not 0 <= min_contexts <= max_contexts:
            raise ValueError('min_contexts must be between 0 and max_contexts')
        self.factory = factory
        self.min_contexts = min_contexts
        self.max_contexts = max_contexts
        self.recycle_interval = recycle_interval
        self.acquire_timeout = acquire_timeout
        self.clock = clock or SYSTEM_CLOCK
        self._cond = threading.Condition()
        self._idle: deque[_Entry] = deque()
        self._total = 0
        self._in_use = 0
        self._created = 0
        self._recycled = 0
        self._closed = False
        self._stop = threading.Event()
        self._reaper: threading.Thread | None = None

    def open(self) -> None:
        """Eagerly create contexts until ``min_contexts`` exist.

        Also starts the background reaper that recycles idle contexts every
        ``recycle_interval`` seconds, whether or not anyone borrows.
        """
        self.sweep()
        self._fill()
        if self.recycle_interval is not None:
            with self._cond:
                start = self._reaper is None and not self._closed
                if start:
                    self._reaper = threading.Thread(
                        target=self._reap, name='hypervctl-pool-reaper', daemon=True
                    )
            if start:
                self._reaper.start()

    def _fill(self) -> None:
        while True:
            with self._cond:
                self._check_open()
                if self._total >= self.min_contexts:
                    return
                self._total += 1
            entry = self._create_reserved()
            with self._cond:
                if self._closed:
                    self._total -= 1
                    discard = entry
                else:
                    self._idle.append(entry)
                    self._cond.notify()
                    discard = None
            if discard is not None:
                self._close_entry(discard)
                return

    @contextlib.contextmanager
    def borrow(self, timeout: float | None = None) -> Iterator[Any]:
        entry = self._acquire(timeout)
        try:
            yield entry.context
        finally:
            self._release(entry)

    def _acquire(self, timeout: float | None) -> _Entry:
        if timeout is None:
            timeout = self.acquire_timeout
        deadline = None if timeout is None else time.monotonic() + timeout
        self.sweep()
        while True:
            stale: _Entry | None = None
            create = False
            with self._cond:
                while True:
                    self._check_open()
                    if self._idle:
                        entry = self._idle.popleft()
                        if self._expired(entry):
                            self._total -= 1
                            self._recycled += 1
                            stale = entry
                            break
                        self._in_use += 1
                        return entry
                    if self._total < self.max_contexts:
                        self._total += 1
                        create = True
                        break
                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        raise PoolExhaustedError(
                            f'No execution context became available within {timeout}s '
                            f'(max_contexts={self.max_contexts}).'
                        )
                    self._cond.wait(remaining)
            if stale is not None:
                log.debug('Recycling execution context older than {}s', self.recycle_interval)
                self._close_entry(stale)
                continue
            if create:
                entry = self._create_reserved()
                with self._cond:
                    if self._closed:
                        self._total -= 1
                        self._cond.notify_all()
                        closed = True
                    else:
                        self._in_use += 1
                        closed = False
                if closed:
                    self._close_entry(entry)
                    raise PoolClosedError('Execution context pool is closed.')
                return entry

    def _create_reserved(self) -> _Entry:
        # Caller already counted this context in _total.
        try:
            context = self.factory()
        except BaseException:
            with self._cond:
                self._total -= 1
                self._cond.notify()
            raise
        with self._cond:
            self._created += 1
        log.debug('Created execution context #{}', self._created)
        return _Entry(context, self.clock.monotonic())

    def _release(self, entry: _Entry) -> None:
        discard = False
        with self._cond:
            self._in_use -= 1
            if (
                self._closed
                or self._expired(entry)
                or not getattr(entry.context, 'alive', True)
            ):
                self._total -= 1
                if not self._closed and self._expired(entry):
                    self._recycled += 1
                discard = True
            else:
                self._idle.append(entry)
            self._cond.notify_all()
        if discard:
            self._close_entry(entry)

    def _expired(self, entry: _Entry) -> bool:
        if self.recycle_interval is None:
            return False
        return self.clock.monotonic() - entry.created_at >= self.recycle_interval

    def sweep(self) -> int:
        """Close idle contexts older than ``recycle_interval``.

        Returns:
            int: the number of contexts recycled.
        """
        with self._cond:
            stale = [entry for entry in self._idle if self._expired(entry)]
            if stale:
                self._idle = deque(
                    entry for entry in self._idle if not self._expired(entry)
                )
                self._total -= len(stale)
                self._recycled += len(stale)
                self._cond.notify_all()
        if stale:
            log.debug(
                'Recycling {} idle execution context(s) older than {}s',
                len(stale),
                self.recycle_interval,
            )
        for entry in stale:
            self._close_entry(entry)
        return len(stale)

    def _reap(self) -> None:
        while not self._stop.wait(self.recycle_interval):
            self.sweep()
            try:
                self._fill()
            except PoolClosedError:
                return
            except Exception as ex:
                log.warning('Cannot replenish execution contexts: {}', ex)

    def _check_open(self) -> None:
        if self._closed:
            raise PoolClosedError('Execution context pool is closed.')

    def _close_entry(self, entry: _Entry) -> None:
        close = getattr(entry.context, 'close', None)
        if close is None:
            return
        try:
            close()
        except Exception as ex:
            log.warning('Error closing execution context: {}', ex)

    def stats(self) -> PoolStats:
        self.sweep()
        with self._cond:
            return PoolStats(
                total=self._total,
                idle=len(self._idle),
                in_use=self._in_use,
                created=self._created,
                recycled=self._recycled,
            )

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self, timeout: float | None = None) -> None:
        """Refuse new borrows, wait for in-flight ones, then close everything."""
        with self._cond:
            self._closed = True
            self._stop.set()
            self._cond.notify_all()
            if not self._cond.wait_for(lambda: self._in_use == 0, timeout):
                log.warning(
                    'Closing pool with {} context(s) still borrowed', self._in_use
                )
            idle = list(self._idle)
            self._idle.clear()
            self._total -= len(idle)
        for entry in idle:
            self._close_entry(entry)

    def __enter__(self) -> 'ContextPool':
        return self

    def __exit__(self, *exc) -> None:
        self.close()
