"""Policies that work around known unsafe behaviours of the host."""

from __future__ import annotations

import ipaddress
import threading
from typing import Callable, Iterable

from loguru import logger

from .errors import ResourceConflictError
from .models import (
    VirtualMachineState,
    VirtualNat,
    VirtualSwitch,
    VirtualSwitchType,
)
from .util import SYSTEM_CLOCK, Clock, same_name

log = logger

DVD_COOLDOWN = 5.0
SHUTDOWN_RETRY_LIMIT = 120.0


class DvdCooldown:
    """Enforce a minimum delay between inserting and ejecting DVD media.

    Ejecting media too soon after inserting it can leave the VM unable to
    start. The insertion times live only in memory and are keyed by machine
    name, case-insensitively.
    """

    def __init__(self, cooldown: float = DVD_COOLDOWN, *, clock: Clock | None = None):
        self.cooldown = cooldown
        self.clock = clock or SYSTEM_CLOCK
        self._lock = threading.Lock()
        self._inserted: dict[str, float] = {}

    def record_insert(self, machine_name: str) -> None:
        with self._lock:
            self._inserted[machine_name.casefold()] = self.clock.monotonic()

    def remaining(self, machine_name: str) -> float:
        with self._lock:
            inserted = self._inserted.get(machine_name.casefold())
        if inserted is None:
            return 0.0
        return max(0.0, self.cooldown - (self.clock.monotonic() - inserted))

    def wait_before_eject(self, machine_name: str) -> float:
        delay = self.remaining(machine_name)
        if delay > 0:
            log.warning(
                'Delaying DVD eject on {} for {:.1f}s after a recent insert',
                machine_name,
                delay,
            )
            self.clock.sleep(delay)
        return delay

    def forget(self, machine_name: str) -> None:
        with self._lock:
            self._inserted.pop(machine_name.casefold(), None)


class GracefulStopPolicy:
    """Keep asking the guest to shut down until it does or time runs out.

    The guest may ignore a shutdown request (for example while it is still
    booting), so the request is re-sent every poll. Giving up is not an
    error: the last observed state is returned and the caller decides.
    """

    def __init__(
        self,
        retry_limit: float = SHUTDOWN_RETRY_LIMIT,
        poll_interval: float = 1.0,
        *,
        clock: Clock | None = None,
    ):
        self.retry_limit = retry_limit
        self.poll_interval = poll_interval
        self.clock = clock or SYSTEM_CLOCK

    def run(
        self,
        request_stop: Callable[[], object],
        observe_state: Callable[[], VirtualMachineState],
        *,
        machine_name: str | None = None,
    ) -> VirtualMachineState:
        deadline = self.clock.monotonic() + self.retry_limit
        attempts = 0
        while True:
            attempts += 1
            request_stop()
            self.clock.sleep(self.poll_interval)
            state = observe_state()
            if state is VirtualMachineState.OFF:
                log.debug(
                    'Graceful stop of {} honored after {} request(s)',
                    machine_name,
                    attempts,
                )
                return state
            if self.clock.monotonic() >= deadline:
                log.warning(
                    'Graceful stop of {} not honored after {} request(s); last state={}',
                    machine_name,
                    attempts,
                    state.value,
                )
                return state


def check_switch_creation(
    existing: Iterable[VirtualSwitch],
    name: str,
    switch_type: VirtualSwitchType,
) -> VirtualSwitch | None:
    """Return the switch that already satisfies the request, if any."""
    for switch in existing:
        if not same_name(switch.name, name):
            continue
        if switch.type is not switch_type:
            log.warning(
                'Switch {} already exists with type {} (requested {}); leaving it as is',
                switch.name,
                switch.type.value,
                switch_type.value,
            )
        return switch
    return None


def check_nat_creation(
    existing: Iterable[VirtualNat],
    name: str,
    subnet: ipaddress.IPv4Network,
) -> VirtualNat | None:
    """Return the NAT that already satisfies the request, if any.

    Raises:
        ResourceConflictError: if ``subnet`` is bound to a NAT with another name.
    """
    existing = list(existing)
    for nat in existing:
        if same_name(nat.name, name):
            if nat.subnet != subnet:
                log.warning(
                    'NAT {} already exists on {} (requested {}); leaving it as is',
                    nat.name,
                    nat.subnet,
                    subnet,
                )
            return nat
    for nat in existing:
        if nat.subnet == subnet:
            raise ResourceConflictError(
                f'Cannot create NAT [{name}] because NAT [{nat.name}] '
                f'already uses subnet [{subnet}].'
            )
    return None
