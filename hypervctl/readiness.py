"""Precondition check run before most per-VM operations."""

from __future__ import annotations

from typing import Callable, Iterable

from loguru import logger

from .errors import (
    CapabilityMissingError,
    ResourceConflictError,
    ResourceNotFoundError,
)
from .models import VirtualMachine, VirtualMachineState
from .stabilize import wait_for
from .util import SYSTEM_CLOCK, Clock, same_name

log = logger

SHUTDOWN_SERVICE = 'Shutdown'


class ReadinessGate:
    """Block until a VM has finished its current transition.

    Waiting is unbounded unless ``timeout`` is given: a host transition is
    expected to complete eventually, and callers needing a hard bound wrap
    the call themselves or configure ``ready_timeout``.
    """

    def __init__(
        self,
        list_machines: Callable[[], Iterable[VirtualMachine]],
        list_integration_services: Callable[[str], Iterable[tuple[str, bool]]],
        *,
        poll_interval: float = 1.0,
        timeout: float | None = None,
        clock: Clock | None = None,
    ):
        self.list_machines = list_machines
        self.list_integration_services = list_integration_services
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.clock = clock or SYSTEM_CLOCK

    def find(self, machine_name: str) -> VirtualMachine:
        for vm in self.list_machines():
            if same_name(vm.name, machine_name):
                return vm
        raise ResourceNotFoundError('virtual machine', machine_name)

    def wait_ready(
        self, machine_name: str, *, shutdown_required: bool = False
    ) -> VirtualMachine:
        latest: list[VirtualMachine] = []

        def _ready() -> bool:
            vm = self.find(machine_name)
            latest[:] = [vm]
            if vm.is_transitioning:
                log.debug(
                    'Waiting for VM {} to finish transition (state={}, ready={})',
                    vm.name,
                    vm.state.value,
                    vm.ready,
                )
                return False
            return True

        wait_for(
            _ready,
            timeout=self.timeout,
            poll_interval=self.poll_interval,
            operation='readiness',
            resource=machine_name,
            clock=self.clock,
        )
        vm = latest[0]
        if vm.state is VirtualMachineState.UNKNOWN:
            raise ResourceConflictError(
                f'Virtual machine [{vm.name}] is in an unrecognized state.'
            )
        if shutdown_required:
            self.require_capability(vm.name, SHUTDOWN_SERVICE)
        return vm

    def require_capability(self, machine_name: str, capability: str) -> None:
        # Fail fast: waiting would never make a disabled service appear.
        for name, enabled in self.list_integration_services(machine_name):
            if same_name(name, capability) and enabled:
                return
        raise CapabilityMissingError(machine_name, capability)
