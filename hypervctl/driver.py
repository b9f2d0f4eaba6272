"""The management-command driver: every verb callers use to manage the host.

Each verb follows the same shape: validate arguments, wait for the target
VM to be ready where the verb touches a VM, submit one host command through
the pooled invoker, and poll the host until the change is visible.
"""

from __future__ import annotations

import ipaddress
from typing import Any, Callable, Sequence

from loguru import logger

from . import snapshots
from .config import DriverConfig
from .errors import (
    DriverClosedError,
    ResourceConflictError,
    ResourceNotFoundError,
)
from .hazards import (
    DvdCooldown,
    GracefulStopPolicy,
    check_nat_creation,
    check_switch_creation,
)
from .invoker import (
    CLEAR,
    CimRequest,
    CmdletArgs,
    CommandInvoker,
    Projection,
    TypedValue,
)
from .models import (
    NetworkAdapter,
    VirtualDrive,
    VirtualIPAddress,
    VirtualMachine,
    VirtualMachineNetworkAdapter,
    VirtualMachineState,
    VirtualNat,
    VirtualSwitch,
    VirtualSwitchType,
)
from .pool import ContextPool
from .readiness import SHUTDOWN_SERVICE, ReadinessGate
from .session import PowerShellSession
from .stabilize import invoke_and_stabilize
from .util import MEBIBYTE, SYSTEM_CLOCK, Clock, same_name

log = logger

HYPERV = 'Hyper-V\\'
NETNAT = 'NetNat\\'
NETTCPIP = 'NetTCPIP\\'
NETADAPTER = 'NetAdapter\\'
CIM_NETWORK_NAMESPACE = 'root/StandardCimv2'
AF_INET = 2

_MACHINE_SELECT: tuple[Projection, ...] = (
    'Name',
    ('State', '[string]$_.State'),
    ('OperationalStatus', '[string]@($_.OperationalStatus)[0]'),
    'ProcessorCount',
    'MemoryStartup',
    ('UptimeSeconds', '$_.Uptime.TotalSeconds'),
    ('SwitchName', '@($_.NetworkAdapters)[0].SwitchName'),
    'Notes',
)
_DRIVE_SELECT: tuple[Projection, ...] = (
    'Path',
    ('VhdType', 'if ($_.Path) { [string](Hyper-V\\Get-VHD -Path $_.Path).VhdType }'),
    ('Size', 'if ($_.Path) { (Hyper-V\\Get-VHD -Path $_.Path).Size }'),
)
_SWITCH_SELECT: tuple[Projection, ...] = (
    'Name',
    ('SwitchType', '[string]$_.SwitchType'),
)
_NAT_SELECT: tuple[Projection, ...] = ('Name', 'InternalIPInterfaceAddressPrefix')
_IP_SELECT: tuple[Projection, ...] = (
    ('AddressFamily', '[string]$_.AddressFamily'),
    ('Type', '[string]$_.Type'),
    'IPAddress',
    ('PrefixLength', '[int]$_.PrefixLength'),
    'InterfaceAlias',
)
_HOST_ADAPTER_SELECT: tuple[Projection, ...] = (
    'Name',
    ('InterfaceIndex', '[int]$_.InterfaceIndex'),
)
_MACHINE_ADAPTER_SELECT: tuple[Projection, ...] = (
    'Name',
    'VMName',
    'IsManagementOs',
    'SwitchName',
    'MacAddress',
    ('Status', '[string]@($_.Status)[0]'),
    ('IPAddresses', '@($_.IPAddresses)'),
)
_INTEGRATION_SELECT: tuple[Projection, ...] = ('Name', 'Enabled')


def _require_name(value: str, what: str) -> str:
    if not value or not str(value).strip():
        raise ValueError(f'{what} must not be empty.')
    return value


def switch_interface_alias(switch_name: str) -> str:
    """Host interface alias Hyper-V gives the adapter behind a switch."""
    return f'vEthernet ({switch_name})'


class HyperVDriver:
    """Thread-safe driver for VMs, drives, switches, NATs and addresses.

    No verb is transactional: when a multi-step verb fails midway the error
    is raised and nothing is rolled back. Callers serialize conflicting
    operations on one VM themselves.
    """

    def __init__(
        self,
        config: DriverConfig | None = None,
        *,
        invoker: CommandInvoker | None = None,
        session_factory: Callable[[], Any] | None = None,
        clock: Clock | None = None,
    ):
        self.config = config if config is not None else DriverConfig()
        self.clock = clock or SYSTEM_CLOCK
        if invoker is None:
            factory = session_factory or PowerShellSession.factory(self.config)
            pool = ContextPool(
                factory,
                min_contexts=int(self.config.min_contexts),
                max_contexts=int(self.config.max_contexts),
                recycle_interval=self.config.recycle_interval,
                acquire_timeout=self.config.acquire_timeout,
                clock=self.clock,
            )
            pool.open()
            invoker = CommandInvoker(pool)
        self.invoker = invoker
        self.gate = ReadinessGate(
            self.list_machines,
            self._list_integration_services,
            poll_interval=float(self.config.poll_interval),
            timeout=self.config.ready_timeout,
            clock=self.clock,
        )
        self.dvd_cooldown = DvdCooldown(
            float(self.config.dvd_cooldown), clock=self.clock
        )
        self.stop_policy = GracefulStopPolicy(
            float(self.config.shutdown_retry_limit),
            float(self.config.poll_interval),
            clock=self.clock,
        )
        self._closed = False

    # ------------------------------------------------------------------
    # plumbing

    def _check_open(self) -> None:
        if self._closed:
            raise DriverClosedError('The Hyper-V driver has been closed.')

    def _invoke(
        self,
        operation: str,
        args: CmdletArgs | None = None,
        *,
        select: Sequence[Projection] | None = None,
        resource: str | None = None,
    ) -> list[Any]:
        self._check_open()
        return self.invoker.invoke(operation, args, select=select, resource=resource)

    def _submit(self, request: CimRequest, *, resource: str | None = None) -> list[Any]:
        self._check_open()
        return self.invoker.submit(request, resource=resource)

    def _stabilize(
        self,
        operation: str,
        args: CmdletArgs,
        predicate: Callable[[], bool] | None,
        *,
        resource: str,
        timeout: float | None = None,
    ) -> None:
        self._check_open()
        invoke_and_stabilize(
            self.invoker,
            operation,
            args,
            predicate,
            timeout=self.config.operation_timeout if timeout is None else timeout,
            poll_interval=float(self.config.poll_interval),
            resource=resource,
            clock=self.clock,
        )

    def _require_machine(self, name: str) -> VirtualMachine:
        vm = self.find_machine(name)
        if vm is None:
            raise ResourceNotFoundError('virtual machine', name)
        return vm

    def _state_is(self, name: str, state: VirtualMachineState) -> Callable[[], bool]:
        def _check() -> bool:
            vm = self.find_machine(name)
            return vm is not None and vm.state is state

        return _check

    def _list_integration_services(self, name: str) -> list[tuple[str, bool]]:
        records = self._invoke(
            HYPERV + 'Get-VMIntegrationService',
            CmdletArgs(VMName=name),
            select=_INTEGRATION_SELECT,
            resource=name,
        )
        return [snapshots.parse_integration_service(r) for r in records]

    # ------------------------------------------------------------------
    # virtual machines

    def list_machines(self) -> list[VirtualMachine]:
        records = self._invoke(HYPERV + 'Get-VM', select=_MACHINE_SELECT)
        return [snapshots.parse_machine(r) for r in records]

    def find_machine(self, name: str) -> VirtualMachine | None:
        _require_name(name, 'Machine name')
        for vm in self.list_machines():
            if same_name(vm.name, name):
                return vm
        return None

    def machine_exists(self, name: str) -> bool:
        return self.find_machine(name) is not None

    def create_machine(
        self,
        name: str,
        *,
        memory_bytes: int,
        processor_count: int = 4,
        generation: int = 1,
        drive_path: str | None = None,
        switch_name: str | None = None,
        checkpoint_drives: bool = False,
    ) -> VirtualMachine:
        """Create a VM, wait until the host lists it, then apply its settings."""
        _require_name(name, 'Machine name')
        if memory_bytes <= 0:
            raise ValueError('memory_bytes must be positive.')
        if processor_count <= 0:
            raise ValueError('processor_count must be positive.')
        if generation not in (1, 2):
            raise ValueError('generation must be 1 or 2.')
        if self.machine_exists(name):
            raise ResourceConflictError(f'Virtual machine [{name}] already exists.')

        args = CmdletArgs(Name=name, MemoryStartupBytes=memory_bytes, Generation=generation)
        if drive_path:
            args.add('VHDPath', drive_path)
        if switch_name:
            args.add('SwitchName', switch_name)
        self._stabilize(
            HYPERV + 'New-VM',
            args,
            lambda: self.machine_exists(name),
            resource=name,
        )
        vm = self.set_machine(
            name,
            processor_count=processor_count,
            checkpoint_drives=checkpoint_drives,
        )
        log.info('VM created: {}', name)
        return vm

    def set_machine(
        self,
        name: str,
        *,
        processor_count: int | None = None,
        memory_bytes: int | None = None,
        checkpoint_drives: bool | None = None,
        notes: str | None = None,
    ) -> VirtualMachine:
        """Change VM settings; arguments left as None keep the host's value."""
        _require_name(name, 'Machine name')
        if processor_count is not None and processor_count <= 0:
            raise ValueError('processor_count must be positive.')
        if memory_bytes is not None and memory_bytes <= 0:
            raise ValueError('memory_bytes must be positive.')
        vm = self.gate.wait_ready(name)

        args = CmdletArgs(Name=vm.name)
        if processor_count is not None:
            args.add('ProcessorCount', processor_count)
        if memory_bytes is not None:
            args.add_switch('StaticMemory')
            args.add('MemoryStartupBytes', memory_bytes)
        if checkpoint_drives is not None:
            args.add('CheckpointType', 'Enabled' if checkpoint_drives else 'Disabled')
        if notes is not None:
            args.add('Notes', notes)
        if len(args) == 1:
            return vm

        def _applied() -> bool:
            current = self.find_machine(name)
            if current is None:
                return False
            if processor_count is not None and current.processor_count != processor_count:
                return False
            if memory_bytes is not None and current.memory_size_bytes != memory_bytes:
                return False
            if notes is not None and current.notes != notes:
                return False
            return True

        self._stabilize(HYPERV + 'Set-VM', args, _applied, resource=name)
        return self._require_machine(name)

    def remove_machine(self, name: str) -> None:
        """Delete a VM; its drive files stay on disk."""
        _require_name(name, 'Machine name')
        vm = self.gate.wait_ready(name)
        if vm.state in (VirtualMachineState.RUNNING, VirtualMachineState.STARTING):
            raise ResourceConflictError(
                f'Cannot remove virtual machine [{vm.name}] while it is {vm.state.value}.'
            )
        args = CmdletArgs(Name=vm.name)
        args.add_switch('Force')
        self._stabilize(
            HYPERV + 'Remove-VM',
            args,
            lambda: not self.machine_exists(name),
            resource=name,
        )
        self.dvd_cooldown.forget(name)
        log.info('VM removed: {}', name)

    def start_machine(self, name: str) -> VirtualMachine:
        _require_name(name, 'Machine name')
        vm = self.gate.wait_ready(name)
        if vm.state is VirtualMachineState.RUNNING:
            log.debug('VM {} is already running', vm.name)
            return vm
        self._stabilize(
            HYPERV + 'Start-VM',
            CmdletArgs(Name=vm.name),
            self._state_is(name, VirtualMachineState.RUNNING),
            resource=name,
        )
        log.info('VM started: {}', name)
        return self._require_machine(name)

    def stop_machine(self, name: str, *, turn_off: bool = False) -> VirtualMachineState:
        """Stop a VM and return the state it ended up in.

        A graceful stop needs the guest's ``Shutdown`` service and is
        re-requested until the guest complies or the retry limit passes; the
        returned state is then whatever the host last reported. ``turn_off``
        cuts power instead, once, and raises if the VM never reaches ``OFF``.
        """
        _require_name(name, 'Machine name')
        vm = self.gate.wait_ready(name)
        if vm.state is VirtualMachineState.OFF:
            log.debug('VM {} is already off', vm.name)
            return vm.state

        if turn_off:
            args = CmdletArgs(Name=vm.name)
            args.add_switch('TurnOff')
            self._stabilize(
                HYPERV + 'Stop-VM',
                args,
                self._state_is(name, VirtualMachineState.OFF),
                resource=name,
            )
            log.info('VM turned off: {}', name)
            return VirtualMachineState.OFF

        self.gate.require_capability(vm.name, SHUTDOWN_SERVICE)

        def _request_stop() -> None:
            args = CmdletArgs(Name=vm.name)
            args.add_switch('Force')
            self._invoke(HYPERV + 'Stop-VM', args, resource=name)

        state = self.stop_policy.run(
            _request_stop,
            lambda: self._require_machine(name).state,
            machine_name=name,
        )
        if state is VirtualMachineState.OFF:
            log.info('VM stopped: {}', name)
        return state

    def save_machine(self, name: str) -> VirtualMachine:
        _require_name(name, 'Machine name')
        vm = self.gate.wait_ready(name)
        self._stabilize(
            HYPERV + 'Save-VM',
            CmdletArgs(Name=vm.name),
            self._state_is(name, VirtualMachineState.SAVED),
            resource=name,
        )
        log.info('VM saved: {}', name)
        return self._require_machine(name)

    def enable_nested_virtualization(self, name: str) -> None:
        """Expose virtualization extensions and allow MAC spoofing for a VM."""
        _require_name(name, 'Machine name')
        vm = self.gate.wait_ready(name)
        self._invoke(
            HYPERV + 'Set-VMProcessor',
            CmdletArgs(VMName=vm.name, ExposeVirtualizationExtensions=True),
            resource=name,
        )
        self._invoke(
            HYPERV + 'Set-VMNetworkAdapter',
            CmdletArgs(VMName=vm.name, MacAddressSpoofing='On'),
            resource=name,
        )
        log.info('Nested virtualization enabled: {}', name)

    # ------------------------------------------------------------------
    # drives

    def _drive_exists(self, path: str) -> bool:
        records = self._invoke(
            'Microsoft.PowerShell.Management\\Test-Path',
            CmdletArgs(LiteralPath=path),
            resource=path,
        )
        return records == [True]

    def _require_drive(self, path: str) -> None:
        _require_name(path, 'Drive path')
        if not self._drive_exists(path):
            raise ResourceNotFoundError('virtual drive', path)

    def new_drive(
        self, drive: VirtualDrive, *, block_size_bytes: int = MEBIBYTE
    ) -> VirtualDrive:
        _require_name(drive.path, 'Drive path')
        if drive.size_bytes <= 0:
            raise ValueError('Drive size must be positive.')
        if block_size_bytes <= 0:
            raise ValueError('block_size_bytes must be positive.')
        args = CmdletArgs(Path=drive.path)
        args.add_switch('Dynamic' if drive.is_dynamic else 'Fixed')
        args.add('SizeBytes', drive.size_bytes)
        args.add('BlockSizeBytes', block_size_bytes)
        self._invoke(HYPERV + 'New-VHD', args, resource=drive.path)
        log.info('Drive created: {}', drive.path)
        return drive

    def add_drive(self, name: str, drive_path: str) -> None:
        _require_name(name, 'Machine name')
        _require_name(drive_path, 'Drive path')
        vm = self.gate.wait_ready(name)

        def _attached() -> bool:
            return any(same_name(p, drive_path) for p in self.list_drive_paths(name))

        self._stabilize(
            HYPERV + 'Add-VMHardDiskDrive',
            CmdletArgs(VMName=vm.name, Path=drive_path),
            _attached,
            resource=name,
        )
        log.info('Drive {} attached to {}', drive_path, name)

    def list_drive_paths(self, name: str) -> list[str]:
        vm = self._require_machine(name)
        records = self._invoke(
            HYPERV + 'Get-VMHardDiskDrive',
            CmdletArgs(VMName=vm.name),
            select=('Path',),
            resource=name,
        )
        paths = [snapshots.parse_drive_path(r) for r in records]
        return [p for p in paths if p is not None]

    def list_drives(self, name: str) -> list[VirtualDrive]:
        vm = self._require_machine(name)
        records = self._invoke(
            HYPERV + 'Get-VMHardDiskDrive',
            CmdletArgs(VMName=vm.name),
            select=_DRIVE_SELECT,
            resource=name,
        )
        return [
            snapshots.parse_drive(r)
            for r in records
            if snapshots.parse_drive_path(r) is not None
        ]

    def resize_drive(self, path: str, size_bytes: int) -> None:
        if size_bytes <= 0:
            raise ValueError('size_bytes must be positive.')
        self._require_drive(path)
        self._invoke(
            HYPERV + 'Resize-VHD',
            CmdletArgs(Path=path, SizeBytes=size_bytes),
            resource=path,
        )

    def optimize_drive(self, path: str) -> None:
        self._require_drive(path)
        self._invoke(
            HYPERV + 'Optimize-VHD',
            CmdletArgs(Path=path, Mode='Full'),
            resource=path,
        )

    def mount_drive(self, path: str, *, read_only: bool = False) -> None:
        self._require_drive(path)
        args = CmdletArgs(Path=path)
        if read_only:
            args.add_switch('ReadOnly')
        self._invoke(HYPERV + 'Mount-VHD', args, resource=path)

    def dismount_drive(self, path: str) -> None:
        self._require_drive(path)
        self._invoke(HYPERV + 'Dismount-VHD', CmdletArgs(Path=path), resource=path)

    # ------------------------------------------------------------------
    # removable media

    def _dvd_paths(self, name: str) -> list[str | None]:
        records = self._invoke(
            HYPERV + 'Get-VMDvdDrive',
            CmdletArgs(VMName=name),
            select=('Path',),
            resource=name,
        )
        if not records:
            raise ResourceNotFoundError('DVD drive on virtual machine', name)
        return [snapshots.parse_drive_path(r) for r in records]

    def insert_removable_media(self, name: str, iso_path: str) -> None:
        _require_name(name, 'Machine name')
        _require_name(iso_path, 'ISO path')
        vm = self.gate.wait_ready(name)
        inserted = [p for p in self._dvd_paths(vm.name) if p]
        if inserted:
            raise ResourceConflictError(
                f'Virtual machine [{vm.name}] already has media [{inserted[0]}] '
                'in its DVD drive; eject it first.'
            )
        self._stabilize(
            HYPERV + 'Set-VMDvdDrive',
            CmdletArgs(VMName=vm.name, Path=iso_path),
            lambda: any(same_name(p, iso_path) for p in self._dvd_paths(name)),
            resource=name,
        )
        self.dvd_cooldown.record_insert(name)
        log.info('Media {} inserted into {}', iso_path, name)

    def eject_removable_media(self, name: str) -> None:
        _require_name(name, 'Machine name')
        vm = self.gate.wait_ready(name)
        if not any(self._dvd_paths(vm.name)):
            log.debug('No media to eject from {}', vm.name)
            return
        self.dvd_cooldown.wait_before_eject(name)
        self._stabilize(
            HYPERV + 'Set-VMDvdDrive',
            CmdletArgs(VMName=vm.name, Path=CLEAR),
            lambda: not any(self._dvd_paths(name)),
            resource=name,
        )
        log.info('Media ejected from {}', name)

    # ------------------------------------------------------------------
    # switches

    def list_switches(self) -> list[VirtualSwitch]:
        records = self._invoke(HYPERV + 'Get-VMSwitch', select=_SWITCH_SELECT)
        return [snapshots.parse_switch(r) for r in records]

    def find_switch(self, name: str) -> VirtualSwitch | None:
        _require_name(name, 'Switch name')
        for switch in self.list_switches():
            if same_name(switch.name, name):
                return switch
        return None

    def create_switch(
        self,
        name: str,
        *,
        switch_type: VirtualSwitchType = VirtualSwitchType.INTERNAL,
        target_adapter: str | None = None,
    ) -> VirtualSwitch:
        """Create a switch; an existing switch with the same name is returned as is."""
        _require_name(name, 'Switch name')
        if switch_type is VirtualSwitchType.UNKNOWN:
            raise ValueError('Cannot create a switch of unknown type.')
        if switch_type is VirtualSwitchType.EXTERNAL and not target_adapter:
            raise ValueError('An external switch needs a target adapter.')
        if target_adapter and switch_type is not VirtualSwitchType.EXTERNAL:
            raise ValueError('Only external switches bind to a target adapter.')

        existing = check_switch_creation(self.list_switches(), name, switch_type)
        if existing is not None:
            log.debug('Switch {} already exists', existing.name)
            return existing

        args = CmdletArgs(Name=name)
        if target_adapter:
            args.add('NetAdapterName', target_adapter)
        else:
            args.add('SwitchType', switch_type.value)
        self._stabilize(
            HYPERV + 'New-VMSwitch',
            args,
            lambda: self.find_switch(name) is not None,
            resource=name,
        )
        log.info('Switch created: {} ({})', name, switch_type.value)
        switch = self.find_switch(name)
        if switch is None:
            raise ResourceNotFoundError('switch', name)
        return switch

    def remove_switch(self, name: str) -> None:
        switch = self.find_switch(name)
        if switch is None:
            raise ResourceNotFoundError('switch', name)
        args = CmdletArgs(Name=switch.name)
        args.add_switch('Force')
        self._stabilize(
            HYPERV + 'Remove-VMSwitch',
            args,
            lambda: self.find_switch(name) is None,
            resource=name,
        )
        log.info('Switch removed: {}', name)

    # ------------------------------------------------------------------
    # NAT

    def list_nats(self) -> list[VirtualNat]:
        records = self._invoke(NETNAT + 'Get-NetNat', select=_NAT_SELECT)
        return [snapshots.parse_nat(r) for r in records]

    def find_nat(self, name: str) -> VirtualNat | None:
        _require_name(name, 'NAT name')
        for nat in self.list_nats():
            if same_name(nat.name, name):
                return nat
        return None

    def find_nat_by_subnet(
        self, subnet: ipaddress.IPv4Network | str
    ) -> VirtualNat | None:
        subnet = ipaddress.IPv4Network(subnet)
        for nat in self.list_nats():
            if nat.subnet == subnet:
                return nat
        return None

    def create_nat(
        self, name: str, subnet: ipaddress.IPv4Network | str
    ) -> VirtualNat:
        """Create a NAT for ``subnet``; an existing NAT of the same name is a no-op."""
        _require_name(name, 'NAT name')
        subnet = ipaddress.IPv4Network(subnet)
        existing = check_nat_creation(self.list_nats(), name, subnet)
        if existing is not None:
            log.debug('NAT {} already exists', existing.name)
            return existing
        self._submit(
            CimRequest(
                CIM_NETWORK_NAMESPACE,
                'MSFT_NetNat',
                {'Name': name, 'InternalIPInterfaceAddressPrefix': str(subnet)},
            ),
            resource=name,
        )
        log.info('NAT created: {} ({})', name, subnet)
        return VirtualNat(name=name, subnet=subnet)

    def remove_nat(self, name: str) -> None:
        nat = self.find_nat(name)
        if nat is None:
            raise ResourceNotFoundError('NAT', name)
        self._stabilize(
            NETNAT + 'Remove-NetNat',
            CmdletArgs(Name=nat.name, Confirm=False),
            lambda: self.find_nat(name) is None,
            resource=name,
        )
        log.info('NAT removed: {}', name)

    # ------------------------------------------------------------------
    # addresses and adapters

    def list_host_adapters(self) -> list[NetworkAdapter]:
        records = self._invoke(NETADAPTER + 'Get-NetAdapter', select=_HOST_ADAPTER_SELECT)
        return [snapshots.parse_host_adapter(r) for r in records]

    def list_ip_addresses(self) -> list[VirtualIPAddress]:
        records = self._invoke(
            NETTCPIP + 'Get-NetIPAddress',
            CmdletArgs(AddressFamily='IPv4'),
            select=_IP_SELECT,
        )
        addresses = (snapshots.parse_ip_address(r) for r in records)
        return [a for a in addresses if a is not None]

    def find_ip_address(
        self, address: ipaddress.IPv4Address | str
    ) -> VirtualIPAddress | None:
        address = ipaddress.IPv4Address(address)
        for item in self.list_ip_addresses():
            if item.address == address:
                return item
        return None

    def assign_ip_address(
        self,
        switch_name: str,
        address: ipaddress.IPv4Address | str,
        subnet: ipaddress.IPv4Network | str,
    ) -> VirtualIPAddress:
        """Give the host interface behind ``switch_name`` an address on ``subnet``."""
        _require_name(switch_name, 'Switch name')
        address = ipaddress.IPv4Address(address)
        subnet = ipaddress.IPv4Network(subnet)
        if address not in subnet:
            raise ValueError(f'Address [{address}] is not inside subnet [{subnet}].')

        alias = switch_interface_alias(switch_name)
        adapter = None
        for candidate in self.list_host_adapters():
            if same_name(candidate.name, alias):
                adapter = candidate
                break
        if adapter is None:
            raise ResourceNotFoundError('switch interface', alias)

        self._submit(
            CimRequest(
                CIM_NETWORK_NAMESPACE,
                'MSFT_NetIPAddress',
                {
                    'InterfaceIndex': TypedValue(adapter.interface_index, 'uint32'),
                    'IPAddress': str(address),
                    'PrefixLength': TypedValue(subnet.prefixlen, 'byte'),
                    'AddressFamily': TypedValue(AF_INET, 'uint16'),
                },
                method='Create',
            ),
            resource=switch_name,
        )
        log.info('Address {}/{} assigned to {}', address, subnet.prefixlen, alias)
        return VirtualIPAddress(
            address=address,
            subnet=ipaddress.IPv4Network(f'{address}/{subnet.prefixlen}', strict=False),
            interface_name=switch_name,
        )

    def list_machine_adapters(self, name: str) -> list[VirtualMachineNetworkAdapter]:
        vm = self._require_machine(name)
        records = self._invoke(
            HYPERV + 'Get-VMNetworkAdapter',
            CmdletArgs(VMName=vm.name),
            select=_MACHINE_ADAPTER_SELECT,
            resource=name,
        )
        return [snapshots.parse_machine_adapter(r) for r in records]

    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.invoker.close()

    def __enter__(self) -> 'HyperVDriver':
        return self

    def __exit__(self, *exc) -> None:
        self.close()
