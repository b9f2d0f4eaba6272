"""In-memory Hyper-V host used in place of PowerShell sessions."""

from __future__ import annotations

import threading
from typing import Any, Callable

import pytest

from hypervctl.config import DriverConfig
from hypervctl.driver import HyperVDriver
from hypervctl.errors import HostCommandError
from hypervctl.invoker import CLEAR, HostAccess


class FakeClock:
    """Clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []
        self._lock = threading.Lock()

    def monotonic(self) -> float:
        with self._lock:
            return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            if seconds > 0:
                self.now += seconds

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


class FakeContext:
    def __init__(self, host: 'FakeHost'):
        self.host = host
        self.alive = True
        self.closed = False

    def execute(self, request) -> list[Any]:
        return self.host.execute(request)

    def close(self) -> None:
        self.closed = True
        self.alive = False


class FakeHost:
    """Hyper-V host state plus a dispatcher for the requests the driver sends.

    ``lag`` delays the visible effect of each mutating command by that many
    query commands, which is how the host's asynchronous behaviour shows
    up to the driver.
    """

    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock
        self.lock = threading.RLock()
        self.vms: dict[str, dict[str, Any]] = {}
        self.switches: dict[str, dict[str, Any]] = {}
        self.nats: dict[str, dict[str, Any]] = {}
        self.ip_addresses: list[dict[str, Any]] = []
        self.host_adapters: list[dict[str, Any]] = [
            {'Name': 'Ethernet', 'InterfaceIndex': 4},
        ]
        self.files: set[str] = set()
        self.requests: list[tuple[float | None, Any]] = []
        self.failures: dict[str, str] = {}
        self.honor_shutdown_after: int | None = 1
        self.lag = 0
        self.contexts: list[FakeContext] = []
        self._pending: list[list[Any]] = []

    # -- test helpers ---------------------------------------------------

    def context(self) -> FakeContext:
        ctx = FakeContext(self)
        with self.lock:
            self.contexts.append(ctx)
        return ctx

    def add_vm(self, name: str, state: str = 'Off', *, ready: bool = True, **extra) -> dict:
        vm = {
            'Name': name,
            'State': state,
            'Ready': ready,
            'ProcessorCount': 1,
            'MemoryStartup': 1024 * 1024 * 1024,
            'Notes': '',
            'SwitchName': None,
            'Drives': [],
            'Dvd': [None],
            'Services': {'Shutdown': True, 'Heartbeat': True},
            'StopRequests': 0,
            'Nested': False,
        }
        vm.update(extra)
        with self.lock:
            self.vms[name.casefold()] = vm
        return vm

    def schedule(self, queries: int, effect: Callable[[], None]) -> None:
        """Apply ``effect`` after ``queries`` more query commands."""
        with self.lock:
            self._pending.append([queries, effect])

    def names(self, access: HostAccess | None = None) -> list[str]:
        return [
            r.operation
            for _, r in self.requests
            if access is None or r.access is access
        ]

    def requests_named(self, operation: str) -> list[tuple[float | None, Any]]:
        return [(t, r) for t, r in self.requests if r.operation == operation]

    def vm(self, name: str) -> dict:
        return self.vms[name.casefold()]

    # -- dispatch -------------------------------------------------------

    def execute(self, request) -> list[Any]:
        with self.lock:
            now = self.clock.monotonic() if self.clock is not None else None
            self.requests.append((now, request))
            if request.operation in self.failures:
                raise HostCommandError(request.operation, self.failures[request.operation])
            if request.access is HostAccess.INSTRUMENTATION:
                return self._cim(request)
            name = request.name.split('\\')[-1]
            if name.startswith(('Get-', 'Test-')):
                self._tick()
            handler = getattr(self, '_op_' + name.replace('-', '_'), None)
            if handler is None:
                raise HostCommandError(request.operation, f'unsupported: {request.name}')
            return handler(request.args)

    def _apply(self, effect: Callable[[], None]) -> list[Any]:
        if self.lag:
            self._pending.append([self.lag, effect])
        else:
            effect()
        return []

    def _tick(self) -> None:
        due = []
        for item in self._pending:
            item[0] -= 1
            if item[0] <= 0:
                due.append(item)
        for item in due:
            self._pending.remove(item)
            item[1]()

    def _require_vm(self, name: str) -> dict:
        vm = self.vms.get(name.casefold())
        if vm is None:
            raise HostCommandError('lookup', f'Hyper-V was unable to find a virtual machine with name "{name}".')
        return vm

    # virtual machines

    def _op_Get_VM(self, args) -> list[Any]:
        return [
            {
                'Name': vm['Name'],
                'State': vm['State'],
                'OperationalStatus': 'Ok' if vm['Ready'] else 'InService',
                'ProcessorCount': vm['ProcessorCount'],
                'MemoryStartup': vm['MemoryStartup'],
                'UptimeSeconds': 0.0,
                'SwitchName': vm['SwitchName'],
                'Notes': vm['Notes'],
            }
            for vm in self.vms.values()
        ]

    def _op_New_VM(self, args) -> list[Any]:
        name = args.get('Name')

        def effect():
            self.add_vm(
                name,
                MemoryStartup=args.get('MemoryStartupBytes'),
                SwitchName=args.get('SwitchName'),
                Drives=[args.get('VHDPath')] if 'VHDPath' in args else [],
            )

        return self._apply(effect)

    def _op_Set_VM(self, args) -> list[Any]:
        vm = self._require_vm(args.get('Name'))

        def effect():
            if 'ProcessorCount' in args:
                vm['ProcessorCount'] = args.get('ProcessorCount')
            if 'MemoryStartupBytes' in args:
                vm['MemoryStartup'] = args.get('MemoryStartupBytes')
            if 'Notes' in args:
                vm['Notes'] = args.get('Notes')
            if 'CheckpointType' in args:
                vm['CheckpointType'] = args.get('CheckpointType')

        return self._apply(effect)

    def _op_Remove_VM(self, args) -> list[Any]:
        vm = self._require_vm(args.get('Name'))
        return self._apply(lambda: self.vms.pop(vm['Name'].casefold(), None))

    def _set_state(self, args, state: str) -> list[Any]:
        vm = self._require_vm(args.get('Name'))
        return self._apply(lambda: vm.update(State=state))

    def _op_Start_VM(self, args) -> list[Any]:
        return self._set_state(args, 'Running')

    def _op_Save_VM(self, args) -> list[Any]:
        return self._set_state(args, 'Saved')

    def _op_Stop_VM(self, args) -> list[Any]:
        vm = self._require_vm(args.get('Name'))
        if args.is_switch('TurnOff'):
            return self._set_state(args, 'Off')
        vm['StopRequests'] += 1
        if (
            self.honor_shutdown_after is not None
            and vm['StopRequests'] >= self.honor_shutdown_after
        ):
            vm['State'] = 'Off'
        return []

    def _op_Get_VMIntegrationService(self, args) -> list[Any]:
        vm = self._require_vm(args.get('VMName'))
        return [{'Name': k, 'Enabled': v} for k, v in vm['Services'].items()]

    def _op_Set_VMProcessor(self, args) -> list[Any]:
        vm = self._require_vm(args.get('VMName'))
        vm['Nested'] = args.get('ExposeVirtualizationExtensions')
        return []

    def _op_Set_VMNetworkAdapter(self, args) -> list[Any]:
        vm = self._require_vm(args.get('VMName'))
        vm['MacAddressSpoofing'] = args.get('MacAddressSpoofing')
        return []

    def _op_Get_VMNetworkAdapter(self, args) -> list[Any]:
        vm = self._require_vm(args.get('VMName'))
        return [
            {
                'Name': 'Network Adapter',
                'VMName': vm['Name'],
                'IsManagementOs': False,
                'SwitchName': vm['SwitchName'],
                'MacAddress': '00155D000001',
                'Status': 'Ok',
                'IPAddresses': ['10.0.0.5', 'fe80::1'],
            }
        ]

    # drives

    def _op_Test_Path(self, args) -> list[Any]:
        return [args.get('LiteralPath') in self.files]

    def _op_New_VHD(self, args) -> list[Any]:
        self.files.add(args.get('Path'))
        return []

    def _op_Resize_VHD(self, args) -> list[Any]:
        return []

    def _op_Optimize_VHD(self, args) -> list[Any]:
        return []

    def _op_Mount_VHD(self, args) -> list[Any]:
        return []

    def _op_Dismount_VHD(self, args) -> list[Any]:
        return []

    def _op_Add_VMHardDiskDrive(self, args) -> list[Any]:
        vm = self._require_vm(args.get('VMName'))
        return self._apply(lambda: vm['Drives'].append(args.get('Path')))

    def _op_Get_VMHardDiskDrive(self, args) -> list[Any]:
        vm = self._require_vm(args.get('VMName'))
        return [
            {'Path': p, 'VhdType': 'Dynamic', 'Size': 10 * 1024 ** 3}
            for p in vm['Drives']
        ]

    def _op_Get_VMDvdDrive(self, args) -> list[Any]:
        vm = self._require_vm(args.get('VMName'))
        return [{'Path': p} for p in vm['Dvd']]

    def _op_Set_VMDvdDrive(self, args) -> list[Any]:
        vm = self._require_vm(args.get('VMName'))
        path = args.get('Path')
        value = None if path is CLEAR else path
        return self._apply(lambda: vm.update(Dvd=[value]))

    # networking

    def _op_Get_VMSwitch(self, args) -> list[Any]:
        return [dict(s) for s in self.switches.values()]

    def _op_New_VMSwitch(self, args) -> list[Any]:
        name = args.get('Name')
        switch_type = 'External' if 'NetAdapterName' in args else args.get('SwitchType')
        self.switches[name.casefold()] = {'Name': name, 'SwitchType': switch_type}
        index = max(a['InterfaceIndex'] for a in self.host_adapters) + 1
        self.host_adapters.append(
            {'Name': f'vEthernet ({name})', 'InterfaceIndex': index}
        )
        return []

    def _op_Remove_VMSwitch(self, args) -> list[Any]:
        name = args.get('Name')
        self.switches.pop(name.casefold(), None)
        self.host_adapters = [
            a for a in self.host_adapters if a['Name'] != f'vEthernet ({name})'
        ]
        return []

    def _op_Get_NetNat(self, args) -> list[Any]:
        return [dict(n) for n in self.nats.values()]

    def _op_Remove_NetNat(self, args) -> list[Any]:
        self.nats.pop(args.get('Name').casefold(), None)
        return []

    def _op_Get_NetAdapter(self, args) -> list[Any]:
        return [dict(a) for a in self.host_adapters]

    def _op_Get_NetIPAddress(self, args) -> list[Any]:
        return [dict(a) for a in self.ip_addresses]

    def _cim(self, request) -> list[Any]:
        props = dict(request.properties)
        if request.class_name == 'MSFT_NetNat':
            for nat in self.nats.values():
                if nat['InternalIPInterfaceAddressPrefix'] == props['InternalIPInterfaceAddressPrefix']:
                    raise HostCommandError(request.operation, 'The parameter is incorrect.')
            self.nats[props['Name'].casefold()] = {
                'Name': props['Name'],
                'InternalIPInterfaceAddressPrefix': props['InternalIPInterfaceAddressPrefix'],
            }
            return [props]
        if request.class_name == 'MSFT_NetIPAddress' and request.method == 'Create':
            index = props['InterfaceIndex'].value
            alias = next(
                a['Name'] for a in self.host_adapters if a['InterfaceIndex'] == index
            )
            self.ip_addresses.append(
                {
                    'AddressFamily': 'IPv4',
                    'Type': 'Unicast',
                    'IPAddress': props['IPAddress'],
                    'PrefixLength': props['PrefixLength'].value,
                    'InterfaceAlias': alias,
                }
            )
            return []
        raise HostCommandError(request.operation, 'unsupported CIM request')


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def host(clock) -> FakeHost:
    return FakeHost(clock)


@pytest.fixture
def driver(host, clock):
    config = DriverConfig(
        min_contexts=0,
        max_contexts=2,
        poll_interval=1.0,
        operation_timeout=30.0,
    )
    drv = HyperVDriver(config, session_factory=host.context, clock=clock)
    yield drv
    drv.close()
