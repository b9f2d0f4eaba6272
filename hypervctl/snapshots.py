"""Typed parsers for the JSON records the host returns.

Each parser maps exactly one resource record to one model and raises
:class:`SnapshotError` as soon as the record does not look like what the
projection in :mod:`hypervctl.driver` asked for.
"""

from __future__ import annotations

import datetime
import ipaddress
import re
from typing import Any, Mapping

from .errors import SnapshotError
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

_MISSING = object()

# Numeric values of the Hyper-V VMState enum, emitted when the enum is
# serialized without being stringified first.
_VM_STATE_CODES = {
    2: VirtualMachineState.RUNNING,
    3: VirtualMachineState.OFF,
    6: VirtualMachineState.SAVED,
    9: VirtualMachineState.PAUSED,
    10: VirtualMachineState.STARTING,
}
# VMState values the host passes through on its own (Stopping, Reset, Saving,
# Pausing, Resuming, FastSaving, ForceShutdown, ForceReboot). They map to
# UNKNOWN but flag the snapshot as in transition, so readiness waits on them
# instead of treating them as a conflict.
_TRANSITIONAL_STATE_CODES = {4, 11, 32773, 32776, 32777, 32780, 32781, 32782}
_TRANSITIONAL_STATE_NAMES = {
    'stopping',
    'reset',
    'saving',
    'pausing',
    'resuming',
    'fastsaving',
    'forceshutdown',
    'forcereboot',
}
_SWITCH_TYPE_CODES = {
    0: VirtualSwitchType.PRIVATE,
    1: VirtualSwitchType.INTERNAL,
    2: VirtualSwitchType.EXTERNAL,
}
_OPERATIONAL_OK = {'ok', '2'}
_INTERFACE_ALIAS_RE = re.compile(r'^.*\((?P<switch>.+)\)$')


def _get(
    record: Mapping[str, Any],
    key: str,
    kinds: type | tuple[type, ...],
    *,
    kind: str,
    optional: bool = False,
) -> Any:
    if not isinstance(record, Mapping):
        raise SnapshotError(
            f'Expected a {kind} record object, got {type(record).__name__}.'
        )
    value = record.get(key, _MISSING)
    if value is _MISSING or value is None:
        if optional:
            return None
        raise SnapshotError(f'{kind} record is missing [{key}]: {dict(record)!r}')
    if isinstance(value, bool) and bool not in _as_tuple(kinds):
        raise SnapshotError(f'{kind} record field [{key}] is a bool: {value!r}')
    if not isinstance(value, kinds):
        raise SnapshotError(
            f'{kind} record field [{key}] has type {type(value).__name__}: {value!r}'
        )
    return value


def _as_tuple(kinds: type | tuple[type, ...]) -> tuple[type, ...]:
    return kinds if isinstance(kinds, tuple) else (kinds,)


def parse_machine_state(value: str | int | None) -> VirtualMachineState:
    if isinstance(value, int) and not isinstance(value, bool):
        return _VM_STATE_CODES.get(value, VirtualMachineState.UNKNOWN)
    text = str(value or '').strip().lower()
    for state in VirtualMachineState:
        if state.value.lower() == text:
            return state
    return VirtualMachineState.UNKNOWN


def is_transitional_state(value: str | int | None) -> bool:
    if isinstance(value, int) and not isinstance(value, bool):
        return value in _TRANSITIONAL_STATE_CODES
    return str(value or '').strip().lower() in _TRANSITIONAL_STATE_NAMES


def parse_switch_type(value: str | int | None) -> VirtualSwitchType:
    if isinstance(value, int) and not isinstance(value, bool):
        return _SWITCH_TYPE_CODES.get(value, VirtualSwitchType.UNKNOWN)
    text = str(value or '').strip().lower()
    for switch_type in VirtualSwitchType:
        if switch_type.value.lower() == text:
            return switch_type
    return VirtualSwitchType.UNKNOWN


def parse_machine(record: Mapping[str, Any]) -> VirtualMachine:
    kind = 'VM'
    name = _get(record, 'Name', str, kind=kind)
    status = _get(record, 'OperationalStatus', (str, int), kind=kind, optional=True)
    uptime = _get(record, 'UptimeSeconds', (int, float), kind=kind, optional=True)
    raw_state = _get(record, 'State', (str, int), kind=kind)
    return VirtualMachine(
        name=name,
        processor_count=_get(record, 'ProcessorCount', int, kind=kind),
        memory_size_bytes=_get(record, 'MemoryStartup', int, kind=kind),
        state=parse_machine_state(raw_state),
        ready=str(status).strip().lower() in _OPERATIONAL_OK,
        uptime=datetime.timedelta(seconds=float(uptime or 0)),
        switch_name=_get(record, 'SwitchName', str, kind=kind, optional=True),
        notes=_get(record, 'Notes', str, kind=kind, optional=True) or '',
        in_transition=is_transitional_state(raw_state),
    )


def parse_drive(record: Mapping[str, Any]) -> VirtualDrive:
    kind = 'VHD'
    vhd_type = _get(record, 'VhdType', (str, int), kind=kind)
    # Microsoft.Vhd.PowerShell.VhdType: Fixed=2, Dynamic=3, Differencing=4.
    if isinstance(vhd_type, int):
        is_dynamic = vhd_type != 2
    else:
        is_dynamic = vhd_type.strip().lower() != 'fixed'
    return VirtualDrive(
        path=_get(record, 'Path', str, kind=kind),
        is_dynamic=is_dynamic,
        size_bytes=_get(record, 'Size', int, kind=kind),
    )


def parse_drive_path(record: Mapping[str, Any]) -> str | None:
    # Pass-through disks are attached without a backing file.
    return _get(record, 'Path', str, kind='hard disk drive', optional=True)


def parse_switch(record: Mapping[str, Any]) -> VirtualSwitch:
    kind = 'switch'
    return VirtualSwitch(
        name=_get(record, 'Name', str, kind=kind),
        type=parse_switch_type(
            _get(record, 'SwitchType', (str, int), kind=kind, optional=True)
        ),
    )


def parse_nat(record: Mapping[str, Any]) -> VirtualNat:
    kind = 'NAT'
    prefix = _get(record, 'InternalIPInterfaceAddressPrefix', str, kind=kind)
    try:
        subnet = ipaddress.IPv4Network(prefix.strip(), strict=False)
    except ValueError as ex:
        raise SnapshotError(f'NAT record has an invalid subnet: {prefix!r}') from ex
    return VirtualNat(name=_get(record, 'Name', str, kind=kind), subnet=subnet)


def interface_switch_name(alias: str) -> str:
    """Extract ``neon`` from an interface alias like ``vEthernet (neon)``."""
    match = _INTERFACE_ALIAS_RE.match(alias)
    if match:
        return match.group('switch')
    return alias


def parse_ip_address(record: Mapping[str, Any]) -> VirtualIPAddress | None:
    """Parse an address record, returning None for non IPv4-unicast rows."""
    kind = 'IP address'
    family = _get(record, 'AddressFamily', (str, int), kind=kind, optional=True)
    if family is not None and str(family).strip().lower() not in {'ipv4', '2'}:
        return None
    addr_type = _get(record, 'Type', (str, int), kind=kind, optional=True)
    if addr_type is not None and str(addr_type).strip().lower() not in {'unicast', '1'}:
        return None
    text = _get(record, 'IPAddress', str, kind=kind)
    try:
        address = ipaddress.ip_address(text.strip())
    except ValueError as ex:
        raise SnapshotError(f'IP address record has an invalid address: {text!r}') from ex
    if address.version != 4 or address.is_multicast:
        return None
    prefix_length = _get(record, 'PrefixLength', int, kind=kind)
    alias = _get(record, 'InterfaceAlias', str, kind=kind)
    return VirtualIPAddress(
        address=address,
        subnet=ipaddress.IPv4Network(f'{address}/{prefix_length}', strict=False),
        interface_name=interface_switch_name(alias),
    )


def parse_host_adapter(record: Mapping[str, Any]) -> NetworkAdapter:
    kind = 'network adapter'
    return NetworkAdapter(
        name=_get(record, 'Name', str, kind=kind),
        interface_index=_get(record, 'InterfaceIndex', int, kind=kind),
    )


def parse_machine_adapter(
    record: Mapping[str, Any],
) -> VirtualMachineNetworkAdapter:
    kind = 'VM network adapter'
    raw_addresses = _get(record, 'IPAddresses', (list, str), kind=kind, optional=True)
    if isinstance(raw_addresses, str):
        raw_addresses = [raw_addresses]
    addresses = []
    for text in raw_addresses or []:
        if not isinstance(text, str) or not text.strip():
            continue
        try:
            address = ipaddress.ip_address(text.strip())
        except ValueError as ex:
            raise SnapshotError(
                f'VM network adapter reported an invalid address: {text!r}'
            ) from ex
        if address.version == 4:
            addresses.append(address)
    return VirtualMachineNetworkAdapter(
        name=_get(record, 'Name', str, kind=kind),
        vm_name=_get(record, 'VMName', str, kind=kind),
        is_management_os=bool(
            _get(record, 'IsManagementOs', bool, kind=kind, optional=True)
        ),
        switch_name=_get(record, 'SwitchName', str, kind=kind, optional=True),
        mac_address=_get(record, 'MacAddress', str, kind=kind, optional=True) or '',
        status=_get(record, 'Status', str, kind=kind, optional=True) or '',
        addresses=addresses,
    )


def parse_integration_service(record: Mapping[str, Any]) -> tuple[str, bool]:
    kind = 'integration service'
    return (
        _get(record, 'Name', str, kind=kind),
        bool(_get(record, 'Enabled', bool, kind=kind)),
    )
