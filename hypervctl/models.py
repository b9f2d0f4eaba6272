"""Resource descriptors returned by the driver.

These are plain snapshots of host state at query time; none of them talk to
the host themselves.
"""

from __future__ import annotations

import datetime
import enum
import ipaddress
from dataclasses import dataclass, field


class VirtualMachineState(enum.Enum):
    UNKNOWN = 'Unknown'
    OFF = 'Off'
    STARTING = 'Starting'
    RUNNING = 'Running'
    PAUSED = 'Paused'
    SAVED = 'Saved'


class VirtualSwitchType(enum.Enum):
    UNKNOWN = 'Unknown'
    # Guests on the switch can only see each other.
    PRIVATE = 'Private'
    # Guests and the host, no external network.
    INTERNAL = 'Internal'
    # Guests, the host, and the network behind a physical adapter.
    EXTERNAL = 'External'


@dataclass(frozen=True)
class VirtualMachine:
    name: str
    processor_count: int
    memory_size_bytes: int
    state: VirtualMachineState
    ready: bool
    uptime: datetime.timedelta = datetime.timedelta(0)
    switch_name: str | None = None
    notes: str = ''
    # Host reported a transient state outside VirtualMachineState (Stopping,
    # Saving, ...); ``state`` is UNKNOWN until the transition settles.
    in_transition: bool = False

    @property
    def is_transitioning(self) -> bool:
        return (
            not self.ready
            or self.in_transition
            or self.state is VirtualMachineState.STARTING
        )


@dataclass(frozen=True)
class VirtualDrive:
    path: str
    is_dynamic: bool = True
    size_bytes: int = 0


@dataclass(frozen=True)
class VirtualSwitch:
    name: str
    type: VirtualSwitchType = VirtualSwitchType.UNKNOWN


@dataclass(frozen=True)
class VirtualNat:
    name: str
    subnet: ipaddress.IPv4Network


@dataclass(frozen=True)
class VirtualIPAddress:
    address: ipaddress.IPv4Address
    subnet: ipaddress.IPv4Network
    interface_name: str


@dataclass(frozen=True)
class NetworkAdapter:
    """Host network adapter, used to correlate a switch with its interface."""

    name: str
    interface_index: int


@dataclass(frozen=True)
class VirtualMachineNetworkAdapter:
    name: str
    vm_name: str
    is_management_os: bool = False
    switch_name: str | None = None
    mac_address: str = ''
    status: str = ''
    addresses: list[ipaddress.IPv4Address] = field(default_factory=list)
