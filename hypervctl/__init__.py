"""Management-command driver for Hyper-V virtual machines and networking."""

from __future__ import annotations

from .config import DriverConfig, load_config
from .driver import HyperVDriver
from .errors import (
    CapabilityMissingError,
    DriverClosedError,
    HostCommandError,
    HyperVError,
    PoolClosedError,
    PoolExhaustedError,
    ResourceConflictError,
    ResourceNotFoundError,
    SessionError,
    SnapshotError,
    StabilizationTimeoutError,
)
from .invoker import CLEAR, CimRequest, CmdletArgs, CommandInvoker, HostAccess
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

__version__ = '0.1.0'

__all__ = [
    'CLEAR',
    'CapabilityMissingError',
    'CimRequest',
    'CmdletArgs',
    'CommandInvoker',
    'ContextPool',
    'DriverClosedError',
    'DriverConfig',
    'HostAccess',
    'HostCommandError',
    'HyperVDriver',
    'HyperVError',
    'NetworkAdapter',
    'PoolClosedError',
    'PoolExhaustedError',
    'ResourceConflictError',
    'ResourceNotFoundError',
    'SessionError',
    'SnapshotError',
    'StabilizationTimeoutError',
    'VirtualDrive',
    'VirtualIPAddress',
    'VirtualMachine',
    'VirtualMachineNetworkAdapter',
    'VirtualMachineState',
    'VirtualNat',
    'VirtualSwitch',
    'VirtualSwitchType',
    'load_config',
]
