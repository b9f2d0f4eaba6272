"""Typed requests for the host control surface and the invoker that sends them.

Two host-access strategies exist. Most operations go through the
``COMMAND`` strategy (a Hyper-V / networking cmdlet). NAT creation and IP
assignment go through ``INSTRUMENTATION`` (CIM objects submitted directly),
because the cmdlets were unreliable for those two. The strategy is chosen by
the request type at each call site in :mod:`hypervctl.driver`.
"""

from __future__ import annotations

import enum
import ipaddress
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, Iterable, Mapping, Sequence, Union

from loguru import logger

from .errors import HostCommandError
from .util import ps_quote

log = logger


class _Clear:
    """Sentinel for an argument explicitly set to ``$null``."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return 'CLEAR'


#: Pass as an argument value to clear a setting on the host. Leaving the
#: argument out entirely keeps the host's current value instead.
CLEAR = _Clear()


class HostAccess(enum.Enum):
    COMMAND = 'command'
    INSTRUMENTATION = 'instrumentation'


def ps_literal(value: Any) -> str:
    """Render a Python value as a PowerShell expression."""
    if value is CLEAR:
        return '$null'
    if value is None:
        raise ValueError('None is not a value; omit the argument or pass CLEAR.')
    if isinstance(value, bool):
        return '$true' if value else '$false'
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, TypedValue):
        return f'[{value.ps_type}]{ps_literal(value.value)}'
    if isinstance(
        value,
        (str, PurePath, ipaddress.IPv4Address, ipaddress.IPv4Network),
    ):
        return ps_quote(str(value))
    if isinstance(value, Mapping):
        items = '; '.join(f'{k}={ps_literal(v)}' for k, v in value.items())
        return '@{' + items + '}'
    if isinstance(value, (list, tuple)):
        return '@(' + ', '.join(ps_literal(v) for v in value) + ')'
    raise TypeError(f'Cannot pass {type(value).__name__} to PowerShell: {value!r}')


@dataclass(frozen=True)
class TypedValue:
    """A value with an explicit PowerShell cast, e.g. ``[uint32]7``."""

    value: Any
    ps_type: str


class _Switch:
    def __repr__(self) -> str:
        return 'SWITCH'


_SWITCH = _Switch()


class CmdletArgs:
    """Ordered arguments for a single cmdlet invocation.

    Example:
        >>> args = CmdletArgs(Name='vm-a')
        >>> args.add_switch('Force')
        >>> args.add('Path', CLEAR)
        >>> args.render()
        "-Name 'vm-a' -Force -Path $null"
    """

    def __init__(self, **values: Any):
        self._args: dict[str, Any] = {}
        for name, value in values.items():
            self.add(name, value)

    def add_switch(self, name: str) -> None:
        self._put(name, _SWITCH)

    def add(self, name: str, value: Any) -> None:
        if value is None:
            raise ValueError(
                f'Argument [{name}] is None; omit it or pass CLEAR to clear it.'
            )
        self._put(name, value)

    def _put(self, name: str, value: Any) -> None:
        if not name:
            raise ValueError('Argument name must not be empty.')
        if name in self._args:
            raise ValueError(f'Argument [{name}] was already added.')
        self._args[name] = value

    def clear(self) -> None:
        self._args.clear()

    def is_switch(self, name: str) -> bool:
        return self._args.get(name) is _SWITCH

    def get(self, name: str, default: Any = None) -> Any:
        value = self._args.get(name, default)
        return True if value is _SWITCH else value

    def __contains__(self, name: object) -> bool:
        return name in self._args

    def __len__(self) -> int:
        return len(self._args)

    def items(self) -> Iterable[tuple[str, Any]]:
        return self._args.items()

    def render(self) -> str:
        parts: list[str] = []
        for name, value in self._args.items():
            if value is _SWITCH:
                parts.append(f'-{name}')
            elif isinstance(value, bool):
                # Colon form so boolean switch parameters such as -Confirm
                # bind the value instead of treating it as positional.
                parts.append(f'-{name}:{ps_literal(value)}')
            else:
                parts.append(f'-{name} {ps_literal(value)}')
        return ' '.join(parts)

    def __repr__(self) -> str:
        return f'CmdletArgs({self.render()})'


Projection = Union[str, tuple[str, str]]


def render_select(select: Sequence[Projection]) -> str:
    parts: list[str] = []
    for item in select:
        if isinstance(item, str):
            parts.append(item)
        else:
            name, expression = item
            parts.append(f'@{{Name={ps_quote(name)};Expression={{{expression}}}}}')
    return 'Select-Object -Property ' + ', '.join(parts)


@dataclass(frozen=True)
class CmdletRequest:
    name: str
    args: CmdletArgs = field(default_factory=CmdletArgs)
    select: tuple[Projection, ...] | None = None

    access = HostAccess.COMMAND

    @property
    def operation(self) -> str:
        return self.name

    def to_script(self) -> str:
        rendered = self.args.render()
        script = f'{self.name} {rendered}'.strip()
        if self.select:
            script += ' | ' + render_select(self.select)
        return script


@dataclass(frozen=True)
class CimRequest:
    """A CIM instance creation or static method call.

    Without ``method`` the request creates an instance of ``class_name``
    with ``properties``; with it, the static method is invoked with
    ``properties`` as its arguments.
    """

    namespace: str
    class_name: str
    properties: Mapping[str, Any] = field(default_factory=dict)
    method: str | None = None

    access = HostAccess.INSTRUMENTATION

    @property
    def operation(self) -> str:
        if self.method:
            return f'{self.class_name}.{self.method}'
        return f'{self.class_name}.Create'

    def to_script(self) -> str:
        common = (
            f'-Namespace {ps_quote(self.namespace)} '
            f'-ClassName {ps_quote(self.class_name)}'
        )
        if self.method:
            return (
                f'CimCmdlets\\Invoke-CimMethod {common} '
                f'-MethodName {ps_quote(self.method)} '
                f'-Arguments {ps_literal(dict(self.properties))}'
            )
        return (
            f'CimCmdlets\\New-CimInstance {common} '
            f'-Property {ps_literal(dict(self.properties))}'
        )


HostRequest = Union[CmdletRequest, CimRequest]


class CommandInvoker:
    """Send requests through pooled execution contexts.

    The invoker never retries: a host failure is surfaced immediately as
    :class:`HostCommandError` carrying the operation and resource name.
    """

    def __init__(self, pool, *, acquire_timeout: float | None = None):
        self.pool = pool
        self.acquire_timeout = acquire_timeout

    def invoke(
        self,
        operation: str,
        args: CmdletArgs | None = None,
        *,
        select: Sequence[Projection] | None = None,
        resource: str | None = None,
    ) -> list[Any]:
        request = CmdletRequest(
            operation,
            args if args is not None else CmdletArgs(),
            tuple(select) if select is not None else None,
        )
        return self.run(request, resource=resource)

    def submit(self, request: CimRequest, *, resource: str | None = None) -> list[Any]:
        return self.run(request, resource=resource)

    def run(self, request: HostRequest, *, resource: str | None = None) -> list[Any]:
        log.debug('RUN [{}]: {}', request.access.value, request.to_script())
        with self.pool.borrow(timeout=self.acquire_timeout) as context:
            try:
                records = context.execute(request)
            except HostCommandError as ex:
                log.error(
                    'Host command failed op={} resource={} error={}',
                    request.operation,
                    resource,
                    ex.message,
                )
                if ex.resource is None and resource is not None:
                    raise HostCommandError(
                        ex.operation, ex.message, resource
                    ) from ex
                raise
        return list(records)

    def close(self) -> None:
        self.pool.close()
