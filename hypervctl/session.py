"""Persistent PowerShell processes used as execution contexts.

Starting PowerShell and importing the Hyper-V module takes seconds, so a
session keeps one process alive and feeds it one request per line on stdin.
Each request is wrapped so the process answers with a single JSON document
between two marker lines::

    <<hv-begin:TOKEN>>
    {"ok": true, "data": [...]}
    <<hv-end:TOKEN>>
"""

from __future__ import annotations

import base64
import json
import subprocess
import threading
import uuid
from typing import Any, Callable

from loguru import logger

from .errors import HostCommandError, SessionError
from .host import find_powershell
from .util import SYSTEM_CLOCK, Clock

log = logger

PREAMBLE = (
    "$ErrorActionPreference = 'Stop'; "
    "$ProgressPreference = 'SilentlyContinue'; "
    "$WarningPreference = 'SilentlyContinue'; "
    '[Console]::OutputEncoding = [Text.Encoding]::UTF8; '
    'Import-Module Hyper-V'
)


def wrap_script(script: str, token: str, *, json_depth: int = 5) -> str:
    """Wrap ``script`` into one stdin line that answers with framed JSON."""
    encoded = base64.b64encode(script.encode('utf-8')).decode('ascii')
    return (
        'try { '
        '$__hv_block = [scriptblock]::Create([Text.Encoding]::UTF8.GetString('
        f"[Convert]::FromBase64String('{encoded}'))); "
        '$__hv_out = @(. $__hv_block); '
        '$__hv_res = @{ ok = $true; data = $__hv_out } '
        '} catch { '
        '$__hv_res = @{ ok = $false; error = $_.Exception.Message } '
        '}; '
        f"Write-Output '<<hv-begin:{token}>>'; "
        f'ConvertTo-Json -InputObject $__hv_res -Depth {json_depth} -Compress; '
        f"Write-Output '<<hv-end:{token}>>'"
    )


class PowerShellSession:
    """One long-lived PowerShell process.

    A session is used by one borrower at a time; the pool guarantees that,
    the internal lock only protects against misuse.
    """

    def __init__(
        self,
        executable: str,
        *,
        json_depth: int = 5,
        preamble: str = PREAMBLE,
        clock: Clock | None = None,
    ):
        self.executable = executable
        self.json_depth = json_depth
        self.clock = clock or SYSTEM_CLOCK
        self._lock = threading.Lock()
        started = self.clock.monotonic()
        log.debug('Starting PowerShell session: {}', executable)
        try:
            self.proc = subprocess.Popen(
                [
                    executable,
                    '-NoLogo',
                    '-NoProfile',
                    '-NonInteractive',
                    '-Command',
                    '-',
                ],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                encoding='utf-8',
                bufsize=1,
            )
        except OSError as ex:
            raise SessionError(f'Cannot start PowerShell [{executable}]: {ex}') from ex
        try:
            self._exchange(preamble, operation='session-preamble')
        except Exception:
            self.close()
            raise
        log.debug(
            'PowerShell session ready pid={} in {:.1f}s',
            self.proc.pid,
            self.clock.monotonic() - started,
        )

    @classmethod
    def factory(cls, config) -> Callable[[], 'PowerShellSession']:
        executable = find_powershell(config.powershell)
        if executable is None:
            raise SessionError(
                'PowerShell was not found; install it or set the powershell option.'
            )
        json_depth = int(config.json_depth)

        def _create() -> PowerShellSession:
            return cls(executable, json_depth=json_depth)

        return _create

    @property
    def alive(self) -> bool:
        return self.proc.poll() is None

    def execute(self, request) -> list[Any]:
        return self._exchange(request.to_script(), operation=request.operation)

    def _exchange(self, script: str, *, operation: str) -> list[Any]:
        token = uuid.uuid4().hex
        line = wrap_script(script, token, json_depth=self.json_depth)
        with self._lock:
            if not self.alive:
                raise SessionError(
                    f'PowerShell session exited (code={self.proc.returncode}).'
                )
            if self.proc.stdin is None or self.proc.stdout is None:
                raise SessionError('PowerShell session has no stdin/stdout pipes.')
            try:
                self.proc.stdin.write(line + '\n')
                self.proc.stdin.flush()
            except OSError as ex:
                raise SessionError(f'Cannot write to PowerShell session: {ex}') from ex
            body = self._read_framed(token)
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as ex:
            raise SessionError(
                f'Malformed response for {operation}: {body[:200]!r}'
            ) from ex
        if not isinstance(payload, dict) or 'ok' not in payload:
            raise SessionError(f'Unexpected response for {operation}: {payload!r}')
        if not payload['ok']:
            raise HostCommandError(operation, str(payload.get('error') or ''))
        data = payload.get('data')
        if data is None:
            return []
        if isinstance(data, list):
            return data
        return [data]

    def _read_framed(self, token: str) -> str:
        begin = f'<<hv-begin:{token}>>'
        end = f'<<hv-end:{token}>>'
        if self.proc.stdout is None:
            raise SessionError('PowerShell session has no stdout pipe.')
        lines: list[str] = []
        inside = False
        while True:
            raw = self.proc.stdout.readline()
            if raw == '':
                raise SessionError('PowerShell session closed its output stream.')
            text = raw.rstrip('\r\n')
            if not inside:
                if text == begin:
                    inside = True
                continue
            if text == end:
                return '\n'.join(lines)
            lines.append(text)

    def close(self) -> None:
        proc = self.proc
        if proc.poll() is not None:
            self._close_pipes()
            return
        try:
            if proc.stdin is not None:
                proc.stdin.write('exit\n')
                proc.stdin.flush()
                proc.stdin.close()
            proc.wait(timeout=10)
        except (OSError, subprocess.TimeoutExpired):
            log.warning('PowerShell session pid={} did not exit; killing it', proc.pid)
            proc.kill()
            proc.wait()
        self._close_pipes()

    def _close_pipes(self) -> None:
        for pipe in (self.proc.stdin, self.proc.stdout):
            if pipe is None or pipe.closed:
                continue
            try:
                pipe.close()
            except OSError as ex:
                log.debug('Error closing PowerShell pipe: {}', ex)
