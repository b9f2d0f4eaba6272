from __future__ import annotations

import base64
import io
import json
import threading

import pytest

from hypervctl.errors import HostCommandError, SessionError
from hypervctl.invoker import CmdletArgs, CmdletRequest
from hypervctl.session import PowerShellSession, wrap_script


def test_wrap_script_is_one_line_and_dot_sources() -> None:
    line = wrap_script("Get-VM -Name 'a'\nGet-VMSwitch", 'tok', json_depth=3)
    assert '\n' not in line
    encoded = base64.b64encode("Get-VM -Name 'a'\nGet-VMSwitch".encode()).decode()
    assert encoded in line
    assert '. $__hv_block' in line
    assert "'<<hv-begin:tok>>'" in line
    assert '-Depth 3' in line


class _FakeProc:
    """Stand-in for the PowerShell process that answers with canned output."""

    pid = 1234

    def __init__(self, payloads):
        self.payloads = list(payloads)
        self.stdin = self
        self.stdout = io.StringIO()
        self.returncode = None
        self.written = []

    def poll(self):
        return self.returncode

    def write(self, text):
        self.written.append(text)
        token = text.split('<<hv-begin:')[1].split('>>')[0]
        payload = self.payloads.pop(0)
        body = payload if isinstance(payload, str) else json.dumps(payload)
        self.stdout = io.StringIO(
            f'noise\n<<hv-begin:{token}>>\n{body}\n<<hv-end:{token}>>\n'
        )

    def flush(self):
        pass


def _session(payloads) -> PowerShellSession:
    session = PowerShellSession.__new__(PowerShellSession)
    session.executable = 'pwsh'
    session.json_depth = 5
    session._lock = threading.Lock()
    session.proc = _FakeProc(payloads)
    return session


def test_execute_returns_list() -> None:
    session = _session(
        [
            {'ok': True, 'data': [{'Name': 'vm-a'}]},
            {'ok': True, 'data': {'Name': 'vm-b'}},
            {'ok': True, 'data': None},
        ]
    )
    request = CmdletRequest('Hyper-V\\Get-VM', CmdletArgs())
    assert session.execute(request) == [{'Name': 'vm-a'}]
    assert session.execute(request) == [{'Name': 'vm-b'}]
    assert session.execute(request) == []


def test_execute_reports_host_failure() -> None:
    session = _session([{'ok': False, 'error': 'The operation cannot be performed'}])
    request = CmdletRequest('Hyper-V\\Start-VM', CmdletArgs(Name='vm-a'))
    with pytest.raises(HostCommandError) as ex:
        session.execute(request)
    assert ex.value.operation == 'Hyper-V\\Start-VM'
    assert 'cannot be performed' in ex.value.message


def test_execute_rejects_garbage() -> None:
    session = _session(['not json'])
    with pytest.raises(SessionError):
        session.execute(CmdletRequest('Hyper-V\\Get-VM'))


def test_dead_session() -> None:
    session = _session([])
    session.proc.returncode = 1
    assert session.alive is False
    with pytest.raises(SessionError):
        session.execute(CmdletRequest('Hyper-V\\Get-VM'))


def test_factory_requires_powershell(monkeypatch) -> None:
    from hypervctl.config import DriverConfig

    monkeypatch.setattr('hypervctl.session.find_powershell', lambda preferred='': None)
    with pytest.raises(SessionError):
        PowerShellSession.factory(DriverConfig())


def test_close_dead_session_releases_pipes() -> None:
    session = _session([])
    proc = session.proc
    proc.returncode = 1
    proc.stdin = io.StringIO()
    proc.stdout = io.StringIO('leftover\n')
    session.close()
    assert proc.stdin.closed
    assert proc.stdout.closed
    # closing again is harmless
    session.close()


def test_missing_pipes_raise_session_error() -> None:
    session = _session([{'ok': True, 'data': None}])
    session.proc.stdout = None
    with pytest.raises(SessionError):
        session.execute(CmdletRequest('Hyper-V\\Get-VM'))
