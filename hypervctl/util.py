"""Shared helpers for subprocess execution, PowerShell quoting, and timing."""

from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from loguru import logger

log = logger

MEBIBYTE = 1024 * 1024


@dataclass(frozen=True)
class CmdResult:
    code: int
    stdout: str
    stderr: str


class CmdError(RuntimeError):
    def __init__(self, cmd: Sequence[str] | str, result: CmdResult):
        self.cmd = cmd
        self.result = result
        super().__init__(
            f'Command failed (code={result.code}): {cmd}\n{result.stderr}'.strip()
        )


def shell_join(cmd: Sequence[str]) -> str:
    return subprocess.list2cmdline(list(cmd))


def run_cmd(
    cmd: Sequence[str],
    *,
    check: bool = True,
    capture: bool = True,
    text: bool = True,
    input_text: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CmdResult:
    log.opt(depth=1).debug('RUN: {}', shell_join(cmd))
    p = subprocess.run(
        list(cmd),
        input=input_text,
        capture_output=capture,
        text=text,
        timeout=timeout,
    )
    res = CmdResult(p.returncode, p.stdout or '', p.stderr or '')
    if check and p.returncode != 0:
        log.opt(depth=1).error(
            'Command failed code={} cmd={} stderr={} stdout={}',
            p.returncode,
            shell_join(cmd),
            res.stderr.strip(),
            res.stdout.strip(),
        )
        raise CmdError(cmd, res)
    if p.returncode == 0:
        log.opt(depth=1).debug('Command ok code=0 cmd={}', shell_join(cmd))
    return res


def which(cmd: str) -> Optional[str]:
    from shutil import which as _which

    return _which(cmd)


def ps_quote(text: str) -> str:
    """Quote a string as a single-quoted PowerShell literal."""
    return "'" + str(text).replace("'", "''") + "'"


def same_name(a: str | None, b: str | None) -> bool:
    """Resource names on the host compare case-insensitively."""
    if a is None or b is None:
        return False
    return a.casefold() == b.casefold()


class Clock:
    """Monotonic time source and sleeper; replaced by a fake in tests."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


SYSTEM_CLOCK = Clock()
