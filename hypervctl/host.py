"""Host dependency checks for the PowerShell control surface."""

from __future__ import annotations

from loguru import logger

from .util import CmdResult, run_cmd, which

log = logger

POWERSHELL_CANDIDATES = ['pwsh', 'powershell.exe', 'powershell']
REQUIRED_MODULES = ['Hyper-V', 'NetNat', 'NetTCPIP', 'NetAdapter']


def find_powershell(preferred: str = '') -> str | None:
    if preferred:
        return which(preferred)
    for candidate in POWERSHELL_CANDIDATES:
        found = which(candidate)
        if found is not None:
            return found
    return None


def _probe(executable: str, script: str) -> CmdResult:
    return run_cmd(
        [executable, '-NoLogo', '-NoProfile', '-NonInteractive', '-Command', script],
        check=False,
        capture=True,
        timeout=120,
    )


def hyperv_module_available(executable: str, module: str = 'Hyper-V') -> bool:
    res = _probe(
        executable,
        f"if (Get-Module -ListAvailable -Name '{module}') {{ 'yes' }} else {{ 'no' }}",
    )
    return res.code == 0 and res.stdout.strip().lower() == 'yes'


def check_host(config) -> list[str]:
    """Return human readable problems that would prevent the driver working."""
    problems: list[str] = []
    executable = find_powershell(config.powershell)
    if executable is None:
        wanted = config.powershell or ' or '.join(POWERSHELL_CANDIDATES)
        problems.append(f'PowerShell executable not found: {wanted}')
        return problems
    for module in REQUIRED_MODULES:
        if not hyperv_module_available(executable, module):
            problems.append(f'PowerShell module [{module}] is not available.')
    if problems:
        log.warning('Host check found {} problem(s)', len(problems))
    return problems
