"""Driver settings and the TOML file they are loaded from."""

from __future__ import annotations

import tomllib
from pathlib import Path

import scriptconfig as scfg
import ubelt as ub
from loguru import logger

log = logger


class DriverConfig(scfg.DataConfig):
    """Tunables for the management-command driver."""

    powershell = scfg.Value(
        '',
        help='PowerShell executable; empty auto-detects pwsh then powershell.exe.',
    )
    min_contexts = scfg.Value(
        1, type=int, help='Sessions created eagerly when the pool opens.'
    )
    max_contexts = scfg.Value(
        4, type=int, help='Upper bound on concurrent PowerShell sessions.'
    )
    recycle_interval = scfg.Value(
        600.0,
        type=float,
        help='Seconds after which a session is discarded and recreated.',
    )
    acquire_timeout = scfg.Value(
        300.0,
        type=float,
        help='Seconds to wait for a free session before giving up.',
    )
    operation_timeout = scfg.Value(
        600.0,
        type=float,
        help='Seconds to wait for a host change to stabilize.',
    )
    poll_interval = scfg.Value(
        1.0, type=float, help='Seconds between host state polls.'
    )
    ready_timeout = scfg.Value(
        None,
        help='Seconds to wait for a VM to finish a transition (None waits forever).',
    )
    dvd_cooldown = scfg.Value(
        5.0,
        type=float,
        help='Minimum seconds between inserting and ejecting DVD media.',
    )
    shutdown_retry_limit = scfg.Value(
        120.0,
        type=float,
        help='Seconds to keep re-sending graceful shutdown requests.',
    )
    json_depth = scfg.Value(
        5, type=int, help='ConvertTo-Json depth used for command results.'
    )


def config_path() -> Path:
    p = ub.Path.appdir('hypervctl', type='config').ensuredir()
    return Path(p) / 'config.toml'


def load_config(path: Path | str | None = None) -> DriverConfig:
    fpath = Path(path) if path is not None else config_path()
    if not fpath.exists():
        log.debug('No driver config at {}; using defaults', fpath)
        return DriverConfig()
    raw = tomllib.loads(fpath.read_text(encoding='utf-8'))
    body = raw.get('driver', raw)
    if not isinstance(body, dict):
        raise RuntimeError(f'Invalid driver config in {fpath}: expected a table.')
    known = set(DriverConfig().to_dict())
    unknown = sorted(k for k in body if k not in known)
    if unknown:
        log.warning('Ignoring unknown driver config keys in {}: {}', fpath, unknown)
    values = {k: v for k, v in body.items() if k in known}
    return DriverConfig(**values)
