#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Time-stamp: <2026-10-20 13:05:12 krylon>
#
# /data/code/python/pyccc/config.py
# created on 20. 10. 2026
# (c) 2026 Benjamin Walkenhorst
#
# This file is part of the PyCCC connectivity monitor. It is distributed under the
# terms of the GNU General Public License 3. See the file LICENSE for details
# or find a copy online at https://www.gnu.org/licenses/gpl-3.0

"""
pyccc.config

(c) 2026 Benjamin Walkenhorst

Settings are read from a TOML file in the base directory, then overridden by
CCC_* environment variables, and finally by the command line.
"""

import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Final, Mapping, Optional

from pyccc import common
from pyccc.common import ConfigError


@dataclass(kw_only=True, slots=True)
class Config:
    """Config holds the runtime settings of the monitor."""

    db_path: str = ""
    isp_config: str = ""
    ping_interval: float = 60.0
    ping_timeout: float = 5.0
    ping_count: int = 3
    privileged: bool = False
    expire_days: int = 3
    outage_threshold: Optional[float] = None
    workers: int = 50
    hop_timeout: float = 2.0
    max_hops: int = 30

    def validate(self) -> None:
        """Raise ConfigError if any of the settings are out of range."""
        if self.ping_interval <= 0:
            raise ConfigError(f"Ping interval must be positive, not {self.ping_interval}")
        if self.ping_timeout <= 0 or self.hop_timeout <= 0:
            raise ConfigError("Timeouts must be positive")
        if self.ping_count < 1:
            raise ConfigError(f"Ping count must be at least 1, not {self.ping_count}")
        if self.expire_days < 1:
            raise ConfigError(f"Expire days must be at least 1, not {self.expire_days}")
        if self.workers < 1:
            raise ConfigError(f"Need at least one worker, not {self.workers}")
        if not 1 <= self.max_hops <= 255:
            raise ConfigError(f"Max hops must be between 1 and 255, not {self.max_hops}")
        if self.outage_threshold is not None and not 0 <= self.outage_threshold <= 1:
            raise ConfigError(
                f"Outage threshold must be between 0 and 1, not {self.outage_threshold}")

    def update(self, values: Mapping[str, Any]) -> None:
        """Set the fields named in <values>, converting them to the right type."""
        known: Final[dict[str, Any]] = {f.name: f for f in fields(self)}
        for key, val in values.items():
            if key not in known:
                raise ConfigError(f"Unknown configuration key {key!r}")
            setattr(self, key, convert(key, getattr(self, key), val))


env_vars: Final[dict[str, str]] = {
    "CCC_DB_PATH": "db_path",
    "CCC_ISP_CONFIG": "isp_config",
    "CCC_PING_INTERVAL": "ping_interval",
    "CCC_PING_TIMEOUT": "ping_timeout",
    "CCC_PRIVILEGED": "privileged",
    "CCC_EXPIRE_DAYS": "expire_days",
    "CCC_OUTAGE_THRESHOLD": "outage_threshold",
    "CCC_WORKERS": "workers",
}


def convert(key: str, current: Any, val: Any) -> Any:
    """Convert <val> to the type of the current value of the setting."""
    try:
        match current:
            case bool():
                if isinstance(val, str):
                    return val.strip().lower() in ("1", "true", "yes", "on")
                return bool(val)
            case int():
                return int(val)
            case float():
                return float(val)
            case None if key == "outage_threshold":
                return None if val in ("", None) else float(val)
            case _:
                return str(val)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"Invalid value for {key}: {val!r}") from err


def load(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> Config:
    """Build a Config from the defaults, the config file and the environment."""
    cfg: Config = Config()
    if path is None:
        path = common.path.config
    if environ is None:
        environ = os.environ

    if os.path.exists(path):
        try:
            with open(path, "rb") as fh:
                data = tomllib.load(fh)
        except (OSError, tomllib.TOMLDecodeError) as err:
            raise ConfigError(f"Failed to read config file {path}: {err}") from err
        cfg.update(data.get("monitor", data))

    cfg.update({key: environ[var] for var, key in env_vars.items() if environ.get(var)})

    if cfg.db_path == "":
        cfg.db_path = str(common.path.db)
    if cfg.isp_config == "" and os.path.exists(common.path.isp_config):
        cfg.isp_config = str(common.path.isp_config)

    return cfg

# Local Variables: #
# python-indent: 4 #
# End: #
