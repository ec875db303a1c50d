#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Time-stamp: <2026-10-19 11:02:17 krylon>
#
# /data/code/python/pyccc/common.py
# created on 19. 10. 2026
# (c) 2026 Benjamin Walkenhorst
#
# This file is part of the PyCCC connectivity monitor. It is distributed under the
# terms of the GNU General Public License 3. See the file LICENSE for details
# or find a copy online at https://www.gnu.org/licenses/gpl-3.0

"""
pyccc.common

(c) 2026 Benjamin Walkenhorst
"""

import logging
import logging.handlers
import os
import pathlib
import sys
from contextlib import contextmanager
from threading import Condition, Lock
from typing import Final

AppName: Final[str] = "PyCCC"
AppVersion: Final[str] = "0.1.0"
Debug: Final[bool] = False
TimeFmt: Final[str] = "%Y-%m-%d %H:%M:%S"

log_level_tty: int = logging.WARNING


class CCCError(Exception):
    """Base class for application-specific Exceptions."""


class ConfigError(CCCError):
    """ConfigError indicates a missing or malformed configuration."""


class Path:
    """Holds the paths of folders and files used by the application"""

    __base: str

    def __init__(self, root: str = os.path.expanduser(f"~/.{AppName.lower()}.d")) -> None:  # noqa
        self.__base = root

    def base(self, folder: str = "") -> pathlib.Path:
        """
        Return the base directory for application specific files.

        If path is a non-empty string, set the base directory to its value.
        """
        if folder != "":
            self.__base = folder
        return pathlib.Path(self.__base)

    @property
    def db(self) -> pathlib.Path:  # pylint: disable-msg=C0103
        """Return the path to the database"""
        return pathlib.Path(os.path.join(self.__base, f"{AppName.lower()}.db"))

    @property
    def log(self) -> pathlib.Path:
        """Return the path to the log file"""
        return pathlib.Path(os.path.join(self.__base, f"{AppName.lower()}.log"))

    @property
    def config(self) -> pathlib.Path:
        """Return the path of the configuration file"""
        return pathlib.Path(os.path.join(self.__base, f"{AppName.lower()}.toml"))

    @property
    def isp_config(self) -> pathlib.Path:
        """Return the default path of the ASN rule table."""
        return pathlib.Path(os.path.join(self.__base, "isp.json"))


path: Path = Path(os.path.expanduser(f"~/.{AppName.lower()}.d"))

_lock: Final[Lock] = Lock()  # pylint: disable-msg=C0103
_cache: Final[dict[str, logging.Logger]] = {}  # pylint: disable-msg=C0103


def set_basedir(folder: str) -> None:
    """Set the base dir to the speficied path."""
    path.base(str(folder))
    init_app()


def init_app() -> None:
    """Initialize the application environment"""
    if not os.path.isdir(path.base()):
        print(f"Create base directory {path.base()}")
        os.makedirs(path.base(), exist_ok=True)


def get_logger(name: str, terminal: bool = True) -> logging.Logger:
    """Create and return a logger with the given name"""
    with _lock:
        init_app()

        if name in _cache:
            return _cache[name]

        log_format = "%(asctime)s (%(name)-16s / line %(lineno)-4d) " + \
            "- %(levelname)-8s %(message)s"
        max_log_size = 4 * 2**20  # 4 MiB
        max_log_count = 10

        log_obj = logging.getLogger(name)
        log_obj.setLevel(logging.DEBUG)
        log_file_handler = logging.handlers.RotatingFileHandler(path.log,
                                                                'a',
                                                                max_log_size,
                                                                max_log_count)

        log_fmt = logging.Formatter(log_format)
        log_file_handler.setFormatter(log_fmt)
        log_obj.addHandler(log_file_handler)

        if terminal:
            log_console_handler = logging.StreamHandler(sys.stdout)
            log_console_handler.setFormatter(log_fmt)
            log_console_handler.setLevel(log_level_tty)
            log_obj.addHandler(log_console_handler)

        _cache[name] = log_obj
        return log_obj


class RWLock:
    """RWLock lets any number of readers in at once, but writers only one at a time.

    Waiting writers take precedence over newly arriving readers, so a steady
    stream of lookups cannot starve cache updates.
    """

    __slots__ = [
        "_cond",
        "_readers",
        "_writer",
        "_waiting",
    ]

    def __init__(self) -> None:
        self._cond = Condition(Lock())
        self._readers: int = 0
        self._writer: bool = False
        self._waiting: int = 0

    @contextmanager
    def read(self):
        """Hold the lock in shared mode for the duration of the with-block."""
        with self._cond:
            while self._writer or self._waiting > 0:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        """Hold the lock exclusively for the duration of the with-block."""
        with self._cond:
            self._waiting += 1
            while self._writer or self._readers > 0:
                self._cond.wait()
            self._waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


# Local Variables: #
# python-indent: 4 #
# End: #
