#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Time-stamp: <2026-10-20 11:48:30 krylon>
#
# /data/code/python/pyccc/registry.py
# created on 20. 10. 2026
# (c) 2026 Benjamin Walkenhorst
#
# This file is part of the PyCCC connectivity monitor. It is distributed under the
# terms of the GNU General Public License 3. See the file LICENSE for details
# or find a copy online at https://www.gnu.org/licenses/gpl-3.0

"""
pyccc.registry

(c) 2026 Benjamin Walkenhorst
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from ipaddress import AddressValueError, IPv4Address
from typing import Final, Optional, Union

from pyccc import common
from pyccc.blacklist import IPBlacklist
from pyccc.classifier import Classifier
from pyccc.common import CCCError
from pyccc.database import Database
from pyccc.model import Endpoint, EventType, Status

id_prefix: Final[str] = "CCC-Endpoint-"


class RegistrationError(CCCError):
    """RegistrationError indicates an address that cannot be registered."""


class RegistrationRejected(RegistrationError):
    """RegistrationRejected means the address belongs to an ISP that is not allowed."""


def generate_endpoint_id() -> str:
    """Return a fresh, random Endpoint ID."""
    return f"{id_prefix}{secrets.token_hex(8)}"


@dataclass(kw_only=True, slots=True)
class Registration:
    """Registration is what we tell someone who asks to be monitored."""

    endpoint_id: str
    isp: str
    created: bool
    message: str


@dataclass(kw_only=True, slots=True)
class Registry:
    """Registry signs up new Endpoints for monitoring."""

    db: Database
    classifier: Classifier
    blacklist: IPBlacklist = field(default_factory=IPBlacklist.default)
    log: logging.Logger = field(default_factory=lambda: common.get_logger("registry"))

    def lookup(self, addr: Union[str, IPv4Address]) -> Optional[Endpoint]:
        """Return the Endpoint registered for <addr>, if any."""
        return self.db.endpoint_get_by_addr(str(addr).strip())

    def _check_addr(self, addr: Union[str, IPv4Address]) -> IPv4Address:
        """Parse <addr> and make sure it is not a private or reserved address."""
        try:
            ip: Final[IPv4Address] = addr if isinstance(addr, IPv4Address) \
                else IPv4Address(addr.strip())
        except AddressValueError as err:
            raise RegistrationError(f"Not an IPv4 address: {addr!r}") from err

        if self.blacklist.is_match(ip):
            self.log.info("Registration rejected for %s: reserved address", ip)
            raise RegistrationError(f"{ip} is a private or reserved address")

        return ip

    def register(self, addr: Union[str, IPv4Address]) -> Registration:
        """Register <addr> for monitoring.

        Registering an address twice is harmless, the second time around we
        only note that we have seen it again.
        """
        ip: Final[IPv4Address] = self._check_addr(addr)

        existing: Optional[Endpoint] = self.db.endpoint_get_by_addr(ip)
        if existing is not None:
            with self.db:
                self.db.endpoint_update_last_seen(existing)
            return Registration(endpoint_id=existing.endpoint_id,
                                isp=existing.isp,
                                created=False,
                                message="Already registered")

        isp: Final[str] = self.classifier.classify_isp(ip)
        if not self.classifier.is_allowed(isp):
            self.log.info("Registration rejected for %s: ISP %s not allowed", ip, isp)
            raise RegistrationRejected(
                "Registration is only available for building residents")

        return self._create(ip, isp, f"New {isp} endpoint registered")

    def add(self, addr: Union[str, IPv4Address], isp: str = "") -> Registration:
        """Add <addr> on an operator's behalf.

        Unlike register, this does not ask whether the ISP is allowed. If no
        ISP is given, the address is classified.
        """
        ip: Final[IPv4Address] = self._check_addr(addr)

        existing: Optional[Endpoint] = self.db.endpoint_get_by_addr(ip)
        if existing is not None:
            return Registration(endpoint_id=existing.endpoint_id,
                                isp=existing.isp,
                                created=False,
                                message="Already registered")

        isp = isp.strip()
        if isp == "":
            isp = self.classifier.classify_isp(ip)

        return self._create(ip, isp, f"{isp} endpoint added by operator")

    def _create(self, ip: IPv4Address, isp: str, msg: str) -> Registration:
        now: Final[datetime] = datetime.now()
        ep: Final[Endpoint] = Endpoint(endpoint_id=generate_endpoint_id(),
                                       addr=ip,
                                       isp=isp,
                                       status=Status.Unknown,
                                       created=now,
                                       last_seen=now)

        with self.db:
            self.db.endpoint_add(ep)
            self.db.event_add(EventType.Registered,
                              isp,
                              ep.endpoint_id,
                              msg)

        self.log.info("Registered new endpoint: %s (ISP: %s)", ep.endpoint_id, isp)

        return Registration(endpoint_id=ep.endpoint_id,
                            isp=isp,
                            created=True,
                            message="Successfully registered for monitoring")

# Local Variables: #
# python-indent: 4 #
# End: #
