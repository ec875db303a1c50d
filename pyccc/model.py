#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Time-stamp: <2026-10-19 11:20:45 krylon>
#
# /data/code/python/pyccc/model.py
# created on 19. 10. 2026
# (c) 2026 Benjamin Walkenhorst
#
# This file is part of the PyCCC connectivity monitor. It is distributed under the
# terms of the GNU General Public License 3. See the file LICENSE for details
# or find a copy online at https://www.gnu.org/licenses/gpl-3.0

"""
pyccc.model

(c) 2026 Benjamin Walkenhorst
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from ipaddress import IPv4Address
from typing import Optional, Union


class Status(Enum):
    """Status is the reachability of an Endpoint as of the last ping cycle."""

    Unknown = "unknown"
    Up = "up"
    Down = "down"
    Unreachable = "unreachable"


class EventType(Enum):
    """EventType identifies what kind of thing an Event records."""

    Down = "down"
    Up = "up"
    Outage = "outage"
    Recovery = "recovery"
    Registered = "registered"


def hash_addr(addr: Union[str, IPv4Address]) -> str:
    """Return the SHA256 hash of an address as a hex string."""
    return hashlib.sha256(str(addr).encode()).hexdigest()


@dataclass(slots=True, kw_only=True)
class Endpoint:
    """Endpoint is a resident's connection we keep an eye on.

    The address is for internal use only, anything shown to the outside world
    refers to the Endpoint by its ID.
    """

    endpoint_id: str
    addr: IPv4Address
    isp: str
    status: Status = Status.Unknown
    created: datetime
    last_seen: datetime
    last_ok: Optional[datetime] = None
    monitored_hop: Optional[IPv4Address] = None
    hop_number: int = 0
    use_hop: bool = False

    @property
    def addr_hash(self) -> str:
        """Return the hash of the Endpoint's address."""
        return hash_addr(self.addr)

    @property
    def probe_target(self) -> IPv4Address:
        """Return the address the ping cycle should probe."""
        if self.use_hop and self.monitored_hop is not None:
            return self.monitored_hop
        return self.addr


@dataclass(slots=True, kw_only=True)
class Event:
    """Event is a status change or some other notable occurrence."""

    event_id: int = -1
    timestamp: datetime
    event_type: EventType
    isp: str = ""
    endpoint_id: str = ""
    message: str


@dataclass(slots=True, kw_only=True)
class UptimeSnapshot:
    """UptimeSnapshot records the outcome of one ping cycle."""

    snap_id: int = -1
    timestamp: datetime
    total: int
    up: int
    down: int

    @property
    def uptime_pct(self) -> float:
        """Return the percentage of Endpoints that were up."""
        if self.up + self.down == 0:
            return 0.0
        return self.up / (self.up + self.down) * 100


@dataclass(slots=True, kw_only=True)
class ISPRule:
    """ISPRule maps an ASN to the name we show for it."""

    asn: int
    display: str
    allowed: bool = False


@dataclass(slots=True, kw_only=True)
class ISPStats:
    """ISPStats sums up the Endpoints of one ISP."""

    name: str
    total: int = 0
    up: int = 0
    down: int = 0
    unknown: int = 0

    @property
    def uptime_pct(self) -> float:
        """Return the percentage of the ISP's Endpoints that are up."""
        if self.total == 0:
            return 0.0
        return self.up / self.total * 100


@dataclass(slots=True, kw_only=True)
class EndpointMetrics:
    """EndpointMetrics counts all Endpoints by status and by how they are watched."""

    total: int = 0
    up: int = 0
    down: int = 0
    unknown: int = 0
    direct: int = 0
    hop_monitored: int = 0


# Local Variables: #
# python-indent: 4 #
# End: #
