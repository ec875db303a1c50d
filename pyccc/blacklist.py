#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Time-stamp: <2026-10-19 16:04:51 krylon>
#
# /data/code/python/pyccc/blacklist.py
# created on 19. 10. 2026
# (c) 2026 Benjamin Walkenhorst
#
# This file is part of the PyCCC connectivity monitor. It is distributed under the
# terms of the GNU General Public License 3. See the file LICENSE for details
# or find a copy online at https://www.gnu.org/licenses/gpl-3.0

"""
pyccc.blacklist

(c) 2026 Benjamin Walkenhorst

Address ranges that can never belong to a resident's ISP connection.
"""


import logging
from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv4Network, ip_network
from threading import Lock
from typing import Final, Sequence, Union

from pyccc import common

reserved_networks: Final[list[str]] = [
    "0.0.0.0/8",
    "10.0.0.0/8",
    "100.64.0.0/10",
    "127.0.0.0/8",
    "169.254.0.0/16",
    "172.16.0.0/12",
    "192.0.2.0/24",
    "192.168.0.0/16",
    "198.18.0.0/15",
    "198.51.100.0/24",
    "203.0.113.0/24",
    "224.0.0.0/4",
    "240.0.0.0/4",
]


@dataclass(kw_only=True, slots=True)
class IPBlacklistItem:
    """IPBlacklistItem represents a range of IP addresses that are blacklisted."""

    net: IPv4Network
    hit_cnt: int = 0

    def is_match(self, addr: IPv4Address) -> bool:
        """Return True if the <addr> is in the Item's network."""
        if addr in self.net:
            self.hit_cnt += 1
            return True
        return False


@dataclass(kw_only=True, slots=True)
class IPBlacklist:
    """IPBlacklist is a list of IP address ranges that are blacklisted."""

    networks: list[IPBlacklistItem]
    lock: Lock = field(default_factory=Lock)
    log: logging.Logger = field(default_factory=lambda: common.get_logger("blacklist"))

    @classmethod
    def from_list(cls, lst: Sequence[Union[IPv4Network, str]]) -> 'IPBlacklist':
        """Create an IPBlacklist from list of IP address ranges."""
        ranges: list[IPBlacklistItem] = []
        for r in lst:
            if isinstance(r, IPv4Network):
                ranges.append(IPBlacklistItem(net=r))
            else:
                net = ip_network(r)
                if not isinstance(net, IPv4Network):
                    raise ValueError(f"Not an IPv4 network: {r}")
                ranges.append(IPBlacklistItem(net=net))
        return IPBlacklist(networks=ranges)

    @classmethod
    def default(cls) -> 'IPBlacklist':
        """Return an IPBlacklist of the private and reserved networks."""
        return cls.from_list(reserved_networks)

    def is_match(self, addr: Union[str, IPv4Address]) -> bool:
        """Return True if <addr> is in any of the blacklisted address ranges."""
        if isinstance(addr, str):
            addr = IPv4Address(addr)
        with self.lock:
            for net in self.networks:
                if net.is_match(addr):
                    self.log.debug("Address %s is matched by %s", addr, net.net)
                    self.networks.sort(key=lambda x: x.hit_cnt, reverse=True)
                    return True
        return False

# Local Variables: #
# python-indent: 4 #
# End: #
