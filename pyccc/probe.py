#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Time-stamp: <2026-10-19 17:38:02 krylon>
#
# /data/code/python/pyccc/probe.py
# created on 19. 10. 2026
# (c) 2026 Benjamin Walkenhorst
#
# This file is part of the PyCCC connectivity monitor. It is distributed under the
# terms of the GNU General Public License 3. See the file LICENSE for details
# or find a copy online at https://www.gnu.org/licenses/gpl-3.0

"""
pyccc.probe

(c) 2026 Benjamin Walkenhorst

ICMP echo probing and hop discovery.

Raw sockets require root or CAP_NET_RAW. Pinging also works without those if
the kernel permits unprivileged ICMP sockets (see net.ipv4.ping_group_range on
Linux), the Tracer always needs a raw socket, because time-exceeded messages
are not delivered to unprivileged ICMP sockets.
"""

import itertools
import logging
import os
import socket
import struct
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from ipaddress import AddressValueError, IPv4Address
from threading import Lock
from typing import Final, Optional, Union

from pyccc import common

icmp_echo_reply: Final[int] = 0
icmp_dest_unreachable: Final[int] = 3
icmp_echo_request: Final[int] = 8
icmp_time_exceeded: Final[int] = 11

probe_payload: Final[bytes] = b"PYCCC-PROBE"
rcv_buf: Final[int] = 1500

default_ping_count: Final[int] = 3
default_ping_timeout: Final[float] = 5.0
default_hop_timeout: Final[float] = 2.0
default_max_hops: Final[int] = 30

_ident_lock: Final[Lock] = Lock()
_ident_seq = itertools.count(os.getpid())


def next_ident() -> int:
    """Return an ICMP identifier no other probe in this process is currently using."""
    with _ident_lock:
        return next(_ident_seq) & 0xFFFF


def icmp_checksum(data: bytes) -> int:
    """Compute the Internet checksum (RFC 1071) of <data>."""
    if len(data) % 2 == 1:
        data += b"\x00"
    total: int = sum(struct.unpack(f"!{len(data) // 2}H", data))
    total = (total >> 16) + (total & 0xFFFF)
    total += total >> 16
    return ~total & 0xFFFF


def build_echo(ident: int, seq: int, payload: bytes = probe_payload) -> bytes:
    """Build an ICMP echo request."""
    header = struct.pack("!BBHHH", icmp_echo_request, 0, 0, ident, seq)
    csum = icmp_checksum(header + payload)
    return struct.pack("!BBHHH", icmp_echo_request, 0, csum, ident, seq) + payload


class ReplyKind(Enum):
    """ReplyKind classifies an ICMP message we received."""

    EchoReply = auto()
    TimeExceeded = auto()
    Unreachable = auto()
    Other = auto()


@dataclass(kw_only=True, slots=True)
class IcmpReply:
    """IcmpReply is the part of a received ICMP message we care about.

    For error messages, ident and seq are taken from the echo request quoted
    in the message, or -1 if it was cut short.
    """

    kind: ReplyKind
    ident: int = -1
    seq: int = -1


def strip_ip_header(data: bytes) -> bytes:
    """Return the payload of an IPv4 packet."""
    if len(data) < 20:
        return b""
    ihl: Final[int] = (data[0] & 0x0F) * 4
    return data[ihl:]


def parse_reply(data: bytes, has_ip_header: bool) -> Optional[IcmpReply]:
    """Parse an ICMP message. Return None if it is too short to make sense of."""
    if has_ip_header:
        data = strip_ip_header(data)
    if len(data) < 8:
        return None

    icmp_type, _code, _csum, ident, seq = struct.unpack("!BBHHH", data[:8])

    match icmp_type:
        case x if x == icmp_echo_reply:
            return IcmpReply(kind=ReplyKind.EchoReply, ident=ident, seq=seq)
        case x if x in (icmp_time_exceeded, icmp_dest_unreachable):
            kind = ReplyKind.TimeExceeded if x == icmp_time_exceeded else ReplyKind.Unreachable
            quoted = strip_ip_header(data[8:])
            if len(quoted) < 8:
                return IcmpReply(kind=kind)
            qtype, _, _, qident, qseq = struct.unpack("!BBHHH", quoted[:8])
            if qtype != icmp_echo_request:
                return IcmpReply(kind=kind)
            return IcmpReply(kind=kind, ident=qident, seq=qseq)
        case _:
            return IcmpReply(kind=ReplyKind.Other, ident=ident, seq=seq)


def parse_addr(addr: Union[str, IPv4Address]) -> IPv4Address:
    """Return <addr> as an IPv4Address."""
    if isinstance(addr, IPv4Address):
        return addr
    return IPv4Address(addr)


@dataclass(kw_only=True, slots=True)
class PingResult:
    """PingResult is the outcome of pinging an address."""

    success: bool
    rtt: Optional[float] = None
    error: Optional[Exception] = None


@dataclass(kw_only=True, slots=True)
class Pinger:
    """Pinger sends ICMP echo requests.

    An address counts as reachable if it answers at least one of <count> requests.
    """

    timeout: float = default_ping_timeout
    count: int = default_ping_count
    privileged: bool = False
    log: logging.Logger = field(default_factory=lambda: common.get_logger("pinger"))

    def __post_init__(self) -> None:
        assert self.count > 0, "Ping count must be positive"
        assert self.timeout > 0, "Ping timeout must be positive"

    def _open(self) -> socket.socket:
        kind: Final[int] = socket.SOCK_RAW if self.privileged else socket.SOCK_DGRAM
        return socket.socket(socket.AF_INET, kind, socket.IPPROTO_ICMP)

    def ping(self, addr: Union[str, IPv4Address]) -> PingResult:
        """Ping <addr>. Errors are reported in the result, not raised."""
        try:
            dst: Final[IPv4Address] = parse_addr(addr)
        except AddressValueError as err:
            return PingResult(success=False, error=err)

        try:
            sock: socket.socket = self._open()
        except OSError as err:
            self.log.debug("%s opening ICMP socket to ping %s: %s",
                           err.__class__.__name__,
                           dst,
                           err)
            return PingResult(success=False, error=err)

        rtts: list[float] = []
        error: Optional[OSError] = None
        with sock:
            ident: Final[int] = next_ident()
            for seq in range(1, self.count + 1):
                try:
                    rtt = self._echo(sock, dst, ident, seq)
                except OSError as err:
                    # E.g. an ICMP unreachable on an unprivileged socket.
                    self.log.debug("%s pinging %s (seq %d): %s",
                                   err.__class__.__name__,
                                   dst,
                                   seq,
                                   err)
                    error = err
                    continue
                if rtt is not None:
                    rtts.append(rtt)

        if len(rtts) == 0:
            return PingResult(success=False, error=error)

        return PingResult(success=True, rtt=sum(rtts) / len(rtts), error=error)

    def _echo(self, sock: socket.socket, dst: IPv4Address, ident: int, seq: int) -> Optional[float]:
        """Send one echo request and wait for the reply. Return the RTT or None."""
        start: Final[float] = time.monotonic()
        deadline: Final[float] = start + self.timeout
        sock.sendto(build_echo(ident, seq), (str(dst), 0))

        while (remaining := deadline - time.monotonic()) > 0:
            sock.settimeout(remaining)
            try:
                data, peer = sock.recvfrom(rcv_buf)
            except TimeoutError:
                return None

            reply = parse_reply(data, self.privileged)
            if reply is None or reply.kind != ReplyKind.EchoReply:
                continue
            if peer[0] != str(dst) or reply.seq != seq:
                continue
            # The kernel rewrites the identifier of unprivileged ICMP sockets.
            if self.privileged and reply.ident != ident:
                continue
            return time.monotonic() - start

        return None


@dataclass(kw_only=True, slots=True)
class Hop:
    """Hop is a single step on the path to a destination."""

    ttl: int
    addr: Optional[IPv4Address] = None
    rtt: Optional[float] = None
    reached: bool = False


@dataclass(kw_only=True, slots=True)
class TraceResult:
    """TraceResult is the outcome of a traceroute."""

    hops: list[Hop] = field(default_factory=list)
    last_hop: Optional[Hop] = None
    reached: bool = False
    error: Optional[Exception] = None


@dataclass(kw_only=True, slots=True)
class Tracer:
    """Tracer discovers the hops on the path to an address, one TTL at a time."""

    timeout: float = default_hop_timeout
    max_hops: int = default_max_hops
    log: logging.Logger = field(default_factory=lambda: common.get_logger("tracer"))

    def traceroute(self, addr: Union[str, IPv4Address]) -> TraceResult:
        """Trace the path to <addr>.

        Each TTL gets a single probe. The trace stops when the destination
        answers, or when a router reports the destination as unreachable.
        """
        try:
            dst: Final[IPv4Address] = parse_addr(addr)
        except AddressValueError as err:
            return TraceResult(error=err)

        res: TraceResult = TraceResult()
        try:
            sock: socket.socket = socket.socket(socket.AF_INET,
                                                socket.SOCK_RAW,
                                                socket.IPPROTO_ICMP)
        except OSError as err:
            self.log.error("%s opening raw socket to trace %s: %s",
                           err.__class__.__name__,
                           dst,
                           err)
            res.error = err
            return res

        with sock:
            ident: Final[int] = next_ident()
            for ttl in range(1, self.max_hops + 1):
                try:
                    hop = self._probe_hop(sock, dst, ident, ttl)
                except OSError as err:
                    self.log.debug("%s probing hop %d towards %s: %s",
                                   err.__class__.__name__,
                                   ttl,
                                   dst,
                                   err)
                    hop = Hop(ttl=ttl)
                res.hops.append(hop)
                if hop.addr is not None:
                    res.last_hop = hop
                if hop.reached:
                    res.reached = True
                    break

        return res

    def _probe_hop(self, sock: socket.socket, dst: IPv4Address, ident: int, ttl: int) -> Hop:
        hop: Hop = Hop(ttl=ttl)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_TTL, ttl)

        start: Final[float] = time.monotonic()
        deadline: Final[float] = start + self.timeout
        sock.sendto(build_echo(ident, ttl), (str(dst), 0))

        while (remaining := deadline - time.monotonic()) > 0:
            sock.settimeout(remaining)
            try:
                data, peer = sock.recvfrom(rcv_buf)
            except TimeoutError:
                return hop

            reply = parse_reply(data, True)
            if reply is None or reply.kind == ReplyKind.Other:
                continue
            if reply.ident not in (ident, -1) or reply.seq not in (ttl, -1):
                continue

            hop.rtt = time.monotonic() - start
            hop.addr = IPv4Address(peer[0])
            # A router telling us the destination is unreachable is as close
            # as we are going to get.
            hop.reached = reply.kind in (ReplyKind.EchoReply, ReplyKind.Unreachable)
            return hop

        return hop

    def find_last_responding_hop(self,
                                 addr: Union[str, IPv4Address]) -> \
            tuple[Optional[IPv4Address], int, bool]:
        """Return the address and distance of the last hop on the path to
        <addr> that answered, and whether the destination was reached."""
        res: Final[TraceResult] = self.traceroute(addr)
        if res.last_hop is None:
            return None, 0, False

        return res.last_hop.addr, res.last_hop.ttl, res.reached


# Local Variables: #
# python-indent: 4 #
# End: #
