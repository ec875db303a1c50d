#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Time-stamp: <2026-10-19 15:12:33 krylon>
#
# /data/code/python/pyccc/classifier.py
# created on 19. 10. 2026
# (c) 2026 Benjamin Walkenhorst
#
# This file is part of the PyCCC connectivity monitor. It is distributed under the
# terms of the GNU General Public License 3. See the file LICENSE for details
# or find a copy online at https://www.gnu.org/licenses/gpl-3.0

"""
pyccc.classifier

(c) 2026 Benjamin Walkenhorst

Figure out which ISP an address belongs to. We ask Team Cymru's DNS service
for the origin ASN of the address, then look the ASN up in our own table of
known ISPs. ASNs we don't know get named after the organization the ASN is
registered to.
"""

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from ipaddress import AddressValueError, IPv4Address
from pathlib import Path
from typing import Callable, Final, Iterable, Optional, Union

from dns.exception import DNSException, Timeout
from dns.resolver import (NXDOMAIN, LifetimeTimeout, NoAnswer, NoNameservers,
                          Resolver)

from pyccc import common
from pyccc.common import CCCError, ConfigError, RWLock
from pyccc.model import ISPRule

Unknown: Final[str] = "Unknown"

origin_zone: Final[str] = "origin.asn.cymru.com"
asn_zone: Final[str] = "asn.cymru.com"

default_ttl: Final[timedelta] = timedelta(hours=24)
default_max_size: Final[int] = 10000

corp_suffixes: Final[tuple[str, ...]] = (
    ", Inc.",
    ", LLC",
    ", Ltd.",
    ", Corp.",
    " Inc.",
    " LLC",
    " Ltd.",
    " Corp.",
)


class ClassifierError(CCCError):
    """ClassifierError indicates a failed or unusable ASN lookup."""


@dataclass(kw_only=True, slots=True)
class CacheItem:
    """CacheItem is an ISP name, plus an expiration timestamp."""

    isp: str
    expires: datetime


@dataclass(kw_only=True, slots=True)
class ClassificationCache:
    """ClassificationCache remembers recent classifications for a while.

    It never holds more than max_size items. When it is full, the item that
    was inserted first is thrown out, no matter how often it has been read.
    """

    ttl: timedelta = default_ttl
    max_size: int = default_max_size
    clock: Callable[[], datetime] = datetime.now
    lock: RWLock = field(default_factory=RWLock)
    items: OrderedDict[str, CacheItem] = field(default_factory=OrderedDict)

    def __post_init__(self) -> None:
        assert self.max_size > 0, "Cache size must be positive"

    def get(self, key: str) -> Optional[str]:
        """Return the cached ISP for <key>, or None if it is missing or stale."""
        with self.lock.read():
            item = self.items.get(key)
            if item is None or item.expires <= self.clock():
                return None
            return item.isp

    def put(self, key: str, isp: str) -> None:
        """Add an item to the cache, evicting the oldest items if it is full."""
        now: Final[datetime] = self.clock()
        with self.lock.write():
            if key in self.items:
                del self.items[key]
            # Items all live equally long, so the stale ones are at the front.
            while len(self.items) > 0 and next(iter(self.items.values())).expires <= now:
                self.items.popitem(last=False)
            while len(self.items) >= self.max_size:
                self.items.popitem(last=False)
            self.items[key] = CacheItem(isp=isp, expires=now + self.ttl)

    def clear(self) -> None:
        """Remove all items."""
        with self.lock.write():
            self.items.clear()

    def __len__(self) -> int:
        with self.lock.read():
            return len(self.items)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


def clean_org_name(org: str) -> str:
    """Turn the organization string of an ASN record into something presentable.

    "COMCAST-7922 - Comcast Cable Communications, LLC, US" becomes
    "Comcast Cable Communications".
    """
    idx = org.find(" - ")
    if idx > 0:
        org = org[idx+3:]

    idx = org.rfind(", ")
    if idx > 0:
        cc = org[idx+2:]
        if 2 <= len(cc) <= 4 and cc.isalpha():
            org = org[:idx]

    for suffix in corp_suffixes:
        if org.endswith(suffix):
            org = org[:-len(suffix)]
            break

    return org.strip()


def parse_v4(addr: Union[str, IPv4Address]) -> IPv4Address:
    """Parse an IPv4 address, raise ClassifierError if it is no such thing."""
    if isinstance(addr, IPv4Address):
        return addr
    try:
        return IPv4Address(addr.strip())
    except AddressValueError as err:
        raise ClassifierError(f"Not an IPv4 address: {addr!r}") from err


@dataclass(kw_only=True, slots=True)
class Classifier:
    """Classifier maps IP addresses to ISPs."""

    log: logging.Logger = field(default_factory=lambda: common.get_logger("classifier"))
    cache: ClassificationCache = field(default_factory=ClassificationCache)
    rules: dict[int, ISPRule] = field(default_factory=dict)
    res: Resolver = field(default=None)

    def __post_init__(self) -> None:
        if self.res is None:
            self.res = Resolver()
            self.res.timeout = 2.5
            self.res.lifetime = 2.5

    def load_config(self, path: Union[str, Path]) -> None:
        """Load the ASN rule table from a JSON file.

        The file maps ASNs (as strings) to objects with the keys "display" and
        "allowed". The rules loaded replace the current ones completely.
        """
        try:
            with open(path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except OSError as err:
            raise ConfigError(f"Failed to read ISP config {path}: {err}") from err
        except json.JSONDecodeError as err:
            raise ConfigError(f"Failed to parse ISP config {path}: {err}") from err

        if not isinstance(raw, dict):
            raise ConfigError(f"ISP config {path} must be a JSON object keyed by ASN")

        rules: list[ISPRule] = []
        for key, val in raw.items():
            try:
                asn = int(key)
            except ValueError:
                self.log.warning("Invalid ASN in ISP config: %s", key)
                continue
            if not isinstance(val, dict) or not isinstance(val.get("display"), str):
                raise ConfigError(f"Invalid rule for ASN {key} in {path}: {val!r}")
            rules.append(ISPRule(asn=asn,
                                 display=val["display"],
                                 allowed=bool(val.get("allowed", False))))

        self.set_rules(rules)
        self.log.info("Loaded ISP config: %d ASN mappings", len(self.rules))

    def set_rules(self, rules: Iterable[ISPRule]) -> None:
        """Replace the rule table."""
        self.rules = {r.asn: r for r in rules}

    def classify_isp(self, addr: Union[str, IPv4Address]) -> str:
        """Return the name of the ISP <addr> belongs to.

        Lookup failures are not cached, we'd rather ask again next time.
        """
        key: Final[str] = str(addr).strip()
        isp: Optional[str] = self.cache.get(key)
        if isp is not None:
            return isp

        try:
            asn, _ = self.lookup_asn(key)
            if asn == 0:
                return Unknown

            rules = self.rules
            if asn in rules:
                isp = rules[asn].display
            else:
                _, org = self.lookup_asn_info(asn)
                if org == "":
                    return Unknown
                isp = clean_org_name(org)
                if isp == "":
                    return Unknown
        except ClassifierError as err:
            self.log.error("Failed to classify %s: %s", key, err)
            return Unknown

        self.cache.put(key, isp)
        return isp

    def is_allowed(self, isp: str) -> bool:
        """Return True if Endpoints of the given ISP may register."""
        return any(r.display == isp and r.allowed for r in self.rules.values())

    def is_asn_allowed(self, asn: int) -> bool:
        """Return True if the given ASN is permitted to register."""
        rule = self.rules.get(asn)
        return rule is not None and rule.allowed

    def get_allowed_isps(self) -> set[str]:
        """Return the names of all ISPs that may register."""
        return {r.display for r in self.rules.values() if r.allowed}

    def asn_for_display(self, isp: str) -> int:
        """Return the first ASN we know for the given ISP name, or 0."""
        for asn, rule in self.rules.items():
            if rule.display == isp:
                return asn
        return 0

    def clear_cache(self) -> None:
        """Forget all cached classifications."""
        self.cache.clear()

    def cache_size(self) -> int:
        """Return the number of cached classifications."""
        return len(self.cache)

    def lookup_txt(self, qname: str) -> list[str]:
        """Return the TXT records for <qname>.

        An empty list means the name does not exist or has no TXT records.
        """
        try:
            answer = self.res.resolve(qname, "TXT")
        except (NXDOMAIN, NoAnswer):
            self.log.debug("No TXT record for %s", qname)
            return []
        except NoNameservers as fail:
            raise ClassifierError(f"No nameserver answered for {qname}: {fail}") from fail
        except (LifetimeTimeout, Timeout) as tmo:
            raise ClassifierError(f"Timeout looking up {qname}: {tmo}") from tmo
        except DNSException as err:
            raise ClassifierError(f"{err.__class__.__name__} looking up {qname}: {err}") \
                from err

        return [b"".join(rd.strings).decode("utf-8", errors="replace") for rd in answer]

    def lookup_asn(self, addr: Union[str, IPv4Address]) -> tuple[int, str]:
        """Look up the origin ASN and the announced prefix of an IPv4 address.

        The response looks like "7922 | 1.2.3.0/24 | US | arin | 1997-12-01".
        """
        ip: Final[IPv4Address] = parse_v4(addr)
        rev: Final[str] = ".".join(reversed(str(ip).split(".")))
        qname: Final[str] = f"{rev}.{origin_zone}"

        records = self.lookup_txt(qname)
        if len(records) == 0:
            return 0, ""

        parts = records[0].split("|")
        if len(parts) < 2:
            raise ClassifierError(f"Unexpected ASN response format: {records[0]}")

        asn: int = 0
        fields = parts[0].split()
        if len(fields) > 0:
            try:
                asn = int(fields[0])
            except ValueError as err:
                raise ClassifierError(f"Invalid ASN in response: {records[0]}") from err

        return asn, parts[1].strip()

    def lookup_asn_info(self, asn: int) -> tuple[str, str]:
        """Look up the name and organization an ASN is registered to.

        The response looks like
        "7922 | US | arin | 1997-12-01 | COMCAST-7922 - Comcast Cable Communications, LLC, US"
        """
        records = self.lookup_txt(f"AS{asn}.{asn_zone}")
        if len(records) == 0:
            return "", ""

        parts = records[0].split("|")
        if len(parts) < 5:
            raise ClassifierError(f"Unexpected ASN info format: {records[0]}")

        org: Final[str] = parts[4].strip()
        idx = org.find(" - ")
        name = org[:idx] if idx > 0 else org
        return name, org


# Local Variables: #
# python-indent: 4 #
# End: #
