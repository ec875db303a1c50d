#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Time-stamp: <2026-10-19 13:41:09 krylon>
#
# /data/code/python/pyccc/database.py
# created on 19. 10. 2026
# (c) 2026 Benjamin Walkenhorst
#
# This file is part of the PyCCC connectivity monitor. It is distributed under the
# terms of the GNU General Public License 3. See the file LICENSE for details
# or find a copy online at https://www.gnu.org/licenses/gpl-3.0

"""
pyccc.database

(c) 2026 Benjamin Walkenhorst
"""

import os
import sqlite3
from datetime import datetime, timedelta
from enum import Enum, auto
from ipaddress import IPv4Address
from pathlib import Path
from threading import Lock
from typing import Final, Optional, Union

from pyccc import common
from pyccc.common import CCCError
from pyccc.model import (Endpoint, EndpointMetrics, Event, EventType,
                         ISPStats, Status, UptimeSnapshot, hash_addr)


class DBError(CCCError):
    """Base class for database-related exceptions."""


default_outage_threshold: Final[float] = 0.5

setting_outage_threshold: Final[str] = "outage_threshold"

qinit: Final[list[str]] = [
    """
CREATE TABLE endpoint (
    id TEXT PRIMARY KEY,
    addr TEXT NOT NULL,
    addr_hash TEXT UNIQUE NOT NULL,
    isp TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'unknown',
    created INTEGER NOT NULL,
    last_seen INTEGER NOT NULL,
    last_ok INTEGER,
    monitored_hop TEXT,
    hop_number INTEGER NOT NULL DEFAULT 0,
    use_hop INTEGER NOT NULL DEFAULT 0,
    CHECK (status IN ('unknown', 'up', 'down', 'unreachable'))
) STRICT
    """,
    "CREATE INDEX ep_isp_idx ON endpoint (isp)",
    "CREATE INDEX ep_status_idx ON endpoint (status)",
    "CREATE INDEX ep_last_seen_idx ON endpoint (last_seen)",
    "CREATE INDEX ep_hop_idx ON endpoint (monitored_hop)",
    """
CREATE TABLE event (
    id INTEGER PRIMARY KEY,
    timestamp INTEGER NOT NULL,
    event_type TEXT NOT NULL,
    isp TEXT,
    endpoint_id TEXT,
    message TEXT NOT NULL
) STRICT
    """,
    "CREATE INDEX ev_timestamp_idx ON event (timestamp)",
    """
CREATE TABLE uptime_history (
    id INTEGER PRIMARY KEY,
    timestamp INTEGER NOT NULL,
    total INTEGER NOT NULL,
    up INTEGER NOT NULL,
    down INTEGER NOT NULL
) STRICT
    """,
    "CREATE INDEX uh_timestamp_idx ON uptime_history (timestamp)",
    """
CREATE TABLE settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
) STRICT
    """,
]


class Query(Enum):
    """Query identifies a particular operation on the database."""

    EndpointAdd = auto()
    EndpointGetByID = auto()
    EndpointGetByHash = auto()
    EndpointGetAll = auto()
    EndpointGetByISP = auto()
    EndpointGetByHop = auto()
    EndpointUpdateStatus = auto()
    EndpointUpdateHop = auto()
    EndpointUpdateLastSeen = auto()
    EndpointDelete = auto()
    EndpointDeleteExpired = auto()

    EventAdd = auto()
    EventGetRecent = auto()
    EventDeleteOld = auto()

    SnapshotAdd = auto()
    SnapshotGetSince = auto()
    SnapshotDeleteOld = auto()

    ISPStats = auto()
    EndpointMetrics = auto()
    SharedHopCount = auto()

    SettingGet = auto()
    SettingSet = auto()


ep_cols: Final[str] = """
    id,
    addr,
    isp,
    status,
    created,
    last_seen,
    last_ok,
    monitored_hop,
    hop_number,
    use_hop
FROM endpoint"""

qdb: Final[dict[Query, str]] = {
    Query.EndpointAdd: """
INSERT INTO endpoint (id, addr, addr_hash, isp, status, created, last_seen,
                      last_ok, monitored_hop, hop_number, use_hop)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """,
    Query.EndpointGetByID: f"SELECT {ep_cols} WHERE id = ?",
    Query.EndpointGetByHash: f"SELECT {ep_cols} WHERE addr_hash = ?",
    Query.EndpointGetAll: f"SELECT {ep_cols}",
    Query.EndpointGetByISP: f"SELECT {ep_cols} WHERE isp = ?",
    Query.EndpointGetByHop: f"SELECT {ep_cols} WHERE monitored_hop = ?",
    Query.EndpointUpdateStatus: """
UPDATE endpoint
SET status = ?,
    last_ok = COALESCE(?, last_ok)
WHERE id = ?
    """,
    Query.EndpointUpdateHop: """
UPDATE endpoint
SET monitored_hop = ?,
    hop_number = ?,
    use_hop = ?
WHERE id = ?
    """,
    Query.EndpointUpdateLastSeen: "UPDATE endpoint SET last_seen = ? WHERE id = ?",
    Query.EndpointDelete: "DELETE FROM endpoint WHERE id = ?",
    Query.EndpointDeleteExpired: "DELETE FROM endpoint WHERE last_seen < ?",
    Query.EventAdd: """
INSERT INTO event (timestamp, event_type, isp, endpoint_id, message)
VALUES (?, ?, ?, ?, ?)
RETURNING id
    """,
    Query.EventGetRecent: """
SELECT
    id,
    timestamp,
    event_type,
    COALESCE(isp, ''),
    COALESCE(endpoint_id, ''),
    message
FROM event
WHERE timestamp > ?
ORDER BY timestamp DESC, id DESC
LIMIT ?
    """,
    Query.EventDeleteOld: "DELETE FROM event WHERE timestamp < ?",
    Query.SnapshotAdd: """
INSERT INTO uptime_history (timestamp, total, up, down)
VALUES (?, ?, ?, ?)
RETURNING id
    """,
    Query.SnapshotGetSince: """
SELECT
    id,
    timestamp,
    total,
    up,
    down
FROM uptime_history
WHERE timestamp > ?
ORDER BY timestamp ASC
    """,
    Query.SnapshotDeleteOld: "DELETE FROM uptime_history WHERE timestamp < ?",
    Query.ISPStats: """
SELECT
    isp,
    COUNT(*) AS total,
    SUM(CASE WHEN status = 'up' THEN 1 ELSE 0 END) AS up,
    SUM(CASE WHEN status = 'down' THEN 1 ELSE 0 END) AS down,
    SUM(CASE WHEN status = 'unknown' THEN 1 ELSE 0 END) AS unknown
FROM endpoint
GROUP BY isp
ORDER BY total DESC, isp ASC
    """,
    Query.EndpointMetrics: """
SELECT
    COUNT(*) AS total,
    COALESCE(SUM(CASE WHEN status = 'up' THEN 1 ELSE 0 END), 0) AS up,
    COALESCE(SUM(CASE WHEN status = 'down' THEN 1 ELSE 0 END), 0) AS down,
    COALESCE(SUM(CASE WHEN status = 'unknown' THEN 1 ELSE 0 END), 0) AS unknown,
    COALESCE(SUM(CASE WHEN use_hop = 0 THEN 1 ELSE 0 END), 0) AS direct,
    COALESCE(SUM(CASE WHEN use_hop = 1 THEN 1 ELSE 0 END), 0) AS hop_monitored
FROM endpoint
    """,
    Query.SharedHopCount: """
SELECT COUNT(*) FROM (
    SELECT monitored_hop
    FROM endpoint
    WHERE monitored_hop IS NOT NULL AND monitored_hop != ''
    GROUP BY monitored_hop
    HAVING COUNT(*) > 1
)
    """,
    Query.SettingGet: "SELECT value FROM settings WHERE key = ?",
    Query.SettingSet: """
INSERT INTO settings (key, value) VALUES (?, ?)
ON CONFLICT (key) DO UPDATE SET value = excluded.value
    """,
}


open_lock: Final[Lock] = Lock()


class Database:
    """Database holds the registered Endpoints and everything we learn about them."""

    __slots__ = [
        "db",
        "log",
        "path",
    ]

    def __init__(self, path: Optional[Union[Path, str]] = None) -> None:
        if path is None:
            self.path = common.path.db
        else:
            match path:
                case x if isinstance(x, Path):
                    self.path = x
                case x if isinstance(x, str):
                    self.path = Path(x)

        self.log = common.get_logger("database")
        self.log.debug("Open database at %s", self.path)

        with open_lock:
            exist: Final[bool] = os.path.exists(str(self.path))
            self.db = sqlite3.connect(str(self.path), timeout=10.0)
            self.db.isolation_level = None

            cur: Final[sqlite3.Cursor] = self.db.cursor()
            cur.execute("PRAGMA foreign_keys = true")
            cur.execute("PRAGMA journal_mode = WAL")

            if not exist:
                self.__create_db()

    def __create_db(self) -> None:
        """Initialize a freshly created database"""
        self.log.debug("Initialize fresh database at %s", self.path)
        with self.db:
            for query in qinit:
                try:
                    cur: sqlite3.Cursor = self.db.cursor()
                    cur.execute(query)
                except sqlite3.OperationalError as operr:
                    self.log.debug("%s executing init query: %s\n%s\n",
                                   operr.__class__.__name__,
                                   operr,
                                   query)
                    raise
        self.log.debug("Database initialized successfully.")

    def close(self) -> None:
        """Close the database connection."""
        self.db.close()
        del self.db

    def __enter__(self) -> None:
        self.db.__enter__()

    def __exit__(self, ex_type, ex_val, tb):
        return self.db.__exit__(ex_type, ex_val, tb)

    def _exec(self, query: Query, args: tuple) -> sqlite3.Cursor:
        """Execute a modifying query, turning sqlite errors into DBErrors."""
        try:
            cur: sqlite3.Cursor = self.db.cursor()
            cur.execute(qdb[query], args)
            return cur
        except sqlite3.Error as err:
            msg = f"{err.__class__.__name__} executing {query.name}: {err}"
            self.log.error(msg)
            raise DBError(msg) from err

    def endpoint_add(self, ep: Endpoint) -> None:
        """Add an Endpoint to the Database."""
        self._exec(Query.EndpointAdd, (ep.endpoint_id,
                                       str(ep.addr),
                                       ep.addr_hash,
                                       ep.isp,
                                       ep.status.value,
                                       int(ep.created.timestamp()),
                                       int(ep.last_seen.timestamp()),
                                       maybe_epoch(ep.last_ok),
                                       maybe_str(ep.monitored_hop),
                                       ep.hop_number,
                                       int(ep.use_hop)))

    def endpoint_get_by_id(self, endpoint_id: str) -> Optional[Endpoint]:
        """Lookup an Endpoint by its ID."""
        cur = self.db.cursor()
        cur.execute(qdb[Query.EndpointGetByID], (endpoint_id, ))
        row = cur.fetchone()
        if row is None:
            return None
        return endpoint_from_row(row)

    def endpoint_get_by_addr(self, addr: Union[str, IPv4Address]) -> Optional[Endpoint]:
        """Lookup an Endpoint by its address.

        The lookup goes through the hash of the address, the same way the
        registration path does it.
        """
        cur = self.db.cursor()
        cur.execute(qdb[Query.EndpointGetByHash], (hash_addr(addr), ))
        row = cur.fetchone()
        if row is None:
            return None
        return endpoint_from_row(row)

    def endpoint_get_all(self) -> list[Endpoint]:
        """Get all Endpoints from the database."""
        cur = self.db.cursor()
        cur.execute(qdb[Query.EndpointGetAll])
        return [endpoint_from_row(row) for row in cur]

    def endpoint_get_by_isp(self, isp: str) -> list[Endpoint]:
        """Get all Endpoints belonging to the given ISP."""
        cur = self.db.cursor()
        cur.execute(qdb[Query.EndpointGetByISP], (isp, ))
        return [endpoint_from_row(row) for row in cur]

    def endpoint_get_by_hop(self, hop: Union[str, IPv4Address]) -> list[Endpoint]:
        """Get all Endpoints, regardless of ISP, whose monitored hop is <hop>."""
        cur = self.db.cursor()
        cur.execute(qdb[Query.EndpointGetByHop], (str(hop), ))
        return [endpoint_from_row(row) for row in cur]

    def endpoint_update_status(self,
                               ep: Endpoint,
                               status: Status,
                               last_ok: Optional[datetime] = None) -> None:
        """Set an Endpoint's status.

        If last_ok is None, the stored time of the last successful probe is left alone.
        """
        self._exec(Query.EndpointUpdateStatus, (status.value,
                                                maybe_epoch(last_ok),
                                                ep.endpoint_id))
        ep.status = status
        if last_ok is not None:
            ep.last_ok = last_ok

    def endpoint_update_hop(self,
                            ep: Endpoint,
                            hop: Optional[IPv4Address],
                            hop_number: int) -> None:
        """Set the hop we monitor in place of the Endpoint itself."""
        use_hop: Final[bool] = hop is not None
        self._exec(Query.EndpointUpdateHop, (maybe_str(hop),
                                             hop_number,
                                             int(use_hop),
                                             ep.endpoint_id))
        ep.monitored_hop = hop
        ep.hop_number = hop_number
        ep.use_hop = use_hop

    def endpoint_update_last_seen(self, ep: Endpoint, tstamp: Optional[datetime] = None) -> None:
        """Update an Endpoint's last_seen stamp.

        If no timestamp is given, use the current time.
        """
        if tstamp is None:
            tstamp = datetime.now()
        self._exec(Query.EndpointUpdateLastSeen, (int(tstamp.timestamp()), ep.endpoint_id))
        ep.last_seen = tstamp

    def endpoint_delete(self, endpoint_id: str) -> bool:
        """Remove an Endpoint. Return True if there was one to remove."""
        cur = self._exec(Query.EndpointDelete, (endpoint_id, ))
        return cur.rowcount > 0

    def endpoint_delete_expired(self, cutoff: datetime) -> int:
        """Remove all Endpoints that have not been seen since <cutoff>."""
        cur = self._exec(Query.EndpointDeleteExpired, (int(cutoff.timestamp()), ))
        return cur.rowcount

    def event_add(self,
                  etype: EventType,
                  isp: str,
                  endpoint_id: str,
                  message: str,
                  tstamp: Optional[datetime] = None) -> Event:
        """Append an Event to the log."""
        if tstamp is None:
            tstamp = datetime.now()
        cur = self._exec(Query.EventAdd, (int(tstamp.timestamp()),
                                          etype.value,
                                          isp or None,
                                          endpoint_id or None,
                                          message))
        row = cur.fetchone()
        if row is None:
            msg = f"Adding {etype.value} Event did not return an ID"
            self.log.error(msg)
            raise DBError(msg)
        return Event(event_id=row[0],
                     timestamp=tstamp,
                     event_type=etype,
                     isp=isp,
                     endpoint_id=endpoint_id,
                     message=message)

    def event_get_recent(self, hours: int = 24, limit: int = 50) -> list[Event]:
        """Return the Events of the last <hours> hours, newest first."""
        cutoff: Final[datetime] = datetime.now() - timedelta(hours=hours)
        cur = self.db.cursor()
        cur.execute(qdb[Query.EventGetRecent], (int(cutoff.timestamp()), limit))
        events: list[Event] = []
        for row in cur:
            ev = Event(event_id=row[0],
                       timestamp=datetime.fromtimestamp(row[1]),
                       event_type=EventType(row[2]),
                       isp=row[3],
                       endpoint_id=row[4],
                       message=row[5])
            events.append(ev)
        return events

    def event_delete_old(self, max_age: timedelta) -> int:
        """Remove Events older than <max_age>."""
        cutoff: Final[datetime] = datetime.now() - max_age
        cur = self._exec(Query.EventDeleteOld, (int(cutoff.timestamp()), ))
        return cur.rowcount

    def snapshot_add(self,
                     total: int,
                     up: int,
                     down: int,
                     tstamp: Optional[datetime] = None) -> UptimeSnapshot:
        """Record the outcome of a ping cycle."""
        if tstamp is None:
            tstamp = datetime.now()
        cur = self._exec(Query.SnapshotAdd, (int(tstamp.timestamp()), total, up, down))
        row = cur.fetchone()
        if row is None:
            msg = "Adding uptime snapshot did not return an ID"
            self.log.error(msg)
            raise DBError(msg)
        return UptimeSnapshot(snap_id=row[0],
                              timestamp=tstamp,
                              total=total,
                              up=up,
                              down=down)

    def snapshot_get_since(self, since: timedelta) -> list[UptimeSnapshot]:
        """Return the uptime snapshots recorded within <since>, oldest first."""
        cutoff: Final[datetime] = datetime.now() - since
        cur = self.db.cursor()
        cur.execute(qdb[Query.SnapshotGetSince], (int(cutoff.timestamp()), ))
        return [UptimeSnapshot(snap_id=row[0],
                               timestamp=datetime.fromtimestamp(row[1]),
                               total=row[2],
                               up=row[3],
                               down=row[4]) for row in cur]

    def snapshot_delete_old(self, max_age: timedelta) -> int:
        """Remove uptime snapshots older than <max_age>."""
        cutoff: Final[datetime] = datetime.now() - max_age
        cur = self._exec(Query.SnapshotDeleteOld, (int(cutoff.timestamp()), ))
        return cur.rowcount

    def isp_stats(self) -> list[ISPStats]:
        """Return per-ISP counts of Endpoints by status."""
        cur = self.db.cursor()
        cur.execute(qdb[Query.ISPStats])
        return [ISPStats(name=row[0],
                         total=row[1],
                         up=row[2],
                         down=row[3],
                         unknown=row[4]) for row in cur]

    def endpoint_metrics(self) -> EndpointMetrics:
        """Count all Endpoints by status, and by whether we watch them directly."""
        cur = self.db.cursor()
        cur.execute(qdb[Query.EndpointMetrics])
        row = cur.fetchone()
        return EndpointMetrics(total=row[0],
                               up=row[1],
                               down=row[2],
                               unknown=row[3],
                               direct=row[4],
                               hop_monitored=row[5])

    def shared_hop_count(self) -> int:
        """Return the number of hops watched on behalf of more than one Endpoint."""
        cur = self.db.cursor()
        cur.execute(qdb[Query.SharedHopCount])
        return cur.fetchone()[0]

    def setting_get(self, key: str) -> Optional[str]:
        """Return the value of a setting, or None if it has not been set."""
        cur = self.db.cursor()
        cur.execute(qdb[Query.SettingGet], (key, ))
        row = cur.fetchone()
        if row is None:
            return None
        return row[0]

    def setting_set(self, key: str, value: str) -> None:
        """Set a setting. The last write wins."""
        self._exec(Query.SettingSet, (key, value))

    def outage_threshold_get(self) -> float:
        """Return the configured outage threshold, or the default if none is set."""
        val = self.setting_get(setting_outage_threshold)
        if val is None:
            return default_outage_threshold
        try:
            threshold = float(val)
        except ValueError:
            self.log.error("Invalid outage threshold in settings: %r", val)
            return default_outage_threshold
        if not 0 <= threshold <= 1:
            return default_outage_threshold
        return threshold

    def outage_threshold_set(self, threshold: float) -> None:
        """Store the outage threshold, which must be a fraction between 0 and 1."""
        if not 0 <= threshold <= 1:
            raise ValueError(f"Outage threshold must be between 0 and 1, not {threshold}")
        self.setting_set(setting_outage_threshold, f"{threshold:.2f}")


def endpoint_from_row(row: tuple) -> Endpoint:
    """Build an Endpoint from a row selected with ep_cols."""
    return Endpoint(
        endpoint_id=row[0],
        addr=IPv4Address(row[1]),
        isp=row[2],
        status=Status(row[3]),
        created=datetime.fromtimestamp(row[4]),
        last_seen=datetime.fromtimestamp(row[5]),
        last_ok=maybe_timestamp(row[6]),
        monitored_hop=IPv4Address(row[7]) if row[7] else None,
        hop_number=row[8],
        use_hop=bool(row[9]),
    )


def maybe_timestamp(ts: Optional[int]) -> Optional[datetime]:
    """Return a datetime object if <ts> is not None, else None."""
    if ts is not None:
        return datetime.fromtimestamp(ts)
    return None


def maybe_epoch(t: Optional[datetime]) -> Optional[int]:
    """Return <t> as seconds since the epoch if it is not None, else None."""
    if t is not None:
        return int(t.timestamp())
    return None


def maybe_str(addr: Optional[IPv4Address]) -> Optional[str]:
    """Return <addr> as a string, or None."""
    if addr is not None:
        return str(addr)
    return None

# Local Variables: #
# python-indent: 4 #
# End: #
