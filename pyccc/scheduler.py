#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Time-stamp: <2026-10-20 10:27:44 krylon>
#
# /data/code/python/pyccc/scheduler.py
# created on 19. 10. 2026
# (c) 2026 Benjamin Walkenhorst
#
# This file is part of the PyCCC connectivity monitor. It is distributed under the
# terms of the GNU General Public License 3. See the file LICENSE for details
# or find a copy online at https://www.gnu.org/licenses/gpl-3.0

"""
pyccc.scheduler

(c) 2026 Benjamin Walkenhorst

The Scheduler pings all registered Endpoints at regular intervals, records
status changes, and tries to tell an ISP outage from a single resident's
broken connection.
"""

import logging
import traceback
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from ipaddress import IPv4Address
from pathlib import Path
from queue import Empty, Queue
from threading import Event, RLock, Thread, local
from typing import Final, Optional, Protocol, Union

from pyccc import common
from pyccc.database import Database, DBError
from pyccc.model import Endpoint, EventType, Status
from pyccc.probe import PingResult

max_workers: Final[int] = 50
history_max_age: Final[timedelta] = timedelta(days=7)
cleanup_interval: Final[timedelta] = timedelta(hours=24)


class PingProber(Protocol):  # pylint: disable-msg=R0903
    """Anything that can ping an address."""

    def ping(self, addr: Union[str, IPv4Address]) -> PingResult:
        """Ping <addr>."""


class HopProber(Protocol):  # pylint: disable-msg=R0903
    """Anything that can find the last hop on the path to an address."""

    def find_last_responding_hop(self,
                                 addr: Union[str, IPv4Address]) -> \
            tuple[Optional[IPv4Address], int, bool]:
        """Return the last responding hop, its distance, and if <addr> was reached."""


@dataclass(kw_only=True, slots=True)
class ProbeResult:
    """ProbeResult is what a worker found out about an Endpoint."""

    ep: Endpoint
    old_status: Status
    status: Status
    last_ok: Optional[datetime] = None
    hop: Optional[IPv4Address] = None
    hop_number: int = 0


def fallback_status(ep: Endpoint, use_hop: bool = False) -> Status:
    """Return the status of an Endpoint that did not answer.

    An Endpoint that never answered at all is unreachable rather than down.
    """
    if use_hop or ep.use_hop or ep.last_ok is not None:
        return Status.Down
    return Status.Unreachable


@dataclass(kw_only=True, slots=True)
class Scheduler:
    """Scheduler runs the ping cycles and the retention cleanup."""

    pinger: PingProber
    tracer: HopProber
    interval: timedelta = timedelta(seconds=60)
    expire_days: int = 3
    outage_threshold: Optional[float] = None
    wcnt: int = max_workers
    db_path: Optional[Path] = None
    log: logging.Logger = field(default_factory=lambda: common.get_logger("scheduler"))
    lock: RLock = field(default_factory=RLock)
    stop_evt: Event = field(default_factory=Event)
    pool: local = field(default_factory=local)
    threads: list[Thread] = field(default_factory=list)
    _outages: dict[str, bool] = field(default_factory=dict)
    _last_cycle: Optional[datetime] = None
    _cycle_cnt: int = 0
    _started: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        assert self.wcnt > 0
        assert self.interval.total_seconds() > 0

    @property
    def db(self) -> Database:
        """Return the calling thread's database connection."""
        try:
            return self.pool.db
        except AttributeError:
            self.pool.db = Database(self.db_path)
            return self.pool.db

    def close_db(self) -> None:
        """Close the calling thread's database connection, if it has one."""
        db: Optional[Database] = getattr(self.pool, "db", None)
        if db is not None:
            db.close()
            del self.pool.db

    @property
    def active(self) -> bool:
        """Return True if the background threads are running."""
        with self.lock:
            return len(self.threads) > 0 and not self.stop_evt.is_set()

    def start(self) -> None:
        """Start the ping loop and the cleanup loop."""
        self.log.info("Starting monitoring scheduler (interval: %s, expire: %d days)",
                      self.interval,
                      self.expire_days)
        with self.lock:
            self.stop_evt.clear()
            self._started = datetime.now()
            pt = Thread(target=self._ping_loop, name="ping_loop", daemon=True)
            ct = Thread(target=self._cleanup_loop, name="cleanup_loop", daemon=True)
            self.threads = [pt, ct]
            pt.start()
            ct.start()

    def stop(self) -> None:
        """Tell the background threads to quit and wait for them.

        A ping cycle that is already running is allowed to finish.
        """
        self.stop_evt.set()
        with self.lock:
            threads = self.threads
            self.threads = []
        for t in threads:
            t.join()
        self.log.info("Monitoring scheduler stopped")

    def _ping_loop(self) -> None:
        self.log.debug("Ping loop is coming up.")
        try:
            self.run_ping_cycle()
            while not self.stop_evt.wait(self.interval.total_seconds()):
                self.run_ping_cycle()
        finally:
            self.close_db()
            self.log.debug("Ping loop is quitting.")

    def _cleanup_loop(self) -> None:
        self.log.debug("Cleanup loop is coming up.")
        try:
            self.run_cleanup()
            while not self.stop_evt.wait(cleanup_interval.total_seconds()):
                self.run_cleanup()
        finally:
            self.close_db()
            self.log.debug("Cleanup loop is quitting.")

    def run_cleanup(self) -> int:
        """Delete Endpoints that have not been seen for expire_days."""
        cutoff: Final[datetime] = datetime.now() - timedelta(days=self.expire_days)
        try:
            with self.db:
                deleted = self.db.endpoint_delete_expired(cutoff)
        except DBError as err:
            self.log.error("Failed to clean up expired endpoints: %s", err)
            return 0

        if deleted > 0:
            self.log.info("Cleaned up %d expired endpoints (not seen in %d days)",
                          deleted,
                          self.expire_days)
        return deleted

    def monitor_endpoint(self, ep: Endpoint) -> ProbeResult:
        """Probe a single Endpoint.

        If it does not answer and we are not already watching a hop in its
        place, trace the route to it. If the trace reaches the Endpoint, it is
        up, it just doesn't like being pinged. Otherwise the last hop that
        answered becomes the Endpoint's stand-in from now on.
        """
        res: ProbeResult = ProbeResult(ep=ep, old_status=ep.status, status=Status.Down)
        target: Final[IPv4Address] = ep.probe_target

        pres = self.pinger.ping(target)
        if pres.success:
            res.status = Status.Up
            res.last_ok = datetime.now()
            return res

        if pres.error is not None:
            self.log.info("Ping failed for %s (%s): %s",
                          ep.endpoint_id,
                          ep.isp,
                          pres.error)

        if not ep.use_hop:
            hop, hop_number, reached = self.tracer.find_last_responding_hop(ep.addr)
            if reached:
                self.log.debug("%s does not answer pings, but traceroute reached it",
                               ep.endpoint_id)
                res.status = Status.Up
                res.last_ok = datetime.now()
                return res
            if hop is not None:
                self.log.info("%s does not answer, monitoring hop #%d in its place",
                              ep.endpoint_id,
                              hop_number)
                res.hop = hop
                res.hop_number = hop_number
                if self.pinger.ping(hop).success:
                    res.status = Status.Up
                    res.last_ok = datetime.now()
                    return res

        res.status = fallback_status(ep, res.hop is not None)
        return res

    def _probe_worker(self, wid: int, jobQ: Queue[Endpoint], resQ: Queue[ProbeResult]) -> None:
        """Probe Endpoints from <jobQ> until it is empty.

        Every Endpoint taken from the queue yields exactly one result.
        """
        while True:
            try:
                ep: Endpoint = jobQ.get_nowait()
            except Empty:
                return

            try:
                res = self.monitor_endpoint(ep)
            except Exception as err:  # pylint: disable-msg=W0718
                cname: Final[str] = err.__class__.__name__
                self.log.error("probe_worker #%02d: %s probing %s: %s\n%s",
                               wid,
                               cname,
                               ep.endpoint_id,
                               err,
                               "\n".join(traceback.format_exception(err)))
                res = ProbeResult(ep=ep, old_status=ep.status, status=fallback_status(ep))
            resQ.put(res)

    def probe_all(self, endpoints: list[Endpoint]) -> list[ProbeResult]:
        """Probe all <endpoints> in parallel and return the results once all are in."""
        jobQ: Queue[Endpoint] = Queue()
        resQ: Queue[ProbeResult] = Queue()

        for ep in endpoints:
            jobQ.put(ep)

        wcnt: Final[int] = min(self.wcnt, len(endpoints))
        workers: list[Thread] = []
        for i in range(wcnt):
            w = Thread(target=self._probe_worker,
                       name=f"probe_worker_{i+1:02d}",
                       args=(i+1, jobQ, resQ),
                       daemon=True)
            w.start()
            workers.append(w)

        results: list[ProbeResult] = [resQ.get() for _ in endpoints]

        for w in workers:
            w.join()

        return results

    def run_ping_cycle(self) -> None:
        """Probe every Endpoint once, then update the aggregate state."""
        db: Final[Database] = self.db
        try:
            endpoints: list[Endpoint] = db.endpoint_get_all()
        except Exception as err:  # pylint: disable-msg=W0718
            self.log.error("Failed to list endpoints for ping cycle: %s", err)
            return

        if len(endpoints) == 0:
            # Nobody left to judge, so nobody is out.
            with self.lock:
                old_outages: Final[dict[str, bool]] = self._outages
                self._outages = {}
            self._record_outage_changes(db, old_outages, {})
            return

        self.log.info("Starting ping cycle for %d endpoints", len(endpoints))

        results: Final[list[ProbeResult]] = self.probe_all(endpoints)
        up_cnt: int = 0

        for res in results:
            if res.status == Status.Up:
                up_cnt += 1
            try:
                self._record_result(db, res)
            except DBError as err:
                self.log.error("Failed to record result for %s: %s",
                               res.ep.endpoint_id,
                               err)

        down_cnt: Final[int] = len(endpoints) - up_cnt
        self.log.info("Ping cycle complete: %d up, %d down", up_cnt, down_cnt)

        try:
            with db:
                db.snapshot_add(len(endpoints), up_cnt, down_cnt)
        except DBError as err:
            self.log.error("Failed to record uptime snapshot: %s", err)

        self._prune_history(db)

        outages: Optional[dict[str, bool]] = self.analyze_outages(db)

        with self.lock:
            old: Final[dict[str, bool]] = dict(self._outages)

        if outages is None:
            outages = old
        else:
            self._record_outage_changes(db, old, outages)

        with self.lock:
            self._outages = outages
            self._last_cycle = datetime.now()
            self._cycle_cnt += 1

    def _record_result(self, db: Database, res: ProbeResult) -> None:
        ep: Final[Endpoint] = res.ep
        with db:
            if res.hop is not None:
                db.endpoint_update_hop(ep, res.hop, res.hop_number)

            if res.old_status != res.status and res.old_status != Status.Unknown:
                match res.status:
                    case Status.Down:
                        db.event_add(EventType.Down,
                                     ep.isp,
                                     ep.endpoint_id,
                                     f"{ep.isp} endpoint went down")
                    case Status.Up:
                        db.event_add(EventType.Up,
                                     ep.isp,
                                     ep.endpoint_id,
                                     f"{ep.isp} endpoint recovered")

            db.endpoint_update_status(ep, res.status, res.last_ok)

    def _prune_history(self, db: Database) -> None:
        try:
            with db:
                deleted = db.snapshot_delete_old(history_max_age)
            if deleted > 0:
                self.log.info("Cleaned up %d old history records", deleted)
        except DBError as err:
            self.log.error("Failed to clean up old history: %s", err)

        try:
            with db:
                deleted = db.event_delete_old(history_max_age)
            if deleted > 0:
                self.log.info("Cleaned up %d old events", deleted)
        except DBError as err:
            self.log.error("Failed to clean up old events: %s", err)

    def _record_outage_changes(self,
                               db: Database,
                               old: dict[str, bool],
                               new: dict[str, bool]) -> None:
        for isp in sorted(set(old) | set(new)):
            was: bool = old.get(isp, False)
            now: bool = new.get(isp, False)
            if was == now:
                continue
            try:
                with db:
                    if now:
                        db.event_add(EventType.Outage, isp, "", f"{isp} ISP outage detected")
                    else:
                        db.event_add(EventType.Recovery,
                                     isp,
                                     "",
                                     f"{isp} ISP recovered from outage")
            except DBError as err:
                self.log.error("Failed to record outage change for %s: %s", isp, err)

    def analyze_outages(self, db: Database) -> Optional[dict[str, bool]]:
        """Decide for each ISP whether it is likely having an outage.

        An ISP is flagged if more than <threshold> of its Endpoints are down, or
        if at least two of its Endpoints are watched through the same hop and
        every Endpoint behind that hop is currently not up. ISPs with fewer
        than two Endpoints are not judged at all.

        Returns None if the Endpoints could not be loaded.
        """
        try:
            endpoints: list[Endpoint] = db.endpoint_get_all()
            threshold: float = self.outage_threshold if self.outage_threshold is not None \
                else db.outage_threshold_get()
        except Exception as err:  # pylint: disable-msg=W0718
            self.log.error("Failed to analyze ISP outages: %s", err)
            return None

        by_isp: defaultdict[str, list[Endpoint]] = defaultdict(list)
        for ep in endpoints:
            by_isp[ep.isp].append(ep)

        outages: dict[str, bool] = {}

        for isp, eps in by_isp.items():
            if len(eps) < 2:
                continue

            outages[isp] = False
            down_cnt = sum(1 for ep in eps if ep.status == Status.Down)

            if down_cnt / len(eps) > threshold:
                self.log.warning("Likely %s outage: %d/%d endpoints down",
                                 isp,
                                 down_cnt,
                                 len(eps))
                outages[isp] = True
                continue

            shared: Counter[IPv4Address] = Counter(ep.monitored_hop for ep in eps
                                                   if ep.use_hop and ep.monitored_hop is not None)

            for hop, cnt in shared.items():
                if cnt < 2:
                    continue
                try:
                    behind = db.endpoint_get_by_hop(hop)
                except Exception as err:  # pylint: disable-msg=W0718
                    self.log.error("Failed to load endpoints behind hop %s: %s", hop, err)
                    continue
                if len(behind) >= 2 and all(ep.status != Status.Up for ep in behind):
                    self.log.warning("Likely %s outage: shared hop %s down for %d endpoints",
                                     isp,
                                     hop,
                                     len(behind))
                    outages[isp] = True
                    break

        return outages

    def is_isp_outage(self, isp: str) -> bool:
        """Return True if the given ISP is likely having an outage."""
        with self.lock:
            return self._outages.get(isp, False)

    def has_any_outage(self) -> bool:
        """Return True if any ISP is likely having an outage."""
        with self.lock:
            return any(self._outages.values())

    def outages(self) -> dict[str, bool]:
        """Return a copy of the outage map of the last cycle."""
        with self.lock:
            return dict(self._outages)

    def last_cycle_time(self) -> Optional[datetime]:
        """Return when the last ping cycle was completed, or None."""
        with self.lock:
            return self._last_cycle

    def cycle_interval(self) -> timedelta:
        """Return the time between two ping cycles."""
        return self.interval

    def next_cycle_estimate(self) -> datetime:
        """Return when the next ping cycle is expected to complete."""
        with self.lock:
            if self._last_cycle is None:
                return datetime.now()
            return self._last_cycle + self.interval

    def cycle_count(self) -> int:
        """Return the number of ping cycles completed so far."""
        with self.lock:
            return self._cycle_cnt

    def start_time(self) -> datetime:
        """Return when the Scheduler was started."""
        return self._started


# Local Variables: #
# python-indent: 4 #
# End: #
