#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Time-stamp: <2026-10-20 19:15:03 krylon>
#
# /data/code/python/pyccc/test_scheduler.py
# created on 20. 10. 2026
# (c) 2026 Benjamin Walkenhorst
#
# This file is part of the PyCCC connectivity monitor. It is distributed under the
# terms of the GNU General Public License 3. See the file LICENSE for details
# or find a copy online at https://www.gnu.org/licenses/gpl-3.0

"""
pyccc.test_scheduler

(c) 2026 Benjamin Walkenhorst
"""

import os
import shutil
import time
import unittest
from datetime import datetime, timedelta
from ipaddress import IPv4Address
from pathlib import Path
from typing import Final, Optional, Union
from unittest.mock import patch

from pyccc import common
from pyccc.database import Database, DBError
from pyccc.model import Endpoint, Event, EventType, Status
from pyccc.probe import PingResult
from pyccc.scheduler import Scheduler

test_dir: Final[str] = os.path.join(
    "/tmp",
    datetime.now().strftime(f"{common.AppName.lower()}_test_scheduler_%Y%m%d_%H%M%S"))

test_hop: Final[IPv4Address] = IPv4Address("68.85.1.1")

TraceAnswer = tuple[Optional[IPv4Address], int, bool]


class FakePinger:
    """FakePinger answers for the addresses it is told are up."""

    def __init__(self) -> None:
        self.up: set[str] = set()
        self.broken: set[str] = set()
        self.calls: list[str] = []

    def ping(self, addr: Union[str, IPv4Address]) -> PingResult:
        """Pretend to ping <addr>."""
        self.calls.append(str(addr))
        if str(addr) in self.broken:
            raise RuntimeError(f"Pinging {addr} blew up")
        return PingResult(success=str(addr) in self.up, rtt=0.01)


class FakeTracer:
    """FakeTracer returns canned traceroute results."""

    def __init__(self) -> None:
        self.routes: dict[str, TraceAnswer] = {}
        self.calls: list[str] = []

    def find_last_responding_hop(self, addr: Union[str, IPv4Address]) -> TraceAnswer:
        """Pretend to trace the route to <addr>."""
        self.calls.append(str(addr))
        return self.routes.get(str(addr), (None, 0, False))


class TestScheduler(unittest.TestCase):
    """Test the ping cycle and outage detection."""

    db: Database
    sched: Scheduler
    pinger: FakePinger
    tracer: FakeTracer
    addr_cnt: int

    @classmethod
    def setUpClass(cls) -> None:
        """Prepare the testing environment."""
        common.set_basedir(test_dir)

    @classmethod
    def tearDownClass(cls) -> None:
        """Clean up afterwards."""
        shutil.rmtree(test_dir, ignore_errors=True)

    def setUp(self) -> None:
        """Give each test a database and a Scheduler of its own."""
        db_path: Final[Path] = Path(test_dir) / f"{self._testMethodName}.db"
        self.db = Database(db_path)
        self.pinger = FakePinger()
        self.tracer = FakeTracer()
        self.sched = Scheduler(pinger=self.pinger,
                               tracer=self.tracer,
                               db_path=db_path,
                               wcnt=4)
        self.addr_cnt = 0

    def tearDown(self) -> None:
        """Close the database connections."""
        self.sched.close_db()
        self.db.close()

    def add_ep(self,
               isp: str = "Comcast",
               status: Status = Status.Up,
               last_ok: Optional[datetime] = None,
               last_seen: Optional[datetime] = None) -> Endpoint:
        """Register an Endpoint directly in the database."""
        self.addr_cnt += 1
        now: Final[datetime] = datetime.now()
        if last_ok is None and status == Status.Up:
            last_ok = now - timedelta(hours=1)
        ep = Endpoint(endpoint_id=f"CCC-Endpoint-{self.addr_cnt:04d}",
                      addr=IPv4Address(f"73.20.{self.addr_cnt // 200}.{self.addr_cnt % 200 + 1}"),
                      isp=isp,
                      status=status,
                      created=now,
                      last_seen=last_seen or now,
                      last_ok=last_ok)
        with self.db:
            self.db.endpoint_add(ep)
        return ep

    def reload(self, ep: Endpoint) -> Endpoint:
        """Load the current state of <ep> from the database."""
        fresh = self.db.endpoint_get_by_id(ep.endpoint_id)
        assert fresh is not None
        return fresh

    def events(self, etype: EventType) -> list[Event]:
        """Return the recent Events of the given type."""
        return [e for e in self.db.event_get_recent(24, 1000) if e.event_type == etype]

    def test_01_ping_up(self) -> None:
        """An Endpoint that answers is up."""
        ep = self.add_ep()
        self.pinger.up.add(str(ep.addr))

        self.sched.run_ping_cycle()

        fresh = self.reload(ep)
        self.assertEqual(fresh.status, Status.Up)
        self.assertGreater(fresh.last_ok, ep.last_ok)
        self.assertEqual(len(self.tracer.calls), 0)
        self.assertEqual(len(self.events(EventType.Down)), 0)

    def test_02_traceroute_reached(self) -> None:
        """An Endpoint that ignores pings but shows up in a traceroute is up."""
        ep = self.add_ep()
        self.tracer.routes[str(ep.addr)] = (ep.addr, 9, True)

        self.sched.run_ping_cycle()

        fresh = self.reload(ep)
        self.assertEqual(fresh.status, Status.Up)
        self.assertFalse(fresh.use_hop)
        self.assertEqual(self.tracer.calls, [str(ep.addr)])
        self.assertEqual(len(self.events(EventType.Down)), 0)

    def test_03_hop_fallback_down(self) -> None:
        """A silent Endpoint behind a silent hop is down, and the hop sticks."""
        ep = self.add_ep()
        self.tracer.routes[str(ep.addr)] = (test_hop, 5, False)

        self.sched.run_ping_cycle()

        fresh = self.reload(ep)
        self.assertEqual(fresh.status, Status.Down)
        self.assertTrue(fresh.use_hop)
        self.assertEqual(fresh.monitored_hop, test_hop)
        self.assertEqual(fresh.hop_number, 5)
        self.assertEqual(len(self.events(EventType.Down)), 1)

        # Once we watch a hop, we stop tracing and only ping the hop.
        self.pinger.calls.clear()
        self.sched.run_ping_cycle()

        self.assertEqual(len(self.tracer.calls), 1)
        self.assertEqual(self.pinger.calls, [str(test_hop)])
        self.assertEqual(self.reload(ep).status, Status.Down)
        self.assertEqual(len(self.events(EventType.Down)), 1)

        self.pinger.up.add(str(test_hop))
        self.sched.run_ping_cycle()

        self.assertEqual(self.reload(ep).status, Status.Up)
        self.assertEqual(len(self.events(EventType.Up)), 1)
        self.assertEqual(len(self.events(EventType.Down)), 1)

    def test_04_hop_answers(self) -> None:
        """If the hop answers in place of the Endpoint, the Endpoint is up."""
        ep = self.add_ep()
        self.tracer.routes[str(ep.addr)] = (test_hop, 5, False)
        self.pinger.up.add(str(test_hop))

        self.sched.run_ping_cycle()

        fresh = self.reload(ep)
        self.assertEqual(fresh.status, Status.Up)
        self.assertTrue(fresh.use_hop)
        self.assertEqual(fresh.probe_target, test_hop)
        self.assertEqual(len(self.events(EventType.Down)), 0)

    def test_05_unreachable(self) -> None:
        """An Endpoint that never answered is unreachable, quietly."""
        ep = self.add_ep(status=Status.Unknown)

        self.sched.run_ping_cycle()

        fresh = self.reload(ep)
        self.assertEqual(fresh.status, Status.Unreachable)
        self.assertIsNone(fresh.last_ok)
        self.assertEqual(len(self.events(EventType.Down)), 0)
        self.assertEqual(len(self.events(EventType.Up)), 0)

    def test_06_isp_outage(self) -> None:
        """Three of four Endpoints down is an outage, and recovery is noted."""
        eps = [self.add_ep(isp="Acme") for _ in range(4)]
        self.pinger.up.add(str(eps[0].addr))

        self.sched.run_ping_cycle()

        self.assertTrue(self.sched.is_isp_outage("Acme"))
        self.assertTrue(self.sched.has_any_outage())
        self.assertEqual(len(self.events(EventType.Down)), 3)
        outage_events = self.events(EventType.Outage)
        self.assertEqual(len(outage_events), 1)
        self.assertEqual(outage_events[0].isp, "Acme")

        # Still out: no new Events.
        self.sched.run_ping_cycle()
        self.assertEqual(len(self.events(EventType.Outage)), 1)
        self.assertEqual(len(self.events(EventType.Down)), 3)

        for ep in eps:
            self.pinger.up.add(str(ep.addr))
        self.sched.run_ping_cycle()

        self.assertFalse(self.sched.is_isp_outage("Acme"))
        self.assertFalse(self.sched.has_any_outage())
        self.assertEqual(len(self.events(EventType.Recovery)), 1)
        self.assertEqual(len(self.events(EventType.Up)), 3)

    def test_07_threshold_boundary(self) -> None:
        """Exactly half of the Endpoints down is not an outage."""
        eps = [self.add_ep(isp="Acme") for _ in range(4)]
        self.pinger.up.update(str(ep.addr) for ep in eps[:2])

        self.sched.run_ping_cycle()

        self.assertFalse(self.sched.is_isp_outage("Acme"))
        self.assertEqual(self.sched.outages(), {"Acme": False})
        self.assertEqual(len(self.events(EventType.Outage)), 0)

        with self.db:
            self.db.outage_threshold_set(0.25)
        self.sched.run_ping_cycle()

        self.assertTrue(self.sched.is_isp_outage("Acme"))

    def test_08_shared_hop(self) -> None:
        """Two Endpoints down behind the same hop indicate an outage."""
        eps = [self.add_ep(isp="Starry") for _ in range(4)]
        self.pinger.up.update(str(ep.addr) for ep in eps[2:])
        for ep in eps[:2]:
            self.tracer.routes[str(ep.addr)] = (test_hop, 4, False)

        self.sched.run_ping_cycle()

        self.assertEqual(len(self.db.endpoint_get_by_hop(test_hop)), 2)
        self.assertTrue(self.sched.is_isp_outage("Starry"))
        self.assertEqual(len(self.events(EventType.Outage)), 1)

    def test_09_lonely_endpoint(self) -> None:
        """ISPs with a single Endpoint are not judged."""
        self.add_ep(isp="Solo")
        self.add_ep(isp="Acme")
        self.add_ep(isp="Acme")

        self.sched.run_ping_cycle()

        self.assertFalse(self.sched.is_isp_outage("Solo"))
        self.assertNotIn("Solo", self.sched.outages())
        self.assertTrue(self.sched.is_isp_outage("Acme"))

    def test_10_worker_failure(self) -> None:
        """A probe that blows up does not spoil the cycle."""
        eps = [self.add_ep() for _ in range(3)]
        self.pinger.up.update(str(ep.addr) for ep in eps)
        self.pinger.broken.add(str(eps[1].addr))

        self.sched.run_ping_cycle()

        self.assertEqual(self.reload(eps[0]).status, Status.Up)
        self.assertEqual(self.reload(eps[1]).status, Status.Down)
        self.assertEqual(self.reload(eps[2]).status, Status.Up)

        snaps = self.db.snapshot_get_since(timedelta(hours=1))
        self.assertEqual(len(snaps), 1)
        self.assertEqual(snaps[0].total, 3)
        self.assertEqual(snaps[0].up, 2)
        self.assertEqual(snaps[0].down, 1)

    def test_11_many_endpoints(self) -> None:
        """More Endpoints than workers are all probed exactly once."""
        sched = Scheduler(pinger=self.pinger,
                          tracer=self.tracer,
                          db_path=self.sched.db_path)
        eps = [self.add_ep(isp=f"ISP{i % 3}") for i in range(120)]
        self.pinger.up.update(str(ep.addr) for ep in eps[::2])

        try:
            sched.run_ping_cycle()
        finally:
            sched.close_db()

        self.assertEqual(len(self.pinger.calls), 120)
        snaps = self.db.snapshot_get_since(timedelta(hours=1))
        self.assertEqual(len(snaps), 1)
        self.assertEqual(snaps[0].total, 120)
        self.assertEqual(snaps[0].up, 60)

    def test_12_cleanup(self) -> None:
        """Endpoints that have not been seen in a while are removed."""
        self.add_ep(last_seen=datetime.now() - timedelta(days=10))
        self.add_ep(last_seen=datetime.now() - timedelta(days=2))
        self.add_ep()

        self.assertEqual(self.sched.run_cleanup(), 1)
        self.assertEqual(len(self.db.endpoint_get_all()), 2)
        self.assertEqual(self.sched.run_cleanup(), 0)

    def test_13_query_api(self) -> None:
        """Check what the Scheduler reports about its cycles."""
        self.assertIsNone(self.sched.last_cycle_time())
        self.assertEqual(self.sched.cycle_count(), 0)
        self.assertEqual(self.sched.cycle_interval(), timedelta(seconds=60))
        self.assertLessEqual(self.sched.next_cycle_estimate(), datetime.now())

        # A cycle without any Endpoints is not counted.
        self.sched.run_ping_cycle()
        self.assertEqual(self.sched.cycle_count(), 0)

        self.add_ep()
        self.sched.run_ping_cycle()

        last = self.sched.last_cycle_time()
        self.assertIsNotNone(last)
        self.assertEqual(self.sched.cycle_count(), 1)
        self.assertEqual(self.sched.next_cycle_estimate(), last + timedelta(seconds=60))

    def test_14_start_stop(self) -> None:
        """Run the background loops for a moment."""
        sched = Scheduler(pinger=self.pinger,
                          tracer=self.tracer,
                          interval=timedelta(hours=1),
                          db_path=self.sched.db_path)
        ep = self.add_ep()
        self.pinger.up.add(str(ep.addr))

        before: Final[datetime] = datetime.now()
        sched.start()
        try:
            self.assertTrue(sched.active)
            self.assertGreaterEqual(sched.start_time(), before)
            self.assertLessEqual(sched.start_time(), datetime.now())
            for _ in range(100):
                if sched.cycle_count() > 0:
                    break
                time.sleep(0.05)
        finally:
            sched.stop()

        self.assertFalse(sched.active)
        self.assertEqual(sched.cycle_count(), 1)

    def test_15_db_error_isolated(self) -> None:
        """Failing to store one result does not keep the others from being stored."""
        eps = [self.add_ep(isp="Acme") for _ in range(4)]
        real_update = Database.endpoint_update_status

        def failing_update(db, ep, status, last_ok=None):
            if ep.endpoint_id == eps[0].endpoint_id:
                raise DBError(f"Cannot update {ep.endpoint_id}")
            real_update(db, ep, status, last_ok)

        with patch.object(Database, "endpoint_update_status", new=failing_update):
            self.sched.run_ping_cycle()

        self.assertEqual(self.reload(eps[0]).status, Status.Up)
        for ep in eps[1:]:
            self.assertEqual(self.reload(ep).status, Status.Down)

        # The Down event for the first Endpoint went with its transaction.
        self.assertEqual(len(self.events(EventType.Down)), 3)

        snaps = self.db.snapshot_get_since(timedelta(hours=1))
        self.assertEqual(len(snaps), 1)
        self.assertEqual(snaps[0].total, 4)
        self.assertEqual(snaps[0].up, 0)

        self.assertTrue(self.sched.is_isp_outage("Acme"))
        self.assertEqual(len(self.events(EventType.Outage)), 1)
        self.assertEqual(self.sched.cycle_count(), 1)

    def test_16_shared_hop_with_live_neighbor(self) -> None:
        """A hop with an Endpoint behind it that is still up does not count as down."""
        eps = [self.add_ep(isp="Starry") for _ in range(4)]
        other = self.add_ep(isp="Comcast")

        with self.db:
            for ep in eps[:2]:
                self.db.endpoint_update_hop(ep, test_hop, 4)
                self.db.endpoint_update_status(ep, Status.Down)
            self.db.endpoint_update_hop(other, test_hop, 4)

        self.assertEqual(self.sched.analyze_outages(self.db), {"Starry": False})

        with self.db:
            self.db.endpoint_update_status(other, Status.Down)

        self.assertEqual(self.sched.analyze_outages(self.db), {"Starry": True})

    def test_17_outage_ends_with_last_endpoint(self) -> None:
        """Once all Endpoints of an ISP are gone, its outage is over."""
        eps = [self.add_ep(isp="Acme") for _ in range(2)]

        self.sched.run_ping_cycle()
        self.assertTrue(self.sched.is_isp_outage("Acme"))
        self.assertEqual(self.sched.cycle_count(), 1)

        with self.db:
            for ep in eps:
                self.db.endpoint_delete(ep.endpoint_id)

        self.sched.run_ping_cycle()

        self.assertFalse(self.sched.is_isp_outage("Acme"))
        self.assertFalse(self.sched.has_any_outage())
        self.assertEqual(self.sched.outages(), {})
        recovery = self.events(EventType.Recovery)
        self.assertEqual(len(recovery), 1)
        self.assertEqual(recovery[0].isp, "Acme")
        self.assertEqual(self.sched.cycle_count(), 1)


# Local Variables: #
# python-indent: 4 #
# End: #
