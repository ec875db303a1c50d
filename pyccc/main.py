#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Time-stamp: <2026-10-20 14:22:58 krylon>
#
# /data/code/python/pyccc/main.py
# created on 20. 10. 2026
# (c) 2026 Benjamin Walkenhorst
#
# This file is part of the PyCCC connectivity monitor. It is distributed under the
# terms of the GNU General Public License 3. See the file LICENSE for details
# or find a copy online at https://www.gnu.org/licenses/gpl-3.0

"""
pyccc.main

(c) 2026 Benjamin Walkenhorst
"""


import argparse
import logging
import signal
import sys
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, Final

from pyccc import common, config
from pyccc.classifier import Classifier
from pyccc.common import ConfigError
from pyccc.database import Database
from pyccc.probe import Pinger, Tracer
from pyccc.registry import Registry, RegistrationError
from pyccc.scheduler import Scheduler


def parse_args() -> argparse.Namespace:
    """Parse the command line."""
    argp: argparse.ArgumentParser = argparse.ArgumentParser(prog="pyccc")
    argp.add_argument("-b", "--basedir",
                      type=Path,
                      default=common.path.base(),
                      help="Directory to store application data in")
    argp.add_argument("-c", "--config",
                      type=Path,
                      help="Path of the configuration file")
    argp.add_argument("-d", "--db",
                      dest="db_path",
                      help="Database file path")
    argp.add_argument("-i", "--isp-config",
                      dest="isp_config",
                      help="Path to the ISP config JSON file")
    argp.add_argument("-p", "--ping-interval",
                      dest="ping_interval",
                      type=float,
                      help="Seconds between two ping cycles")
    argp.add_argument("-e", "--expire-days",
                      dest="expire_days",
                      type=int,
                      help="Days before an Endpoint that was not seen expires")
    argp.add_argument("-t", "--outage-threshold",
                      dest="outage_threshold",
                      type=float,
                      help="Fraction of down Endpoints above which an ISP counts as out")
    argp.add_argument("-w", "--workers",
                      type=int,
                      help="The number of ping workers to run in parallel")
    argp.add_argument("--privileged",
                      action="store_true",
                      default=None,
                      help="Use raw sockets for pinging")
    argp.add_argument("-r", "--register",
                      metavar="ADDR",
                      action="append",
                      default=[],
                      help="Register an address for monitoring and exit")
    argp.add_argument("-a", "--add",
                      metavar="ADDR[=ISP]",
                      action="append",
                      default=[],
                      help="Add an address on behalf of an operator, "
                      "with or without an ISP, and exit")
    argp.add_argument("-v", "--verbose",
                      action="store_true",
                      help="Log more to the terminal")
    return argp.parse_args()


def main() -> None:
    """Run the monitor."""
    args = parse_args()
    if args.verbose:
        common.log_level_tty = logging.INFO
    common.set_basedir(args.basedir)
    log: Final[logging.Logger] = common.get_logger("main")

    overrides: Final[dict[str, Any]] = {
        key: getattr(args, key) for key in ("db_path",
                                            "isp_config",
                                            "ping_interval",
                                            "expire_days",
                                            "outage_threshold",
                                            "workers",
                                            "privileged")
        if getattr(args, key) is not None
    }

    clf: Classifier = Classifier()
    try:
        cfg = config.load(args.config)
        cfg.update(overrides)
        cfg.validate()
        if cfg.isp_config != "":
            clf.load_config(cfg.isp_config)
        else:
            log.warning("No ISP config file specified. Using fallback ASN org names.")
    except ConfigError as err:
        log.critical("%s", err)
        print(f"Configuration error: {err}", file=sys.stderr)
        sys.exit(1)

    log.info("%s %s, database %s", common.AppName, common.AppVersion, cfg.db_path)
    for isp in sorted(clf.get_allowed_isps()):
        log.info("Registration open for %s (AS%d)", isp, clf.asn_for_display(isp))

    if len(args.register) > 0 or len(args.add) > 0:
        db = Database(cfg.db_path)
        reg = Registry(db=db, classifier=clf)
        status: int = 0
        try:
            for addr in args.register:
                try:
                    r = reg.register(addr)
                    print(f"{addr}: {r.endpoint_id} ({r.isp}) - {r.message}")
                except RegistrationError as err:
                    print(f"{addr}: {err}", file=sys.stderr)
                    status = 1
            for item in args.add:
                addr, _, isp = item.partition("=")
                try:
                    r = reg.add(addr, isp)
                    print(f"{addr}: {r.endpoint_id} ({r.isp}) - {r.message}")
                except RegistrationError as err:
                    print(f"{addr}: {err}", file=sys.stderr)
                    status = 1
        finally:
            db.close()
        sys.exit(status)

    sched = Scheduler(pinger=Pinger(timeout=cfg.ping_timeout,
                                    count=cfg.ping_count,
                                    privileged=cfg.privileged),
                      tracer=Tracer(timeout=cfg.hop_timeout, max_hops=cfg.max_hops),
                      interval=timedelta(seconds=cfg.ping_interval),
                      expire_days=cfg.expire_days,
                      outage_threshold=cfg.outage_threshold,
                      wcnt=cfg.workers,
                      db_path=Path(cfg.db_path))

    def handle_signal(signum, _frame) -> None:
        log.info("Received signal %d, shutting down.", signum)
        sched.stop_evt.set()

    signal.signal(signal.SIGTERM, handle_signal)

    try:
        sched.start()
        log.info("Monitoring since %s", sched.start_time().strftime("%Y-%m-%d %H:%M:%S"))
        while not sched.stop_evt.is_set():
            time.sleep(1)
    except KeyboardInterrupt:
        print("Telling Scheduler to stop.")
    finally:
        sched.stop()


if __name__ == '__main__':
    main()

# Local Variables: #
# python-indent: 4 #
# End: #
