#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Time-stamp: <2026-10-20 17:51:09 krylon>
#
# /data/code/python/pyccc/test_blacklist.py
# created on 20. 10. 2026
# (c) 2026 Benjamin Walkenhorst
#
# This file is part of the PyCCC connectivity monitor. It is distributed under the
# terms of the GNU General Public License 3. See the file LICENSE for details
# or find a copy online at https://www.gnu.org/licenses/gpl-3.0

"""
pyccc.test_blacklist

(c) 2026 Benjamin Walkenhorst
"""

import os
import shutil
import unittest
from datetime import datetime
from ipaddress import IPv4Address
from typing import Final, Optional

from pyccc import common
from pyccc.blacklist import IPBlacklist

test_dir: Final[str] = os.path.join(
    "/tmp",
    datetime.now().strftime(f"{common.AppName.lower()}_test_blacklist_%Y%m%d_%H%M%S"))


class TestIPBlacklist(unittest.TestCase):
    """Test the IPBlacklist."""

    _bl: Optional[IPBlacklist] = None

    @classmethod
    def setUpClass(cls) -> None:
        """Prepare the testing environment."""
        common.set_basedir(test_dir)

    @classmethod
    def tearDownClass(cls) -> None:
        """Clean up afterwards."""
        shutil.rmtree(test_dir, ignore_errors=True)

    @classmethod
    def bl(cls, bl: Optional[IPBlacklist] = None) -> IPBlacklist:
        """Get or set the IPBlacklist instance."""
        if bl is not None:
            cls._bl = bl

        if cls._bl is not None:
            return cls._bl

        raise ValueError("IPBlacklist instance is None.")

    def test_01_create_blacklist(self) -> None:
        """Test creating the default IPBlacklist."""
        bl: Final[IPBlacklist] = IPBlacklist.default()
        self.assertGreater(len(bl.networks), 0)
        self.bl(bl)

    def test_02_match_addr(self) -> None:
        """Test matching IP addresses against the IPBlacklist."""
        test_cases: Final[list[tuple[str, bool]]] = [
            ("73.15.2.40", False),
            ("10.10.8.1", True),
            ("192.168.1.1", True),
            ("100.64.3.7", True),
            ("127.0.0.1", True),
            ("8.8.8.8", False),
            ("224.0.0.251", True),
        ]

        bl: Final[IPBlacklist] = self.bl()

        for c in test_cases:
            m: bool = bl.is_match(IPv4Address(c[0]))
            self.assertEqual(m, c[1], c[0])
            self.assertEqual(bl.is_match(c[0]), c[1], c[0])

    def test_03_from_list(self) -> None:
        """Test building a custom IPBlacklist."""
        bl: Final[IPBlacklist] = IPBlacklist.from_list(["198.51.100.0/24"])
        self.assertTrue(bl.is_match("198.51.100.77"))
        self.assertFalse(bl.is_match("10.0.0.1"))

        with self.assertRaises(ValueError):
            IPBlacklist.from_list(["2001:db8::/32"])


# Local Variables: #
# python-indent: 4 #
# End: #
