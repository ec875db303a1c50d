#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Time-stamp: <2026-10-19 10:31:40 krylon>
#
# /data/code/python/pyccc/__init__.py
# created on 19. 10. 2026
# (c) 2026 Benjamin Walkenhorst
#
# This file is part of the PyCCC connectivity monitor. It is distributed under the
# terms of the GNU General Public License 3. See the file LICENSE for details
# or find a copy online at https://www.gnu.org/licenses/gpl-3.0

"""
pyccc.__init__

(c) 2026 Benjamin Walkenhorst

PyCCC keeps an eye on the internet connections of a building's residents and
tries to tell an ISP outage apart from one resident's broken router.
"""

# Local Variables: #
# python-indent: 4 #
# End: #
