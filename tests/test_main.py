# Calscrub
# Copyright (C) 2024 The Calscrub authors
#
# This program is free software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License
# as published by the Free Software Foundation; version 3
# of the License or (at your option) any later version of
# the License.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston,
# MA  02110-1301, USA.

"""Tests for calscrub.__main__."""

import asyncio
import contextlib
import io
import json
import os
import tempfile
import unittest
from unittest import mock

from aiohttp.test_utils import TestServer

from calscrub.__main__ import main
from calscrub.icalendar import decode

from .test_client import FakeCalDAVServer


class MainTests(unittest.TestCase):
    def setUp(self):
        super().setUp()
        with tempfile.NamedTemporaryFile(
            "w", suffix=".conf", delete=False, encoding="utf-8"
        ) as f:
            f.write("[project]\ntimezone = UTC\n")
        self.addCleanup(os.remove, f.name)
        self.config_path = f.name
        self.server = FakeCalDAVServer()

    def _main(self, argv, environ=None):
        stdout = io.StringIO()

        async def run_test():
            async with TestServer(self.server.make_app()) as testserver:
                env = {"CALDAV_ROOT": str(testserver.make_url("/"))}
                if environ is not None:
                    env = environ
                with mock.patch.dict(os.environ, env, clear=True):
                    with contextlib.redirect_stdout(stdout):
                        return await main(["--config", self.config_path] + argv)

        with self.assertLogs(level="INFO"):
            ret = asyncio.run(run_test())
        return (ret, stdout.getvalue())

    def test_no_subcommand(self):
        with contextlib.redirect_stdout(io.StringIO()) as stdout:
            self.assertEqual(1, asyncio.run(main([])))
        self.assertIn("calendars", stdout.getvalue())

    def test_no_url(self):
        (ret, out) = self._main(["calendars"], environ={})
        self.assertEqual(1, ret)

    def test_calendars(self):
        (ret, out) = self._main(["calendars"])
        self.assertEqual(0, ret)
        self.assertEqual(
            ["cal 0: Work /user/calendars/a/", "cal 1: Chores /user/calendars/b/"],
            out.splitlines(),
        )

    def test_events(self):
        (ret, out) = self._main(["events", "--calendar", "0"])
        self.assertEqual(0, ret)
        self.assertIn("SUMMARY: Standup", out)
        self.assertIn("UID: one", out)

    def test_events_json(self):
        (ret, out) = self._main(
            ["events", "--calendar", "/user/calendars/a/", "--json"]
        )
        self.assertEqual(0, ret)
        records = [json.loads(line) for line in out.splitlines()]
        self.assertEqual(["one", "two"], [r["uid"] for r in records])
        self.assertEqual("2024-01-10T10:00:00+00:00", records[0]["start"])
        self.assertEqual(
            "/user/calendars/a/with space.ics", records[1]["path"]
        )

    def test_events_half_range(self):
        (ret, out) = self._main(["events", "--start", "2024-01-10T00:00"])
        self.assertEqual(1, ret)

    def test_events_reversed_range(self):
        (ret, out) = self._main(
            [
                "events",
                "--calendar",
                "/user/calendars/a/",
                "--start",
                "2024-02-01",
                "--end",
                "2024-01-01",
            ]
        )
        self.assertEqual(1, ret)
        self.assertEqual([], self.server.requests)

    def test_events_empty_range(self):
        (ret, out) = self._main(
            ["events", "--start", "2024-01-01T10:00", "--end", "2024-01-01T10:00"]
        )
        self.assertEqual(1, ret)

    def test_events_bad_calendar(self):
        (ret, out) = self._main(["events", "--calendar", "work"])
        self.assertEqual(1, ret)

    def test_events_missing_calendar(self):
        (ret, out) = self._main(["events", "--calendar", "/user/calendars/x/"])
        self.assertEqual(1, ret)

    def test_create(self):
        (ret, out) = self._main(
            [
                "create",
                "--calendar",
                "/user/calendars/a/",
                "--summary",
                "Standup",
                "--start",
                "2024-01-10T10:00",
                "--alarm",
                "58",
            ]
        )
        self.assertEqual(0, ret)
        (path,) = self.server.objects
        self.assertEqual(path, out.strip())
        (etag, data) = self.server.objects[path]
        (cal,) = decode(data)
        (ev,) = cal.subcomponents
        self.assertEqual("Standup", ev["SUMMARY"])
        self.assertEqual(path, "/user/calendars/a/%s.ics" % ev["UID"])
        self.assertEqual("VALARM", ev.subcomponents[0].name)
