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

"""Tests for calscrub.icalendar."""

import unittest
from datetime import date, datetime, timedelta, timezone

from icalendar.cal import Event, FreeBusy, Todo

from calscrub.icalendar import (
    InvalidCalendarData,
    MissingProperty,
    apply_time_range_vevent,
    apply_time_range_vfreebusy,
    apply_time_range_vtodo,
    as_tz_aware_ts,
    decode,
    encode,
    get_uid,
    in_time_range,
    iter_items,
)
from calscrub.query import CompFilter, TimeRange, utc_tzify

EXAMPLE_VCALENDAR1 = b"""\
BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//bitfire web engineering//DAVdroid 0.8.0 (ical4j 1.0.x)//EN
BEGIN:VTODO
CREATED:20150314T223512Z
DTSTAMP:20150527T221952Z
LAST-MODIFIED:20150314T223512Z
STATUS:NEEDS-ACTION
SUMMARY:do something
CATEGORIES:home
UID:bdc22720-b9e1-42c9-89c2-a85405d8fbff
END:VTODO
END:VCALENDAR
"""

EXAMPLE_VCALENDAR2 = b"""\
BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Example Corp.//CalDAV Client//EN
BEGIN:VEVENT
UID:standup-1
DTSTAMP:20240101T090000Z
DTSTART:20240110T100000Z
DTEND:20240110T110000Z
SUMMARY:Standup
END:VEVENT
BEGIN:VEVENT
UID:standup-2
DTSTAMP:20240101T090000Z
DTSTART:20240111T100000Z
DTEND:20240111T110000Z
SUMMARY:Standup
END:VEVENT
END:VCALENDAR
"""


class DecodeTests(unittest.TestCase):
    def test_single(self):
        (cal,) = decode(EXAMPLE_VCALENDAR1)
        self.assertEqual("VCALENDAR", cal.name)
        self.assertEqual(["VTODO"], [c.name for c in cal.subcomponents])

    def test_multiple(self):
        cals = decode(EXAMPLE_VCALENDAR1 + EXAMPLE_VCALENDAR2)
        self.assertEqual(2, len(cals))

    def test_str(self):
        (cal,) = decode(EXAMPLE_VCALENDAR2.decode("utf-8"))
        self.assertEqual(2, len(cal.subcomponents))

    def test_empty(self):
        self.assertRaises(InvalidCalendarData, decode, b"")

    def test_garbage(self):
        with self.assertRaises(InvalidCalendarData) as cm:
            decode(b"this is not a calendar", path="/cal/foo.ics")
        self.assertEqual("/cal/foo.ics", cm.exception.path)
        self.assertTrue(str(cm.exception).startswith("/cal/foo.ics: "))

    def test_encode(self):
        (cal,) = decode(EXAMPLE_VCALENDAR1)
        self.assertEqual(
            EXAMPLE_VCALENDAR1.splitlines(), encode(cal).splitlines()
        )


class GetUidTests(unittest.TestCase):
    def test_uid(self):
        (cal,) = decode(EXAMPLE_VCALENDAR1)
        self.assertEqual(
            "bdc22720-b9e1-42c9-89c2-a85405d8fbff", get_uid(cal.subcomponents[0])
        )

    def test_missing(self):
        self.assertIsNone(get_uid(Event()))


class IterItemsTests(unittest.TestCase):
    def test_events(self):
        cals = decode(EXAMPLE_VCALENDAR1 + EXAMPLE_VCALENDAR2)
        self.assertEqual(
            ["bdc22720-b9e1-42c9-89c2-a85405d8fbff", "standup-1", "standup-2"],
            [get_uid(c) for c in iter_items(cals)],
        )

    def test_names(self):
        cals = decode(EXAMPLE_VCALENDAR1 + EXAMPLE_VCALENDAR2)
        self.assertEqual(
            ["VTODO"], [c.name for c in iter_items(cals, names=["VTODO"])]
        )

    def test_toplevel_item(self):
        ev = Event()
        ev.add("UID", "bare")
        self.assertEqual([ev], list(iter_items([ev])))


class AsTzAwareTsTests(unittest.TestCase):
    def test_date(self):
        self.assertEqual(
            datetime(2019, 10, 25, tzinfo=timezone.utc),
            as_tz_aware_ts(date(2019, 10, 25), timezone.utc),
        )

    def test_floating(self):
        tz = timezone(timedelta(hours=2))
        self.assertEqual(
            datetime(2019, 10, 25, 12, tzinfo=tz),
            as_tz_aware_ts(datetime(2019, 10, 25, 12), tz),
        )

    def test_zone_name(self):
        ts = as_tz_aware_ts(datetime(2019, 10, 25, 12), "UTC")
        self.assertEqual(datetime(2019, 10, 25, 12, tzinfo=timezone.utc), ts)

    def test_aware_untouched(self):
        dt = datetime(2019, 10, 25, 12, tzinfo=timezone(timedelta(hours=-5)))
        self.assertIs(dt, as_tz_aware_ts(dt, timezone.utc))


class TimeRangeTests(unittest.TestCase):
    def _tr(self, *args):
        return (
            datetime(*args[:3], tzinfo=timezone.utc),
            datetime(*args[3:], tzinfo=timezone.utc),
        )

    def test_vevent(self):
        ev = Event()
        ev.add("DTSTART", datetime(2024, 1, 10, 10, tzinfo=timezone.utc))
        ev.add("DTEND", datetime(2024, 1, 10, 11, tzinfo=timezone.utc))
        self.assertTrue(
            apply_time_range_vevent(
                datetime(2024, 1, 10, 9, tzinfo=timezone.utc),
                datetime(2024, 1, 10, 12, tzinfo=timezone.utc),
                ev,
                utc_tzify,
            )
        )
        self.assertFalse(
            apply_time_range_vevent(
                *self._tr(2024, 1, 11, 2024, 1, 12), ev, utc_tzify
            )
        )

    def test_vevent_half_open(self):
        ev = Event()
        ev.add("DTSTART", datetime(2024, 1, 10, 10, tzinfo=timezone.utc))
        ev.add("DTEND", datetime(2024, 1, 10, 11, tzinfo=timezone.utc))
        # The event ends when the range starts
        self.assertFalse(
            apply_time_range_vevent(
                datetime(2024, 1, 10, 11, tzinfo=timezone.utc),
                datetime(2024, 1, 10, 12, tzinfo=timezone.utc),
                ev,
                utc_tzify,
            )
        )
        # The range ends when the event starts
        self.assertFalse(
            apply_time_range_vevent(
                datetime(2024, 1, 10, 9, tzinfo=timezone.utc),
                datetime(2024, 1, 10, 10, tzinfo=timezone.utc),
                ev,
                utc_tzify,
            )
        )

    def test_vevent_duration(self):
        ev = Event()
        ev.add("DTSTART", datetime(2024, 1, 10, 10, tzinfo=timezone.utc))
        ev.add("DURATION", timedelta(hours=2))
        self.assertTrue(
            apply_time_range_vevent(
                datetime(2024, 1, 10, 11, tzinfo=timezone.utc),
                datetime(2024, 1, 10, 13, tzinfo=timezone.utc),
                ev,
                utc_tzify,
            )
        )

    def test_vevent_all_day(self):
        ev = Event()
        ev.add("DTSTART", date(2024, 1, 10))
        self.assertTrue(
            apply_time_range_vevent(
                *self._tr(2024, 1, 10, 2024, 1, 11), ev, utc_tzify
            )
        )
        self.assertFalse(
            apply_time_range_vevent(
                *self._tr(2024, 1, 11, 2024, 1, 12), ev, utc_tzify
            )
        )

    def test_vevent_no_dtstart(self):
        self.assertRaises(
            MissingProperty,
            apply_time_range_vevent,
            *self._tr(2024, 1, 10, 2024, 1, 11),
            Event(),
            utc_tzify,
        )

    def test_vtodo_due(self):
        todo = Todo()
        todo.add("DUE", datetime(2024, 1, 10, 12, tzinfo=timezone.utc))
        self.assertTrue(
            apply_time_range_vtodo(
                *self._tr(2024, 1, 10, 2024, 1, 11), todo, utc_tzify
            )
        )
        self.assertFalse(
            apply_time_range_vtodo(
                *self._tr(2024, 1, 11, 2024, 1, 12), todo, utc_tzify
            )
        )

    def test_vtodo_dtstart_due(self):
        todo = Todo()
        todo.add("DTSTART", datetime(2024, 1, 10, tzinfo=timezone.utc))
        todo.add("DUE", datetime(2024, 1, 12, tzinfo=timezone.utc))
        self.assertFalse(
            apply_time_range_vtodo(*self._tr(2024, 1, 5, 2024, 1, 6), todo, utc_tzify)
        )
        self.assertFalse(
            apply_time_range_vtodo(
                *self._tr(2024, 1, 13, 2024, 1, 14), todo, utc_tzify
            )
        )
        self.assertTrue(
            apply_time_range_vtodo(*self._tr(2024, 1, 9, 2024, 1, 11), todo, utc_tzify)
        )
        self.assertTrue(
            apply_time_range_vtodo(
                *self._tr(2024, 1, 11, 2024, 1, 13), todo, utc_tzify
            )
        )

    def test_vtodo_dtstart_due_filter(self):
        todo = Todo()
        todo.add("DTSTART", datetime(2024, 1, 10, tzinfo=timezone.utc))
        todo.add("DUE", datetime(2024, 1, 12, tzinfo=timezone.utc))
        filter = CompFilter(
            "VTODO",
            time_range=TimeRange(
                datetime(2024, 1, 5, tzinfo=timezone.utc),
                datetime(2024, 1, 6, tzinfo=timezone.utc),
            ),
        )
        self.assertFalse(filter.match(todo))

    def test_vtodo_no_dates(self):
        self.assertTrue(
            apply_time_range_vtodo(
                *self._tr(2024, 1, 10, 2024, 1, 11), Todo(), utc_tzify
            )
        )

    def test_vfreebusy(self):
        fb = FreeBusy()
        fb.add("DTSTART", datetime(2024, 1, 10, 10, tzinfo=timezone.utc))
        fb.add("DTEND", datetime(2024, 1, 10, 11, tzinfo=timezone.utc))
        self.assertTrue(
            apply_time_range_vfreebusy(
                *self._tr(2024, 1, 10, 2024, 1, 11), fb, utc_tzify
            )
        )
        self.assertFalse(
            apply_time_range_vfreebusy(
                *self._tr(2024, 1, 11, 2024, 1, 12), fb, utc_tzify
            )
        )

    def test_in_time_range_dispatch(self):
        ev = Event()
        ev.add("DTSTART", datetime(2024, 1, 10, 10, tzinfo=timezone.utc))
        ev.add("DTEND", datetime(2024, 1, 10, 11, tzinfo=timezone.utc))
        self.assertFalse(
            in_time_range(ev, *self._tr(2024, 1, 11, 2024, 1, 12), utc_tzify)
        )

    def test_in_time_range_untimed_component(self):
        (cal,) = decode(EXAMPLE_VCALENDAR2)
        self.assertTrue(
            in_time_range(cal, *self._tr(1990, 1, 1, 1990, 1, 2), utc_tzify)
        )
