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

"""ICalendar handling.

Decoding and encoding of calendar objects, plus the time-range checks from
https://tools.ietf.org/html/rfc4791, section 9.9.
"""

import logging
from collections.abc import Iterable, Iterator
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo

from icalendar.cal import Calendar, Component

TzifyFunction = Callable[[Union[date, datetime]], datetime]

# Components that are surfaced by the sync pipeline.
ITEM_COMPONENTS = ("VEVENT", "VTODO")


class InvalidCalendarData(Exception):
    """The calendar data could not be decoded."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)
        self.path = path


class MissingProperty(Exception):
    def __init__(self, property_name) -> None:
        super().__init__(f"Property {property_name!r} missing")
        self.property_name = property_name


def decode(data: Union[bytes, str], path: Optional[str] = None) -> list[Component]:
    """Decode a calendar object.

    A single payload may contain more than one top-level calendar.

    Args:
      data: iCalendar text
      path: Path of the calendar object, used in error messages
    Returns: list of top-level components
    Raises:
      InvalidCalendarData: if the data can not be parsed
    """
    try:
        components = Calendar.from_ical(data, multiple=True)
    except ValueError as exc:
        raise InvalidCalendarData(str(exc), path) from exc
    if not components:
        raise InvalidCalendarData("no calendar components found", path)
    return components


def encode(component: Component) -> bytes:
    return component.to_ical()


def get_uid(component: Component) -> Optional[str]:
    try:
        uid = component["UID"]
    except KeyError:
        return None
    if isinstance(uid, list):
        uid = uid[0]
    return str(uid)


def iter_items(
    calendars: Iterable[Component], names: Iterable[str] = ITEM_COMPONENTS
) -> Iterator[Component]:
    """Iterate over the events/todos in a set of calendars.

    Args:
      calendars: Top-level components, as returned by decode()
      names: Component names to return
    """
    names = frozenset(names)
    for calendar in calendars:
        if calendar.name in names:
            yield calendar
            continue
        for component in calendar.subcomponents:
            if component.name in names:
                yield component


def as_tz_aware_ts(
    dt: Union[datetime, date], default_timezone: Union[str, tzinfo]
) -> datetime:
    """Convert a date or (possibly floating) datetime to an aware datetime.

    Dates are interpreted as midnight; floating times are interpreted in
    default_timezone.
    """
    if not isinstance(dt, datetime):
        dt = datetime.combine(dt, time())
    if dt.tzinfo is None:
        if isinstance(default_timezone, str):
            dt = dt.replace(tzinfo=ZoneInfo(default_timezone))
        else:
            dt = dt.replace(tzinfo=default_timezone)
    return dt


def _first(value):
    if isinstance(value, list):
        return value[0]
    return value


def apply_time_range_vevent(start, end, comp, tzify):
    dtstart = _first(comp.get("DTSTART"))
    if not dtstart:
        raise MissingProperty("DTSTART")

    if not (end > tzify(dtstart.dt)):
        return False

    dtend = _first(comp.get("DTEND"))
    if dtend:
        if tzify(dtend.dt) < tzify(dtstart.dt):
            logging.debug("Invalid DTEND < DTSTART")
        return start < tzify(dtend.dt)

    duration = _first(comp.get("DURATION"))
    if duration:
        return start < tzify(dtstart.dt) + duration.dt
    if isinstance(dtstart.dt, datetime):
        return start <= tzify(dtstart.dt)
    else:
        return start < (tzify(dtstart.dt) + timedelta(1))


def apply_time_range_vtodo(start, end, comp, tzify):
    dtstart = _first(comp.get("DTSTART"))
    due = _first(comp.get("DUE"))

    # See RFC4791, section 9.9
    if dtstart:
        duration = _first(comp.get("DURATION"))
        if duration and not due:
            return start <= tzify(dtstart.dt) + duration.dt and (
                end > tzify(dtstart.dt) or end >= tzify(dtstart.dt) + duration.dt
            )
        elif due and not duration:
            return (start <= tzify(dtstart.dt) or start < tzify(due.dt)) and (
                end > tzify(dtstart.dt) or end >= tzify(due.dt)
            )
        else:
            return start <= tzify(dtstart.dt) and end > tzify(dtstart.dt)

    if due:
        return start < tzify(due.dt) and end >= tzify(due.dt)

    completed = _first(comp.get("COMPLETED"))
    created = _first(comp.get("CREATED"))
    if completed:
        if created:
            return (start <= tzify(created.dt) or start <= tzify(completed.dt)) and (
                end >= tzify(created.dt) or end >= tzify(completed.dt)
            )
        else:
            return start <= tzify(completed.dt) and end >= tzify(completed.dt)
    elif created:
        return end >= tzify(created.dt)
    else:
        return True


def apply_time_range_vfreebusy(start, end, comp, tzify):
    dtstart = _first(comp.get("DTSTART"))
    dtend = _first(comp.get("DTEND"))
    if dtstart and dtend:
        return start < tzify(dtend.dt) and end > tzify(dtstart.dt)

    periods = comp.get("FREEBUSY", [])
    if not isinstance(periods, list):
        periods = [periods]
    for period in periods:
        if start < tzify(period.end) and end > tzify(period.start):
            return True

    return False


time_range_handlers = {
    "VEVENT": apply_time_range_vevent,
    "VTODO": apply_time_range_vtodo,
    "VFREEBUSY": apply_time_range_vfreebusy,
}


def in_time_range(
    comp: Component, start: datetime, end: datetime, tzify: TzifyFunction
) -> bool:
    """Check whether a component overlaps the half-open range [start, end).

    Component types without an inherent time range always match.
    """
    try:
        handler = time_range_handlers[comp.name]
    except KeyError:
        logging.debug("ignoring time-range for component %r", comp.name)
        return True
    return handler(start, end, comp, tzify)
