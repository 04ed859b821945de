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

"""Projection of calendar components onto flat event records."""

from dataclasses import dataclass, fields
from datetime import date, datetime, tzinfo
from typing import Optional

from dateutil.tz import tzlocal
from icalendar.cal import Component
from icalendar.prop import vDDDTypes

from .icalendar import as_tz_aware_ts, get_uid

SENDER_ID_PROPERTY = "X-PROTEI-SENDERID"


class MissingOrUnparsableField(Exception):
    """A property needed for display is missing or not a valid date-time."""

    def __init__(
        self,
        property_name: str,
        uid: Optional[str] = None,
        path: Optional[str] = None,
        reason: str = "missing",
    ) -> None:
        where = " ".join(x for x in (path, uid) if x) or "calendar item"
        super().__init__(f"Can't parse {property_name} for {where}: {reason}")
        self.property_name = property_name
        self.uid = uid
        self.path = path
        self.reason = reason


@dataclass(frozen=True)
class EventRecord:
    uid: str
    created: datetime
    start: datetime
    end: datetime
    stamp: datetime
    last_modified: datetime
    summary: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    classification: Optional[str] = None
    transparency: Optional[str] = None
    sequence: Optional[str] = None
    sender_id: Optional[str] = None
    url: Optional[str] = None
    path: Optional[str] = None

    def as_dict(self) -> dict:
        ret = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            ret[f.name] = value
        return ret


def _first(value):
    if isinstance(value, list):
        return value[0]
    return value


def _text(component: Component, name: str) -> Optional[str]:
    """Raw textual value of a property, or None if it is absent."""
    value = _first(component.get(name))
    if value is None:
        return None
    if isinstance(value, str):
        return str(value)
    return value.to_ical().decode("utf-8")


class _Projector:

    def __init__(self, component, tz, path) -> None:
        self.component = component
        self.tz = tz
        self.path = path
        self.uid = get_uid(component)

    def fail(self, name, reason="missing"):
        return MissingOrUnparsableField(name, self.uid, self.path, reason)

    def timestamp(self, name: str) -> datetime:
        value = _first(self.component.get(name))
        if value is None:
            raise self.fail(name)
        dt = getattr(value, "dt", None)
        if dt is None:
            try:
                dt = vDDDTypes.from_ical(str(value))
            except ValueError as exc:
                raise self.fail(name, str(exc)) from exc
        if not isinstance(dt, date):
            raise self.fail(name, f"{type(dt).__name__} is not a date-time")
        return as_tz_aware_ts(dt, self.tz)

    def end(self, start: datetime) -> datetime:
        if "DTEND" not in self.component and "DURATION" in self.component:
            duration = getattr(_first(self.component["DURATION"]), "dt", None)
            if duration is None:
                raise self.fail("DURATION", "not a duration")
            return start + duration
        return self.timestamp("DTEND")


def project_event(
    component: Component,
    tz: Optional[tzinfo] = None,
    path: Optional[str] = None,
    sender_property: str = SENDER_ID_PROPERTY,
) -> EventRecord:
    """Extract the well-known properties of an event into a record.

    Args:
      component: VEVENT (or VTODO) component
      tz: Timezone for floating date-times; defaults to the local zone
      path: Path of the calendar object, for diagnostics
      sender_property: Name of the property holding the sender identifier
    Raises:
      MissingOrUnparsableField: if the UID is missing, or one of CREATED,
        DTSTART, DTEND, DTSTAMP or LAST-MODIFIED is missing or invalid
    """
    if tz is None:
        tz = tzlocal()
    projector = _Projector(component, tz, path)
    if projector.uid is None:
        raise projector.fail("UID")
    start = projector.timestamp("DTSTART")
    return EventRecord(
        uid=projector.uid,
        created=projector.timestamp("CREATED"),
        start=start,
        end=projector.end(start),
        stamp=projector.timestamp("DTSTAMP"),
        last_modified=projector.timestamp("LAST-MODIFIED"),
        summary=_text(component, "SUMMARY"),
        description=_text(component, "DESCRIPTION"),
        status=_text(component, "STATUS"),
        classification=_text(component, "CLASS"),
        transparency=_text(component, "TRANSP"),
        sequence=_text(component, "SEQUENCE"),
        sender_id=_text(component, sender_property),
        url=_text(component, "URL"),
        path=path,
    )
