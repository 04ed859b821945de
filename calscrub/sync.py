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

"""Calendar retrieval pipeline.

For every calendar object matched by a query the pipeline decodes the
data, redacts it, projects the events onto records and hands them to an
emitter. It can also build new events and upload them.
"""

import logging
import posixpath
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, NamedTuple, Optional

from icalendar.cal import Alarm, Calendar, Component, Event

from .client import CalDAVClient
from .icalendar import ITEM_COMPONENTS, InvalidCalendarData, decode, get_uid, iter_items
from .policy import PropertyPolicy
from .project import (
    SENDER_ID_PROPERTY,
    EventRecord,
    MissingOrUnparsableField,
    project_event,
)
from .query import CalendarQuery
from .redact import Redactor, UnknownProperty

PRODID = "-//Calscrub//Calscrub 0.1//EN"


class ObjectError(NamedTuple):
    """A calendar object (or an item in it) that could not be processed."""

    path: str
    uid: Optional[str]
    error: Exception


@dataclass
class SyncResult:
    records: list[EventRecord] = field(default_factory=list)
    errors: list[ObjectError] = field(default_factory=list)
    unknown: list[UnknownProperty] = field(default_factory=list)


class SyncPipeline:
    """Query, decode, redact and project calendar objects.

    Args:
      client: CalDAV client
      policy: Redaction policy
      tz: Timezone for floating date-times, local zone if None
      strict: Abort on the first object that fails to decode or project,
        rather than skipping it
      emit: Optional callback invoked with every record
      sender_property: Property carrying the sender identifier
      components: Component types to project
    """

    def __init__(
        self,
        client: CalDAVClient,
        policy: PropertyPolicy,
        tz: Optional[tzinfo] = None,
        strict: bool = False,
        emit: Optional[Callable[[EventRecord], None]] = None,
        sender_property: str = SENDER_ID_PROPERTY,
        components: Iterable[str] = ITEM_COMPONENTS,
    ) -> None:
        self.client = client
        self.policy = policy
        self.tz = tz
        self.strict = strict
        self.emit = emit
        self.sender_property = sender_property
        self.components = tuple(components)

    async def run(self, calendar_path: str, query: CalendarQuery) -> SyncResult:
        objects = await self.client.query_calendar(calendar_path, query)
        logging.info("Query on %s returned %d objects", calendar_path, len(objects))
        result = SyncResult()
        redactor = Redactor(self.policy)
        for obj in objects:
            self.process(obj.path, obj.data, redactor, result)
        result.unknown.extend(redactor.unknown)
        for name in sorted(redactor.unknown_names()):
            logging.info("Unknown property %s was redacted", name)
        return result

    def _skip(self, result, path, uid, error):
        logging.warning("Skipping %s: %s", path, error)
        result.errors.append(ObjectError(path, uid, error))

    def process(
        self, path: str, data: bytes, redactor: Redactor, result: SyncResult
    ) -> None:
        """Process a single calendar object."""
        try:
            calendars = decode(data, path)
        except InvalidCalendarData as e:
            if self.strict:
                raise
            self._skip(result, path, None, e)
            return
        for calendar in calendars:
            redacted = redactor(calendar)
            for item in iter_items([redacted], self.components):
                try:
                    record = project_event(
                        item, self.tz, path, sender_property=self.sender_property
                    )
                except MissingOrUnparsableField as e:
                    if self.strict:
                        raise
                    self._skip(result, path, e.uid, e)
                    continue
                result.records.append(record)
                if self.emit is not None:
                    self.emit(record)

    async def upload(
        self, calendar_path: str, calendar: Component
    ) -> tuple[str, Optional[str]]:
        """Upload a new calendar object into a calendar.

        The object is stored as <uid>.ics.

        Returns: tuple with path and ETag of the new object
        """
        uid = None
        for item in iter_items([calendar], self.components):
            uid = get_uid(item)
            if uid is not None:
                break
        if uid is None:
            raise ValueError("calendar has no item with a UID")
        path = posixpath.join(calendar_path, uid + ".ics")
        etag = await self.client.put_calendar_object(path, calendar)
        logging.info("Created %s", path)
        return (path, etag)


def build_event(
    summary: str,
    start: datetime,
    end: datetime,
    description: Optional[str] = None,
    sender_id: Optional[str] = None,
    alarm_before: Optional[timedelta] = None,
    transparency: str = "OPAQUE",
    classification: str = "PUBLIC",
    sender_property: str = SENDER_ID_PROPERTY,
    uid: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Calendar:
    """Build a calendar containing a single new event.

    Args:
      summary: Event summary
      start: Start of the event
      end: End of the event
      description: Optional event description
      sender_id: Optional sender identifier
      alarm_before: If set, add a display alarm this long before the start
      uid: UID to use; a random UUID if not specified
      now: Creation timestamp; the current time if not specified
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if uid is None:
        uid = str(uuid.uuid4())

    event = Event()
    event.add("CREATED", now)
    event.add("DTSTAMP", now)
    event.add("LAST-MODIFIED", now)
    event.add("SEQUENCE", 1)
    event.add("UID", uid)
    event.add("DTSTART", start)
    event.add("DTEND", end)
    event.add("STATUS", "CONFIRMED")
    event.add("SUMMARY", summary)
    if description is not None:
        event.add("DESCRIPTION", description)
    event.add("TRANSP", transparency)
    event.add("CLASS", classification)
    if sender_id is not None:
        event.add(sender_property, sender_id)

    if alarm_before is not None:
        alarm = Alarm()
        alarm.add("ACTION", "DISPLAY")
        alarm.add("DESCRIPTION", summary)
        alarm.add("TRIGGER", -alarm_before)
        event.add_component(alarm)

    cal = Calendar()
    cal.add("VERSION", "2.0")
    cal.add("PRODID", PRODID)
    cal.add("CALSCALE", "GREGORIAN")
    cal.add_component(event)
    return cal
