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

"""CalDAV calendar-query model.

See https://tools.ietf.org/html/rfc4791, sections 7.8 and 9.7.

A CalendarQuery combines a CompRequest, which describes which components
and properties the server should return, with a CompFilter tree, which
describes which calendar objects match. Queries are encoded to the REPORT
body by calendar_query_body(); CompFilter.match() implements the same
matching rules locally.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional
from xml.etree import ElementTree as ET

from icalendar.cal import Component

from .icalendar import MissingProperty, TzifyFunction, as_tz_aware_ts, in_time_range

NAMESPACE = "urn:ietf:params:xml:ns:caldav"

DEFAULT_COLLATION = "i;ascii-casemap"

# Properties requested for events when the caller does not specify any.
DEFAULT_EVENT_PROPS = (
    "CLASS",
    "CREATED",
    "DESCRIPTION",
    "DTEND",
    "DTSTAMP",
    "DTSTART",
    "DURATION",
    "LAST-MODIFIED",
    "SEQUENCE",
    "STATUS",
    "SUMMARY",
    "TRANSP",
    "UID",
    "URL",
    "X-PROTEI-SENDERID",
)


class UnknownCollation(Exception):
    def __init__(self, collation: str) -> None:
        super().__init__(f"Collation {collation!r} is not supported")
        self.collation = collation


def _ascii_upper(text: str) -> str:
    return "".join(c.upper() if c.isascii() else c for c in text)


collations: dict[str, Callable[[str], str]] = {
    "i;octet": lambda text: text,
    "i;ascii-casemap": _ascii_upper,
    # TODO: full RFC 5051 folding rather than str.casefold
    "i;unicode-casemap": lambda text: text.casefold(),
}


def utc_tzify(dt):
    return as_tz_aware_ts(dt, timezone.utc)


def format_utc(dt: datetime) -> str:
    """Format a datetime as an iCalendar UTC date-time."""
    return utc_tzify(dt).astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _caldav(name: str) -> str:
    return f"{{{NAMESPACE}}}{name}"


@dataclass(frozen=True)
class TimeRange:
    """Half-open time range [start, end).

    Floating datetimes are taken to be in UTC.
    """

    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, "start", utc_tzify(self.start))
        object.__setattr__(self, "end", utc_tzify(self.end))
        if not self.end > self.start:
            raise ValueError(f"time range end {self.end} is not after {self.start}")

    def to_xml(self) -> ET.Element:
        ret = ET.Element(_caldav("time-range"))
        ret.set("start", format_utc(self.start))
        ret.set("end", format_utc(self.end))
        return ret


@dataclass(frozen=True)
class TextMatch:
    text: str
    collation: str = DEFAULT_COLLATION
    negate: bool = False

    def __post_init__(self):
        if self.collation not in collations:
            raise UnknownCollation(self.collation)

    def match(self, value) -> bool:
        fold = collations[self.collation]
        cats = getattr(value, "cats", None)
        if cats is not None:
            values = [str(c) for c in cats]
        elif isinstance(value, str):
            values = [str(value)]
        else:
            values = [value.to_ical().decode("utf-8")]
        matches = any(fold(self.text) in fold(v) for v in values)
        return matches != self.negate

    def to_xml(self) -> ET.Element:
        ret = ET.Element(_caldav("text-match"))
        ret.text = self.text
        ret.set("collation", self.collation)
        ret.set("negate-condition", "yes" if self.negate else "no")
        return ret


@dataclass(frozen=True)
class PropFilter:
    name: str
    is_not_defined: bool = False
    text_match: Optional[TextMatch] = None

    def match(self, comp: Component) -> bool:
        # https://tools.ietf.org/html/rfc4791, section 9.7.2
        if self.is_not_defined:
            return self.name not in comp
        try:
            value = comp[self.name]
        except KeyError:
            return False
        if self.text_match is None:
            return True
        if not isinstance(value, list):
            value = [value]
        return any(self.text_match.match(v) for v in value)

    def to_xml(self) -> ET.Element:
        ret = ET.Element(_caldav("prop-filter"))
        ret.set("name", self.name)
        if self.is_not_defined:
            ET.SubElement(ret, _caldav("is-not-defined"))
        elif self.text_match is not None:
            ret.append(self.text_match.to_xml())
        return ret


@dataclass(frozen=True)
class CompFilter:
    """Server-side selection predicate for a component type.

    Nested filters are ANDed: each one has to match at least one
    subcomponent of the candidate.
    """

    name: str
    time_range: Optional[TimeRange] = None
    comps: tuple["CompFilter", ...] = ()
    props: tuple[PropFilter, ...] = ()
    is_not_defined: bool = False

    def __post_init__(self):
        object.__setattr__(self, "comps", tuple(self.comps))
        object.__setattr__(self, "props", tuple(self.props))

    def match(self, comp: Component, tzify: TzifyFunction = utc_tzify) -> bool:
        # https://tools.ietf.org/html/rfc4791, section 9.7.1
        if self.is_not_defined:
            return comp.name != self.name
        if comp.name != self.name:
            return False
        if self.time_range is not None:
            try:
                if not in_time_range(
                    comp, self.time_range.start, self.time_range.end, tzify
                ):
                    return False
            except MissingProperty as e:
                logging.warning(
                    "Ignoring %s in time-range filter, due to missing property %s",
                    comp.name,
                    e.property_name,
                )
                return False
        for prop_filter in self.props:
            if not prop_filter.match(comp):
                return False
        for comp_filter in self.comps:
            if comp_filter.is_not_defined:
                if not all(comp_filter.match(c, tzify) for c in comp.subcomponents):
                    return False
            elif not any(comp_filter.match(c, tzify) for c in comp.subcomponents):
                return False
        return True

    def to_xml(self) -> ET.Element:
        ret = ET.Element(_caldav("comp-filter"))
        ret.set("name", self.name)
        if self.is_not_defined:
            ET.SubElement(ret, _caldav("is-not-defined"))
            return ret
        if self.time_range is not None:
            ret.append(self.time_range.to_xml())
        for prop_filter in self.props:
            ret.append(prop_filter.to_xml())
        for comp_filter in self.comps:
            ret.append(comp_filter.to_xml())
        return ret


@dataclass(frozen=True)
class CompRequest:
    """Which properties and subcomponents of a component to return."""

    name: str
    props: frozenset[str] = field(default_factory=frozenset)
    comps: tuple["CompRequest", ...] = ()
    allprops: bool = False
    allcomps: bool = False

    def __post_init__(self):
        object.__setattr__(self, "props", frozenset(self.props))
        object.__setattr__(self, "comps", tuple(self.comps))

    def to_xml(self) -> ET.Element:
        ret = ET.Element(_caldav("comp"))
        ret.set("name", self.name)
        if self.allprops:
            ET.SubElement(ret, _caldav("allprop"))
        else:
            for name in sorted(self.props):
                ET.SubElement(ret, _caldav("prop")).set("name", name)
        if self.allcomps:
            ET.SubElement(ret, _caldav("allcomp"))
        else:
            for comp in self.comps:
                ret.append(comp.to_xml())
        return ret


@dataclass(frozen=True)
class CalendarQuery:
    request: CompRequest
    filter: CompFilter

    @classmethod
    def for_component(
        cls,
        component: str = "VEVENT",
        props: Optional[Iterable[str]] = DEFAULT_EVENT_PROPS,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> "CalendarQuery":
        """Build a query for one component type inside VCALENDAR.

        Args:
          component: Component type to select, e.g. VEVENT or VTODO
          props: Properties to return; None returns all of them
          start: Optional start of the time range
          end: Optional end of the time range; either both or neither of
            start and end should be given
        """
        if (start is None) != (end is None):
            raise ValueError("time range needs both a start and an end")
        if props is None:
            inner = CompRequest(component, allprops=True, allcomps=True)
        else:
            inner = CompRequest(component, props=props)
        time_range = TimeRange(start, end) if start is not None else None
        return cls(
            request=CompRequest("VCALENDAR", props={"VERSION"}, comps=[inner]),
            filter=CompFilter(
                "VCALENDAR", comps=[CompFilter(component, time_range=time_range)]
            ),
        )

    def match(self, calendar: Component, tzify: TzifyFunction = utc_tzify) -> bool:
        return self.filter.match(calendar, tzify)


def calendar_query_body(query: CalendarQuery) -> ET.Element:
    """Create the body of a calendar-query REPORT."""
    ret = ET.Element(_caldav("calendar-query"))
    prop = ET.SubElement(ret, "{DAV:}prop")
    ET.SubElement(prop, "{DAV:}getetag")
    calendar_data = ET.SubElement(prop, _caldav("calendar-data"))
    calendar_data.append(query.request.to_xml())
    filter_el = ET.SubElement(ret, _caldav("filter"))
    filter_el.append(query.filter.to_xml())
    return ret
