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

"""Minimal asynchronous CalDAV client.

Covers discovery (https://tools.ietf.org/html/rfc5397 and
https://tools.ietf.org/html/rfc4791, section 6.2), calendar-query REPORTs
and plain GET/PUT/DELETE of calendar objects.
"""

import logging
import urllib.parse
from collections.abc import Iterable, Iterator
from typing import NamedTuple, Optional
from xml.etree import ElementTree as ET

import aiohttp
from defusedxml.ElementTree import fromstring as xmlparse
from icalendar.cal import Component
from multidict import CIMultiDict

from .icalendar import encode
from .query import NAMESPACE, CalendarQuery, calendar_query_body

DEFAULT_TIMEOUT = 30

CALENDAR_RESOURCE_TYPE = "{%s}calendar" % NAMESPACE

XML_CONTENT_TYPE = 'application/xml; charset="utf-8"'
CALENDAR_CONTENT_TYPE = "text/calendar; charset=utf-8"


class TransportError(Exception):
    """The server answered with an unexpected status."""

    def __init__(self, method: str, url: str, status: int, reason: str = "") -> None:
        super().__init__(f"{method} {url} failed: {status} {reason}".rstrip())
        self.method = method
        self.url = url
        self.status = status


class DiscoveryError(Exception):
    """A property needed for discovery was not returned."""

    def __init__(self, path: str, prop: str) -> None:
        super().__init__(f"{prop} not found on {path!r}")
        self.path = path
        self.prop = prop


class CalendarInfo(NamedTuple):
    path: str
    name: Optional[str]
    description: Optional[str]
    supported_components: tuple[str, ...]


class CalendarObject(NamedTuple):
    path: str
    etag: Optional[str]
    data: bytes


def _status_ok(status: Optional[str]) -> bool:
    if status is None:
        return True
    parts = status.split(" ")
    return len(parts) > 1 and parts[1] == "200"


def multistat_extract_responses(
    multistatus: ET.Element,
) -> Iterator[tuple[str, Optional[str], dict[str, ET.Element]]]:
    """Iterate over the responses in a multistatus element.

    Returns: iterator over (href, status, properties) tuples; properties
      only contains the properties that were returned with a 200 status
    """
    if multistatus.tag != "{DAV:}multistatus":
        raise ValueError(f"expected multistatus, got {multistatus.tag!r}")
    for response in multistatus.findall("{DAV:}response"):
        href = None
        status = None
        props = {}
        for responsesub in response:
            if responsesub.tag == "{DAV:}href":
                href = urllib.parse.unquote(responsesub.text or "")
            elif responsesub.tag == "{DAV:}status":
                status = responsesub.text
            elif responsesub.tag == "{DAV:}propstat":
                propstat_status = responsesub.findtext("{DAV:}status")
                if not _status_ok(propstat_status):
                    continue
                for prop in responsesub.findall("{DAV:}prop"):
                    for el in prop:
                        props[el.tag] = el
        if href is None:
            logging.debug("Ignoring response without href")
            continue
        yield (href, status, props)


def _href(el: Optional[ET.Element]) -> Optional[str]:
    if el is None:
        return None
    href = el.find("{DAV:}href")
    if href is None or not href.text:
        return None
    return urllib.parse.unquote(href.text.strip())


class CalDAVClient:
    """CalDAV client bound to a server root.

    Can be used as an async context manager, in which case the HTTP
    session is closed on exit.
    """

    def __init__(self, session: aiohttp.ClientSession, root: str) -> None:
        self.session = session
        self.root = root if root.endswith("/") else root + "/"

    @classmethod
    def connect(
        cls,
        root: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> "CalDAVClient":
        headers = {}
        if username is not None:
            headers["Authorization"] = aiohttp.BasicAuth(
                username, password or ""
            ).encode()
        session = aiohttp.ClientSession(
            headers=headers, timeout=aiohttp.ClientTimeout(total=timeout)
        )
        return cls(session, root)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self) -> None:
        await self.session.close()

    def url(self, path: str) -> str:
        return urllib.parse.urljoin(self.root, path)

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[bytes] = None,
        headers: Optional[dict[str, str]] = None,
        expected: Iterable[int] = (200,),
    ) -> tuple[CIMultiDict, bytes]:
        url = self.url(path)
        logging.debug("%s %s", method, url)
        if body is not None:
            logging.debug("OUT: %r", body)
        async with self.session.request(
            method, url, data=body, headers=headers
        ) as resp:
            data = await resp.read()
            if resp.status not in expected:
                raise TransportError(method, url, resp.status, resp.reason or "")
            return (resp.headers.copy(), data)

    async def _xml_request(self, method, path, el, depth):
        (headers, data) = await self.request(
            method,
            path,
            body=ET.tostring(el, encoding="utf-8"),
            headers={"Depth": depth, "Content-Type": XML_CONTENT_TYPE},
            expected=(207,),
        )
        logging.debug("IN: %r", data)
        return list(multistat_extract_responses(xmlparse(data)))

    async def propfind(self, path: str, props: Iterable[str], depth: str = "0"):
        reqxml = ET.Element("{DAV:}propfind")
        propxml = ET.SubElement(reqxml, "{DAV:}prop")
        for prop in props:
            ET.SubElement(propxml, prop)
        return await self._xml_request("PROPFIND", path, reqxml, depth)

    async def _find_href_property(self, path: str, prop: str) -> str:
        for (href, status, props) in await self.propfind(path, [prop]):
            value = _href(props.get(prop))
            if value is not None:
                return value
        raise DiscoveryError(path, prop)

    async def find_current_user_principal(self) -> str:
        return await self._find_href_property("", "{DAV:}current-user-principal")

    async def find_calendar_home_set(self, principal: str) -> str:
        return await self._find_href_property(
            principal, "{%s}calendar-home-set" % NAMESPACE
        )

    async def find_calendars(self, home_set: str) -> list[CalendarInfo]:
        responses = await self.propfind(
            home_set,
            [
                "{DAV:}resourcetype",
                "{DAV:}displayname",
                "{%s}calendar-description" % NAMESPACE,
                "{%s}supported-calendar-component-set" % NAMESPACE,
            ],
            depth="1",
        )
        ret = []
        for (href, status, props) in responses:
            resourcetype = props.get("{DAV:}resourcetype")
            if resourcetype is None or resourcetype.find(CALENDAR_RESOURCE_TYPE) is None:
                continue
            comps = props.get("{%s}supported-calendar-component-set" % NAMESPACE)
            if comps is not None:
                supported = tuple(c.get("name") for c in comps)
            else:
                supported = ()
            displayname = props.get("{DAV:}displayname")
            description = props.get("{%s}calendar-description" % NAMESPACE)
            ret.append(
                CalendarInfo(
                    path=href,
                    name=displayname.text if displayname is not None else None,
                    description=(
                        description.text if description is not None else None
                    ),
                    supported_components=supported,
                )
            )
        return ret

    async def query_calendar(
        self, path: str, query: CalendarQuery
    ) -> list[CalendarObject]:
        """Run a calendar-query REPORT against a calendar collection."""
        ret = []
        responses = await self._xml_request(
            "REPORT", path, calendar_query_body(query), "1"
        )
        for (href, status, props) in responses:
            if not _status_ok(status):
                logging.warning("Skipping %s in query result: %s", href, status)
                continue
            data = props.get("{%s}calendar-data" % NAMESPACE)
            if data is None or data.text is None:
                logging.warning("Calendar data missing for %s", href)
                continue
            etag = props.get("{DAV:}getetag")
            ret.append(
                CalendarObject(
                    path=href,
                    etag=etag.text if etag is not None else None,
                    data=data.text.encode("utf-8"),
                )
            )
        return ret

    async def get_calendar_object(self, path: str) -> CalendarObject:
        (headers, data) = await self.request("GET", path)
        return CalendarObject(path=path, etag=headers.get("ETag"), data=data)

    async def put_calendar_object(
        self, path: str, calendar: Component, if_none_match: bool = True
    ) -> Optional[str]:
        """Upload a calendar object.

        Args:
          path: Path of the new object
          calendar: VCALENDAR component
          if_none_match: Refuse to overwrite an existing object
        Returns: ETag of the new object, if the server returned one
        """
        headers = {"Content-Type": CALENDAR_CONTENT_TYPE}
        if if_none_match:
            headers["If-None-Match"] = "*"
        (resp_headers, data) = await self.request(
            "PUT", path, body=encode(calendar), headers=headers,
            expected=(200, 201, 204),
        )
        return resp_headers.get("ETag")

    async def delete_calendar_object(self, path: str) -> None:
        await self.request("DELETE", path, expected=(200, 204))
