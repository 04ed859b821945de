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

"""Calscrub command-line handling."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import timedelta, timezone

import aiohttp
from dateutil.parser import isoparse
from dateutil.tz import tzlocal

from . import __version__
from .client import CalDAVClient, DiscoveryError, TransportError
from .config import Config, ConfigError
from .icalendar import InvalidCalendarData
from .project import MissingOrUnparsableField
from .query import CalendarQuery
from .sync import SyncPipeline, build_event

RECORD_FORMAT = """
CLASS: {classification}
STATUS: {status}
UID: {uid}
SUMMARY: {summary}
DESCRIPTION: {description}
URL: {url}
CREATED: {created}
DTSTART: {start}
DTEND: {end}
DTSTAMP: {stamp}
LAST-MODIFIED: {last_modified}
SEQUENCE: {sequence}
TRANSP: {transparency}
SENDER: {sender_id}"""


def print_record(record):
    print(RECORD_FORMAT.format(**record.as_dict()))


def print_record_json(record):
    print(json.dumps(record.as_dict()))


async def discover_calendars(client):
    principal = await client.find_current_user_principal()
    logging.info("Current user principal: %s", principal)
    home_set = await client.find_calendar_home_set(principal)
    logging.info("Calendar home set: %s", home_set)
    return await client.find_calendars(home_set)


async def resolve_calendar(client, calendar):
    """Resolve a calendar given either as a path or as an index."""
    if calendar.startswith("/"):
        return calendar
    try:
        index = int(calendar)
    except ValueError as exc:
        raise ConfigError(
            f"invalid calendar {calendar!r}; expected path or index"
        ) from exc
    calendars = await discover_calendars(client)
    try:
        return calendars[index].path
    except IndexError as exc:
        raise ConfigError(
            f"no calendar with index {index}; found {len(calendars)}"
        ) from exc


async def cmd_calendars(client, config, args):
    calendars = await discover_calendars(client)
    if not calendars:
        print("Calendars not found")
        return 1
    for i, calendar in enumerate(calendars):
        print(f"cal {i}: {calendar.name or ''} {calendar.path}")
    return 0


async def cmd_events(client, config, args):
    if (args.start is None) != (args.end is None):
        raise ConfigError("--start and --end have to be specified together")
    tz = config.get_timezone()
    try:
        query = CalendarQuery.for_component(
            component=args.component or config.get_component(),
            props=config.get_properties(),
            start=args.start,
            end=args.end,
        )
    except ValueError as exc:
        raise ConfigError(f"invalid time range: {exc}") from exc
    path = await resolve_calendar(client, args.calendar)
    pipeline = SyncPipeline(
        client,
        config.get_policy(),
        tz=tz,
        strict=args.strict,
        emit=print_record_json if args.json else print_record,
        sender_property=config.get_sender_property(),
    )
    result = await pipeline.run(path, query)
    if result.errors:
        logging.warning("%d calendar items could not be processed", len(result.errors))
    return 0


async def cmd_create(client, config, args):
    path = await resolve_calendar(client, args.calendar)
    start = args.start
    if start.tzinfo is None:
        start = start.replace(tzinfo=config.get_timezone() or tzlocal())
    start = start.astimezone(timezone.utc)
    alarm_before = None
    if args.alarm is not None:
        alarm_before = timedelta(minutes=args.alarm)
    sender_property = config.get_sender_property()
    cal = build_event(
        args.summary,
        start,
        start + timedelta(minutes=args.duration),
        description=args.description,
        sender_id=args.sender_id,
        alarm_before=alarm_before,
        sender_property=sender_property,
    )
    pipeline = SyncPipeline(
        client, config.get_policy(), sender_property=sender_property
    )
    (new_path, etag) = await pipeline.upload(path, cal)
    print(new_path)
    return 0


def add_parser(parser):
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s " + ".".join(map(str, __version__)),
    )
    parser.add_argument(
        "-c", "--config", dest="config", default=None,
        help="Configuration file. [~/.config/calscrub.conf]")
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Show debug output, including DAV XML.")
    parser.add_argument(
        "--strict", action="store_true",
        help="Abort on the first calendar item that can not be processed.")

    subparsers = parser.add_subparsers(help="Subcommands", dest="subcommand")
    subparsers.add_parser("calendars", help="List calendars")

    events_parser = subparsers.add_parser(
        "events", help="Print sanitized events from a calendar")
    events_parser.add_argument(
        "--calendar", default="0",
        help="Calendar path or index in the calendar list. [%(default)s]")
    events_parser.add_argument(
        "--component", default=None,
        help="Component type to query, e.g. VEVENT or VTODO.")
    events_parser.add_argument(
        "--start", type=isoparse, default=None,
        help="Only return items that end after this ISO 8601 time.")
    events_parser.add_argument(
        "--end", type=isoparse, default=None,
        help="Only return items that start before this ISO 8601 time.")
    events_parser.add_argument(
        "--json", action="store_true", help="Print one JSON object per line.")

    create_parser = subparsers.add_parser("create", help="Create a new event")
    create_parser.add_argument(
        "--calendar", default="0",
        help="Calendar path or index in the calendar list. [%(default)s]")
    create_parser.add_argument("--summary", required=True)
    create_parser.add_argument("--description", default=None)
    create_parser.add_argument(
        "--start", type=isoparse, required=True, help="ISO 8601 start time.")
    create_parser.add_argument(
        "--duration", type=int, default=60,
        help="Duration in minutes. [%(default)s]")
    create_parser.add_argument(
        "--alarm", type=int, default=None,
        help="Add a display alarm this many minutes before the start.")
    create_parser.add_argument("--sender-id", dest="sender_id", default=None)


COMMANDS = {
    "calendars": cmd_calendars,
    "events": cmd_events,
    "create": cmd_create,
}


async def main(argv):
    parser = argparse.ArgumentParser(prog="calscrub")
    add_parser(parser)
    args = parser.parse_args(argv)

    if args.subcommand is None:
        parser.print_help()
        return 1

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = Config.load(args.config)
        client = CalDAVClient.connect(
            config.get_url(),
            config.get_username(),
            config.get_password(),
            timeout=config.get_timeout(),
        )
    except ConfigError as e:
        logging.error("%s", e)
        return 1

    async with client:
        try:
            return await COMMANDS[args.subcommand](client, config, args)
        except ConfigError as e:
            logging.error("%s", e)
        except (DiscoveryError, TransportError, aiohttp.ClientError) as e:
            logging.error("CalDAV request failed: %s", e)
        except (InvalidCalendarData, MissingOrUnparsableField) as e:
            logging.error("Aborting: %s", e)
        return 1


def run():
    sys.exit(asyncio.run(main(sys.argv[1:])))


if __name__ == "__main__":
    run()
