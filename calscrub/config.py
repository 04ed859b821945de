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

"""Configuration file handling.

The configuration is an INI-style file::

  [server]
  url = https://caldav.example.com/
  username = jane
  password = secret
  timeout = 30

  [query]
  component = VEVENT
  properties = SUMMARY UID DTSTART DTEND

  [redact]
  LOCATION = keep
  X-CUSTOM = redact

  [project]
  timezone = Europe/Amsterdam
  sender-property = X-PROTEI-SENDERID

The server settings can be overridden with the CALDAV_ROOT, CALDAV_USER
and CALDAV_PASSWORD environment variables.
"""

import configparser
import os
from collections.abc import Mapping
from datetime import tzinfo
from typing import Optional

from dateutil.tz import gettz

from .client import DEFAULT_TIMEOUT
from .policy import DEFAULT_POLICY, PropertyPolicy, parse_decision
from .project import SENDER_ID_PROPERTY
from .query import DEFAULT_EVENT_PROPS

DEFAULT_PATH = os.path.expanduser("~/.config/calscrub.conf")

ENVIRONMENT_OVERRIDES = {
    "url": "CALDAV_ROOT",
    "username": "CALDAV_USER",
    "password": "CALDAV_PASSWORD",
}


class ConfigError(Exception):
    """Invalid or incomplete configuration."""


class Config:
    """Calscrub configuration."""

    def __init__(self, cp=None, environ: Optional[Mapping[str, str]] = None):
        if cp is None:
            cp = self._new_parser()
        self._configparser = cp
        if environ is None:
            environ = os.environ
        self._environ = environ

    @staticmethod
    def _new_parser():
        cp = configparser.ConfigParser(interpolation=None)
        # Property names in [redact] are case-sensitive
        cp.optionxform = str
        return cp

    @classmethod
    def from_file(cls, f, environ=None):
        cp = cls._new_parser()
        cp.read_file(f)
        return cls(cp, environ)

    @classmethod
    def load(cls, path=None, environ=None):
        """Load the configuration.

        A missing file at the default location is not an error; a missing
        file that was explicitly asked for is.
        """
        if path is None:
            path = DEFAULT_PATH
            if not os.path.exists(path):
                return cls(environ=environ)
        try:
            with open(path, encoding="utf-8") as f:
                return cls.from_file(f, environ)
        except OSError as e:
            raise ConfigError(f"unable to read {path}: {e}") from e
        except configparser.Error as e:
            raise ConfigError(f"unable to parse {path}: {e}") from e

    def _get(self, section, name, fallback=None):
        return self._configparser.get(section, name, fallback=fallback)

    def _get_server(self, name):
        try:
            return self._environ[ENVIRONMENT_OVERRIDES[name]]
        except KeyError:
            return self._get("server", name)

    def get_url(self) -> str:
        url = self._get_server("url")
        if not url:
            raise ConfigError(
                "No server URL configured. Set url in the [server] section "
                "or the CALDAV_ROOT environment variable "
                "(e.g. CALDAV_ROOT=http://caldav.example.com/)"
            )
        return url

    def get_username(self) -> Optional[str]:
        return self._get_server("username")

    def get_password(self) -> Optional[str]:
        return self._get_server("password")

    def get_timeout(self) -> float:
        try:
            return self._configparser.getfloat(
                "server", "timeout", fallback=DEFAULT_TIMEOUT
            )
        except ValueError as e:
            raise ConfigError(f"invalid timeout: {e}") from e

    def get_component(self) -> str:
        return self._get("query", "component", "VEVENT")

    def get_properties(self) -> Optional[list[str]]:
        """Properties to request; None means all of them."""
        value = self._get("query", "properties")
        if value is None:
            return list(DEFAULT_EVENT_PROPS)
        if value.strip().lower() == "all":
            return None
        return value.split()

    def get_policy(self, base: PropertyPolicy = DEFAULT_POLICY) -> PropertyPolicy:
        if not self._configparser.has_section("redact"):
            return base
        overrides = {}
        for name, value in self._configparser.items("redact"):
            try:
                overrides[name] = parse_decision(value)
            except ValueError as e:
                raise ConfigError(f"[redact] {name}: {e}") from e
        return base.with_overrides(overrides)

    def get_timezone(self) -> Optional[tzinfo]:
        name = self._get("project", "timezone")
        if name is None:
            return None
        tz = gettz(name)
        if tz is None:
            raise ConfigError(f"unknown timezone {name!r}")
        return tz

    def get_sender_property(self) -> str:
        return self._get("project", "sender-property", SENDER_ID_PROPERTY)
