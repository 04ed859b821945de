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

"""Property redaction policy.

A policy decides, per iCalendar property name, whether the property is
copied into a sanitized calendar or dropped. Property names that the policy
does not know about are dropped too, but are reported by the redactor.
"""

import enum
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Callable, NamedTuple, Optional, Union

KEEP = False
REDACT = True

ValueRule = Callable[[object], bool]


class PropertyName(str, enum.Enum):
    """Well-known property names."""

    # RFC 5545, calendar properties
    CALSCALE = "CALSCALE"
    METHOD = "METHOD"
    PRODID = "PRODID"
    VERSION = "VERSION"
    # RFC 5545, descriptive component properties
    ATTACH = "ATTACH"
    CATEGORIES = "CATEGORIES"
    CLASS = "CLASS"
    COMMENT = "COMMENT"
    DESCRIPTION = "DESCRIPTION"
    GEO = "GEO"
    LOCATION = "LOCATION"
    PERCENT_COMPLETE = "PERCENT-COMPLETE"
    PRIORITY = "PRIORITY"
    RESOURCES = "RESOURCES"
    STATUS = "STATUS"
    SUMMARY = "SUMMARY"
    # RFC 5545, date and time component properties
    COMPLETED = "COMPLETED"
    DTEND = "DTEND"
    DUE = "DUE"
    DTSTART = "DTSTART"
    DURATION = "DURATION"
    FREEBUSY = "FREEBUSY"
    TRANSP = "TRANSP"
    # RFC 5545, time zone component properties
    TZID = "TZID"
    TZNAME = "TZNAME"
    TZOFFSETFROM = "TZOFFSETFROM"
    TZOFFSETTO = "TZOFFSETTO"
    TZURL = "TZURL"
    # RFC 5545, relationship component properties
    ATTENDEE = "ATTENDEE"
    CONTACT = "CONTACT"
    ORGANIZER = "ORGANIZER"
    RECURRENCE_ID = "RECURRENCE-ID"
    RELATED_TO = "RELATED-TO"
    URL = "URL"
    UID = "UID"
    # RFC 5545, recurrence component properties
    EXDATE = "EXDATE"
    RDATE = "RDATE"
    RRULE = "RRULE"
    # RFC 5545, alarm component properties
    ACTION = "ACTION"
    REPEAT = "REPEAT"
    TRIGGER = "TRIGGER"
    # RFC 5545, change management component properties
    CREATED = "CREATED"
    DTSTAMP = "DTSTAMP"
    LAST_MODIFIED = "LAST-MODIFIED"
    SEQUENCE = "SEQUENCE"
    # RFC 5545, miscellaneous component properties
    REQUEST_STATUS = "REQUEST-STATUS"
    # RFC 9074
    ACKNOWLEDGED = "ACKNOWLEDGED"
    # Vendor extensions
    X_MOZ_LASTACK = "X-MOZ-LASTACK"
    X_MOZ_GENERATION = "X-MOZ-GENERATION"
    X_PROTEI_SENDERID = "X-PROTEI-SENDERID"


class UnrecognizedProperty(NamedTuple):
    """A property name that is not one of the well-known ones."""

    name: str


def classify(name: str) -> Union[PropertyName, UnrecognizedProperty]:
    """Map a raw property name onto a well-known name, if there is one.

    Matching is case-sensitive; property names are compared against the
    exact tokens.
    """
    try:
        return PropertyName(name)
    except ValueError:
        return UnrecognizedProperty(name)


def reject_mailbox_uid(value) -> bool:
    """Value rule that rejects mailbox-style UIDs (``something@host``)."""
    return "@" not in str(value)


def parse_decision(text: str) -> bool:
    """Parse a textual keep/redact decision.

    Raises:
      ValueError: if the text is neither 'keep' nor 'redact'
    """
    text = text.strip().lower()
    if text == "keep":
        return KEEP
    elif text == "redact":
        return REDACT
    raise ValueError(f"invalid redaction decision {text!r}")


class PropertyPolicy(Mapping):
    """Immutable mapping from property name to a 'must redact' flag.

    Besides the keep/redact table a policy can carry value rules: callables
    that are consulted for every occurrence of a kept property and that
    return False for occurrences that must not be copied.
    """

    def __init__(
        self,
        decisions: Union[Mapping[str, bool], Iterable[tuple[str, bool]]],
        value_rules: Optional[Mapping[str, ValueRule]] = None,
    ) -> None:
        self._decisions = MappingProxyType(dict(decisions))
        self._value_rules = MappingProxyType(dict(value_rules or {}))

    def __getitem__(self, name: str) -> bool:
        return self._decisions[name]

    def __iter__(self):
        return iter(self._decisions)

    def __len__(self) -> int:
        return len(self._decisions)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({dict(self._decisions)!r}, "
            f"value_rules={sorted(self._value_rules)!r})"
        )

    @property
    def value_rules(self) -> Mapping[str, ValueRule]:
        return self._value_rules

    def must_redact(self, name: str) -> Optional[bool]:
        """Look up the decision for a property.

        Returns: True to redact, False to keep, None if the name is unknown
        """
        return self._decisions.get(name)

    def accepts(self, name: str, value) -> bool:
        """Check a single occurrence of a kept property against value rules."""
        rule = self._value_rules.get(name)
        if rule is None:
            return True
        return rule(value)

    def with_overrides(self, overrides: Mapping[str, bool]) -> "PropertyPolicy":
        """Return a new policy with some decisions replaced or added."""
        decisions = dict(self._decisions)
        decisions.update(overrides)
        return PropertyPolicy(decisions, self._value_rules)


DEFAULT_DECISIONS = {
    PropertyName.CALSCALE: KEEP,
    PropertyName.METHOD: KEEP,
    PropertyName.PRODID: REDACT,
    PropertyName.VERSION: KEEP,
    PropertyName.ATTACH: REDACT,
    PropertyName.CATEGORIES: REDACT,
    PropertyName.CLASS: KEEP,
    PropertyName.COMMENT: REDACT,
    PropertyName.DESCRIPTION: KEEP,
    PropertyName.GEO: REDACT,
    PropertyName.LOCATION: REDACT,
    PropertyName.PERCENT_COMPLETE: REDACT,
    PropertyName.PRIORITY: KEEP,
    PropertyName.RESOURCES: REDACT,
    PropertyName.STATUS: KEEP,
    PropertyName.SUMMARY: KEEP,
    PropertyName.COMPLETED: KEEP,
    PropertyName.DTEND: KEEP,
    PropertyName.DUE: KEEP,
    PropertyName.DTSTART: KEEP,
    PropertyName.DURATION: KEEP,
    PropertyName.FREEBUSY: KEEP,
    PropertyName.TRANSP: KEEP,
    PropertyName.TZID: KEEP,
    PropertyName.TZNAME: KEEP,
    PropertyName.TZOFFSETFROM: KEEP,
    PropertyName.TZOFFSETTO: KEEP,
    PropertyName.TZURL: KEEP,
    PropertyName.ATTENDEE: REDACT,
    PropertyName.CONTACT: REDACT,
    PropertyName.ORGANIZER: REDACT,
    PropertyName.RECURRENCE_ID: KEEP,
    PropertyName.RELATED_TO: REDACT,
    PropertyName.URL: REDACT,
    PropertyName.UID: KEEP,
    PropertyName.EXDATE: KEEP,
    PropertyName.RDATE: KEEP,
    PropertyName.RRULE: KEEP,
    PropertyName.ACTION: KEEP,
    PropertyName.REPEAT: KEEP,
    PropertyName.TRIGGER: KEEP,
    PropertyName.CREATED: KEEP,
    PropertyName.DTSTAMP: KEEP,
    PropertyName.LAST_MODIFIED: KEEP,
    PropertyName.SEQUENCE: KEEP,
    PropertyName.REQUEST_STATUS: REDACT,
    PropertyName.ACKNOWLEDGED: KEEP,
    PropertyName.X_MOZ_LASTACK: KEEP,
    PropertyName.X_MOZ_GENERATION: KEEP,
    PropertyName.X_PROTEI_SENDERID: KEEP,
}

DEFAULT_POLICY = PropertyPolicy(
    {name.value: decision for (name, decision) in DEFAULT_DECISIONS.items()},
    value_rules={PropertyName.UID.value: reject_mailbox_uid},
)
