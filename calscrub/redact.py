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

"""Redaction of calendar component trees.

Redaction walks a component tree top-down and builds a sanitized copy,
consulting a PropertyPolicy for every property it encounters.
"""

import copy
import logging
from typing import NamedTuple, Optional

from icalendar.cal import Component

from .icalendar import get_uid
from .policy import PropertyPolicy, UnrecognizedProperty, classify


class UnknownProperty(NamedTuple):
    """A property that was dropped because the policy does not know it."""

    component: str
    uid: Optional[str]
    property_name: str

    def __str__(self) -> str:
        if self.uid is None:
            return f"{self.component}: {self.property_name}"
        return f"{self.component} {self.uid}: {self.property_name}"


def _copy_occurrences(incomp, name, value, policy):
    if isinstance(value, list):
        kept = [copy.deepcopy(v) for v in value if policy.accepts(name, v)]
        dropped = len(value) - len(kept)
    elif policy.accepts(name, value):
        kept = [copy.deepcopy(value)]
        dropped = 0
    else:
        kept = []
        dropped = 1
    if dropped:
        logging.info(
            "Dropped %d ambiguous %s value(s) from %s %s",
            dropped,
            name,
            incomp.name,
            get_uid(incomp),
        )
    if not kept:
        return None
    if isinstance(value, list):
        return kept
    return kept[0]


def redact_component(
    incomp: Component,
    policy: PropertyPolicy,
    unknown: Optional[list[UnknownProperty]] = None,
) -> Component:
    """Produce a sanitized copy of a component tree.

    The input tree is left untouched; property values are copied, so the
    output shares no values or parameters with it.

    Args:
      incomp: Component to redact
      policy: Policy deciding which properties are kept
      unknown: Optional list to which an UnknownProperty entry is appended
        for every property name the policy does not know about
    Returns: a new component
    """
    outcomp = type(incomp)()
    outcomp.name = incomp.name
    for name, value in incomp.items():
        must_redact = policy.must_redact(name)
        if must_redact is None:
            entry = UnknownProperty(incomp.name, get_uid(incomp), name)
            if isinstance(classify(name), UnrecognizedProperty):
                logging.warning("Redacted unrecognized property %s", entry)
            else:
                logging.warning(
                    "Redacted property %s, which is missing from the policy", entry
                )
            if unknown is not None:
                unknown.append(entry)
            continue
        if must_redact:
            continue
        value = _copy_occurrences(incomp, name, value, policy)
        if value is not None:
            outcomp[name] = value
    for insub in incomp.subcomponents:
        outcomp.add_component(redact_component(insub, policy, unknown))
    return outcomp


class Redactor:
    """Redacts components against a fixed policy.

    Unknown properties seen across all calls are collected in ``unknown``.
    """

    def __init__(self, policy: PropertyPolicy) -> None:
        self.policy = policy
        self.unknown: list[UnknownProperty] = []

    def __call__(self, component: Component) -> Component:
        return redact_component(component, self.policy, self.unknown)

    def unknown_names(self) -> set[str]:
        return {entry.property_name for entry in self.unknown}
