# Copyright (C) 2025 CardinalHQ, Inc
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, version 3.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <http://www.gnu.org/licenses/>.

"""Flag-gated descriptor groups (create one, many, or none)."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Optional

from tiercompose_errors import AmbiguousComposition

logger = logging.getLogger(__name__)

ZERO_OR_ONE = "zero-or-one"
ZERO_OR_MANY = "zero-or-many"


def build(flag, template, multiplicity=ZERO_OR_ONE, items=None):
    """Instantiate a descriptor template zero, one or N times.

    ``template`` is only called when ``flag`` is true. For ZERO_OR_MANY it is
    called as ``template(key, value)`` for each mapping entry, or
    ``template(index, value)`` for each sequence entry, in iteration order.
    """
    if multiplicity not in (ZERO_OR_ONE, ZERO_OR_MANY):
        raise ValueError(f"unknown multiplicity {multiplicity!r}")
    if not flag:
        return []
    if multiplicity == ZERO_OR_ONE:
        return [template()]

    if items is None:
        return []
    if isinstance(items, Mapping):
        entries = items.items()
    else:
        entries = enumerate(items)
    return [template(entry_key, value) for entry_key, value in entries]


@dataclass(frozen=True)
class Branch:
    """One arm of a set of mutually exclusive conditional groups."""

    flag: bool
    template: Callable[..., Any]
    multiplicity: str = ZERO_OR_ONE
    items: Optional[Any] = None
    label: str = ""


def one_of(*branches):
    """Build the single enabled branch; anything else is an authoring bug."""
    enabled = [branch for branch in branches if branch.flag]
    if len(enabled) != 1:
        labels = [branch.label or f"branch{index}" for index, branch in enumerate(branches)]
        raise AmbiguousComposition(
            f"expected exactly one enabled branch of {', '.join(labels)}, got {len(enabled)}",
            {"enabled": [branch.label for branch in enabled]},
        )
    selected = enabled[0]
    logger.debug("selected branch %s", selected.label or "<unlabelled>")
    return build(True, selected.template, selected.multiplicity, selected.items)


def compose_groups(*groups):
    """Concatenate independently built groups into one resource list."""
    resources = []
    for group in groups:
        resources.extend(group)
    return resources
