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

"""Attribute resolution: defaults, then overrides, then computed values."""

import contextvars
import copy
import os
from contextlib import contextmanager

import yaml

from tiercompose_errors import InvalidAttribute
from tiercompose_model import Kind


class _Required:
    def __repr__(self):
        return "REQUIRED"

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


# Marks a template field that has no default and must be overridden.
REQUIRED = _Required()

# Error list of the active collect_attribute_errors() block, if any.
_collected = contextvars.ContextVar("tiercompose_collected_errors", default=None)


@contextmanager
def collect_attribute_errors():
    """Gather InvalidAttribute errors from resolve() instead of raising them.

    Inside the block a descriptor with missing fields is still returned
    (without those fields and without computed values) so the caller can
    keep building and report every broken descriptor of a pass at once.
    """
    errors = []
    token = _collected.set(errors)
    try:
        yield errors
    finally:
        _collected.reset(token)


def load_defaults(config_file="tiercompose-defaults.yaml"):
    """Load per-kind defaults and name limits from tiercompose-defaults.yaml"""
    script_dir = os.path.dirname(os.path.abspath(__file__))
    config_path = os.path.join(script_dir, "..", config_file)

    with open(config_path, 'r') as f:
        return yaml.safe_load(f)


def defaults_for(kind, table=None):
    """Copy of the default attribute values declared for a kind."""
    table = table if table is not None else load_defaults()
    return copy.deepcopy(table.get("defaults", {}).get(Kind(kind).value, {}))


def name_limit(kind, table=None):
    table = table if table is not None else load_defaults()
    return table.get("name_limits", {}).get(Kind(kind).value, 255)


def truncate_name(name, max_length, separator="-"):
    """Cut a name to max_length and drop any separators left dangling."""
    truncated = name[:max_length]
    return truncated.rstrip(separator)


def join_name(*parts, separator="-"):
    return separator.join(str(part) for part in parts if part not in (None, ""))


def merge_tags(base, overrides, name):
    """Merge tag maps: base, then overrides, then Name (always last)."""
    merged = {}
    for tags in (base or {}, overrides or {}):
        for tag_key, tag_value in tags.items():
            merged[str(tag_key)] = str(tag_value)
    merged.pop("Name", None)
    merged["Name"] = str(name)
    return merged


def tags_with_name(base, overrides, name_field):
    """Computed derivation merging tags with Name taken from name_field."""
    def derive(attributes):
        return merge_tags(base, overrides, attributes[name_field])
    return derive


def resolve(base, overrides=None, computed=None, key=None):
    """Resolve one descriptor's attributes.

    ``base`` maps each field to its default (or REQUIRED); ``overrides`` are
    caller values where None means "not set"; ``computed`` maps fields to
    derivations called in order with the attributes resolved so far.
    Fields still None at the end are dropped.
    """
    resolved = {name: copy.deepcopy(default) for name, default in base.items()}
    for name, value in (overrides or {}).items():
        if value is None:
            continue
        resolved[name] = copy.deepcopy(value)

    missing = [name for name, value in resolved.items() if value is REQUIRED]
    if missing:
        error = InvalidAttribute(key or "<anonymous>", missing)
        collected = _collected.get()
        if collected is None:
            raise error
        collected.append(error)
        return {
            name: value for name, value in resolved.items()
            if value is not None and value is not REQUIRED
        }

    for name, derive in (computed or {}).items():
        resolved[name] = derive(dict(resolved))

    return {name: value for name, value in resolved.items() if value is not None}
