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

"""Cross-reference linking within one composition pass.

References are resolved through an explicit lookup table keyed by
``Kind.key``. A reference whose target was conditionally excluded resolves
to its fallback (``NULL_REFERENCE`` unless given); only references marked
required turn that into an error, and every such error of a pass is raised
together.
"""

import copy
import logging

from tiercompose_errors import AmbiguousComposition, DanglingRequiredReference
from tiercompose_model import NULL_REFERENCE, Handle, RefSpec, Reference, address_of

logger = logging.getLogger(__name__)


def _walk(value, path=()):
    if isinstance(value, Reference):
        yield path, value
    elif isinstance(value, dict):
        for child_key, child in value.items():
            yield from _walk(child, path + (str(child_key),))
    elif isinstance(value, list):
        for index, child in enumerate(value):
            yield from _walk(child, path + (str(index),))


def collect_ref_specs(descriptor):
    """RefSpecs for every Reference embedded in a descriptor's attributes."""
    return [
        RefSpec(descriptor.kind, descriptor.key, ".".join(path), reference)
        for path, reference in _walk(descriptor.attributes)
    ]


def find_unresolved(descriptors):
    """Addresses and paths of Reference placeholders still present."""
    return [
        f"{descriptor.address}:{spec.path}"
        for descriptor in descriptors
        for spec in collect_ref_specs(descriptor)
    ]


def _assign(attributes, path, value):
    parts = path.split(".")
    container = attributes
    for position, part in enumerate(parts):
        last = position == len(parts) - 1
        if isinstance(container, list):
            index = int(part)
            if index == len(container):
                container.append(value if last else {})
            elif index > len(container):
                raise ValueError(f"path {path!r} skips list positions")
            elif last:
                container[index] = value
            if not last:
                container = container[index]
        else:
            if last:
                container[part] = value
            else:
                container = container.setdefault(part, {})


def build_table(descriptors):
    """Map each descriptor address to its descriptor; keys must be unique."""
    table = {}
    for descriptor in descriptors:
        if descriptor.address in table:
            raise AmbiguousComposition(
                f"duplicate descriptor {descriptor.address}",
                {"address": descriptor.address},
            )
        table[descriptor.address] = descriptor
    return table


def find_target(table, reference):
    if reference.key is not None:
        return table.get(address_of(reference.kind, reference.key))
    present = sorted(
        candidate for candidate in reference.candidates
        if address_of(reference.kind, candidate) in table
    )
    if not present:
        return None
    return table[address_of(reference.kind, present[0])]


def link(descriptors, ref_specs=None):
    """Resolve references and return new, linked descriptors in input order."""
    table = build_table(descriptors)
    specs = list(ref_specs or [])
    for descriptor in descriptors:
        specs.extend(collect_ref_specs(descriptor))

    attributes = {}
    depends_on = {}
    dangling = []

    for spec in specs:
        source = table.get(spec.source_address)
        if source is None:
            logger.debug("skipping %s: source not in this pass", spec.describe())
            continue
        if spec.source_address not in attributes:
            attributes[spec.source_address] = copy.deepcopy(source.attributes)
            depends_on[spec.source_address] = set(source.depends_on)

        reference = spec.reference
        target = find_target(table, reference)
        if target is not None:
            value = Handle(target.kind, target.key, reference.output)
            depends_on[spec.source_address].add(target.address)
        else:
            value = reference.fallback
            if value is NULL_REFERENCE:
                if reference.required:
                    dangling.append(spec.describe())
                    continue
                logger.debug("%s resolved to null", spec.describe())
        _assign(attributes[spec.source_address], spec.path, value)

    if dangling:
        raise DanglingRequiredReference(dangling)

    return [
        descriptor.evolve(
            attributes=attributes[descriptor.address],
            depends_on=frozenset(depends_on[descriptor.address]),
        )
        if descriptor.address in attributes else descriptor
        for descriptor in descriptors
    ]
