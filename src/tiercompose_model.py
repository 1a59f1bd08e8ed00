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

"""Descriptor records shared by every stage of a composition pass."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple


# Resolved value of an optional reference whose target was excluded.
NULL_REFERENCE = None


class Kind(str, Enum):
    LOAD_BALANCER = "LoadBalancer"
    LISTENER = "Listener"
    TARGET_GROUP = "TargetGroup"
    NODE_GROUP = "NodeGroup"
    LOG_GROUP = "LogGroup"
    KEY = "Key"
    ALIAS = "Alias"
    SECURITY_GROUP = "SecurityGroup"
    SECURITY_GROUP_INGRESS = "SecurityGroupIngress"
    SECURITY_GROUP_EGRESS = "SecurityGroupEgress"
    ROLE = "Role"
    POLICY_ATTACHMENT = "PolicyAttachment"
    KAFKA_CLUSTER = "KafkaCluster"
    SEARCH_DOMAIN = "SearchDomain"
    DB_INSTANCE = "DBInstance"
    DB_SUBNET_GROUP = "DBSubnetGroup"
    CACHE_REPLICATION_GROUP = "CacheReplicationGroup"
    CACHE_SUBNET_GROUP = "CacheSubnetGroup"
    SECRET = "Secret"
    WEB_ACL_ASSOCIATION = "WebACLAssociation"
    OUTPUT = "Output"

    def __str__(self):
        return self.value


def address_of(kind: Kind, key: str) -> str:
    return f"{Kind(kind).value}.{key}"


@dataclass(frozen=True)
class ResourceDescriptor:
    """One infrastructure object to be emitted.

    Identified structurally by kind and key; ``attributes`` use the
    CloudFormation property names of the resource the kind renders to.
    """

    kind: Kind
    key: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    depends_on: FrozenSet[str] = frozenset()

    @property
    def address(self) -> str:
        return address_of(self.kind, self.key)

    def evolve(self, **changes) -> "ResourceDescriptor":
        return replace(self, **changes)


@dataclass(frozen=True)
class Handle:
    """Resolved pointer to another descriptor's output (ARN, id, name...)."""

    kind: Kind
    key: str
    output: str = "arn"

    @property
    def address(self) -> str:
        return address_of(self.kind, self.key)

    def __str__(self):
        return "${%s.%s}" % (self.address, self.output)


@dataclass(frozen=True)
class Reference:
    """Lazy pointer placed inside a descriptor's attributes.

    ``key`` names the target directly; when it is None the first of
    ``candidates`` (lexicographic order) present in the pass is used.
    ``fallback`` is substituted when no target exists.
    """

    kind: Kind
    key: Optional[str] = None
    output: str = "arn"
    required: bool = False
    candidates: Tuple[str, ...] = ()
    fallback: Any = NULL_REFERENCE

    @classmethod
    def first_of(cls, kind, candidates, output="arn", required=False):
        return cls(kind, None, output, required, tuple(candidates))

    def describe(self) -> str:
        if self.key is not None:
            return f"{address_of(self.kind, self.key)}.{self.output}"
        return f"{Kind(self.kind).value}.first_of({','.join(self.candidates)}).{self.output}"


@dataclass(frozen=True)
class RefSpec:
    """Points one source attribute path at a reference target."""

    source_kind: Kind
    source_key: str
    path: str
    reference: Reference

    @property
    def source_address(self) -> str:
        return address_of(self.source_kind, self.source_key)

    def describe(self) -> str:
        return f"{self.source_address}:{self.path} -> {self.reference.describe()}"


def output(name: str, reference: Reference, description: str = "") -> ResourceDescriptor:
    """Descriptor for a module output whose value is a reference."""
    attributes = {"Value": reference}
    if description:
        attributes["Description"] = description
    return ResourceDescriptor(Kind.OUTPUT, name, attributes)
