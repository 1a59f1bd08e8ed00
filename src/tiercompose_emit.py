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

"""Hand a finished composition to a provisioning backend.

Two forms are produced: a plain descriptor document (JSON or YAML) for
plan-inspection tooling, and a CloudFormation template built with
troposphere. Both refuse compositions that still hold reference
placeholders or that carry validation violations.
"""

import json
import logging
import re

import yaml
from troposphere import Export, GetAtt, Output, Ref, Sub, Tags, Template
from troposphere import ec2, eks, elasticache, elasticloadbalancingv2, iam, kms, logs, msk
from troposphere import opensearchservice, rds, secretsmanager, wafv2

from tiercompose_errors import AmbiguousComposition, BlockingViolations, UnresolvedReference
from tiercompose_model import Handle, Kind, Reference
from tiercompose_references import find_unresolved

logger = logging.getLogger(__name__)

RESOURCE_TYPES = {
    Kind.LOAD_BALANCER: elasticloadbalancingv2.LoadBalancer,
    Kind.LISTENER: elasticloadbalancingv2.Listener,
    Kind.TARGET_GROUP: elasticloadbalancingv2.TargetGroup,
    Kind.NODE_GROUP: eks.Nodegroup,
    Kind.LOG_GROUP: logs.LogGroup,
    Kind.KEY: kms.Key,
    Kind.ALIAS: kms.Alias,
    Kind.SECURITY_GROUP: ec2.SecurityGroup,
    Kind.SECURITY_GROUP_INGRESS: ec2.SecurityGroupIngress,
    Kind.SECURITY_GROUP_EGRESS: ec2.SecurityGroupEgress,
    Kind.ROLE: iam.Role,
    Kind.KAFKA_CLUSTER: msk.Cluster,
    Kind.SEARCH_DOMAIN: opensearchservice.Domain,
    Kind.DB_INSTANCE: rds.DBInstance,
    Kind.DB_SUBNET_GROUP: rds.DBSubnetGroup,
    Kind.CACHE_REPLICATION_GROUP: elasticache.ReplicationGroup,
    Kind.CACHE_SUBNET_GROUP: elasticache.SubnetGroup,
    Kind.SECRET: secretsmanager.Secret,
    Kind.WEB_ACL_ASSOCIATION: wafv2.WebACLAssociation,
}

# The handle output each resource type returns from Ref.
REF_OUTPUTS = {
    Kind.LOAD_BALANCER: "arn",
    Kind.LISTENER: "arn",
    Kind.TARGET_GROUP: "arn",
    Kind.NODE_GROUP: "id",
    Kind.LOG_GROUP: "name",
    Kind.KEY: "id",
    Kind.ALIAS: "name",
    Kind.SECURITY_GROUP: "id",
    Kind.SECURITY_GROUP_INGRESS: "id",
    Kind.SECURITY_GROUP_EGRESS: "id",
    Kind.ROLE: "name",
    Kind.KAFKA_CLUSTER: "arn",
    Kind.SEARCH_DOMAIN: "name",
    Kind.DB_INSTANCE: "id",
    Kind.DB_SUBNET_GROUP: "name",
    Kind.CACHE_REPLICATION_GROUP: "id",
    Kind.CACHE_SUBNET_GROUP: "name",
    Kind.SECRET: "arn",
    Kind.WEB_ACL_ASSOCIATION: "id",
}

# Fn::GetAtt attribute names where they differ from "arn" -> "Arn".
GETATT_NAMES = {
    (Kind.LOAD_BALANCER, "dns_name"): "DNSName",
    (Kind.SEARCH_DOMAIN, "endpoint"): "DomainEndpoint",
    (Kind.DB_INSTANCE, "arn"): "DBInstanceArn",
    (Kind.DB_INSTANCE, "endpoint"): "Endpoint.Address",
    (Kind.CACHE_REPLICATION_GROUP, "endpoint"): "PrimaryEndPoint.Address",
}

# Outputs with neither Ref nor GetAtt support, built from the Ref value.
SUB_FORMATS = {
    (Kind.ALIAS, "arn"): "arn:${AWS::Partition}:kms:${AWS::Region}:${AWS::AccountId}:${%s}",
}

# Resource types whose Tags property is a plain string map.
MAP_TAG_KINDS = {Kind.NODE_GROUP, Kind.KAFKA_CLUSTER}


def logical_id(kind, key):
    parts = re.split(r"[^A-Za-z0-9]+", key)
    return Kind(kind).value + "".join(part[:1].upper() + part[1:] for part in parts if part)


def output_id(key):
    parts = re.split(r"[^A-Za-z0-9]+", key)
    return "".join(part[:1].upper() + part[1:] for part in parts if part)


def ensure_emittable(composition, allow_violations=False):
    """Enforce the emitter contract on a composition."""
    unresolved = find_unresolved(composition.descriptors)
    if unresolved:
        raise UnresolvedReference(
            f"unresolved reference(s) at {', '.join(unresolved)}",
            {"count": len(unresolved)},
        )
    if composition.violations and not allow_violations:
        raise BlockingViolations(composition.violations)


def _plain(value):
    if isinstance(value, Handle):
        return str(value)
    if isinstance(value, Reference):
        raise UnresolvedReference(f"unresolved reference to {value.describe()}")
    if isinstance(value, dict):
        return {str(key): _plain(child) for key, child in value.items()}
    if isinstance(value, list):
        return [_plain(child) for child in value]
    return value


def to_document(descriptors):
    """Plain-data form of descriptors: handles become ${Kind.key.output}."""
    return [
        {
            "kind": descriptor.kind.value,
            "key": descriptor.key,
            "attributes": _plain(descriptor.attributes),
            "depends_on": sorted(descriptor.depends_on),
        }
        for descriptor in descriptors
    ]


def dump(document, fmt="yaml"):
    if fmt == "json":
        return json.dumps(document, indent=2)
    if fmt == "yaml":
        return yaml.safe_dump(document, sort_keys=False, default_flow_style=False)
    raise ValueError(f"unknown format {fmt!r}")


def handle_expression(handle):
    """CloudFormation intrinsic returning a handle's output."""
    title = logical_id(handle.kind, handle.key)
    if REF_OUTPUTS.get(handle.kind) == handle.output:
        return Ref(title)
    if (handle.kind, handle.output) in SUB_FORMATS:
        return Sub(SUB_FORMATS[(handle.kind, handle.output)] % title)
    if (handle.kind, handle.output) in GETATT_NAMES:
        return GetAtt(title, GETATT_NAMES[(handle.kind, handle.output)])
    if handle.output == "arn":
        return GetAtt(title, "Arn")
    raise ValueError(f"{handle.kind.value} has no CloudFormation output {handle.output!r}")


def _cfn(value):
    # null references become absent properties
    if isinstance(value, Handle):
        return handle_expression(value)
    if isinstance(value, dict):
        return {key: _cfn(child) for key, child in value.items() if child is not None}
    if isinstance(value, list):
        return [_cfn(child) for child in value if child is not None]
    return value


def _handle_addresses(value):
    if isinstance(value, Handle):
        yield value.address
    elif isinstance(value, dict):
        for child in value.values():
            yield from _handle_addresses(child)
    elif isinstance(value, list):
        for child in value:
            yield from _handle_addresses(child)


def _managed_policies(descriptors):
    """Role key -> policy ARNs from PolicyAttachment descriptors."""
    policies = {}
    for descriptor in descriptors:
        if descriptor.kind != Kind.POLICY_ATTACHMENT:
            continue
        role = descriptor.attributes["Role"]
        policies.setdefault(role.key, []).append(descriptor.attributes["PolicyArn"])
    return policies


def build_resource(descriptor, managed_policies=None, rendered=()):
    properties = _cfn(descriptor.attributes)
    if "Tags" in properties and descriptor.kind not in MAP_TAG_KINDS:
        properties["Tags"] = Tags(properties["Tags"])
    if descriptor.kind == Kind.ROLE and managed_policies and descriptor.key in managed_policies:
        properties["ManagedPolicyArns"] = (
            list(properties.get("ManagedPolicyArns", [])) + managed_policies[descriptor.key]
        )

    resource = RESOURCE_TYPES[descriptor.kind].from_dict(
        logical_id(descriptor.kind, descriptor.key), properties
    )

    # explicit dependencies not already implied by a Ref/GetAtt
    implied = set(_handle_addresses(descriptor.attributes))
    explicit = sorted(
        rendered[address] for address in descriptor.depends_on - implied if address in rendered
    )
    if explicit:
        resource.DependsOn = explicit
    return resource


def _check_unique(ids):
    """Distinct descriptors must not collapse onto one CloudFormation id."""
    seen = {}
    for address, title in ids.items():
        if title in seen:
            raise AmbiguousComposition(
                f"{seen[title]} and {address} both render as {title}",
                {"logical_id": title},
            )
        seen[title] = address


def render_template(composition, description=None, allow_violations=False):
    """CloudFormation template for a linked, validated composition."""
    ensure_emittable(composition, allow_violations)

    t = Template()
    t.set_description(description or f"{composition.environment.name} environment composed by tiercompose.")

    descriptors = composition.descriptors
    managed_policies = _managed_policies(descriptors)
    rendered = {
        descriptor.address: logical_id(descriptor.kind, descriptor.key)
        for descriptor in descriptors if descriptor.kind in RESOURCE_TYPES
    }
    _check_unique(rendered)
    _check_unique({
        descriptor.address: output_id(descriptor.key)
        for descriptor in descriptors if descriptor.kind == Kind.OUTPUT
    })

    for descriptor in descriptors:
        if descriptor.kind in RESOURCE_TYPES:
            t.add_resource(build_resource(descriptor, managed_policies, rendered))

    for descriptor in descriptors:
        if descriptor.kind != Kind.OUTPUT:
            continue
        value = descriptor.attributes.get("Value")
        if value is None:
            logger.debug("skipping null output %s", descriptor.key)
            continue
        kwargs = {}
        if descriptor.attributes.get("Description"):
            kwargs["Description"] = descriptor.attributes["Description"]
        t.add_output(Output(
            output_id(descriptor.key),
            Value=_cfn(value),
            Export=Export(name=Sub("${AWS::StackName}-%s" % descriptor.key)),
            **kwargs
        ))

    logger.debug("rendered %d resources", len(t.resources))
    return t
